"""Serializable views of a session for the snapshot store.

``build_snapshot`` carries enough to rebuild the session with
``SessionRegistry.restore``; ``build_results_export`` is the end-of-session
report.
"""
from .backlog import completed_features, remaining_features
from .entities import utcnow
from .session import PokerSession


def build_snapshot(session: PokerSession):
    return {
        'sessionId': session.id,
        'code': session.code,
        'mode': session.mode.value,
        'createdAt': session.created_at.isoformat(),
        'savedAt': utcnow().isoformat(),
        'participants': [
            {'id': p.id, 'displayName': p.display_name, 'isFacilitator': p.is_facilitator}
            for p in session.participants.values()
        ],
        'features': [f.to_dict() for f in session.backlog],
        'completedFeatures': [f.to_dict() for f in completed_features(session)],
        'remainingFeatures': [f.to_dict() for f in remaining_features(session)],
        'currentFeatureIndex': session.current_feature_index,
        'progress': session.get_progress(),
    }


def build_results_export(session: PokerSession):
    completed = completed_features(session)
    now = utcnow()
    total_rounds = sum(f.current_round for f in completed)
    return {
        'sessionId': session.id,
        'sessionCode': session.code,
        'mode': session.mode.value,
        'startedAt': session.created_at.isoformat(),
        'completedAt': now.isoformat(),
        'durationSec': int((now - session.created_at).total_seconds()),
        'participants': [p.display_name for p in session.participants.values()],
        'statistics': {
            'totalFeatures': len(session.backlog),
            'estimatedFeatures': len(completed),
            'totalRounds': total_rounds,
            'averageRoundsPerFeature': round(total_rounds / len(completed), 2) if completed else 0,
        },
        'results': [f.to_dict() for f in completed],
        'unestimated': [f.to_dict(include_history=False) for f in remaining_features(session)],
        'totalEstimate': sum(f.estimate or 0 for f in completed),
    }

"""Backlog parsing and editing.

Editing helpers act on a live ``PokerSession`` and carry the same
facilitator-only authorization as the session's own transitions. Callers
hold the session lock.
"""
import logging
import uuid
from typing import Any, List, Sequence

from .entities import Feature
from .outcomes import ErrorCode, Outcome
from .session import PokerSession, SessionStatus
from .validators import validate_backlog

logger = logging.getLogger(__name__)


def parse_backlog(descriptor: Any) -> Outcome:
    """Turn ``{features: [{id?, name, description?}, ...]}`` into Feature objects.

    A bare list of feature dicts is accepted too. Missing ids are generated.
    """
    raw = descriptor.get('features') if isinstance(descriptor, dict) else descriptor
    if isinstance(raw, list):
        raw = [
            dict(item, id=item.get('id') or str(uuid.uuid4())) if isinstance(item, dict) else item
            for item in raw
        ]
    errors = validate_backlog(raw)
    if errors:
        return Outcome.failure(ErrorCode.EMPTY_BACKLOG, ', '.join(errors))
    features = [
        Feature(item['id'].strip(), item['name'].strip(), (item.get('description') or '').strip())
        for item in raw
    ]
    return Outcome.success(features)


def add_feature(session: PokerSession, actor_id: str, name: Any, description: Any = '') -> Outcome:
    denied = session.require_facilitator(actor_id)
    if denied:
        return denied
    if session.status == SessionStatus.FINISHED:
        return Outcome.failure(ErrorCode.INVALID_STATE, 'Session is finished')
    if not isinstance(name, str) or not name.strip():
        return Outcome.failure(ErrorCode.EMPTY_BACKLOG, 'Feature name cannot be empty')
    description = description.strip() if isinstance(description, str) else ''
    feature = Feature(str(uuid.uuid4()), name.strip(), description)
    session.backlog.append(feature)
    logger.info(f"[feature-added] session={session.code} feature={feature.id} name={feature.name}")
    return Outcome.success(feature)


def remove_feature(session: PokerSession, actor_id: str, feature_id: str) -> Outcome:
    denied = session.require_facilitator(actor_id)
    if denied:
        return denied
    index = next((i for i, f in enumerate(session.backlog) if f.id == feature_id), None)
    if index is None:
        return Outcome.failure(ErrorCode.UNKNOWN_FEATURE, f'No feature with id {feature_id!r}')
    if session.status != SessionStatus.WAITING and index == session.current_feature_index:
        return Outcome.failure(ErrorCode.INVALID_STATE, 'Cannot remove the feature being estimated')
    # Keep the pointer on the same current feature
    if index < session.current_feature_index:
        session.current_feature_index -= 1
    removed = session.backlog.pop(index)
    logger.info(f"[feature-removed] session={session.code} feature={feature_id}")
    return Outcome.success(removed)


def reorder_features(session: PokerSession, actor_id: str, order: Sequence[str]) -> Outcome:
    denied = session.require_facilitator(actor_id) or session.require_status(SessionStatus.WAITING)
    if denied:
        return denied
    by_id = {f.id: f for f in session.backlog}
    if len(order) != len(session.backlog) or set(order) != set(by_id):
        return Outcome.failure(ErrorCode.UNKNOWN_FEATURE, 'Order must list every feature id exactly once')
    session.backlog = [by_id[fid] for fid in order]
    return Outcome.success(session.backlog)


def completed_features(session: PokerSession) -> List[Feature]:
    return [f for f in session.backlog if f.completed]


def remaining_features(session: PokerSession) -> List[Feature]:
    return [f for f in session.backlog if not f.completed]

from conftest import build_session, make_features

from planning_poker.services.poker.outcomes import ErrorCode
from planning_poker.services.poker.reconcile import GameMode, Method
from planning_poker.services.poker.session import PokerSession, RoundKind, SessionStatus


def cast(session, ids, *pairs):
    """Submit (name, value) votes in order; returns the last receipt."""
    receipt = None
    for name, value in pairs:
        outcome = session.submit_vote(ids[name], value)
        assert outcome.ok, outcome.error
        receipt = outcome.value
    return receipt


def test_unanimous_strict_round_validates():
    session, ids = build_session()
    receipt = cast(session, ids, ('Alice', 5), ('Bob', 5), ('Carol', 5))
    result = receipt.round_result
    assert result.kind == RoundKind.VALIDATED
    assert result.reconciliation.validated
    assert result.reconciliation.estimate == 5
    assert result.reconciliation.method == Method.UNANIMOUS
    feature = session.backlog[0]
    assert feature.completed and feature.estimate == 5


def test_split_strict_round_opens_round_two():
    session, ids = build_session()
    receipt = cast(session, ids, ('Alice', 5), ('Bob', 8), ('Carol', 5))
    result = receipt.round_result
    assert result.kind == RoundKind.RETRY
    assert result.round == 1
    assert result.next_round == 2
    assert result.to_dict()['needsRevote'] is True

    feature = session.backlog[0]
    assert feature.current_round == 2
    assert not feature.completed
    assert len(feature.round_history) == 1
    assert [v['value'] for v in feature.round_history[0]['votes']] == [5, 8, 5]
    assert len(feature.votes_for_round(1)) == 3
    assert all(not p.has_voted_this_round for p in session.participants.values())
    assert session.current_round_votes() == []


def test_average_mode_second_round_uses_rounded_mean():
    session, ids = build_session(mode=GameMode.AVERAGE)
    first = cast(session, ids, ('Alice', 5), ('Bob', 8), ('Carol', 5)).round_result
    assert first.kind == RoundKind.RETRY
    assert first.reconciliation.method == Method.FIRST_ROUND_NO_CONSENSUS

    second = cast(session, ids, ('Alice', 5), ('Bob', 8), ('Carol', 13)).round_result
    assert second.kind == RoundKind.VALIDATED
    assert second.round == 2
    assert second.reconciliation.estimate == 9
    assert second.reconciliation.method == Method.AVERAGE
    assert session.backlog[0].estimate == 9


def test_all_break_votes_pause_without_reconciling():
    session, ids = build_session()
    receipt = cast(session, ids, ('Alice', 'coffee'), ('Bob', 'coffee'), ('Carol', 'coffee'))
    result = receipt.round_result
    assert result.kind == RoundKind.BREAK
    assert result.reconciliation is None
    assert session.on_break
    feature = session.backlog[0]
    assert not feature.completed
    assert feature.current_round == 1

    # Nobody votes until the facilitator resumes play
    assert session.submit_vote(ids['Alice'], 5).error.code == ErrorCode.INVALID_STATE
    assert session.advance_round(ids['Alice']).ok
    assert not session.on_break
    assert feature.current_round == 1
    assert feature.round_history[-1]['outcome'] == 'break'
    assert cast(session, ids, ('Alice', 3), ('Bob', 3), ('Carol', 3)).round_result.kind == RoundKind.VALIDATED


def test_one_non_break_vote_reconciles_normally():
    session, ids = build_session()
    result = cast(session, ids, ('Alice', 'coffee'), ('Bob', 'coffee'), ('Carol', 8)).round_result
    assert result.kind == RoundKind.VALIDATED
    assert result.reconciliation.estimate == 8


def test_duplicate_name_is_rejected():
    session, ids = build_session()
    outcome = session.join('Bob', 'sid-9')
    assert outcome.error.code == ErrorCode.DUPLICATE_NAME
    assert len(session.participants) == 3


def test_only_facilitator_advances_feature():
    session, ids = build_session()
    outcome = session.advance_feature(ids['Bob'])
    assert outcome.error.code == ErrorCode.NOT_AUTHORIZED
    assert session.current_feature_index == 0


def test_start_preconditions():
    session, ids = build_session(players=('Alice',), start=False)
    assert session.start(ids['Alice']).error.code == ErrorCode.NOT_ENOUGH_PLAYERS

    session, ids = build_session(features=(), start=False)
    assert session.start(ids['Alice']).error.code == ErrorCode.NO_BACKLOG
    assert session.start(ids['Bob']).error.code == ErrorCode.NOT_AUTHORIZED

    session, ids = build_session()
    assert session.start(ids['Alice']).error.code == ErrorCode.INVALID_STATE


def test_create_validates_name_and_mode():
    assert PokerSession.create('', 'strict', 'ABC123').error.code == ErrorCode.INVALID_NAME
    assert PokerSession.create('Alice', 'median', 'ABC123').error.code == ErrorCode.INVALID_MODE
    session = PokerSession.create(' Alice ', 'average', 'ABC123').value
    assert session.mode == GameMode.AVERAGE
    assert session.facilitator.display_name == 'Alice'
    assert session.facilitator.is_facilitator
    assert session.status == SessionStatus.WAITING


def test_vote_rejections_leave_state_untouched():
    session, ids = build_session()
    assert session.submit_vote(ids['Alice'], 7).error.code == ErrorCode.INVALID_CARD
    assert session.submit_vote('nobody', 5).error.code == ErrorCode.UNKNOWN_PARTICIPANT
    assert session.submit_vote(ids['Alice'], 5).ok
    assert session.submit_vote(ids['Alice'], 8).error.code == ErrorCode.ALREADY_VOTED
    assert len(session.current_round_votes()) == 1
    assert session.participants[ids['Alice']].current_vote == 5


def test_votes_before_start_are_rejected():
    session, ids = build_session(start=False)
    assert session.submit_vote(ids['Alice'], 5).error.code == ErrorCode.INVALID_STATE


def test_stale_vote_is_rejected():
    session, ids = build_session()
    cast(session, ids, ('Alice', 5), ('Bob', 8), ('Carol', 5))
    feature = session.backlog[0]

    stale = session.submit_vote(ids['Alice'], 5, expected_round=1, expected_feature_id=feature.id)
    assert stale.error.code == ErrorCode.STALE_VOTE
    wrong_feature = session.submit_vote(ids['Alice'], 5, expected_round=2, expected_feature_id='f2')
    assert wrong_feature.error.code == ErrorCode.STALE_VOTE
    assert session.submit_vote(ids['Alice'], 5, expected_round=2, expected_feature_id=feature.id).ok


def test_votes_stay_hidden_until_round_completes():
    session, ids = build_session()
    cast(session, ids, ('Alice', 5))
    view = session.to_dict()
    alice = next(p for p in view['participants'] if p['id'] == ids['Alice'])
    assert alice['hasVoted'] is True
    assert alice['vote'] is None
    assert view['votesIn'] == 1

    cast(session, ids, ('Bob', 5), ('Carol', 5))
    view = session.to_dict()
    assert all(p['vote'] == 5 for p in view['participants'])


def test_disconnect_then_rejoin_by_name_reconnects():
    session, ids = build_session()
    cast(session, ids, ('Bob', 8))
    assert session.disconnect(ids['Bob']).ok
    assert not session.participants[ids['Bob']].connected

    rejoined = session.join('Bob', 'sid-new')
    assert rejoined.ok
    assert rejoined.value.reconnected
    assert rejoined.value.participant.id == ids['Bob']
    # The vote cast before the drop still counts
    assert session.participants[ids['Bob']].has_voted_this_round
    assert len(session.participants) == 3


def test_leave_can_complete_the_round():
    session, ids = build_session()
    cast(session, ids, ('Alice', 5), ('Bob', 5))
    left = session.leave(ids['Carol'])
    assert left.ok
    assert left.value.remaining == 2
    assert left.value.round_result.kind == RoundKind.VALIDATED
    assert session.backlog[0].estimate == 5


def test_vote_from_departed_participant_no_longer_counts():
    session, ids = build_session()
    cast(session, ids, ('Carol', 13))
    session.leave(ids['Carol'])
    result = cast(session, ids, ('Alice', 5), ('Bob', 5)).round_result
    assert result.kind == RoundKind.VALIDATED
    assert result.reconciliation.estimate == 5


def test_facilitator_leaving_and_returning_restores_role():
    session, ids = build_session()
    left = session.leave(ids['Alice'])
    assert left.value.facilitator_left
    assert session.facilitator_absent
    assert session.to_dict()['facilitatorAbsent'] is True
    assert session.advance_feature(ids['Bob']).error.code == ErrorCode.NOT_AUTHORIZED

    back = session.join('Alice', 'sid-back').value.participant
    assert back.is_facilitator
    assert back.id == ids['Alice']
    assert not session.facilitator_absent
    assert session.advance_feature(back.id).ok


def test_facilitator_vote_is_dropped_on_leave_and_can_be_recast():
    session, ids = build_session()
    cast(session, ids, ('Alice', 13), ('Bob', 5))
    session.leave(ids['Alice'])
    back = session.join('Alice', 'sid-back').value.participant
    assert back.id == ids['Alice']

    view = session.to_dict()
    alice = next(p for p in view['participants'] if p['id'] == back.id)
    assert alice['hasVoted'] is False
    assert view['votesIn'] == 1
    assert not session.backlog[0].has_vote_from(back.id)

    # The fresh vote is accepted and decides the round instead of the old 13
    assert session.submit_vote(back.id, 5).ok
    result = cast(session, ids, ('Carol', 5)).round_result
    assert result.kind == RoundKind.VALIDATED
    assert result.reconciliation.estimate == 5
    assert sorted(v['value'] for v in result.votes) == [5, 5, 5]


def test_advancing_through_backlog_finishes_session():
    session, ids = build_session()
    cast(session, ids, ('Alice', 5), ('Bob', 5), ('Carol', 5))
    first = session.advance_feature(ids['Alice']).value
    assert not first.finished
    assert first.feature.id == 'f2'
    assert first.index == 1 and first.total == 2
    assert session.get_progress()['percentage'] == 50

    last = session.advance_feature(ids['Alice']).value
    assert last.finished
    assert last.feature is None
    assert session.status == SessionStatus.FINISHED
    assert session.submit_vote(ids['Bob'], 5).error.code == ErrorCode.INVALID_STATE
    assert session.join('Dave', 'sid-7').error.code == ErrorCode.CLOSED


def test_completed_feature_accepts_no_more_votes():
    session, ids = build_session()
    cast(session, ids, ('Alice', 5), ('Bob', 5), ('Carol', 5))
    assert session.submit_vote(ids['Alice'], 5).error.code == ErrorCode.NO_ACTIVE_FEATURE
    assert session.advance_round(ids['Alice']).error.code == ErrorCode.NO_ACTIVE_FEATURE


def test_facilitator_retry_replays_same_round():
    session, ids = build_session()
    cast(session, ids, ('Alice', 5), ('Bob', 8))
    feature = session.advance_round(ids['Alice']).value
    assert feature.current_round == 1
    assert feature.round_history[-1]['outcome'] == 'retry'
    assert len(feature.round_history[-1]['votes']) == 2
    assert session.current_round_votes() == []
    assert session.advance_round(ids['Bob']).error.code == ErrorCode.NOT_AUTHORIZED


def test_end_manually_and_reset():
    session, ids = build_session(start=False)
    assert session.end_manually(ids['Alice']).error.code == ErrorCode.INVALID_STATE

    session.start(ids['Alice'])
    cast(session, ids, ('Alice', 5), ('Bob', 5), ('Carol', 5))
    assert session.end_manually(ids['Bob']).error.code == ErrorCode.NOT_AUTHORIZED
    assert session.end_manually(ids['Alice']).ok
    assert session.status == SessionStatus.FINISHED
    # Ending twice is harmless
    assert session.end_manually(ids['Alice']).ok

    assert session.reset(ids['Alice']).ok
    assert session.status == SessionStatus.WAITING
    assert session.current_feature_index == 0
    assert all(not f.completed and f.votes == [] for f in session.backlog)


def test_progress_counts_completed_features():
    session, ids = build_session(features=('A', 'B', 'C'))
    assert session.get_progress() == {'total': 3, 'completed': 0, 'remaining': 3, 'percentage': 0,
                                      'currentIndex': 0}
    cast(session, ids, ('Alice', 2), ('Bob', 2), ('Carol', 2))
    assert session.get_progress()['percentage'] == 33
    session.advance_feature(ids['Alice'])
    cast(session, ids, ('Alice', 3), ('Bob', 3), ('Carol', 3))
    assert session.get_progress()['percentage'] == 67


def test_backlog_reload_only_while_waiting():
    session, ids = build_session(start=False)
    assert session.load_backlog(ids['Alice'], make_features('X')).ok
    assert session.load_backlog(ids['Bob'], make_features('Y')).error.code == ErrorCode.NOT_AUTHORIZED
    assert session.load_backlog(ids['Alice'], []).error.code == ErrorCode.EMPTY_BACKLOG
    session.start(ids['Alice'])
    assert session.load_backlog(ids['Alice'], make_features('Z')).error.code == ErrorCode.INVALID_STATE

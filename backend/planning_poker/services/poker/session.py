"""The planning poker session state machine.

A ``PokerSession`` owns its participants and backlog and exposes every state
transition as a method returning an ``Outcome``. Callers serialize access by
holding ``session.lock`` for the duration of an operation; nothing in here
blocks, so the "last vote closes the round" check is atomic with the vote.
"""
import logging
import math
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .cards import CardValue, is_valid_card
from .entities import Feature, Participant, Vote, utcnow
from .outcomes import ErrorCode, Outcome
from .reconcile import GameMode, Reconciliation, all_break, reconcile
from .validators import parse_mode, validate_display_name

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    WAITING = 'waiting'
    ACTIVE = 'active'
    FINISHED = 'finished'


class RoundKind(str, Enum):
    VALIDATED = 'validated'
    RETRY = 'retry'
    BREAK = 'break'


@dataclass(frozen=True)
class RoundResult:
    feature_id: str
    feature_name: str
    round: int
    kind: RoundKind
    votes: List[Dict[str, Any]]
    reconciliation: Optional[Reconciliation] = None
    next_round: Optional[int] = None

    def to_dict(self):
        data = {
            'featureId': self.feature_id,
            'featureName': self.feature_name,
            'round': self.round,
            'kind': self.kind.value,
            'votes': self.votes,
            'validated': False,
            'estimate': None,
            'method': None,
            'needsRevote': self.kind == RoundKind.RETRY,
            'nextRound': self.next_round,
        }
        if self.reconciliation is not None:
            data.update(self.reconciliation.to_dict())
        return data


@dataclass(frozen=True)
class JoinResult:
    participant: Participant
    reconnected: bool = False


@dataclass(frozen=True)
class VoteReceipt:
    participant_id: str
    feature_id: str
    round: int
    votes_in: int
    expected: int
    voter_ids: List[str] = field(default_factory=list)
    round_result: Optional[RoundResult] = None

    def progress_dict(self):
        return {
            'featureId': self.feature_id,
            'round': self.round,
            'votesIn': self.votes_in,
            'expected': self.expected,
            'voterIds': list(self.voter_ids),
        }


@dataclass(frozen=True)
class FeatureAdvance:
    feature: Optional[Feature]
    index: int
    total: int
    finished: bool


@dataclass(frozen=True)
class LeaveResult:
    participant: Participant
    facilitator_left: bool
    remaining: int
    round_result: Optional[RoundResult] = None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class PokerSession:
    def __init__(self, mode: GameMode, code: str, min_players: int = 2, session_id: Optional[str] = None):
        self.id = session_id or str(uuid.uuid4())
        self.code = code
        self.mode = mode
        self.min_players = min_players
        self.facilitator_id: Optional[str] = None
        self.participants: Dict[str, Participant] = {}
        self.backlog: List[Feature] = []
        self.current_feature_index = 0
        self.status = SessionStatus.WAITING
        self.on_break = False
        self.created_at = utcnow()
        self.lock = threading.Lock()
        self._facilitator_name: Optional[str] = None

    @classmethod
    def create(cls, facilitator_name: Any, mode: Any, code: str, min_players: int = 2) -> Outcome:
        """Build a waiting session with its facilitator registered as the first participant."""
        problem = validate_display_name(facilitator_name)
        if problem:
            return Outcome.failure(ErrorCode.INVALID_NAME, problem)
        game_mode = parse_mode(mode)
        if game_mode is None:
            return Outcome.failure(ErrorCode.INVALID_MODE, f'Invalid game mode: {mode!r}')
        session = cls(game_mode, code, min_players=min_players)
        facilitator = Participant(id=uuid.uuid4().hex, display_name=facilitator_name.strip(), is_facilitator=True)
        session.participants[facilitator.id] = facilitator
        session.facilitator_id = facilitator.id
        session._facilitator_name = facilitator.display_name
        return Outcome.success(session)

    # ---- queries ----

    @property
    def facilitator(self) -> Optional[Participant]:
        return self.participants.get(self.facilitator_id) if self.facilitator_id else None

    @property
    def facilitator_absent(self) -> bool:
        return self.facilitator is None

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        return self.participants.get(participant_id)

    def find_by_name(self, display_name: str) -> Optional[Participant]:
        for p in self.participants.values():
            if p.display_name == display_name:
                return p
        return None

    def connected_count(self) -> int:
        return sum(1 for p in self.participants.values() if p.connected)

    def current_feature(self) -> Optional[Feature]:
        if self.current_feature_index >= len(self.backlog):
            return None
        return self.backlog[self.current_feature_index]

    def get_feature(self, feature_id: str) -> Optional[Feature]:
        for f in self.backlog:
            if f.id == feature_id:
                return f
        return None

    def expected_voters(self) -> List[Participant]:
        return list(self.participants.values())

    def current_round_votes(self) -> List[Vote]:
        feature = self.current_feature()
        if not feature:
            return []
        return feature.current_round_votes(self.participants.keys())

    def all_voted(self) -> bool:
        votes = self.current_round_votes()
        return bool(votes) and len(votes) == len(self.participants)

    def round_revealed(self) -> bool:
        feature = self.current_feature()
        if not feature:
            return False
        return feature.completed or self.on_break or self.all_voted()

    def get_progress(self):
        total = len(self.backlog)
        completed = sum(1 for f in self.backlog if f.completed)
        percentage = _round_half_up(completed * 100 / total) if total else 0
        return {
            'total': total,
            'completed': completed,
            'remaining': total - completed,
            'percentage': percentage,
            'currentIndex': self.current_feature_index,
        }

    # ---- guards ----

    def require_participant(self, participant_id: str) -> Optional[Outcome]:
        if participant_id not in self.participants:
            return Outcome.failure(ErrorCode.UNKNOWN_PARTICIPANT, 'Participant not found in this session')
        return None

    def require_facilitator(self, actor_id: str) -> Optional[Outcome]:
        missing = self.require_participant(actor_id)
        if missing:
            return missing
        if actor_id != self.facilitator_id:
            return Outcome.failure(ErrorCode.NOT_AUTHORIZED, 'Only the facilitator may do this')
        return None

    def require_status(self, *allowed: SessionStatus) -> Optional[Outcome]:
        if self.status not in allowed:
            return Outcome.failure(ErrorCode.INVALID_STATE, f'Not allowed while session is {self.status.value}')
        return None

    # ---- membership ----

    def join(self, display_name: Any, connection_ref: Optional[str] = None) -> Outcome:
        if self.status == SessionStatus.FINISHED:
            return Outcome.failure(ErrorCode.CLOSED, 'Session is closed')
        problem = validate_display_name(display_name)
        if problem:
            return Outcome.failure(ErrorCode.INVALID_NAME, problem)
        name = display_name.strip()

        existing = self.find_by_name(name)
        if existing is not None:
            if existing.connected:
                return Outcome.failure(ErrorCode.DUPLICATE_NAME, 'Display name already taken')
            existing.connection_ref = connection_ref
            logger.info(f"[reconnect] session={self.code} participant={existing.id} name={name}")
            return Outcome.success(JoinResult(existing, reconnected=True))

        # The facilitator left earlier and comes back under the same name: restore the role
        if self.facilitator_absent and name == self._facilitator_name:
            participant = Participant(id=self.facilitator_id, display_name=name,
                                      is_facilitator=True, connection_ref=connection_ref)
        else:
            participant = Participant(id=uuid.uuid4().hex, display_name=name, connection_ref=connection_ref)
        self.participants[participant.id] = participant
        logger.info(f"[join] session={self.code} participant={participant.id} name={name}")
        return Outcome.success(JoinResult(participant))

    def disconnect(self, participant_id: str) -> Outcome:
        """Mark a participant unreachable; their vote and seat are kept for a reconnect."""
        missing = self.require_participant(participant_id)
        if missing:
            return missing
        participant = self.participants[participant_id]
        participant.connection_ref = None
        return Outcome.success(participant)

    def leave(self, participant_id: str) -> Outcome:
        missing = self.require_participant(participant_id)
        if missing:
            return missing
        participant = self.participants.pop(participant_id)
        participant.connection_ref = None
        facilitator_left = participant_id == self.facilitator_id
        if facilitator_left:
            logger.warning(f"[facilitator-absent] session={self.code}")

        feature = self.current_feature()
        if feature and not feature.completed:
            # A rejoin under the same id must not bring the old vote back
            feature.void_votes_from(participant_id)

        # The leaver may have been the last vote outstanding
        round_result = None
        if (self.status == SessionStatus.ACTIVE and feature and not feature.completed
                and not self.on_break and self.all_voted()):
            round_result = self._complete_round(feature)
        return Outcome.success(LeaveResult(participant, facilitator_left, len(self.participants), round_result))

    # ---- backlog ----

    def load_backlog(self, actor_id: str, features: Sequence[Feature]) -> Outcome:
        denied = self.require_facilitator(actor_id) or self.require_status(SessionStatus.WAITING)
        if denied:
            return denied
        if not features:
            return Outcome.failure(ErrorCode.EMPTY_BACKLOG, 'Backlog must contain at least one feature')
        for index, f in enumerate(features):
            if not (f.id and str(f.id).strip()) or not (f.name and f.name.strip()):
                return Outcome.failure(ErrorCode.EMPTY_BACKLOG, f'Feature at index {index} needs an id and a name')
        self.backlog = list(features)
        self.current_feature_index = 0
        logger.info(f"[backlog-loaded] session={self.code} features={len(self.backlog)}")
        return Outcome.success(self.backlog)

    def apply_estimate(self, actor_id: str, feature_id: str, estimate: Optional[int]) -> Outcome:
        """Record an estimate decided elsewhere (replaying a saved snapshot)."""
        denied = self.require_facilitator(actor_id) or self.require_status(SessionStatus.WAITING)
        if denied:
            return denied
        feature = self.get_feature(feature_id)
        if feature is None:
            return Outcome.failure(ErrorCode.UNKNOWN_FEATURE, f'No feature with id {feature_id!r}')
        feature.set_estimate(estimate)
        return Outcome.success(feature)

    def seek(self, actor_id: str, index: int) -> Outcome:
        denied = self.require_facilitator(actor_id) or self.require_status(SessionStatus.WAITING)
        if denied:
            return denied
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index <= len(self.backlog):
            return Outcome.failure(ErrorCode.INVALID_STATE, f'Feature index {index!r} is out of range')
        self.current_feature_index = index
        return Outcome.success(index)

    # ---- lifecycle ----

    def start(self, actor_id: str) -> Outcome:
        denied = self.require_facilitator(actor_id) or self.require_status(SessionStatus.WAITING)
        if denied:
            return denied
        if not self.backlog:
            return Outcome.failure(ErrorCode.NO_BACKLOG, 'No backlog loaded')
        if len(self.participants) < self.min_players:
            return Outcome.failure(ErrorCode.NOT_ENOUGH_PLAYERS,
                                   f'At least {self.min_players} participants are required to start')
        self.status = SessionStatus.ACTIVE
        if self.current_feature() is None:
            # Restored from a snapshot with nothing left to estimate
            self.status = SessionStatus.FINISHED
        logger.info(f"[start] session={self.code} status={self.status.value}")
        return Outcome.success(self.current_feature())

    def end_manually(self, actor_id: str) -> Outcome:
        denied = self.require_facilitator(actor_id)
        if denied:
            return denied
        if self.status == SessionStatus.FINISHED:
            return Outcome.success(self)
        if self.status != SessionStatus.ACTIVE:
            return Outcome.failure(ErrorCode.INVALID_STATE, 'Session has not started')
        self.status = SessionStatus.FINISHED
        self.on_break = False
        logger.info(f"[end] session={self.code} ended by facilitator at index={self.current_feature_index}")
        return Outcome.success(self)

    def reset(self, actor_id: str) -> Outcome:
        denied = self.require_facilitator(actor_id)
        if denied:
            return denied
        self.status = SessionStatus.WAITING
        self.current_feature_index = 0
        self.on_break = False
        for feature in self.backlog:
            feature.reset()
        for p in self.participants.values():
            p.reset_vote()
        logger.info(f"[reset] session={self.code}")
        return Outcome.success(self)

    # ---- voting ----

    def submit_vote(self, participant_id: str, value: CardValue,
                    expected_round: Optional[int] = None,
                    expected_feature_id: Optional[str] = None) -> Outcome:
        missing = self.require_participant(participant_id)
        if missing:
            return missing
        if not is_valid_card(value):
            return Outcome.failure(ErrorCode.INVALID_CARD, f'Invalid card value: {value!r}')
        if self.status != SessionStatus.ACTIVE:
            return Outcome.failure(ErrorCode.INVALID_STATE, f'Votes are not accepted while session is {self.status.value}')
        feature = self.current_feature()
        if feature is None or feature.completed:
            return Outcome.failure(ErrorCode.NO_ACTIVE_FEATURE, 'No feature is open for voting')
        if self.on_break:
            return Outcome.failure(ErrorCode.INVALID_STATE, 'Session is on a break')
        if ((expected_feature_id is not None and expected_feature_id != feature.id)
                or (expected_round is not None and expected_round != feature.current_round)):
            return Outcome.failure(ErrorCode.STALE_VOTE,
                                   f'Vote targets a round that is no longer open (now round {feature.current_round})')
        participant = self.participants[participant_id]
        if participant.has_voted_this_round or feature.has_vote_from(participant_id):
            return Outcome.failure(ErrorCode.ALREADY_VOTED, 'Participant has already voted this round')

        feature.add_vote(Vote(participant_id, value, feature.current_round))
        participant.vote(value)
        voted_round = feature.current_round
        votes = feature.current_round_votes(self.participants.keys())
        logger.info(f"[vote] session={self.code} feature={feature.id} round={voted_round} "
                    f"participant={participant_id} votes={len(votes)}/{len(self.participants)}")

        round_result = None
        if len(votes) == len(self.participants):
            round_result = self._complete_round(feature)
        return Outcome.success(VoteReceipt(
            participant_id=participant_id,
            feature_id=feature.id,
            round=voted_round,
            votes_in=len(votes),
            expected=len(self.participants),
            voter_ids=[v.participant_id for v in votes],
            round_result=round_result,
        ))

    def _vote_view(self, vote: Vote):
        p = self.participants.get(vote.participant_id)
        data = vote.to_dict()
        data['displayName'] = p.display_name if p else None
        return data

    def _complete_round(self, feature: Feature) -> RoundResult:
        """Reveal and reconcile the live round once every participant has voted."""
        votes = feature.current_round_votes(self.participants.keys())
        revealed = [self._vote_view(v) for v in votes]
        closed_round = feature.current_round

        if all_break(votes, len(self.participants)):
            self.on_break = True
            logger.info(f"[break] session={self.code} feature={feature.id} round={closed_round}")
            return RoundResult(feature.id, feature.name, closed_round, RoundKind.BREAK, revealed)

        result = reconcile(votes, self.mode, closed_round)
        if result.validated:
            feature.set_estimate(result.estimate)
            logger.info(f"[estimate] session={self.code} feature={feature.id} "
                        f"estimate={result.estimate} method={result.method.value}")
            return RoundResult(feature.id, feature.name, closed_round, RoundKind.VALIDATED, revealed, result)

        self._open_round(feature, increment=True, outcome=result.method.value)
        logger.info(f"[revote] session={self.code} feature={feature.id} round {closed_round} -> {feature.current_round}")
        return RoundResult(feature.id, feature.name, closed_round, RoundKind.RETRY, revealed, result,
                           next_round=feature.current_round)

    def _open_round(self, feature: Feature, increment: bool, outcome: str) -> None:
        # Single entry point for both automatic re-votes and facilitator retries
        feature.open_round(increment=increment, outcome=outcome)
        for p in self.participants.values():
            p.reset_vote()
        self.on_break = False

    def advance_round(self, actor_id: str) -> Outcome:
        """Facilitator asks everyone to vote again on the same round number."""
        denied = self.require_facilitator(actor_id) or self.require_status(SessionStatus.ACTIVE)
        if denied:
            return denied
        feature = self.current_feature()
        if feature is None or feature.completed:
            return Outcome.failure(ErrorCode.NO_ACTIVE_FEATURE, 'No feature is open for voting')
        self._open_round(feature, increment=False, outcome='break' if self.on_break else 'retry')
        logger.info(f"[new-round] session={self.code} feature={feature.id} round={feature.current_round}")
        return Outcome.success(feature)

    def advance_feature(self, actor_id: str) -> Outcome:
        denied = self.require_facilitator(actor_id) or self.require_status(SessionStatus.ACTIVE)
        if denied:
            return denied
        if self.current_feature() is None:
            return Outcome.failure(ErrorCode.NO_ACTIVE_FEATURE, 'Backlog is already exhausted')
        self.current_feature_index += 1
        self.on_break = False
        for p in self.participants.values():
            p.reset_vote()
        feature = self.current_feature()
        if feature is None:
            self.status = SessionStatus.FINISHED
            logger.info(f"[finish] session={self.code} backlog completed")
        elif not feature.completed:
            feature.restart_voting()
        return Outcome.success(FeatureAdvance(feature, self.current_feature_index, len(self.backlog),
                                              self.status == SessionStatus.FINISHED))

    # ---- serialization ----

    def summary(self):
        return {
            'id': self.id,
            'code': self.code,
            'mode': self.mode.value,
            'status': self.status.value,
            'participantsCount': len(self.participants),
            'createdAt': self.created_at.isoformat(),
        }

    def to_dict(self, reveal: Optional[bool] = None):
        """Full session view. Vote values stay hidden while a round is in progress."""
        if reveal is None:
            reveal = self.round_revealed()
        feature = self.current_feature()
        data = self.summary()
        data.update({
            'facilitatorId': self.facilitator_id,
            'facilitatorAbsent': self.facilitator_absent,
            'onBreak': self.on_break,
            'participants': [p.to_dict(hide_vote=not reveal) for p in self.participants.values()],
            'backlog': [f.to_dict() for f in self.backlog],
            'currentFeatureIndex': self.current_feature_index,
            'currentFeature': feature.to_dict(include_history=False) if feature else None,
            'votesIn': len(self.current_round_votes()),
            'progress': self.get_progress(),
        })
        return data

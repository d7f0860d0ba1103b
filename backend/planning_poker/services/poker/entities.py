from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from .cards import CardValue


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Vote:
    participant_id: str
    value: CardValue
    round: int
    submitted_at: datetime = field(default_factory=utcnow)

    def to_dict(self):
        return {
            'participantId': self.participant_id,
            'value': self.value,
            'round': self.round,
            'submittedAt': self.submitted_at.isoformat(),
        }


class Feature:
    """One backlog item and its full voting history.

    ``votes`` is append-only across every round. The live round is the tail
    starting at ``_round_start``; opening a new round moves that marker and
    snapshots the closed slice into ``round_history``. Votes of participants
    who left mid-round stay in ``votes`` but are voided for the live round.
    """

    def __init__(self, id: str, name: str, description: str = ''):
        self.id = id
        self.name = name
        self.description = description or ''
        self.estimate: Optional[int] = None
        self.completed = False
        self.current_round = 1
        self.votes: List[Vote] = []
        self.round_history: List[Dict[str, Any]] = []
        self._round_start = 0
        # positions in ``votes`` that no longer count for the live round
        self._voided: Set[int] = set()

    def add_vote(self, vote: Vote) -> None:
        self.votes.append(vote)

    def _live(self) -> List[Vote]:
        return [v for i, v in enumerate(self.votes[self._round_start:], start=self._round_start)
                if i not in self._voided]

    def current_round_votes(self, participant_ids: Optional[Iterable[str]] = None) -> List[Vote]:
        live = self._live()
        if participant_ids is None:
            return live
        allowed = set(participant_ids)
        return [v for v in live if v.participant_id in allowed]

    def votes_for_round(self, round_number: int) -> List[Vote]:
        return [v for v in self.votes if v.round == round_number]

    def has_vote_from(self, participant_id: str) -> bool:
        return any(v.participant_id == participant_id for v in self._live())

    def void_votes_from(self, participant_id: str) -> int:
        """Stop counting a participant's live-round votes; returns how many were voided."""
        voided = 0
        for i in range(self._round_start, len(self.votes)):
            if i not in self._voided and self.votes[i].participant_id == participant_id:
                self._voided.add(i)
                voided += 1
        return voided

    def open_round(self, increment: bool, outcome: str) -> None:
        """Close the live slice into history and start collecting a fresh one.

        ``increment`` bumps the round number (a reconciliation retry); without
        it the same round is replayed (facilitator asked everyone to vote again).
        """
        live = self.current_round_votes()
        if live or increment:
            self.round_history.append({
                'round': self.current_round,
                'outcome': outcome,
                'votes': [v.to_dict() for v in live],
            })
        if increment:
            self.current_round += 1
        self._start_fresh_round()

    def restart_voting(self) -> None:
        self.current_round = 1
        self._start_fresh_round()

    def _start_fresh_round(self) -> None:
        self._round_start = len(self.votes)
        self._voided.clear()

    def set_estimate(self, value: Optional[int]) -> None:
        self.estimate = value
        self.completed = True

    def reset(self) -> None:
        self.estimate = None
        self.completed = False
        self.current_round = 1
        self.votes = []
        self.round_history = []
        self._round_start = 0
        self._voided = set()

    def to_dict(self, include_history: bool = True):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'estimate': self.estimate,
            'completed': self.completed,
            'currentRound': self.current_round,
        }
        if include_history:
            data['roundHistory'] = list(self.round_history)
        return data


@dataclass
class Participant:
    id: str
    display_name: str
    is_facilitator: bool = False
    connection_ref: Optional[str] = None
    has_voted_this_round: bool = False
    current_vote: Optional[CardValue] = None

    @property
    def connected(self) -> bool:
        return self.connection_ref is not None

    def vote(self, value: CardValue) -> None:
        self.current_vote = value
        self.has_voted_this_round = True

    def reset_vote(self) -> None:
        self.current_vote = None
        self.has_voted_this_round = False

    def to_dict(self, hide_vote: bool = False):
        return {
            'id': self.id,
            'displayName': self.display_name,
            'isFacilitator': self.is_facilitator,
            'connected': self.connected,
            'hasVoted': self.has_voted_this_round,
            'vote': None if hide_vote else self.current_vote,
        }

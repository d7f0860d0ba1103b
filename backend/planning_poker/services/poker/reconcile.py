"""Reconciliation of a completed voting round.

Strict and average modes are two separate policies that only share the
unanimity check: in average mode the first round must still be unanimous,
and averaging only applies from round two onwards.
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from .cards import BREAK, CardValue, SENTINEL_CARDS, is_numeric_card
from .entities import Vote


class GameMode(str, Enum):
    STRICT = 'strict'
    AVERAGE = 'average'


class Method(str, Enum):
    NONE = 'none'
    UNANIMOUS = 'unanimous'
    STRICT_NO_CONSENSUS = 'strict_no_consensus'
    FIRST_ROUND_NO_CONSENSUS = 'first_round_no_consensus'
    AVERAGE = 'average'
    NO_NUMERIC_VOTES = 'no_numeric_votes'


@dataclass(frozen=True)
class Reconciliation:
    validated: bool
    estimate: Optional[int]
    method: Method

    def to_dict(self):
        return {
            'validated': self.validated,
            'estimate': self.estimate,
            'method': self.method.value,
        }


def _card_votes(votes: Sequence[Vote]):
    return [v for v in votes if v.value not in SENTINEL_CARDS]


def is_unanimous(votes: Sequence[Vote]) -> bool:
    remaining = _card_votes(votes)
    if not remaining:
        return False
    first = remaining[0].value
    return all(v.value == first for v in remaining)


def unanimous_value(votes: Sequence[Vote]) -> Optional[CardValue]:
    if not is_unanimous(votes):
        return None
    return _card_votes(votes)[0].value


def average(votes: Sequence[Vote]) -> Optional[int]:
    """Mean of the numeric votes, rounded half-up. None without numeric votes."""
    numeric = [v.value for v in votes if is_numeric_card(v.value)]
    if not numeric:
        return None
    return int(math.floor(sum(numeric) / len(numeric) + 0.5))


def all_break(votes: Sequence[Vote], expected_count: int) -> bool:
    if len(votes) != expected_count:
        return False
    return all(v.value == BREAK for v in votes)


def reconcile(votes: Sequence[Vote], mode: GameMode, round_number: int) -> Reconciliation:
    """Turn one round's votes into a validated estimate or a retry signal.

    Raises ValueError for a mode that is not a GameMode member; modes are
    checked when a session is created, so this is a programming error.
    """
    if mode not in (GameMode.STRICT, GameMode.AVERAGE):
        raise ValueError(f'unknown game mode: {mode!r}')
    if not votes:
        return Reconciliation(False, None, Method.NONE)

    if mode == GameMode.STRICT:
        if is_unanimous(votes):
            return Reconciliation(True, unanimous_value(votes), Method.UNANIMOUS)
        return Reconciliation(False, None, Method.STRICT_NO_CONSENSUS)

    if round_number == 1:
        if is_unanimous(votes):
            return Reconciliation(True, unanimous_value(votes), Method.UNANIMOUS)
        return Reconciliation(False, None, Method.FIRST_ROUND_NO_CONSENSUS)

    estimate = average(votes)
    if estimate is not None:
        return Reconciliation(True, estimate, Method.AVERAGE)
    return Reconciliation(False, None, Method.NO_NUMERIC_VOTES)

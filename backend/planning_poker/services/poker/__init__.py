"""Planning poker domain: cards, reconciliation, the session state machine
and the registry of live sessions.

Nothing in this package touches Flask, Socket.IO or the database; HTTP routes
and socket handlers import from here and translate outcomes for the wire.
"""
from .outcomes import ErrorCode, OperationError, Outcome
from .reconcile import GameMode, Method, Reconciliation, reconcile
from .registry import SessionRegistry
from .session import PokerSession, RoundKind, RoundResult, SessionStatus

__all__ = [
    'ErrorCode', 'OperationError', 'Outcome',
    'GameMode', 'Method', 'Reconciliation', 'reconcile',
    'SessionRegistry',
    'PokerSession', 'RoundKind', 'RoundResult', 'SessionStatus',
]

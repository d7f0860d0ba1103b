"""Typed operation results.

Session and registry operations never raise for expected failures. They
return an ``Outcome`` carrying either a value or an ``OperationError`` with a
stable code, and the transport layer decides how to surface it.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar('T')


class ErrorCode(str, Enum):
    # validation
    INVALID_NAME = 'INVALID_NAME'
    INVALID_MODE = 'INVALID_MODE'
    INVALID_CODE = 'INVALID_CODE'
    EMPTY_BACKLOG = 'EMPTY_BACKLOG'
    INVALID_CARD = 'INVALID_CARD'
    INVALID_PAYLOAD = 'INVALID_PAYLOAD'
    # authorization
    NOT_AUTHORIZED = 'NOT_AUTHORIZED'
    # state
    CLOSED = 'CLOSED'
    DUPLICATE_NAME = 'DUPLICATE_NAME'
    NO_BACKLOG = 'NO_BACKLOG'
    NOT_ENOUGH_PLAYERS = 'NOT_ENOUGH_PLAYERS'
    ALREADY_VOTED = 'ALREADY_VOTED'
    NO_ACTIVE_FEATURE = 'NO_ACTIVE_FEATURE'
    STALE_VOTE = 'STALE_VOTE'
    INVALID_STATE = 'INVALID_STATE'
    # not found
    NOT_FOUND = 'NOT_FOUND'
    UNKNOWN_PARTICIPANT = 'UNKNOWN_PARTICIPANT'
    UNKNOWN_FEATURE = 'UNKNOWN_FEATURE'
    # infrastructure
    STORAGE_ERROR = 'STORAGE_ERROR'
    INTERNAL_ERROR = 'INTERNAL_ERROR'


VALIDATION_ERRORS = frozenset({
    ErrorCode.INVALID_NAME, ErrorCode.INVALID_MODE, ErrorCode.INVALID_CODE,
    ErrorCode.EMPTY_BACKLOG, ErrorCode.INVALID_CARD, ErrorCode.INVALID_PAYLOAD,
})
NOT_FOUND_ERRORS = frozenset({
    ErrorCode.NOT_FOUND, ErrorCode.UNKNOWN_PARTICIPANT, ErrorCode.UNKNOWN_FEATURE,
})


def http_status_for(code: ErrorCode) -> int:
    if code in VALIDATION_ERRORS:
        return 400
    if code == ErrorCode.NOT_AUTHORIZED:
        return 403
    if code in NOT_FOUND_ERRORS:
        return 404
    if code in (ErrorCode.STORAGE_ERROR, ErrorCode.INTERNAL_ERROR):
        return 500
    return 409


@dataclass(frozen=True)
class OperationError:
    code: ErrorCode
    message: str

    def to_dict(self):
        return {'code': self.code.value, 'message': self.message}


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[OperationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> 'Outcome':
        return cls(value=value)

    @classmethod
    def failure(cls, code: ErrorCode, message: str) -> 'Outcome':
        return cls(error=OperationError(code, message))

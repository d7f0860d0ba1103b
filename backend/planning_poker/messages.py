"""Inbound Socket.IO payloads.

Each client event has one model; payloads are validated here, once, so the
session state machine only ever receives well-typed calls. Field names on the
wire are camelCase.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, ValidationError

from planning_poker.services.poker.outcomes import ErrorCode, Outcome


class InboundMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class EmptyMessage(InboundMessage):
    """Events that carry no data: the acting participant comes from the socket."""


class CreateSessionMessage(InboundMessage):
    display_name: str = Field(alias='displayName')
    mode: str = 'strict'
    backlog: Optional[Any] = None


class JoinSessionMessage(InboundMessage):
    session_code: str = Field(alias='sessionCode')
    display_name: str = Field(alias='displayName')


class LoadBacklogMessage(InboundMessage):
    backlog: Any


class SubmitVoteMessage(InboundMessage):
    # Card validity is a domain rule (INVALID_CARD), so any JSON value is let through
    value: Any
    round: Optional[StrictInt] = None
    feature_id: Optional[str] = Field(default=None, alias='featureId')


class AddFeatureMessage(InboundMessage):
    name: str
    description: str = ''


class RemoveFeatureMessage(InboundMessage):
    feature_id: str = Field(alias='featureId')


class ReorderFeaturesMessage(InboundMessage):
    order: List[str]


class ResumeSessionMessage(InboundMessage):
    snapshot_id: StrictInt = Field(alias='snapshotId')


class ChatMessage(InboundMessage):
    text: str = Field(min_length=1, max_length=500)


class TimerUpdateMessage(InboundMessage):
    running: StrictBool
    remaining_sec: Optional[StrictInt] = Field(default=None, alias='remainingSec', ge=0)


class TimerResetMessage(InboundMessage):
    duration_sec: Optional[StrictInt] = Field(default=None, alias='durationSec', ge=0)


MESSAGE_TYPES = {
    'create-session': CreateSessionMessage,
    'join-session': JoinSessionMessage,
    'load-backlog': LoadBacklogMessage,
    'start-session': EmptyMessage,
    'submit-vote': SubmitVoteMessage,
    'new-round': EmptyMessage,
    'next-feature': EmptyMessage,
    'end-session': EmptyMessage,
    'reset-session': EmptyMessage,
    'leave-session': EmptyMessage,
    'get-session-state': EmptyMessage,
    'get-progress': EmptyMessage,
    'add-feature': AddFeatureMessage,
    'remove-feature': RemoveFeatureMessage,
    'reorder-features': ReorderFeaturesMessage,
    'save-session': EmptyMessage,
    'export-results': EmptyMessage,
    'resume-session': ResumeSessionMessage,
    'chat-message': ChatMessage,
    'timer-update': TimerUpdateMessage,
    'timer-reset': TimerResetMessage,
}


def parse_message(event: str, data: Any) -> Outcome:
    """Validate a raw payload for ``event``; failures become INVALID_PAYLOAD."""
    model = MESSAGE_TYPES[event]
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return Outcome.failure(ErrorCode.INVALID_PAYLOAD, f'{event} payload must be an object')
    try:
        return Outcome.success(model.model_validate(data))
    except ValidationError as exc:
        problems = '; '.join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}" for err in exc.errors()
        )
        return Outcome.failure(ErrorCode.INVALID_PAYLOAD, f'Invalid {event} payload: {problems}')

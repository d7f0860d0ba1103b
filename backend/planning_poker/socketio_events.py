from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from typing import Any, Callable, Dict, Optional, Tuple

from planning_poker import socketio
from planning_poker.messages import MESSAGE_TYPES, parse_message
from planning_poker.services import store
from planning_poker.services.poker.backlog import add_feature, parse_backlog, remove_feature, reorder_features
from planning_poker.services.poker.housekeeping import IdleSessionReaper
from planning_poker.services.poker.outcomes import ErrorCode, OperationError, Outcome
from planning_poker.services.poker.registry import SessionRegistry
from planning_poker.services.poker.session import PokerSession, RoundKind, RoundResult, SessionStatus
from planning_poker.services.poker.snapshots import build_results_export, build_snapshot
from planning_poker.services.poker.validators import is_valid_session_code
from planning_poker.services.poker.entities import utcnow

NAMESPACE = '/ws'


def room_for(session_id: str) -> str:
    return f"session:{session_id}"


def _get_sid() -> str:
    # request.sid only exists inside a Socket.IO handler
    return request.sid  # type: ignore[attr-defined]


def _send_error(error: OperationError) -> None:
    emit('error', {'message': error.message, 'code': error.code.value})


class PokerEvents:
    """Socket.IO adapter between clients and the session state machine.

    Owns the socket-to-participant mapping; every other piece of state lives
    in the sessions held by the injected registry. Each handler validates its
    payload, runs one session operation under the session lock, then fans
    the result out to the session room.
    """

    def __init__(self, registry: SessionRegistry, reaper: IdleSessionReaper):
        self.registry = registry
        self.reaper = reaper
        self._sid_to_ctx: Dict[str, Tuple[str, str]] = {}

    # ---- plumbing ----

    def handler(self, event: str, fn: Callable[[Any], None]) -> Callable:
        def _handle(data=None):
            parsed = parse_message(event, data)
            if not parsed.ok:
                _send_error(parsed.error)
                return
            try:
                fn(parsed.value)
            except Exception:
                current_app.logger.exception(f"[socket-error] event={event} sid={_get_sid()}")
                emit('error', {'message': 'Internal server error', 'code': ErrorCode.INTERNAL_ERROR.value})
        _handle.__name__ = f"on_{event.replace('-', '_')}"
        return _handle

    def _context(self) -> Optional[Tuple[PokerSession, str]]:
        ctx = self._sid_to_ctx.get(_get_sid())
        if not ctx:
            _send_error(OperationError(ErrorCode.NOT_FOUND, 'Join a session first'))
            return None
        session = self.registry.get_by_id(ctx[0])
        if session is None:
            self._sid_to_ctx.pop(_get_sid(), None)
            _send_error(OperationError(ErrorCode.NOT_FOUND, 'Session not found'))
            return None
        return session, ctx[1]

    def _bind(self, session: PokerSession, participant_id: str) -> None:
        self._sid_to_ctx[_get_sid()] = (session.id, participant_id)
        join_room(room_for(session.id))
        self.reaper.cancel(session.id)

    def _already_bound(self) -> bool:
        if _get_sid() in self._sid_to_ctx:
            _send_error(OperationError(ErrorCode.INVALID_STATE, 'This connection is already in a session; leave it first'))
            return True
        return False

    def _broadcast(self, session: PokerSession, event: str, payload: Any) -> None:
        emit(event, payload, to=room_for(session.id))

    def _broadcast_state(self, session: PokerSession, reason: str, state: Dict[str, Any]) -> None:
        self._broadcast(session, 'session-updated', {'reason': reason, 'session': state})

    def _run(self, session: PokerSession, operation: Callable[[], Outcome],
             view: Optional[Callable[[Outcome], Any]] = None) -> Tuple[Outcome, Any]:
        """Apply one operation under the session lock and capture the views built from it."""
        with session.lock:
            outcome = operation()
            extra = view(outcome) if (view and outcome.ok) else None
            state = session.to_dict()
        if not outcome.ok:
            _send_error(outcome.error)
        return outcome, (state, extra)

    def _announce_round(self, session: PokerSession, result: RoundResult, snapshot: Optional[dict]) -> None:
        if result.kind == RoundKind.BREAK:
            self._broadcast(session, 'coffee-break', {
                'message': 'All participants chose the break card. The session is paused and saved.',
                'featureId': result.feature_id,
                'round': result.round,
                'snapshot': snapshot,
            })
            self._persist_in_background(session, snapshot)
        else:
            self._broadcast(session, 'round-result', result.to_dict())

    def _persist_in_background(self, session: PokerSession, snapshot: dict) -> None:
        """Save a snapshot without holding up the voting path."""
        app = current_app._get_current_object()
        room = room_for(session.id)
        namespace = request.namespace
        code = session.code

        def _worker():
            with app.app_context():
                saved = store.save_snapshot(code, snapshot)
                if saved.ok:
                    row = saved.value
                    socketio.emit('session-saved', {'snapshotId': row.id, 'fileName': row.file_name,
                                                    'saveData': snapshot}, to=room, namespace=namespace)
                else:
                    app.logger.warning(f"[break-save-failed] session={code} {saved.error.message}")

        if app.config.get('TESTING'):
            _worker()
        else:
            socketio.start_background_task(_worker)

    # ---- connection lifecycle ----

    def on_connect(self, auth=None):
        emit('connected', {'message': 'Connected to planning poker'})

    def on_disconnect(self, *args):
        ctx = self._sid_to_ctx.pop(_get_sid(), None)
        if not ctx:
            return
        session = self.registry.get_by_id(ctx[0])
        if session is None:
            return
        with session.lock:
            outcome = session.disconnect(ctx[1])
            state = session.to_dict()
        if outcome.ok:
            current_app.logger.info(f"[disconnect] session={session.code} participant={ctx[1]}")
            self._broadcast_state(session, 'participant-disconnected', state)
        self.reaper.schedule(session.id)

    # ---- session membership ----

    def on_create_session(self, msg):
        if self._already_bound():
            return
        created = self.registry.create(msg.display_name, msg.mode, msg.backlog)
        if not created.ok:
            _send_error(created.error)
            return
        session = created.value
        with session.lock:
            joined = session.join(session.facilitator.display_name, _get_sid())
            state = session.to_dict()
        participant = joined.value.participant
        self._bind(session, participant.id)
        emit('session-created', {
            'sessionId': session.id,
            'sessionCode': session.code,
            'participantId': participant.id,
            'session': state,
        })

    def on_join_session(self, msg):
        if self._already_bound():
            return
        code = msg.session_code.strip().upper()
        if not is_valid_session_code(code):
            _send_error(OperationError(ErrorCode.INVALID_CODE, 'Session code must be 6 letters or digits'))
            return
        session = self.registry.get_by_code(code)
        if session is None:
            _send_error(OperationError(ErrorCode.NOT_FOUND, 'Session not found'))
            return
        def _join():
            # The reaper evicts under this same lock
            if self.registry.get_by_id(session.id) is not session:
                return Outcome.failure(ErrorCode.NOT_FOUND, 'Session not found')
            return session.join(msg.display_name, _get_sid())

        outcome, (state, _) = self._run(session, _join)
        if not outcome.ok:
            return
        result = outcome.value
        participant = result.participant
        self._bind(session, participant.id)
        emit('session-joined', {
            'sessionId': session.id,
            'sessionCode': session.code,
            'participantId': participant.id,
            'isFacilitator': participant.is_facilitator,
            'reconnected': result.reconnected,
            'session': state,
        })
        reason = 'participant-reconnected' if result.reconnected else 'participant-joined'
        self._broadcast_state(session, reason, state)

    def on_leave_session(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        with session.lock:
            outcome = session.leave(pid)
            state = session.to_dict()
            snapshot = build_snapshot(session) if (
                outcome.ok and outcome.value.round_result and outcome.value.round_result.kind == RoundKind.BREAK
            ) else None
        if not outcome.ok:
            _send_error(outcome.error)
            return
        result = outcome.value
        self._sid_to_ctx.pop(_get_sid(), None)
        leave_room(room_for(session.id))
        emit('left', {'sessionId': session.id})
        self._broadcast(session, 'participant-left', {
            'participantId': result.participant.id,
            'displayName': result.participant.display_name,
            'facilitatorLeft': result.facilitator_left,
            'totalPlayers': result.remaining,
        })
        if result.round_result:
            self._announce_round(session, result.round_result, snapshot)
        if result.remaining == 0:
            self.registry.remove(session.id)
            return
        self._broadcast_state(session, 'participant-left', state)

    def on_resume_session(self, msg):
        if self._already_bound():
            return
        loaded = store.load_snapshot(msg.snapshot_id)
        if not loaded.ok:
            _send_error(loaded.error)
            return
        restored = self.registry.restore(loaded.value.data)
        if not restored.ok:
            _send_error(restored.error)
            return
        session = restored.value
        with session.lock:
            joined = session.join(session.facilitator.display_name, _get_sid())
            state = session.to_dict()
        participant = joined.value.participant
        self._bind(session, participant.id)
        emit('session-resumed', {
            'sessionId': session.id,
            'sessionCode': session.code,
            'participantId': participant.id,
            'session': state,
        })

    # ---- facilitator controls ----

    def on_load_backlog(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        parsed = parse_backlog(msg.backlog)
        if not parsed.ok:
            _send_error(parsed.error)
            return
        outcome, (state, _) = self._run(session, lambda: session.load_backlog(pid, parsed.value))
        if outcome.ok:
            self._broadcast_state(session, 'backlog-loaded', state)

    def on_add_feature(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        outcome, (state, feature) = self._run(
            session, lambda: add_feature(session, pid, msg.name, msg.description),
            view=lambda out: out.value.to_dict())
        if outcome.ok:
            self._broadcast(session, 'feature-added', {'feature': feature, 'totalFeatures': len(state['backlog'])})
            self._broadcast_state(session, 'feature-added', state)

    def on_remove_feature(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        outcome, (state, _) = self._run(session, lambda: remove_feature(session, pid, msg.feature_id))
        if outcome.ok:
            self._broadcast(session, 'feature-removed', {'featureId': msg.feature_id,
                                                         'totalFeatures': len(state['backlog'])})
            self._broadcast_state(session, 'feature-removed', state)

    def on_reorder_features(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        outcome, (state, _) = self._run(session, lambda: reorder_features(session, pid, msg.order))
        if outcome.ok:
            self._broadcast_state(session, 'backlog-reordered', state)

    def on_start_session(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        outcome, (state, _) = self._run(session, lambda: session.start(pid))
        if not outcome.ok:
            return
        self._broadcast_state(session, 'session-started', state)
        if state['status'] == SessionStatus.FINISHED.value:
            self._broadcast(session, 'session-finished', {'results': state['backlog'], 'progress': state['progress']})

    def on_new_round(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        outcome, (state, feature) = self._run(session, lambda: session.advance_round(pid),
                                              view=lambda out: out.value)
        if not outcome.ok:
            return
        self._broadcast(session, 'new-round', {
            'featureId': feature.id,
            'featureName': feature.name,
            'round': state['currentFeature']['currentRound'],
        })
        self._broadcast_state(session, 'new-round', state)

    def on_next_feature(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        outcome, (state, _) = self._run(session, lambda: session.advance_feature(pid))
        if not outcome.ok:
            return
        advance = outcome.value
        if advance.finished:
            self._broadcast(session, 'session-finished', {
                'endedManually': False,
                'results': state['backlog'],
                'progress': state['progress'],
            })
        else:
            self._broadcast(session, 'feature-advanced', {
                'feature': state['currentFeature'],
                'index': advance.index,
                'total': advance.total,
            })
        self._broadcast_state(session, 'feature-advanced', state)

    def on_end_session(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        outcome, (state, _) = self._run(session, lambda: session.end_manually(pid))
        if not outcome.ok:
            return
        self._broadcast(session, 'session-finished', {
            'endedManually': True,
            'results': state['backlog'],
            'progress': state['progress'],
        })
        self._broadcast_state(session, 'session-finished', state)

    def on_reset_session(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        outcome, (state, _) = self._run(session, lambda: session.reset(pid))
        if outcome.ok:
            self._broadcast_state(session, 'session-reset', state)

    # ---- voting ----

    def on_submit_vote(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx

        def _snapshot_on_break(out):
            result = out.value.round_result
            return build_snapshot(session) if result and result.kind == RoundKind.BREAK else None

        outcome, (state, snapshot) = self._run(
            session, lambda: session.submit_vote(pid, msg.value, msg.round, msg.feature_id),
            view=_snapshot_on_break)
        if not outcome.ok:
            return
        receipt = outcome.value
        emit('vote-recorded', {'featureId': receipt.feature_id, 'round': receipt.round})
        self._broadcast(session, 'vote-progress', receipt.progress_dict())
        if receipt.round_result:
            self._announce_round(session, receipt.round_result, snapshot)
            self._broadcast_state(session, 'round-complete', state)

    # ---- queries ----

    def on_get_session_state(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, _ = ctx
        with session.lock:
            state = session.to_dict()
        emit('session-state', {'session': state})

    def on_get_progress(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, _ = ctx
        with session.lock:
            progress = session.get_progress()
        emit('progress-update', progress)

    # ---- persistence ----

    def on_save_session(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, _ = ctx
        with session.lock:
            snapshot = build_snapshot(session)
        saved = store.save_snapshot(session.code, snapshot)
        if not saved.ok:
            _send_error(saved.error)
            return
        row = saved.value
        self._broadcast(session, 'session-saved', {
            'snapshotId': row.id,
            'fileName': row.file_name,
            'saveData': snapshot,
            'message': 'Session saved successfully. You can resume later.',
        })

    def on_export_results(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, _ = ctx
        with session.lock:
            export = build_results_export(session)
        saved = store.save_results(session.code, export)
        if not saved.ok:
            _send_error(saved.error)
            return
        row = saved.value
        emit('results-exported', {'snapshotId': row.id, 'fileName': row.file_name, 'exportData': export})

    # ---- side channels ----

    def on_chat_message(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        participant = session.get_participant(pid)
        if participant is None:
            _send_error(OperationError(ErrorCode.UNKNOWN_PARTICIPANT, 'Participant not found in this session'))
            return
        self._broadcast(session, 'chat-message', {
            'participantId': pid,
            'displayName': participant.display_name,
            'text': msg.text,
            'sentAt': utcnow().isoformat(),
        })

    def on_timer_update(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        denied = session.require_facilitator(pid)
        if denied:
            _send_error(denied.error)
            return
        self._broadcast(session, 'timer-updated', {
            'running': msg.running,
            'remainingSec': msg.remaining_sec,
            'reset': False,
        })

    def on_timer_reset(self, msg):
        ctx = self._context()
        if not ctx:
            return
        session, pid = ctx
        denied = session.require_facilitator(pid)
        if denied:
            _send_error(denied.error)
            return
        self._broadcast(session, 'timer-updated', {
            'running': False,
            'remainingSec': msg.duration_sec,
            'reset': True,
        })


def register_socketio_handlers(registry: SessionRegistry, reaper: IdleSessionReaper,
                               testing: bool = False) -> PokerEvents:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    events = PokerEvents(registry, reaper)
    namespaces = [NAMESPACE, '/'] if testing else [NAMESPACE]
    for namespace in namespaces:
        socketio.on_event('connect', events.on_connect, namespace=namespace)
        socketio.on_event('disconnect', events.on_disconnect, namespace=namespace)
        for event in MESSAGE_TYPES:
            fn = getattr(events, f"on_{event.replace('-', '_')}")
            socketio.on_event(event, events.handler(event, fn), namespace=namespace)
    return events

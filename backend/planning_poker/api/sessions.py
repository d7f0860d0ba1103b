from flask import Blueprint, jsonify, request, current_app

from planning_poker.services.poker.outcomes import ErrorCode, OperationError, http_status_for
from planning_poker.services.poker.validators import is_valid_session_code


sessions = Blueprint('sessions', __name__)


def _registry():
    return current_app.extensions['session_registry']


def error_response(error: OperationError):
    return jsonify({'error': error.message, 'code': error.code.value}), http_status_for(error.code)


@sessions.route('', methods=['POST'])
def create_session():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return error_response(OperationError(ErrorCode.INVALID_PAYLOAD, 'Request body must be a JSON object'))
    created = _registry().create(data.get('displayName'), data.get('mode', 'strict'), data.get('backlog'))
    if not created.ok:
        return error_response(created.error)
    session = created.value
    with session.lock:
        state = session.to_dict()
    current_app.logger.info(f"[api-create] code={session.code} mode={session.mode.value}")
    return jsonify({
        'sessionId': session.id,
        'code': session.code,
        'participantId': session.facilitator_id,
        'session': state,
    }), 201


@sessions.route('', methods=['GET'])
def list_sessions():
    summaries = []
    for session in _registry().all():
        with session.lock:
            summaries.append(session.summary())
    return jsonify({'sessions': summaries, 'total': len(summaries)})


def _lookup(code):
    code = code.strip().upper()
    if not is_valid_session_code(code):
        return None, error_response(OperationError(ErrorCode.INVALID_CODE, 'Session code must be 6 letters or digits'))
    session = _registry().get_by_code(code)
    if session is None:
        return None, error_response(OperationError(ErrorCode.NOT_FOUND, 'Session not found'))
    return session, None


@sessions.route('/<string:code>', methods=['GET'])
def get_session(code):
    session, failed = _lookup(code)
    if failed:
        return failed
    with session.lock:
        state = session.to_dict()
    return jsonify(state)


@sessions.route('/<string:code>/progress', methods=['GET'])
def get_session_progress(code):
    session, failed = _lookup(code)
    if failed:
        return failed
    with session.lock:
        progress = session.get_progress()
    return jsonify(progress)


@sessions.route('/<string:session_id>', methods=['DELETE'])
def delete_session(session_id):
    if not _registry().remove(session_id):
        return error_response(OperationError(ErrorCode.NOT_FOUND, 'Session not found'))
    current_app.logger.info(f"[api-delete] session={session_id}")
    return jsonify({'message': 'Session deleted', 'sessionId': session_id})

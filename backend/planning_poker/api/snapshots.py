from flask import Blueprint, jsonify, request, current_app

from planning_poker.api.sessions import error_response
from planning_poker.services import store
from planning_poker.services.poker.outcomes import ErrorCode, OperationError


snapshots = Blueprint('snapshots', __name__)


@snapshots.route('', methods=['GET'])
def list_snapshots():
    kind = request.args.get('kind', 'session')
    if kind not in ('session', 'results'):
        return error_response(OperationError(ErrorCode.INVALID_PAYLOAD, "kind must be 'session' or 'results'"))
    listed = store.list_snapshots(kind)
    if not listed.ok:
        return error_response(listed.error)
    rows = listed.value
    return jsonify({'snapshots': [row.to_dict() for row in rows], 'total': len(rows)})


@snapshots.route('/<int:snapshot_id>', methods=['GET'])
def get_snapshot(snapshot_id):
    loaded = store.load_snapshot(snapshot_id)
    if not loaded.ok:
        return error_response(loaded.error)
    return jsonify(loaded.value.to_dict(include_payload=True))


@snapshots.route('/<int:snapshot_id>', methods=['DELETE'])
def delete_snapshot(snapshot_id):
    deleted = store.delete_snapshot(snapshot_id)
    if not deleted.ok:
        return error_response(deleted.error)
    return jsonify({'message': 'Snapshot deleted', 'snapshotId': snapshot_id})


@snapshots.route('/clean', methods=['POST'])
def clean_snapshots():
    data = request.get_json(silent=True) or {}
    days = data.get('days', current_app.config.get('SNAPSHOT_RETENTION_DAYS', 30))
    if not isinstance(days, int) or isinstance(days, bool) or days < 0:
        return error_response(OperationError(ErrorCode.INVALID_PAYLOAD, 'days must be a non-negative integer'))
    cleaned = store.clean_old_snapshots(days)
    if not cleaned.ok:
        return error_response(cleaned.error)
    return jsonify({'removed': cleaned.value, 'olderThanDays': days})

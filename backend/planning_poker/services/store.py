"""Best-effort snapshot store backed by the ``saved_snapshot`` table.

In-memory sessions are the source of truth; everything here is a derived
mirror. Database failures roll back and come back as STORAGE_ERROR outcomes.
"""
import json
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from planning_poker import db
from planning_poker.models import SavedSnapshot
from planning_poker.services.poker.outcomes import ErrorCode, Outcome

logger = logging.getLogger(__name__)


def _save(kind: str, session_code: str, payload) -> Outcome:
    file_name = f"{kind}-{session_code}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}.json"
    try:
        row = SavedSnapshot(kind=kind, session_code=session_code, file_name=file_name,
                            payload=json.dumps(payload))
        db.session.add(row)
        db.session.commit()
    except (SQLAlchemyError, TypeError, ValueError) as exc:
        db.session.rollback()
        logger.error(f"[store-save-failed] kind={kind} code={session_code} error={exc}")
        return Outcome.failure(ErrorCode.STORAGE_ERROR, f'Failed to save {kind}')
    logger.info(f"[store-saved] kind={kind} code={session_code} file={file_name}")
    return Outcome.success(row)


def save_snapshot(session_code: str, snapshot) -> Outcome:
    return _save('session', session_code, snapshot)


def save_results(session_code: str, results) -> Outcome:
    return _save('results', session_code, results)


def list_snapshots(kind: str = 'session') -> Outcome:
    try:
        rows = (SavedSnapshot.query.filter_by(kind=kind)
                .order_by(SavedSnapshot.created_at.desc(), SavedSnapshot.id.desc()).all())
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(f"[store-list-failed] error={exc}")
        return Outcome.failure(ErrorCode.STORAGE_ERROR, 'Failed to list saved sessions')
    return Outcome.success(rows)


def load_snapshot(snapshot_id) -> Outcome:
    try:
        row = db.session.get(SavedSnapshot, snapshot_id)
        if row is None:
            return Outcome.failure(ErrorCode.NOT_FOUND, 'Saved session not found')
        return Outcome.success(row)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(f"[store-load-failed] id={snapshot_id} error={exc}")
        return Outcome.failure(ErrorCode.STORAGE_ERROR, 'Failed to load saved session')


def delete_snapshot(snapshot_id) -> Outcome:
    try:
        row = db.session.get(SavedSnapshot, snapshot_id)
        if row is None:
            return Outcome.failure(ErrorCode.NOT_FOUND, 'Saved session not found')
        db.session.delete(row)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(f"[store-delete-failed] id={snapshot_id} error={exc}")
        return Outcome.failure(ErrorCode.STORAGE_ERROR, 'Failed to delete saved session')
    return Outcome.success(snapshot_id)


def clean_old_snapshots(days: int) -> Outcome:
    """Delete saved rows older than ``days``; the value is the number removed."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    try:
        deleted = SavedSnapshot.query.filter(SavedSnapshot.created_at < cutoff).delete()
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(f"[store-clean-failed] error={exc}")
        return Outcome.failure(ErrorCode.STORAGE_ERROR, 'Failed to clean saved sessions')
    logger.info(f"[store-cleaned] removed={deleted} older_than={days}d")
    return Outcome.success(deleted)

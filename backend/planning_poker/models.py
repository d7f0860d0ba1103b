from planning_poker import db
from datetime import datetime, timezone
import json


def _utcnow():
    return datetime.now(timezone.utc)


class SavedSnapshot(db.Model):
    """A saved session snapshot or exported results, stored as an opaque JSON blob."""
    __tablename__ = 'saved_snapshot'
    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False, default='session', index=True)  # session, results
    session_code = db.Column(db.String(6), nullable=False, index=True)
    file_name = db.Column(db.String(128), nullable=False, unique=True)
    payload = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    @property
    def data(self):
        return json.loads(self.payload)

    def to_dict(self, include_payload=False):
        out = {
            'id': self.id,
            'kind': self.kind,
            'sessionCode': self.session_code,
            'fileName': self.file_name,
            'savedAt': self.created_at.isoformat() if self.created_at else None,
            'size': len(self.payload or ''),
        }
        if include_payload:
            out['data'] = self.data
        return out

import logging
import random
import string
import threading
from typing import Any, Dict, List, Optional

from .backlog import parse_backlog
from .outcomes import ErrorCode, Outcome
from .session import PokerSession
from .validators import SESSION_CODE_LENGTH

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


class SessionRegistry:
    """Process-wide lookup of live sessions by id and by join code.

    One instance is built by the app factory and handed to the HTTP and
    socket layers; it never owns session state beyond these two indices.
    """

    def __init__(self, min_players: int = 2):
        self.min_players = min_players
        self._by_id: Dict[str, PokerSession] = {}
        self._by_code: Dict[str, PokerSession] = {}
        self._lock = threading.Lock()

    def generate_code(self) -> str:
        """Generate a short join code not used by any registered session."""
        while True:
            code = ''.join(random.choices(CODE_ALPHABET, k=SESSION_CODE_LENGTH))
            if code not in self._by_code:
                return code

    def create(self, facilitator_name: Any, mode: Any, backlog: Any = None) -> Outcome:
        features = None
        if backlog is not None:
            parsed = parse_backlog(backlog)
            if not parsed.ok:
                return parsed
            features = parsed.value

        with self._lock:
            created = PokerSession.create(facilitator_name, mode, self.generate_code(), min_players=self.min_players)
            if not created.ok:
                return created
            session = created.value
            self._by_id[session.id] = session
            self._by_code[session.code] = session

        if features:
            with session.lock:
                session.load_backlog(session.facilitator_id, features)
        logger.info(f"[session-created] code={session.code} id={session.id} mode={session.mode.value}")
        return Outcome.success(session)

    def get_by_id(self, session_id: Any) -> Optional[PokerSession]:
        if not isinstance(session_id, str):
            return None
        return self._by_id.get(session_id)

    def get_by_code(self, code: Any) -> Optional[PokerSession]:
        if not isinstance(code, str):
            return None
        return self._by_code.get(code.strip().upper())

    def all(self) -> List[PokerSession]:
        return list(self._by_id.values())

    def remove(self, session_id: str) -> bool:
        with self._lock:
            session = self._by_id.pop(session_id, None)
            if session is None:
                return False
            self._by_code.pop(session.code, None)
        logger.info(f"[session-removed] code={session.code} id={session.id}")
        return True

    def __len__(self) -> int:
        return len(self._by_id)

    def restore(self, snapshot: Any) -> Outcome:
        """Rebuild a waiting session from an exported snapshot.

        Goes through public operations only: create, load the backlog, replay
        the completed estimates, then move the feature pointer.
        """
        if not isinstance(snapshot, dict):
            return Outcome.failure(ErrorCode.INVALID_PAYLOAD, 'Snapshot must be an object')
        participants = snapshot.get('participants') or []
        facilitator = next((p for p in participants if isinstance(p, dict) and p.get('isFacilitator')), None)
        if facilitator is None:
            return Outcome.failure(ErrorCode.INVALID_PAYLOAD, 'Snapshot has no facilitator')
        raw_features = snapshot.get('features')
        if raw_features is None:
            raw_features = list(snapshot.get('completedFeatures') or []) + list(snapshot.get('remainingFeatures') or [])

        created = self.create(facilitator.get('displayName'), snapshot.get('mode'), {'features': raw_features})
        if not created.ok:
            return created
        session = created.value
        actor = session.facilitator_id

        with session.lock:
            # Parsed features keep the raw order and carry the normalized ids
            replayed = Outcome.success()
            for feature, raw in zip(session.backlog, raw_features):
                if raw.get('completed'):
                    replayed = session.apply_estimate(actor, feature.id, raw.get('estimate'))
                    if not replayed.ok:
                        break
            if replayed.ok:
                replayed = session.seek(actor, snapshot.get('currentFeatureIndex', 0))
        if not replayed.ok:
            self.remove(session.id)
            return replayed
        logger.info(f"[session-restored] code={session.code} from={snapshot.get('code')}")
        return Outcome.success(session)

import logging
import time
from typing import Callable, Dict, Optional

from .registry import SessionRegistry

logger = logging.getLogger(__name__)


class IdleSessionReaper:
    """Evict sessions nobody is connected to once a grace period has passed.

    ``start_task`` runs the waiting worker in the background (the Socket.IO
    server's ``start_background_task``); with a zero grace the eviction check
    runs inline, which keeps tests deterministic.
    """

    def __init__(self, registry: SessionRegistry, grace_sec: float,
                 start_task: Optional[Callable] = None, sleep: Callable[[float], None] = time.sleep):
        self.registry = registry
        self.grace_sec = grace_sec
        self._start_task = start_task
        self._sleep = sleep
        self._deadlines: Dict[str, float] = {}

    def schedule(self, session_id: str) -> None:
        session = self.registry.get_by_id(session_id)
        if session is None or session.connected_count() > 0:
            return
        deadline = time.time() + self.grace_sec
        self._deadlines[session_id] = deadline
        logger.info(f"[evict-scheduled] session={session.code} grace={self.grace_sec}s")
        if self.grace_sec <= 0 or self._start_task is None:
            self._runner(session_id, deadline, wait=False)
        else:
            self._start_task(self._runner, session_id, deadline)

    def cancel(self, session_id: str) -> None:
        self._deadlines.pop(session_id, None)

    def _runner(self, session_id: str, deadline: float, wait: bool = True) -> None:
        if wait:
            self._sleep(max(0.0, deadline - time.time()))
        session = self.registry.get_by_id(session_id)
        if session is None:
            return
        # Checked and evicted under the session lock: a concurrent join either
        # lands before the check or finds the session gone
        with session.lock:
            if self._deadlines.get(session_id) != deadline:
                return
            self._deadlines.pop(session_id, None)
            if session.connected_count() > 0:
                return
            self.registry.remove(session_id)
        logger.info(f"[evicted] session={session.code} no connected participants")

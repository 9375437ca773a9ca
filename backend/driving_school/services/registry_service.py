"""
services/registry_service.py

Live test sessions of this process, at most one per (student, test).

Opening a test that already has a live session returns that session, so two
browser tabs on the same test share one clock and one answer sheet instead
of racing each other. A finished session is replaced by a fresh attempt.
Sessions that are no longer live are evicted on the next `open`, together
with their locks.
"""

import asyncio
import logging
from typing import Dict, List, Tuple

from ..errors import SessionNotFoundError
from .backend_service import Backend
from .session_service import SessionContext, TestSession
from .snapshot_service import SnapshotStore

logger = logging.getLogger(__name__)

SessionKey = Tuple[str, str]


class SessionRegistry:
    def __init__(self, backend: Backend, snapshots: SnapshotStore, timer_interval: float = 1.0):
        self.backend = backend
        self.snapshots = snapshots
        self.timer_interval = timer_interval
        self._sessions: Dict[SessionKey, TestSession] = {}
        self._locks: Dict[SessionKey, asyncio.Lock] = {}
        # callers inside or queued on each lock
        self._waiting: Dict[SessionKey, int] = {}

    def _context(self, student_id: str) -> SessionContext:
        return SessionContext(
            student_id=student_id,
            backend=self.backend,
            snapshots=self.snapshots,
            timer_interval=self.timer_interval,
        )

    def _drop_lock(self, key: SessionKey) -> None:
        if not self._waiting.get(key) and key not in self._sessions:
            self._locks.pop(key, None)

    def _prune(self) -> None:
        """Evict submitted or closed sessions that are not in use."""
        stale = [
            key for key, session in self._sessions.items()
            if not session.is_live and not self._waiting.get(key)
        ]
        for key in stale:
            self._sessions.pop(key).close()
            self._drop_lock(key)
        if stale:
            logger.debug("Evicted %d finished sessions", len(stale))

    async def open(self, student_id, test_id) -> TestSession:
        """Return the live session for the pair, or load a new one."""
        key = (str(student_id), str(test_id))
        self._prune()
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiting[key] = self._waiting.get(key, 0) + 1
        try:
            async with lock:
                existing = self._sessions.get(key)
                if existing is not None and existing.is_live:
                    logger.info("Attaching to live session test_id=%s student_id=%s", key[1], key[0])
                    return existing
                if existing is not None:
                    existing.close()
                    del self._sessions[key]

                session = TestSession(self._context(key[0]), key[1])
                # a load failure raises TestLoadError and leaves nothing registered
                await session.load()
                self._sessions[key] = session
                return session
        finally:
            self._waiting[key] -= 1
            if not self._waiting[key]:
                del self._waiting[key]
            self._drop_lock(key)

    def get(self, student_id, test_id) -> TestSession:
        session = self._sessions.get((str(student_id), str(test_id)))
        if session is None:
            raise SessionNotFoundError("No session for this test; start it first")
        return session

    def close(self, student_id, test_id) -> None:
        key = (str(student_id), str(test_id))
        session = self._sessions.pop(key, None)
        if session is None:
            raise SessionNotFoundError("No session for this test")
        session.close()
        self._drop_lock(key)
        logger.info("Closed session test_id=%s student_id=%s", key[1], key[0])

    def sessions(self) -> List[TestSession]:
        return list(self._sessions.values())

    async def shutdown(self) -> None:
        sessions = list(self._sessions.values())
        for session in sessions:
            session.close()
        self._sessions.clear()
        self._locks.clear()
        self._waiting.clear()
        # an expiry submission already under way is allowed to finish
        await asyncio.gather(*(s.timer.wait() for s in sessions if s.timer is not None))
        if sessions:
            logger.info("Closed %d live test sessions", len(sessions))

"""
services/snapshot_service.py

Best-effort resume cache for in-progress test sessions.

After every state change the session writes `{index, answers, time, marked}`
for its (student, test) pair; on the next start that snapshot seeds the
session instead of defaults. Read and write failures are logged and
swallowed, the test record stays the source of truth.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models.session_snapshot_model import SessionSnapshot

logger = logging.getLogger(__name__)

# anything a broken store or a bad stored value can raise; ValueError covers decode errors
STORE_ERRORS = (OSError, ValueError, SQLAlchemyError)


def snapshot_key(student_id: str, test_id: str) -> str:
    return f"quizState_{student_id}_{test_id}"


class Snapshot(BaseModel):
    index: int = 0
    answers: Dict[str, str] = Field(default_factory=dict)
    # remaining seconds; None means "not started", use the test's limit
    time: Optional[int] = None
    marked: List[str] = Field(default_factory=list)
    # set once the remote test record exists, so a retry does not create another
    record_id: Optional[str] = None


class SnapshotStore:
    """Snapshots keyed by (student, test). Subclasses implement the raw I/O."""

    async def load(self, student_id: str, test_id: str) -> Optional[Snapshot]:
        key = snapshot_key(student_id, test_id)
        try:
            raw = await self._read(str(student_id), str(test_id))
        except STORE_ERRORS as e:
            logger.warning("Could not read snapshot %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return Snapshot.model_validate(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable snapshot %s: %s", key, e)
            return None

    async def save(self, student_id: str, test_id: str, snapshot: Snapshot) -> bool:
        try:
            await self._write(str(student_id), str(test_id), snapshot.model_dump())
        except STORE_ERRORS as e:
            logger.warning("Could not write snapshot %s: %s", snapshot_key(student_id, test_id), e)
            return False
        return True

    async def delete(self, student_id: str, test_id: str) -> bool:
        try:
            await self._remove(str(student_id), str(test_id))
        except STORE_ERRORS as e:
            logger.warning("Could not delete snapshot %s: %s", snapshot_key(student_id, test_id), e)
            return False
        return True

    async def _read(self, student_id: str, test_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def _write(self, student_id: str, test_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def _remove(self, student_id: str, test_id: str) -> None:
        raise NotImplementedError


class MemorySnapshotStore(SnapshotStore):
    """Process-local store, lost on restart."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    async def _read(self, student_id, test_id):
        data = self._data.get(snapshot_key(student_id, test_id))
        return dict(data) if data is not None else None

    async def _write(self, student_id, test_id, data):
        self._data[snapshot_key(student_id, test_id)] = dict(data)

    async def _remove(self, student_id, test_id):
        self._data.pop(snapshot_key(student_id, test_id), None)


class SqlAlchemySnapshotStore(SnapshotStore):
    """One `session_snapshots` row per (student, test)."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    @staticmethod
    def _match(student_id: str, test_id: str):
        return (
            SessionSnapshot.student_id == uuid.UUID(student_id),
            SessionSnapshot.test_id == uuid.UUID(test_id),
        )

    async def _read(self, student_id, test_id):
        async with self._session_maker() as session:
            res = await session.execute(select(SessionSnapshot).where(*self._match(student_id, test_id)))
            row = res.scalar_one_or_none()
            if row is None:
                return None
            return {
                "index": row.current_index,
                "answers": dict(row.answers or {}),
                "time": row.remaining_seconds,
                "marked": list(row.marked or []),
                "record_id": str(row.record_id) if row.record_id else None,
            }

    async def _write(self, student_id, test_id, data):
        values = {
            "current_index": data["index"],
            "answers": data["answers"],
            "marked": data["marked"],
            "remaining_seconds": data["time"],
            "record_id": uuid.UUID(data["record_id"]) if data["record_id"] else None,
            "updated": datetime.utcnow(),
        }
        # single upsert on the (test, student) constraint
        stmt = insert(SessionSnapshot).values(
            student_id=uuid.UUID(student_id),
            test_id=uuid.UUID(test_id),
            **values,
        ).on_conflict_do_update(constraint="uq_snapshot_test_student", set_=values)
        async with self._session_maker() as session:
            await session.execute(stmt)
            await session.commit()

    async def _remove(self, student_id, test_id):
        async with self._session_maker() as session:
            await session.execute(delete(SessionSnapshot).where(*self._match(student_id, test_id)))
            await session.commit()

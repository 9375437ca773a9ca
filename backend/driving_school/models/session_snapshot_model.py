from ..db import Base
from sqlalchemy import Column, Integer, DateTime, UniqueConstraint, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.ext.mutable import MutableDict
import uuid
from datetime import datetime


class SessionSnapshot(Base):
    """Resume state of one in-progress attempt, one row per (student, test)."""

    __tablename__ = "session_snapshots"
    __table_args__ = (UniqueConstraint('test_id', 'student_id', name='uq_snapshot_test_student'),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # rows go away with the test or the account
    test_id = Column(UUID(as_uuid=True), ForeignKey("tests.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    current_index = Column(Integer, nullable=False, default=0)
    # use MutableDict so SQLAlchemy detects in-place changes to JSON fields
    answers = Column(MutableDict.as_mutable(JSONB), nullable=False, default=dict)
    marked = Column(JSONB, nullable=False, default=list)
    remaining_seconds = Column(Integer, nullable=True)
    # test record already written for this attempt; set while the submission is unfinished
    record_id = Column(UUID(as_uuid=True), nullable=True)

    updated = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

from ..db import Base
from sqlalchemy import Column, String, ForeignKey, Boolean, Date, DateTime
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.ext.mutable import MutableDict
from datetime import datetime


class Student(Base):
    """
    | Column          | Notes                                           |
    |-----------------|-------------------------------------------------|
    | id              | same id as the student's user account           |
    | national_id     | 8 digits, a capital letter, 2 digits            |
    | license_class   | e.g. "Class 2 (Light Vehicles)", null if unset  |
    | test_history    | record id -> attempt summary                    |
    | test_scores     | test id -> latest / best / attempts             |
    """
    __tablename__ = "students"

    id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    name = Column(String, nullable=True)
    national_id = Column(String, nullable=True, unique=True)

    phone_number = Column(String, nullable=True)
    gender = Column(String, nullable=True)
    address = Column(String, nullable=True)
    license_class = Column(String, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # use MutableDict so SQLAlchemy detects in-place changes to JSON fields
    test_history = Column(MutableDict.as_mutable(JSONB), nullable=False, default=dict)
    test_scores = Column(MutableDict.as_mutable(JSONB), nullable=False, default=dict)

    created = Column(DateTime, default=datetime.utcnow)

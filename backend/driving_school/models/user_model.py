from ..db import Base
from sqlalchemy import Column, String, Enum as SQLAlchemyEnum
from fastapi_users.db import SQLAlchemyBaseUserTableUUID
import enum


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    STUDENT = "student"


class User(SQLAlchemyBaseUserTableUUID, Base):
    """Login account. Admins run the school, students take tests.

    A student's test history and scores live on the `students` row that
    shares this id.
    """

    __tablename__ = "users"
    full_name = Column(String)
    role = Column(SQLAlchemyEnum(UserRole), default=UserRole.STUDENT)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

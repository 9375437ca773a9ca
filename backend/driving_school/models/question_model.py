from ..db import Base
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Enum
from sqlalchemy.dialects.postgresql import UUID


OPTION_LABELS = ("option_a", "option_b", "option_c")

CATEGORIES = (
    "ROAD_SIGNS",
    "TRAFFIC_LAWS",
    "SAFETY",
    "VEHICLE_CONTROL",
    "EMERGENCIES",
    "PARKING_REGULATORY",
    "ROAD_MARKINGS",
    "ROAD_RULES",
    "OTHER",
)


class Question(Base):
    __tablename__ = "questions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    question_text = Column(String, nullable=False)
    option_a = Column(String, nullable=False)
    option_b = Column(String, nullable=False)
    option_c = Column(String, nullable=False)
    correct_answer = Column(Enum(*OPTION_LABELS, name="option_label"), nullable=False)
    category = Column(Enum(*CATEGORIES, name="question_category"), nullable=True)
    explanation = Column(String, nullable=True)
    # opaque reference into file storage, never fetched by this service
    image = Column(String, nullable=True)
    created = Column(DateTime, default=datetime.utcnow)

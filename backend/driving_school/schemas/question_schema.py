from pydantic import BaseModel, Field, field_validator
from typing import Dict, Literal, Optional
import enum


class QuestionCategory(str, enum.Enum):
    """Topics a driving test question can belong to."""
    ROAD_SIGNS = "ROAD_SIGNS"
    TRAFFIC_LAWS = "TRAFFIC_LAWS"
    SAFETY = "SAFETY"
    VEHICLE_CONTROL = "VEHICLE_CONTROL"
    EMERGENCIES = "EMERGENCIES"
    PARKING_REGULATORY = "PARKING_REGULATORY"
    ROAD_MARKINGS = "ROAD_MARKINGS"
    ROAD_RULES = "ROAD_RULES"
    OTHER = "OTHER"


OptionLabel = Literal["option_a", "option_b", "option_c"]


class QuestionCreate(BaseModel):
    """
    Schema for validating a new question.

    Every question has exactly three options; `correct_answer` names one of
    them by field name.
    """
    question_text: str = Field(..., min_length=1, description="The question shown to the student.")
    option_a: str = Field(..., min_length=1)
    option_b: str = Field(..., min_length=1)
    option_c: str = Field(..., min_length=1)
    correct_answer: OptionLabel = Field(..., description="Which option is correct (option_a, option_b or option_c).")
    category: Optional[QuestionCategory] = None
    explanation: Optional[str] = Field(None, description="Shown to the student after the test.")
    image: Optional[str] = Field(None, description="Reference into file storage.")

    @field_validator("question_text", "option_a", "option_b", "option_c")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class QuestionUpdate(BaseModel):
    question_text: Optional[str] = Field(None, min_length=1)
    option_a: Optional[str] = Field(None, min_length=1)
    option_b: Optional[str] = Field(None, min_length=1)
    option_c: Optional[str] = Field(None, min_length=1)
    correct_answer: Optional[OptionLabel] = None
    category: Optional[QuestionCategory] = None
    explanation: Optional[str] = None
    image: Optional[str] = None


class QuestionPublic(BaseModel):
    """What a student sees while taking a test: no answer, no explanation."""
    id: str
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    category: Optional[QuestionCategory] = None
    image: Optional[str] = None


class QuestionRead(QuestionCreate):
    id: str = Field(..., description="Unique identifier for the question.")

    def options(self) -> Dict[str, str]:
        return {"a": self.option_a, "b": self.option_b, "c": self.option_c}

    def public(self) -> QuestionPublic:
        return QuestionPublic(
            id=self.id,
            question_text=self.question_text,
            option_a=self.option_a,
            option_b=self.option_b,
            option_c=self.option_c,
            category=self.category,
            image=self.image,
        )

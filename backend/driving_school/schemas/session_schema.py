from pydantic import BaseModel, Field
from typing import Dict, List, Optional
import enum

from .question_schema import QuestionPublic


class SessionPhase(str, enum.Enum):
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    # question map shown as an overlay, timer and answers untouched
    REVIEWING = "reviewing"
    FINALIZING = "finalizing"
    SUBMITTED = "submitted"
    ERROR = "error"


class SubmissionStatus(str, enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"


class SelectOptionPayload(BaseModel):
    option: str = Field(..., description="option_a, option_b, option_c (or a, b, c).")
    # defaults to the question currently shown
    question_id: Optional[str] = None


class QuestionRefPayload(BaseModel):
    question_id: Optional[str] = None


class NavigatePayload(BaseModel):
    index: int


class QuestionMapEntry(BaseModel):
    index: int
    question_id: str
    answered: bool
    marked: bool
    current: bool


class SessionResult(BaseModel):
    score: int
    passed: bool
    correct: int
    answered: int
    total: int


class SessionView(BaseModel):
    test_id: str
    test_name: Optional[str] = None
    phase: SessionPhase
    submission_status: SubmissionStatus
    submission_error: Optional[str] = None
    error: Optional[str] = None
    time_limit: Optional[int] = None
    passing_score: Optional[int] = None
    remaining_seconds: int = 0
    current_index: int = 0
    total_questions: int = 0
    # previous / next buttons are disabled at the ends
    at_start: bool = True
    at_end: bool = True
    question: Optional[QuestionPublic] = None
    selected_option: Optional[str] = None
    answers: Dict[str, str] = {}
    marked: List[str] = []
    show_question_map: bool = False
    question_map: List[QuestionMapEntry] = []
    result: Optional[SessionResult] = None
    record_id: Optional[str] = None

from pydantic import BaseModel, ConfigDict
from typing import Dict, List, Optional
from datetime import datetime


class AnswerScriptQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_id: str
    question_text: str
    options: Dict[str, str]
    correct_answer: str
    selected_answer: Optional[str] = None
    is_correct: bool
    marked_for_review: bool
    category: Optional[str] = None
    explanation: Optional[str] = None
    image: Optional[str] = None


class AnswerScriptSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_questions: int
    answered: int
    correct: int
    marked_for_review: int
    score: int
    passed: bool
    time_spent: int
    started_at: datetime
    completed_at: datetime


class AnswerScript(BaseModel):
    """Full, immutable record of one attempt."""
    model_config = ConfigDict(frozen=True)

    test_id: str
    test_name: str
    student_id: str
    questions: List[AnswerScriptQuestion]
    summary: AnswerScriptSummary


class CategoryScore(BaseModel):
    correct: int = 0
    total: int = 0


class TestRecordRead(BaseModel):
    __test__ = False

    id: str
    student_id: str
    test_id: str
    test_name: Optional[str] = None
    score: int
    passing_score: int
    passed: bool
    time_completed: datetime
    time_limit: int
    time_spent: int
    answer_script: Optional[AnswerScript] = None
    performance_data: Optional[Dict[str, Dict[str, CategoryScore]]] = None
    created: Optional[datetime] = None


class StudentStats(BaseModel):
    total_tests: int = 0
    passed_tests: int = 0
    average_score: int = 0
    best_score: int = 0
    average_time: int = 0
    strongest_category: Optional[str] = None
    weakest_category: Optional[str] = None
    by_category: Dict[str, CategoryScore] = {}


class RecentActivity(BaseModel):
    id: str
    student: str
    test: str
    score: int
    date: Optional[datetime] = None
    passed: bool


class StudentPerformance(BaseModel):
    name: str
    tests: int
    average: int


class DashboardStats(BaseModel):
    """Admin dashboard: totals over every test record in the school."""
    total_tests: int = 0
    total_students: int = 0
    average_score: int = 0
    pass_rate: int = 0
    # records with at least one question marked for review
    flagged_scripts: int = 0
    by_category: Dict[str, CategoryScore] = {}
    recent_activity: List[RecentActivity] = []
    student_performance: List[StudentPerformance] = []


class NewTestRecord(BaseModel):
    """Row written by the submission pipeline."""
    student_id: str
    test_id: str
    score: int
    passing_score: int
    passed: bool
    time_completed: datetime
    time_limit: int
    time_spent: int
    answer_script: AnswerScript
    performance_data: Dict[str, Dict[str, CategoryScore]]

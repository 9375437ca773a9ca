"""
services/scoring_service.py

Scoring of a finished attempt. Pure functions, no I/O.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Mapping, NamedTuple, Optional

from ..errors import ConfigurationError
from ..schemas.question_schema import QuestionRead

UNCATEGORIZED = "uncategorized"


class ScoreResult(NamedTuple):
    correct: int
    score: int


def is_correct(question: QuestionRead, answers: Mapping[str, str]) -> bool:
    """An unanswered question is never correct."""
    selected = answers.get(question.id)
    return selected is not None and selected == question.correct_answer


def percent(correct: int, total: int) -> int:
    """Whole percent, halves rounded up (1 of 8 is 13, not 12)."""
    if total <= 0:
        raise ConfigurationError("Cannot score a test without questions")
    value = Decimal(correct) * 100 / Decimal(total)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def score_answers(questions: List[QuestionRead], answers: Mapping[str, str]) -> ScoreResult:
    """
    Grade the given answers against the questions of a test.

    Returns (correct count, score percent 0..100).
    Raises ConfigurationError for an empty question list.
    """
    if not questions:
        raise ConfigurationError("Cannot score a test without questions")
    correct = sum(1 for q in questions if is_correct(q, answers))
    return ScoreResult(correct=correct, score=percent(correct, len(questions)))


def is_passed(score: int, passing_score: int) -> bool:
    # a score equal to the threshold passes
    return score >= passing_score


def category_breakdown(questions: List[QuestionRead], answers: Mapping[str, str]) -> Dict[str, Dict[str, int]]:
    """Correct/total per question category, in first-seen order."""
    buckets: Dict[str, Dict[str, int]] = {}
    for q in questions:
        category = _category_name(q.category)
        bucket = buckets.setdefault(category, {"correct": 0, "total": 0})
        bucket["total"] += 1
        if is_correct(q, answers):
            bucket["correct"] += 1
    return buckets


def _category_name(category: Optional[object]) -> str:
    if category is None:
        return UNCATEGORIZED
    return getattr(category, "value", str(category))

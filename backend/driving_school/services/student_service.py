"""
services/student_service.py

Merging one finished attempt into a student's aggregates. Both maps only
grow: a history entry is added under the new record id and never replaced,
and the per-test tracker keeps the latest score, the best score and the
number of attempts.
"""

from datetime import datetime
from typing import Any, Dict, NamedTuple, Optional

from ..schemas.test_schema import TestRead


class StudentAggregate(NamedTuple):
    test_history: Dict[str, Dict[str, Any]]
    test_scores: Dict[str, Dict[str, Any]]
    applied: bool


def history_entry(test: TestRead, score: int, passed: bool, time_spent: int, when: datetime) -> Dict[str, Any]:
    return {
        "test_id": test.id,
        "test_name": test.name,
        "date": when.isoformat(),
        "score": score,
        "passed": passed,
        "time_spent": time_spent,
    }


def apply_attempt(
    test_history: Optional[Dict[str, Dict[str, Any]]],
    test_scores: Optional[Dict[str, Dict[str, Any]]],
    record_id: str,
    entry: Dict[str, Any],
) -> StudentAggregate:
    """Return new aggregates with the attempt merged in.

    An attempt whose record id is already in the history was merged before;
    the aggregates are returned unchanged with `applied=False`, so a retried
    submission does not count twice.
    """
    history = dict(test_history or {})
    scores = dict(test_scores or {})
    if record_id in history:
        return StudentAggregate(history, scores, False)

    history[record_id] = entry

    test_id = entry["test_id"]
    score = entry["score"]
    previous = scores.get(test_id) or {}
    scores[test_id] = {
        "latest_score": score,
        "best_score": max(score, previous.get("best_score") or 0),
        "attempts": (previous.get("attempts") or 0) + 1,
        "last_attempt": entry["date"],
    }
    return StudentAggregate(history, scores, True)

from typing import Dict, List

from ..schemas.record_schema import (
    CategoryScore,
    DashboardStats,
    RecentActivity,
    StudentPerformance,
    StudentStats,
    TestRecordRead,
)
from ..schemas.user_schema import StudentRead, StudentSummary
from .scoring_service import UNCATEGORIZED

UNASSIGNED = "Unassigned"


def _half_up(value: float) -> int:
    return int(value + 0.5)


def _category_totals(records: List[TestRecordRead]) -> Dict[str, CategoryScore]:
    by_category: Dict[str, CategoryScore] = {}
    for record in records:
        if record.answer_script is None:
            continue
        for q in record.answer_script.questions:
            bucket = by_category.setdefault(q.category or UNCATEGORIZED, CategoryScore())
            bucket.total += 1
            if q.is_correct:
                bucket.correct += 1
    return by_category


def is_flagged(record: TestRecordRead) -> bool:
    """A script with at least one question the student marked for review."""
    if record.answer_script is None:
        return False
    return any(q.marked_for_review for q in record.answer_script.questions)


def summarize_records(records: List[TestRecordRead]) -> StudentStats:
    """Dashboard numbers over a student's test records."""
    if not records:
        return StudentStats()

    by_category = _category_totals(records)
    strongest = weakest = None
    if by_category:
        ratios = {name: bucket.correct / bucket.total for name, bucket in by_category.items() if bucket.total}
        # ties go to the category seen first
        strongest = max(ratios, key=ratios.get)
        weakest = min(ratios, key=ratios.get)

    return StudentStats(
        total_tests=len(records),
        passed_tests=sum(1 for r in records if r.passed),
        average_score=_half_up(sum(r.score for r in records) / len(records)),
        best_score=max(r.score for r in records),
        average_time=_half_up(sum(r.time_spent for r in records) / len(records)),
        strongest_category=strongest,
        weakest_category=weakest,
        by_category=by_category,
    )


def summarize_dashboard(
    records: List[TestRecordRead],
    students: List[StudentRead],
    recent: int = 5,
    top: int = 10,
) -> DashboardStats:
    """
    School-wide numbers for the admin dashboard.

    `records` are expected newest first, as `Backend.list_test_records`
    returns them; the first `recent` become the activity feed.
    """
    names = {s.id: s.name or "Unknown" for s in students}

    scores: Dict[str, List[int]] = {}
    for record in records:
        scores.setdefault(record.student_id, []).append(record.score)

    performance = [
        StudentPerformance(
            name=s.name or "Unknown",
            tests=len(scores.get(s.id, [])),
            average=_half_up(sum(scores[s.id]) / len(scores[s.id])) if scores.get(s.id) else 0,
        )
        for s in students
    ]
    # stable sort keeps list order between equal averages
    performance.sort(key=lambda p: p.average, reverse=True)

    total = len(records)
    return DashboardStats(
        total_tests=total,
        total_students=len(students),
        average_score=_half_up(sum(r.score for r in records) / total) if total else 0,
        pass_rate=_half_up(sum(1 for r in records if r.passed) * 100 / total) if total else 0,
        flagged_scripts=sum(1 for r in records if is_flagged(r)),
        by_category=_category_totals(records),
        recent_activity=[
            RecentActivity(
                id=r.id,
                student=names.get(r.student_id, "Unknown"),
                test=r.test_name or "Test",
                score=r.score,
                date=r.created or r.time_completed,
                passed=r.passed,
            )
            for r in records[:recent]
        ],
        student_performance=performance[:top],
    )


def summarize_students(students: List[StudentRead]) -> StudentSummary:
    by_license_class: Dict[str, int] = {}
    for student in students:
        key = student.license_class or UNASSIGNED
        by_license_class[key] = by_license_class.get(key, 0) + 1
    active = sum(1 for s in students if s.is_active)
    return StudentSummary(
        total=len(students),
        active=active,
        inactive=len(students) - active,
        by_license_class=by_license_class,
    )

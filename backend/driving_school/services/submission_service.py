"""
services/submission_service.py

Turning a finished session into a persisted test record.

`build_answer_script` scores the attempt and freezes it into an
`AnswerScript` (pure). `SubmissionPipeline.commit` then writes it out, in
order:

1. create the test record (skipped when this session already created one),
2. merge the attempt into the student's history and score tracker,
3. delete the local snapshot.

The snapshot is only deleted once both remote writes succeeded, so a failed
submission can still be recovered and retried by hand.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

from ..errors import SubmissionError
from ..schemas.question_schema import QuestionRead
from ..schemas.record_schema import AnswerScript, AnswerScriptQuestion, AnswerScriptSummary, CategoryScore, NewTestRecord
from ..schemas.test_schema import TestRead
from .backend_service import Backend
from .scoring_service import category_breakdown, is_correct, is_passed, score_answers
from .snapshot_service import Snapshot, SnapshotStore
from .student_service import history_entry

logger = logging.getLogger(__name__)


def _category_value(category) -> Optional[str]:
    if category is None:
        return None
    return getattr(category, "value", str(category))


def build_answer_script(
    test: TestRead,
    questions: List[QuestionRead],
    answers: Mapping[str, str],
    marked: Iterable[str],
    student_id: str,
    remaining_seconds: int,
    completed_at: datetime,
) -> AnswerScript:
    marked = set(marked)
    result = score_answers(questions, answers)
    passed = is_passed(result.score, test.passing_score)
    time_spent = max(0, test.time_limit_seconds - max(0, remaining_seconds))

    entries = [
        AnswerScriptQuestion(
            question_id=q.id,
            question_text=q.question_text,
            options=q.options(),
            correct_answer=q.correct_answer,
            selected_answer=answers.get(q.id),
            is_correct=is_correct(q, answers),
            marked_for_review=q.id in marked,
            category=_category_value(q.category),
            explanation=q.explanation,
            image=q.image,
        )
        for q in questions
    ]
    question_ids = {q.id for q in questions}
    summary = AnswerScriptSummary(
        total_questions=len(questions),
        answered=sum(1 for qid in answers if qid in question_ids),
        correct=result.correct,
        marked_for_review=len(marked & question_ids),
        score=result.score,
        passed=passed,
        time_spent=time_spent,
        started_at=completed_at - timedelta(seconds=time_spent),
        completed_at=completed_at,
    )
    return AnswerScript(
        test_id=test.id,
        test_name=test.name,
        student_id=student_id,
        questions=entries,
        summary=summary,
    )


def performance_data(questions: List[QuestionRead], answers: Mapping[str, str]) -> Dict[str, Dict[str, CategoryScore]]:
    return {
        "by_category": {
            category: CategoryScore(**counts)
            for category, counts in category_breakdown(questions, answers).items()
        }
    }


class SubmissionPipeline:
    """Writes one session's attempt. Holds the record id between retries."""

    def __init__(self, backend: Backend, snapshots: SnapshotStore, student_id: str, test_id: str, record_id: Optional[str] = None):
        self._backend = backend
        self._snapshots = snapshots
        self._student_id = student_id
        self._test_id = test_id
        self.record_id = record_id

    async def commit(
        self,
        test: TestRead,
        script: AnswerScript,
        performance: Dict[str, Dict[str, CategoryScore]],
        snapshot: Snapshot,
    ) -> str:
        summary = script.summary
        try:
            if self.record_id is None:
                self.record_id = await self._backend.create_test_record(
                    NewTestRecord(
                        student_id=script.student_id,
                        test_id=test.id,
                        score=summary.score,
                        passing_score=test.passing_score,
                        passed=summary.passed,
                        time_completed=summary.completed_at,
                        time_limit=test.time_limit,
                        time_spent=summary.time_spent,
                        answer_script=script,
                        performance_data=performance,
                    )
                )
                # remember the record so a retry after a failed aggregate update does not create another
                await self._snapshots.save(
                    self._student_id, self._test_id, snapshot.model_copy(update={"record_id": self.record_id})
                )

            entry = history_entry(test, summary.score, summary.passed, summary.time_spent, summary.completed_at)
            await self._backend.apply_attempt(script.student_id, self.record_id, entry)
        except Exception as e:
            logger.exception(
                "Error while submitting test_id=%s student_id=%s record_id=%s: %s",
                test.id, script.student_id, self.record_id, e,
            )
            raise SubmissionError("Failed to submit test results") from e

        await self._snapshots.delete(self._student_id, self._test_id)
        logger.info("Submitted test_id=%s student_id=%s record_id=%s score=%s", test.id, script.student_id, self.record_id, summary.score)
        return self.record_id

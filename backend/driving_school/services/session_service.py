"""
services/session_service.py

One student's attempt at one test, as a state machine:

    loading -> in_progress <-> reviewing -> finalizing -> submitted
                    ^                           |
                    +-------- back -------------+

`error` is terminal and only reachable from `loading`. Timer expiry submits
from any active phase. Submission runs at most once per session, guarded by
`submission_status` (idle -> submitting -> submitted, or failed and then
retried by hand).

Every state change is written to the snapshot store so a reload can resume.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..errors import SessionStateError, SubmissionError, TestLoadError
from ..schemas.question_schema import QuestionRead
from ..schemas.record_schema import AnswerScript
from ..schemas.session_schema import QuestionMapEntry, SessionPhase, SessionResult, SessionView, SubmissionStatus
from ..schemas.test_schema import TestRead
from .answer_service import AnswerTracker, NavigationController
from .backend_service import Backend
from .snapshot_service import Snapshot, SnapshotStore, snapshot_key
from .submission_service import SubmissionPipeline, build_answer_script, performance_data
from .timer_service import CountdownTimer

logger = logging.getLogger(__name__)

ACTIVE_PHASES = (SessionPhase.IN_PROGRESS, SessionPhase.REVIEWING, SessionPhase.FINALIZING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionContext:
    """Who is taking the test and the handles the session works through."""
    student_id: str
    backend: Backend
    snapshots: SnapshotStore
    timer_interval: float = 1.0
    clock: Callable[[], datetime] = _utcnow


class TestSession:
    __test__ = False

    def __init__(self, context: SessionContext, test_id: str):
        self.context = context
        self.student_id = str(context.student_id)
        self.test_id = str(test_id)
        self.key = snapshot_key(self.student_id, self.test_id)

        self.phase = SessionPhase.LOADING
        self.submission_status = SubmissionStatus.IDLE
        self.show_question_map = False
        self.error: Optional[str] = None
        self.submission_error: Optional[str] = None

        self.test: Optional[TestRead] = None
        self.questions: List[QuestionRead] = []
        self.tracker: Optional[AnswerTracker] = None
        self.navigation: Optional[NavigationController] = None
        self.timer: Optional[CountdownTimer] = None
        self.pipeline: Optional[SubmissionPipeline] = None

        self.script: Optional[AnswerScript] = None
        self.result: Optional[SessionResult] = None
        self._final_snapshot: Optional[Snapshot] = None
        self._closed = False
        # serialises snapshot writes; a submission waits for the one in flight
        self._persist_lock = asyncio.Lock()

    # ── loading ─────────────────────────────────────────────────────────────

    async def load(self) -> "TestSession":
        if self.phase != SessionPhase.LOADING:
            raise SessionStateError(f"Session already loaded ({self.phase.value})")
        backend = self.context.backend
        try:
            test = await backend.get_test(self.test_id)
            if test is None or not test.is_active:
                raise TestLoadError("Test not found")
            questions = await backend.get_questions(test.questions)
            if not questions:
                raise TestLoadError("The requested test could not be loaded")
        except TestLoadError as e:
            self._fail_load(str(e))
            raise
        except Exception as e:
            logger.exception("Error loading test_id=%s for student_id=%s: %s", self.test_id, self.student_id, e)
            self._fail_load("Failed to load test data")
            raise TestLoadError("Failed to load test data") from e

        self.test = test
        self.questions = questions
        self.tracker = AnswerTracker(q.id for q in questions)

        seconds = test.time_limit_seconds
        index = 0
        record_id = None
        snapshot = await self.context.snapshots.load(self.student_id, self.test_id)
        if snapshot is not None:
            dropped = self.tracker.restore(snapshot.answers, snapshot.marked)
            if dropped:
                logger.warning("Dropped stale snapshot entries for %s: %s", self.key, "; ".join(dropped))
            index = snapshot.index
            if snapshot.time is not None:
                seconds = snapshot.time
            record_id = snapshot.record_id
            logger.info("Resuming test_id=%s for student_id=%s with %ss left", self.test_id, self.student_id, seconds)
        else:
            logger.info("Starting test_id=%s for student_id=%s", self.test_id, self.student_id)

        self.navigation = NavigationController(len(questions), index)
        self.timer = CountdownTimer(
            seconds,
            on_tick=self._on_tick,
            on_expire=self._on_expire,
            interval=self.context.timer_interval,
        )
        self.pipeline = SubmissionPipeline(backend, self.context.snapshots, self.student_id, self.test_id, record_id=record_id)
        self.phase = SessionPhase.IN_PROGRESS
        await self._persist()

        if record_id is not None:
            # the record exists but the rest of the submission did not finish
            logger.info("Finishing interrupted submission record_id=%s", record_id)
            await self.submit()
        elif self.timer.remaining == 0:
            await self.timer.expire()
        else:
            self.timer.start()
        return self

    def _fail_load(self, message: str) -> None:
        self.phase = SessionPhase.ERROR
        self.error = message

    # ── state helpers ───────────────────────────────────────────────────────

    def _require(self, action: str, *phases: SessionPhase) -> None:
        if self._closed:
            raise SessionStateError(f"Cannot {action}: session is closed")
        if self.phase not in phases:
            raise SessionStateError(f"Cannot {action} while the session is {self.phase.value}")

    @property
    def current_question(self) -> Optional[QuestionRead]:
        if not self.questions or self.navigation is None:
            return None
        return self.questions[self.navigation.index]

    @property
    def current_index(self) -> int:
        return self.navigation.index if self.navigation else 0

    @property
    def remaining_seconds(self) -> int:
        return self.timer.remaining if self.timer else 0

    @property
    def is_live(self) -> bool:
        """Still worth keeping around: running, or submitted but not safely stored."""
        if self._closed:
            return False
        if self.phase in ACTIVE_PHASES:
            return True
        return self.phase == SessionPhase.SUBMITTED and self.submission_status in (
            SubmissionStatus.SUBMITTING,
            SubmissionStatus.FAILED,
        )

    def _question_id(self, question_id: Optional[str]) -> str:
        if question_id:
            return str(question_id)
        return self.current_question.id

    def _snapshot(self) -> Snapshot:
        return Snapshot(
            index=self.current_index,
            answers=self.tracker.answers,
            time=self.remaining_seconds,
            marked=self.tracker.marked,
            record_id=self.pipeline.record_id if self.pipeline else None,
        )

    async def _persist(self) -> None:
        async with self._persist_lock:
            # state may have moved on while waiting for the lock
            if self._closed or self.submission_status != SubmissionStatus.IDLE:
                return
            if self.phase not in ACTIVE_PHASES:
                return
            await self.context.snapshots.save(self.student_id, self.test_id, self._snapshot())

    async def _on_tick(self, remaining: int) -> None:
        await self._persist()

    async def _on_expire(self) -> None:
        logger.info("Time is up for test_id=%s student_id=%s", self.test_id, self.student_id)
        await self.submit()

    # ── answers and navigation ──────────────────────────────────────────────

    async def select_option(self, option: str, question_id: Optional[str] = None) -> str:
        self._require("answer", SessionPhase.IN_PROGRESS, SessionPhase.REVIEWING)
        label = self.tracker.select_option(self._question_id(question_id), option)
        await self._persist()
        return label

    async def clear_option(self, question_id: Optional[str] = None) -> None:
        self._require("clear an answer", SessionPhase.IN_PROGRESS, SessionPhase.REVIEWING)
        self.tracker.clear_option(self._question_id(question_id))
        await self._persist()

    async def toggle_review(self, question_id: Optional[str] = None) -> bool:
        self._require("mark for review", SessionPhase.IN_PROGRESS, SessionPhase.REVIEWING)
        marked = self.tracker.toggle_review(self._question_id(question_id))
        await self._persist()
        return marked

    async def go_to(self, index: int) -> int:
        self._require("navigate", *ACTIVE_PHASES)
        self.navigation.go_to(index)
        return await self._moved()

    async def next(self) -> int:
        self._require("navigate", *ACTIVE_PHASES)
        self.navigation.next()
        return await self._moved()

    async def previous(self) -> int:
        self._require("navigate", *ACTIVE_PHASES)
        self.navigation.previous()
        return await self._moved()

    async def _moved(self) -> int:
        # picking a question from the map closes it
        self.show_question_map = False
        self.phase = SessionPhase.IN_PROGRESS
        await self._persist()
        return self.navigation.index

    def toggle_question_map(self) -> bool:
        self._require("toggle the question map", SessionPhase.IN_PROGRESS, SessionPhase.REVIEWING)
        if self.phase == SessionPhase.IN_PROGRESS:
            self.phase = SessionPhase.REVIEWING
            self.show_question_map = True
        else:
            self.phase = SessionPhase.IN_PROGRESS
            self.show_question_map = False
        return self.show_question_map

    # ── finalize / submit ───────────────────────────────────────────────────

    def finalize(self) -> None:
        self._require("finalize", SessionPhase.IN_PROGRESS, SessionPhase.REVIEWING)
        self.phase = SessionPhase.FINALIZING
        self.show_question_map = True

    def back(self) -> None:
        self._require("go back", SessionPhase.FINALIZING)
        self.phase = SessionPhase.IN_PROGRESS
        self.show_question_map = False

    async def confirm(self) -> SessionResult:
        if self.submission_status in (SubmissionStatus.SUBMITTING, SubmissionStatus.SUBMITTED):
            return self.result
        self._require("confirm", SessionPhase.FINALIZING)
        return await self.submit()

    async def submit(self) -> SessionResult:
        """Score and persist the attempt. Runs once; later calls return the same result."""
        if self.submission_status != SubmissionStatus.IDLE:
            return self.result
        self._require("submit", *ACTIVE_PHASES)

        # claim the submission before the first await
        self._final_snapshot = self._snapshot()
        self.submission_status = SubmissionStatus.SUBMITTING
        self.timer.stop()

        answers = self.tracker.answers
        self.script = build_answer_script(
            self.test,
            self.questions,
            answers,
            self.tracker.marked,
            self.student_id,
            self.remaining_seconds,
            self.context.clock(),
        )
        summary = self.script.summary
        self.result = SessionResult(
            score=summary.score,
            passed=summary.passed,
            correct=summary.correct,
            answered=summary.answered,
            total=summary.total_questions,
        )
        # shown right away, the remote writes follow
        self.phase = SessionPhase.SUBMITTED
        self.show_question_map = False

        # a snapshot write still in flight must not land after the pipeline deletes it
        async with self._persist_lock:
            pass
        await self._commit()
        return self.result

    async def retry_submission(self) -> SessionResult:
        if self.submission_status != SubmissionStatus.FAILED:
            raise SessionStateError(f"Nothing to retry (submission is {self.submission_status.value})")
        self.submission_status = SubmissionStatus.SUBMITTING
        await self._commit()
        return self.result

    async def _commit(self) -> None:
        try:
            await self.pipeline.commit(
                self.test,
                self.script,
                performance_data(self.questions, self.tracker.answers),
                self._final_snapshot,
            )
        except SubmissionError as e:
            self.submission_status = SubmissionStatus.FAILED
            self.submission_error = str(e)
            return
        self.submission_status = SubmissionStatus.SUBMITTED
        self.submission_error = None

    def close(self) -> None:
        """Tear down: stop the timer. The snapshot stays for a later resume."""
        self._closed = True
        if self.timer is not None:
            self.timer.stop()

    # ── view ────────────────────────────────────────────────────────────────

    def view(self) -> SessionView:
        current = self.current_question
        tracker = self.tracker
        question_map = [
            QuestionMapEntry(
                index=i,
                question_id=q.id,
                answered=tracker.selected(q.id) is not None,
                marked=tracker.is_marked(q.id),
                current=i == self.current_index,
            )
            for i, q in enumerate(self.questions)
        ]
        nav = self.navigation
        return SessionView(
            test_id=self.test_id,
            test_name=self.test.name if self.test else None,
            phase=self.phase,
            submission_status=self.submission_status,
            submission_error=self.submission_error,
            error=self.error,
            time_limit=self.test.time_limit if self.test else None,
            passing_score=self.test.passing_score if self.test else None,
            remaining_seconds=self.remaining_seconds,
            current_index=self.current_index,
            total_questions=len(self.questions),
            at_start=nav.at_start if nav else True,
            at_end=nav.at_end if nav else True,
            question=current.public() if current else None,
            selected_option=tracker.selected(current.id) if current else None,
            answers=tracker.answers if tracker else {},
            marked=tracker.marked if tracker else [],
            show_question_map=self.show_question_map,
            question_map=question_map,
            result=self.result,
            record_id=self.pipeline.record_id if self.pipeline else None,
        )

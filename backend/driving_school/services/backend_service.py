"""
services/backend_service.py

Gateway between the application and the stored collections (tests,
questions, test records, students). Test sessions, result pages and the
admin routers only talk to `Backend`; the SQLAlchemy implementation is what
the app uses.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import DuplicateRecordError
from ..models.question_model import Question
from ..models.student_model import Student
from ..models.test_model import Test, test_questions
from ..models.test_record_model import TestRecord
from ..models.user_model import User, UserRole
from ..schemas.question_schema import QuestionRead
from ..schemas.record_schema import NewTestRecord, TestRecordRead
from ..schemas.test_schema import TestRead
from ..schemas.user_schema import StudentRead
from .student_service import apply_attempt
from .test_service import (
    _get_ordered_question_ids,
    _link_questions,
    _question_to_read_dict,
    _test_to_read_dict,
    _to_naive_utc,
)

logger = logging.getLogger(__name__)


class Backend:
    """Collections used by test sessions, result pages and admin screens."""

    # ── tests ───────────────────────────────────────────────────────────────

    async def list_active_tests(self) -> List[TestRead]:
        raise NotImplementedError

    async def list_tests(self) -> List[TestRead]:
        """Every test, newest first."""
        raise NotImplementedError

    async def get_test(self, test_id: str) -> Optional[TestRead]:
        raise NotImplementedError

    async def create_test(self, fields: Dict[str, Any], question_ids: List[str]) -> TestRead:
        raise NotImplementedError

    async def update_test(self, test_id: str, fields: Dict[str, Any], question_ids: Optional[List[str]] = None) -> Optional[TestRead]:
        """Set the given fields; `question_ids`, when not None, replaces the ordered question list."""
        raise NotImplementedError

    async def delete_test(self, test_id: str) -> bool:
        raise NotImplementedError

    # ── questions ───────────────────────────────────────────────────────────

    async def get_questions(self, question_ids: List[str]) -> List[QuestionRead]:
        """Questions in the given order; ids that do not resolve are skipped."""
        raise NotImplementedError

    async def missing_questions(self, question_ids: List[str]) -> List[str]:
        """The ids in `question_ids` that name no question."""
        raise NotImplementedError

    async def create_question(self, fields: Dict[str, Any]) -> QuestionRead:
        raise NotImplementedError

    async def list_questions(
        self, search: str = "", category: Optional[str] = None, page: int = 1, per_page: int = 20
    ) -> Tuple[List[QuestionRead], int]:
        """One page of questions, newest first, and the total matching."""
        raise NotImplementedError

    async def get_question(self, question_id: str) -> Optional[QuestionRead]:
        raise NotImplementedError

    async def update_question(self, question_id: str, fields: Dict[str, Any]) -> Optional[QuestionRead]:
        raise NotImplementedError

    async def delete_question(self, question_id: str) -> bool:
        raise NotImplementedError

    # ── records ─────────────────────────────────────────────────────────────

    async def create_test_record(self, record: NewTestRecord) -> str:
        """Persist a record and return its id."""
        raise NotImplementedError

    async def apply_attempt(self, student_id: str, record_id: str, entry: Dict[str, Any]) -> bool:
        """Read-modify-write the student's history and score tracker."""
        raise NotImplementedError

    async def list_test_records(self, student_id: Optional[str] = None, test_id: Optional[str] = None) -> List[TestRecordRead]:
        """Newest first."""
        raise NotImplementedError

    async def get_test_record(self, record_id: str) -> Optional[TestRecordRead]:
        raise NotImplementedError

    # ── students ────────────────────────────────────────────────────────────

    async def get_student(self, student_id: str) -> Optional[StudentRead]:
        raise NotImplementedError

    async def list_students(self, search: str = "", active: Optional[bool] = None) -> List[StudentRead]:
        """Newest first. `search` matches name, national ID or phone number."""
        raise NotImplementedError

    async def find_student_by_national_id(self, national_id: str) -> Optional[StudentRead]:
        raise NotImplementedError

    async def save_student(self, student_id: str, fields: Dict[str, Any]) -> StudentRead:
        """Create the profile if missing, then set the given fields.

        Raises DuplicateRecordError when the national ID is taken.
        """
        raise NotImplementedError

    async def delete_student(self, student_id: str) -> bool:
        """Remove the student's account; profile and records go with it."""
        raise NotImplementedError


def _as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _record_to_read(record: TestRecord, test_name: Optional[str] = None) -> TestRecordRead:
    return TestRecordRead(
        id=str(record.id),
        student_id=str(record.student_id),
        test_id=str(record.test_id),
        test_name=test_name,
        score=record.score,
        passing_score=record.passing_score,
        passed=record.passed,
        time_completed=record.time_completed,
        time_limit=record.time_limit,
        time_spent=record.time_spent,
        answer_script=record.answer_script,
        performance_data=record.performance_data,
        created=record.created,
    )


def _student_to_read(student: Student, email: Optional[str] = None) -> StudentRead:
    return StudentRead(
        id=str(student.id),
        name=student.name,
        email=email,
        national_id=student.national_id,
        phone_number=student.phone_number,
        gender=student.gender,
        address=student.address,
        license_class=student.license_class,
        date_of_birth=student.date_of_birth,
        is_active=student.is_active is not False,
        test_history=dict(student.test_history or {}),
        test_scores=dict(student.test_scores or {}),
    )


async def _get_or_create_student(session: AsyncSession, student_id: uuid.UUID, lock: bool = False) -> Student:
    stmt = select(Student).where(Student.id == student_id)
    if lock:
        stmt = stmt.with_for_update()
    res = await session.execute(stmt)
    student = res.scalar_one_or_none()
    if student is None:
        student = Student(id=student_id, test_history={}, test_scores={})
        session.add(student)
        await session.flush()
    return student


class SqlAlchemyBackend(Backend):
    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    # ── tests ───────────────────────────────────────────────────────────────

    async def _read_tests(self, *filters) -> List[TestRead]:
        async with self._session_maker() as session:
            res = await session.execute(select(Test).where(*filters).order_by(Test.created.desc()))
            out = []
            for test in res.scalars().all():
                qids = await _get_ordered_question_ids(session, test.id)
                out.append(TestRead(**_test_to_read_dict(test, qids)))
            return out

    async def list_active_tests(self) -> List[TestRead]:
        return await self._read_tests(Test.is_active == True)  # noqa: E712

    async def list_tests(self) -> List[TestRead]:
        return await self._read_tests()

    async def get_test(self, test_id: str) -> Optional[TestRead]:
        tid = _as_uuid(test_id)
        if tid is None:
            return None
        async with self._session_maker() as session:
            res = await session.execute(select(Test).where(Test.id == tid))
            test = res.scalar_one_or_none()
            if test is None:
                return None
            qids = await _get_ordered_question_ids(session, test.id)
            return TestRead(**_test_to_read_dict(test, qids))

    async def create_test(self, fields: Dict[str, Any], question_ids: List[str]) -> TestRead:
        async with self._session_maker() as session:
            test = Test(**fields)
            session.add(test)
            await session.flush()
            await _link_questions(session, test.id, [_as_uuid(q) for q in question_ids])
            await session.commit()
            await session.refresh(test)
            logger.info("Created test %s with %d questions", test.id, len(question_ids))
            qids = await _get_ordered_question_ids(session, test.id)
            return TestRead(**_test_to_read_dict(test, qids))

    async def update_test(self, test_id: str, fields: Dict[str, Any], question_ids: Optional[List[str]] = None) -> Optional[TestRead]:
        tid = _as_uuid(test_id)
        if tid is None:
            return None
        async with self._session_maker() as session:
            res = await session.execute(select(Test).where(Test.id == tid))
            test = res.scalar_one_or_none()
            if test is None:
                return None
            for field, value in fields.items():
                setattr(test, field, value)
            session.add(test)
            if question_ids is not None:
                # delete previous links
                await session.execute(delete(test_questions).where(test_questions.c.test_id == test.id))
                await _link_questions(session, test.id, [_as_uuid(q) for q in question_ids])
            await session.commit()
            await session.refresh(test)
            qids = await _get_ordered_question_ids(session, test.id)
            return TestRead(**_test_to_read_dict(test, qids))

    async def delete_test(self, test_id: str) -> bool:
        tid = _as_uuid(test_id)
        if tid is None:
            return False
        async with self._session_maker() as session:
            res = await session.execute(select(Test).where(Test.id == tid))
            test = res.scalar_one_or_none()
            if test is None:
                return False
            # question links and test records go with the test
            await session.execute(delete(test_questions).where(test_questions.c.test_id == test.id))
            await session.delete(test)
            await session.commit()
            logger.info("Deleted test %s", test_id)
            return True

    # ── questions ───────────────────────────────────────────────────────────

    async def get_questions(self, question_ids: List[str]) -> List[QuestionRead]:
        qids = [qid for qid in (_as_uuid(q) for q in question_ids) if qid is not None]
        if not qids:
            return []
        async with self._session_maker() as session:
            res = await session.execute(select(Question).where(Question.id.in_(qids)))
            # Preserve order from qids
            qmap = {str(q.id): q for q in res.scalars().all()}
        ordered = [QuestionRead(**_question_to_read_dict(qmap[str(qid)])) for qid in qids if str(qid) in qmap]
        if len(ordered) != len(qids):
            logger.warning("%d of %d questions could not be found", len(qids) - len(ordered), len(qids))
        return ordered

    async def missing_questions(self, question_ids: List[str]) -> List[str]:
        wanted = [(str(q), _as_uuid(q)) for q in question_ids]
        valid = [qid for _, qid in wanted if qid is not None]
        found = set()
        if valid:
            async with self._session_maker() as session:
                res = await session.execute(select(Question.id).where(Question.id.in_(valid)))
                found = {str(qid) for qid in res.scalars().all()}
        return [raw for raw, qid in wanted if qid is None or str(qid) not in found]

    async def create_question(self, fields: Dict[str, Any]) -> QuestionRead:
        async with self._session_maker() as session:
            question = Question(**fields)
            session.add(question)
            await session.commit()
            await session.refresh(question)
            return QuestionRead(**_question_to_read_dict(question))

    async def list_questions(
        self, search: str = "", category: Optional[str] = None, page: int = 1, per_page: int = 20
    ) -> Tuple[List[QuestionRead], int]:
        filters = []
        if search:
            filters.append(func.lower(Question.question_text).like(f"%{search.lower().strip()}%"))
        if category is not None:
            filters.append(Question.category == category)

        async with self._session_maker() as session:
            count_stmt = select(func.count()).select_from(Question).where(*filters)
            total = (await session.execute(count_stmt)).scalar_one() or 0

            stmt = (
                select(Question)
                .where(*filters)
                .order_by(Question.created.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            )
            result = await session.execute(stmt)
            items = [QuestionRead(**_question_to_read_dict(q)) for q in result.scalars().all()]
        return items, int(total)

    async def _get_question_row(self, session: AsyncSession, question_id: str) -> Optional[Question]:
        qid = _as_uuid(question_id)
        if qid is None:
            return None
        result = await session.execute(select(Question).where(Question.id == qid))
        return result.scalar_one_or_none()

    async def get_question(self, question_id: str) -> Optional[QuestionRead]:
        async with self._session_maker() as session:
            question = await self._get_question_row(session, question_id)
            return QuestionRead(**_question_to_read_dict(question)) if question else None

    async def update_question(self, question_id: str, fields: Dict[str, Any]) -> Optional[QuestionRead]:
        async with self._session_maker() as session:
            question = await self._get_question_row(session, question_id)
            if question is None:
                return None
            for field, value in fields.items():
                setattr(question, field, value)
            session.add(question)
            await session.commit()
            await session.refresh(question)
            return QuestionRead(**_question_to_read_dict(question))

    async def delete_question(self, question_id: str) -> bool:
        async with self._session_maker() as session:
            question = await self._get_question_row(session, question_id)
            if question is None:
                return False
            await session.delete(question)
            await session.commit()
            return True

    # ── records ─────────────────────────────────────────────────────────────

    async def create_test_record(self, record: NewTestRecord) -> str:
        async with self._session_maker() as session:
            student_id = _as_uuid(record.student_id)
            await _get_or_create_student(session, student_id)
            row = TestRecord(
                student_id=student_id,
                test_id=_as_uuid(record.test_id),
                score=record.score,
                passing_score=record.passing_score,
                passed=record.passed,
                time_completed=_to_naive_utc(record.time_completed),
                time_limit=record.time_limit,
                time_spent=record.time_spent,
                answer_script=record.answer_script.model_dump(mode="json"),
                performance_data={
                    key: {cat: value.model_dump() for cat, value in buckets.items()}
                    for key, buckets in record.performance_data.items()
                },
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return str(row.id)

    async def apply_attempt(self, student_id: str, record_id: str, entry: Dict[str, Any]) -> bool:
        async with self._session_maker() as session:
            # row lock: two submissions for the same student must not lose an update
            student = await _get_or_create_student(session, _as_uuid(student_id), lock=True)
            merged = apply_attempt(student.test_history, student.test_scores, record_id, entry)
            if merged.applied:
                student.test_history = merged.test_history
                student.test_scores = merged.test_scores
                session.add(student)
            else:
                logger.info("Attempt %s already merged for student %s", record_id, student_id)
            await session.commit()
            return merged.applied

    async def list_test_records(self, student_id: Optional[str] = None, test_id: Optional[str] = None) -> List[TestRecordRead]:
        stmt = select(TestRecord, Test.name).join(Test, Test.id == TestRecord.test_id)
        if student_id:
            sid = _as_uuid(student_id)
            if sid is None:
                return []
            stmt = stmt.where(TestRecord.student_id == sid)
        if test_id:
            tid = _as_uuid(test_id)
            if tid is None:
                return []
            stmt = stmt.where(TestRecord.test_id == tid)
        stmt = stmt.order_by(TestRecord.created.desc())
        async with self._session_maker() as session:
            res = await session.execute(stmt)
            return [_record_to_read(record, name) for record, name in res.all()]

    async def get_test_record(self, record_id: str) -> Optional[TestRecordRead]:
        rid = _as_uuid(record_id)
        if rid is None:
            return None
        async with self._session_maker() as session:
            res = await session.execute(
                select(TestRecord, Test.name).join(Test, Test.id == TestRecord.test_id).where(TestRecord.id == rid)
            )
            row = res.first()
            if row is None:
                return None
            record, name = row
            return _record_to_read(record, name)

    # ── students ────────────────────────────────────────────────────────────

    async def _read_students(self, *filters) -> List[StudentRead]:
        stmt = (
            select(Student, User.email)
            .outerjoin(User, User.id == Student.id)
            .where(*filters)
            .order_by(Student.created.desc())
        )
        async with self._session_maker() as session:
            res = await session.execute(stmt)
            return [_student_to_read(student, email) for student, email in res.all()]

    async def get_student(self, student_id: str) -> Optional[StudentRead]:
        sid = _as_uuid(student_id)
        if sid is None:
            return None
        found = await self._read_students(Student.id == sid)
        return found[0] if found else None

    async def list_students(self, search: str = "", active: Optional[bool] = None) -> List[StudentRead]:
        filters = []
        if search:
            term = f"%{search.lower().strip()}%"
            filters.append(or_(
                func.lower(Student.name).like(term),
                func.lower(Student.national_id).like(term),
                Student.phone_number.like(term),
            ))
        if active is not None:
            filters.append(Student.is_active == active)
        return await self._read_students(*filters)

    async def find_student_by_national_id(self, national_id: str) -> Optional[StudentRead]:
        found = await self._read_students(Student.national_id == national_id)
        return found[0] if found else None

    async def save_student(self, student_id: str, fields: Dict[str, Any]) -> StudentRead:
        sid = _as_uuid(student_id)
        async with self._session_maker() as session:
            student = await _get_or_create_student(session, sid)
            for field, value in fields.items():
                setattr(student, field, value)
            session.add(student)
            try:
                await session.commit()
            except IntegrityError:
                # national_id is unique
                await session.rollback()
                raise DuplicateRecordError("A student with this national ID already exists")
        return await self.get_student(str(sid))

    async def delete_student(self, student_id: str) -> bool:
        sid = _as_uuid(student_id)
        if sid is None:
            return False
        async with self._session_maker() as session:
            res = await session.execute(select(User).where(User.id == sid, User.role == UserRole.STUDENT))
            user = res.scalar_one_or_none()
            if user is None:
                return False
            # students and test_records rows cascade from the account
            await session.delete(user)
            await session.commit()
            logger.info("Deleted student %s", student_id)
            return True

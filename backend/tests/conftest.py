import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from fastapi_users.exceptions import UserAlreadyExists

from driving_school.errors import DuplicateRecordError
from driving_school.models.user_model import UserRole
from driving_school.schemas.question_schema import QuestionRead
from driving_school.schemas.record_schema import NewTestRecord, TestRecordRead
from driving_school.schemas import test_schema
from driving_school.schemas.user_schema import StudentRead
from driving_school.services.backend_service import Backend
from driving_school.services.session_service import SessionContext
from driving_school.services.snapshot_service import MemorySnapshotStore
from driving_school.services.student_service import apply_attempt

FIXED_NOW = datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc)

TEST_ID = "11111111-1111-1111-1111-111111111111"
INACTIVE_TEST_ID = "22222222-2222-2222-2222-222222222222"
EMPTY_TEST_ID = "33333333-3333-3333-3333-333333333333"
STUDENT_ID = "44444444-4444-4444-4444-444444444444"


class InMemoryBackend(Backend):
    """Backend fake.

    `fail_create` / `fail_apply` make the next N calls raise; `delay` slows
    down every `apply_attempt` by that many seconds.
    """

    def __init__(self, tests, questions):
        self.tests = {t.id: t for t in tests}
        self.questions = {q.id: q for q in questions}
        self.records: List[TestRecordRead] = []
        self.students: Dict[str, Dict[str, Any]] = {}
        self.fail_create = 0
        self.fail_apply = 0
        self.delay = 0
        self.create_calls = 0
        self.apply_calls = 0

    # tests

    async def list_active_tests(self):
        return [t for t in self.tests.values() if t.is_active]

    async def list_tests(self):
        return list(reversed(self.tests.values()))

    async def get_test(self, test_id):
        return self.tests.get(str(test_id))

    async def create_test(self, fields, question_ids):
        test = test_schema.TestRead(id=str(uuid.uuid4()), questions=list(question_ids), **fields)
        self.tests[test.id] = test
        return test

    async def update_test(self, test_id, fields, question_ids=None):
        test = self.tests.get(str(test_id))
        if test is None:
            return None
        update = dict(fields)
        if question_ids is not None:
            update["questions"] = list(question_ids)
        test = test.model_copy(update=update)
        self.tests[test.id] = test
        return test

    async def delete_test(self, test_id):
        return self.tests.pop(str(test_id), None) is not None

    # questions

    async def get_questions(self, question_ids):
        await asyncio.sleep(0)
        return [self.questions[qid] for qid in question_ids if qid in self.questions]

    async def missing_questions(self, question_ids):
        return [qid for qid in question_ids if qid not in self.questions]

    async def create_question(self, fields):
        question = QuestionRead(id=str(uuid.uuid4()), **fields)
        self.questions[question.id] = question
        return question

    async def list_questions(self, search="", category=None, page=1, per_page=20):
        found = [
            q for q in reversed(self.questions.values())
            if search.lower().strip() in q.question_text.lower()
            and (category is None or (q.category is not None and q.category.value == category))
        ]
        start = (page - 1) * per_page
        return found[start:start + per_page], len(found)

    async def get_question(self, question_id):
        return self.questions.get(str(question_id))

    async def update_question(self, question_id, fields):
        question = self.questions.get(str(question_id))
        if question is None:
            return None
        question = QuestionRead(**{**question.model_dump(), **fields})
        self.questions[question.id] = question
        return question

    async def delete_question(self, question_id):
        return self.questions.pop(str(question_id), None) is not None

    # records

    async def create_test_record(self, record: NewTestRecord) -> str:
        self.create_calls += 1
        await asyncio.sleep(0)
        if self.fail_create:
            self.fail_create -= 1
            raise ConnectionError("backend unavailable")
        record_id = f"rec-{len(self.records) + 1}"
        test = self.tests.get(record.test_id)
        self.records.append(
            TestRecordRead(
                id=record_id,
                student_id=record.student_id,
                test_id=record.test_id,
                test_name=test.name if test else None,
                score=record.score,
                passing_score=record.passing_score,
                passed=record.passed,
                time_completed=record.time_completed,
                time_limit=record.time_limit,
                time_spent=record.time_spent,
                answer_script=record.answer_script,
                performance_data=record.performance_data,
                created=record.time_completed,
            )
        )
        return record_id

    async def apply_attempt(self, student_id, record_id, entry) -> bool:
        self.apply_calls += 1
        await asyncio.sleep(self.delay)
        if self.fail_apply:
            self.fail_apply -= 1
            raise ConnectionError("backend unavailable")
        student = self.students.setdefault(str(student_id), {"test_history": {}, "test_scores": {}})
        merged = apply_attempt(student["test_history"], student["test_scores"], record_id, entry)
        student["test_history"] = merged.test_history
        student["test_scores"] = merged.test_scores
        return merged.applied

    async def list_test_records(self, student_id=None, test_id=None):
        out = [
            r for r in reversed(self.records)
            if (not student_id or r.student_id == student_id) and (not test_id or r.test_id == test_id)
        ]
        return out

    async def get_test_record(self, record_id):
        for record in self.records:
            if record.id == record_id:
                return record
        return None

    # students

    async def get_student(self, student_id) -> Optional[StudentRead]:
        student = self.students.get(str(student_id))
        if student is None:
            return None
        return StudentRead(id=str(student_id), **student)

    async def list_students(self, search="", active=None):
        term = search.lower().strip()
        out = []
        for student_id in reversed(list(self.students)):
            student = await self.get_student(student_id)
            if active is not None and student.is_active != active:
                continue
            if term and not (
                term in (student.name or "").lower()
                or term in (student.national_id or "").lower()
                or term in (student.phone_number or "")
            ):
                continue
            out.append(student)
        return out

    async def find_student_by_national_id(self, national_id):
        for student_id, student in self.students.items():
            if student.get("national_id") == national_id:
                return await self.get_student(student_id)
        return None

    async def save_student(self, student_id, fields):
        national_id = fields.get("national_id")
        if national_id:
            other = await self.find_student_by_national_id(national_id)
            if other is not None and other.id != str(student_id):
                raise DuplicateRecordError("A student with this national ID already exists")
        student = self.students.setdefault(str(student_id), {"test_history": {}, "test_scores": {}})
        student.update(fields)
        return await self.get_student(student_id)

    async def delete_student(self, student_id):
        if self.students.pop(str(student_id), None) is None:
            return False
        self.records = [r for r in self.records if r.student_id != str(student_id)]
        return True


class FakeUser:
    def __init__(self, role=UserRole.STUDENT, full_name="Test Student", id=None, email=None):
        self.id = id or uuid.uuid4()
        self.role = role
        self.full_name = full_name
        self.email = email
        self.is_active = True

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN


class FakeUserManager:
    """Stands in for the fastapi-users manager when admins create students."""

    def __init__(self):
        self.created: List[Any] = []

    async def create(self, user_create, safe=False, request=None):
        if any(u.email == user_create.email for u in self.created):
            raise UserAlreadyExists()
        user = FakeUser(role=user_create.role, full_name=user_create.full_name, email=user_create.email)
        user.is_active = user_create.is_active
        self.created.append(user)
        return user


def make_question(qid, correct, category=None, **extra):
    return QuestionRead(
        id=qid,
        question_text=f"Question {qid}?",
        option_a=f"{qid} answer A",
        option_b=f"{qid} answer B",
        option_c=f"{qid} answer C",
        correct_answer=correct,
        category=category,
        explanation=extra.get("explanation", f"Because of {qid}"),
        image=extra.get("image"),
    )


@pytest.fixture
def questions():
    return [
        make_question("q1", "option_a", "ROAD_SIGNS"),
        make_question("q2", "option_b", "ROAD_SIGNS"),
        make_question("q3", "option_c", "SAFETY"),
        make_question("q4", "option_a", None),
    ]


@pytest.fixture
def driving_test(questions):
    return test_schema.TestRead(
        id=TEST_ID,
        name="Theory Test B",
        description="Car licence theory",
        passing_score=75,
        time_limit=1,
        is_active=True,
        questions=[q.id for q in questions],
    )


@pytest.fixture
def inactive_test(questions):
    return test_schema.TestRead(
        id=INACTIVE_TEST_ID,
        name="Old Theory Test",
        passing_score=80,
        time_limit=30,
        is_active=False,
        questions=[q.id for q in questions],
    )


@pytest.fixture
def empty_test():
    # its questions were deleted from the bank
    return test_schema.TestRead(
        id=EMPTY_TEST_ID,
        name="Broken Test",
        passing_score=50,
        time_limit=10,
        is_active=True,
        questions=["gone-1", "gone-2"],
    )


@pytest.fixture
def backend(driving_test, inactive_test, empty_test, questions):
    return InMemoryBackend([driving_test, inactive_test, empty_test], questions)


@pytest.fixture
def snapshots():
    return MemorySnapshotStore()


@pytest.fixture
def context(backend, snapshots):
    # long interval: timers only move when a test drives them
    return SessionContext(
        student_id=STUDENT_ID,
        backend=backend,
        snapshots=snapshots,
        timer_interval=3600,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def api(backend, snapshots):
    """TestClient over the API routers with a swappable current user."""
    from contextlib import asynccontextmanager

    from fastapi import FastAPI
    from fastapi.testclient import TestClient

    from driving_school.app import domain_error_handler
    from driving_school.dependencies import get_backend, get_registry
    from driving_school.errors import DrivingSchoolError
    from driving_school.routers import question_bank, result_routers, student_routers, students_routers, test_routers
    from driving_school.security import current_active_user, get_user_manager
    from driving_school.services.registry_service import SessionRegistry

    registry = SessionRegistry(backend, snapshots, timer_interval=3600)
    users = {"current": FakeUser(id=uuid.UUID(STUDENT_ID))}
    user_manager = FakeUserManager()

    @asynccontextmanager
    async def lifespan(app):
        yield
        await registry.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.add_exception_handler(DrivingSchoolError, domain_error_handler)
    app.include_router(question_bank.router, prefix="/api")
    app.include_router(test_routers.router, prefix="/api")
    app.include_router(student_routers.router, prefix="/api")
    app.include_router(students_routers.router, prefix="/api")
    app.include_router(result_routers.router, prefix="/api")
    app.dependency_overrides[current_active_user] = lambda: users["current"]
    app.dependency_overrides[get_backend] = lambda: backend
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_user_manager] = lambda: user_manager

    with TestClient(app) as client:
        client.users = users
        client.registry = registry
        client.user_manager = user_manager
        yield client


@pytest.fixture
def admin_api(api):
    api.users["current"] = FakeUser(role=UserRole.ADMIN, full_name="Admin")
    return api

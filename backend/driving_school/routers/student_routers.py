from fastapi import APIRouter, Depends, HTTPException, status
from typing import List, Optional
from starlette.responses import Response

from ..dependencies import current_student, get_backend, get_registry
from ..schemas.session_schema import NavigatePayload, QuestionRefPayload, SelectOptionPayload, SessionView
from ..schemas.test_schema import TestRead
from ..schemas.user_schema import NationalIdPayload, StudentProfileUpdate, StudentRead, VerificationResult
from ..services.backend_service import Backend
from ..services.registry_service import SessionRegistry
from ..services.session_service import TestSession

router = APIRouter(prefix="/student", tags=["Student"])


def _session(test_id: str, user, registry: SessionRegistry) -> TestSession:
    return registry.get(str(user.id), test_id)


@router.get("/tests", response_model=List[TestRead])
async def list_active_tests(user = Depends(current_student), backend: Backend = Depends(get_backend)):
    return await backend.list_active_tests()


@router.get("/me", response_model=StudentRead)
async def get_profile(user = Depends(current_student), backend: Backend = Depends(get_backend)):
    student = await backend.get_student(str(user.id))
    if student is None:
        # no attempt finished yet
        return StudentRead(id=str(user.id), name=getattr(user, "full_name", None))
    return student


@router.put("/me", response_model=StudentRead)
async def update_profile(payload: StudentProfileUpdate, user = Depends(current_student), backend: Backend = Depends(get_backend)):
    # contact and licence details only; name and national id are set by an admin
    fields = payload.model_dump(exclude_unset=True)
    if await backend.get_student(str(user.id)) is None:
        fields.setdefault("name", getattr(user, "full_name", None))
    return await backend.save_student(str(user.id), fields)


@router.post("/tests/{test_id}/verify", response_model=VerificationResult)
async def verify_identity(test_id: str, payload: NationalIdPayload, user = Depends(current_student), backend: Backend = Depends(get_backend)):
    """Confirm the student at the keyboard before a test: the national id must match the profile."""
    test = await backend.get_test(test_id)
    if test is None or not test.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Test not found")
    student = await backend.get_student(str(user.id))
    if student is None or not student.national_id or student.national_id != payload.national_id.strip():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="National ID does not match your profile")
    return VerificationResult(verified=True, name=student.name)


# ── test session ─────────────────────────────────────────────────────────────

@router.post("/tests/{test_id}/session", response_model=SessionView)
async def open_session(test_id: str, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    # starts a new attempt, resumes from the saved snapshot, or attaches to the live one
    session = await registry.open(str(user.id), test_id)
    return session.view()


@router.get("/tests/{test_id}/session", response_model=SessionView)
async def get_session(test_id: str, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    return _session(test_id, user, registry).view()


@router.delete("/tests/{test_id}/session", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(test_id: str, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    registry.close(str(user.id), test_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/tests/{test_id}/session/answer", response_model=SessionView)
async def select_answer(test_id: str, payload: SelectOptionPayload, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    session = _session(test_id, user, registry)
    await session.select_option(payload.option, payload.question_id)
    return session.view()


@router.delete("/tests/{test_id}/session/answer", response_model=SessionView)
async def clear_answer(test_id: str, question_id: Optional[str] = None, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    session = _session(test_id, user, registry)
    await session.clear_option(question_id)
    return session.view()


@router.post("/tests/{test_id}/session/review", response_model=SessionView)
async def toggle_review(test_id: str, payload: Optional[QuestionRefPayload] = None, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    session = _session(test_id, user, registry)
    await session.toggle_review(payload.question_id if payload else None)
    return session.view()


@router.post("/tests/{test_id}/session/navigate", response_model=SessionView)
async def navigate(test_id: str, payload: NavigatePayload, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    session = _session(test_id, user, registry)
    await session.go_to(payload.index)
    return session.view()


@router.post("/tests/{test_id}/session/next", response_model=SessionView)
async def next_question(test_id: str, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    session = _session(test_id, user, registry)
    await session.next()
    return session.view()


@router.post("/tests/{test_id}/session/previous", response_model=SessionView)
async def previous_question(test_id: str, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    session = _session(test_id, user, registry)
    await session.previous()
    return session.view()


@router.post("/tests/{test_id}/session/map", response_model=SessionView)
async def toggle_question_map(test_id: str, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    session = _session(test_id, user, registry)
    session.toggle_question_map()
    return session.view()


@router.post("/tests/{test_id}/session/finalize", response_model=SessionView)
async def finalize(test_id: str, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    session = _session(test_id, user, registry)
    session.finalize()
    return session.view()


@router.post("/tests/{test_id}/session/back", response_model=SessionView)
async def back_to_test(test_id: str, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    session = _session(test_id, user, registry)
    session.back()
    return session.view()


@router.post("/tests/{test_id}/session/confirm", response_model=SessionView)
async def confirm_submit(test_id: str, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    session = _session(test_id, user, registry)
    await session.confirm()
    return session.view()


@router.post("/tests/{test_id}/session/retry", response_model=SessionView)
async def retry_submit(test_id: str, user = Depends(current_student), registry: SessionRegistry = Depends(get_registry)):
    # same contract as confirm: a failed write shows up as submission_status=failed
    session = _session(test_id, user, registry)
    await session.retry_submission()
    return session.view()

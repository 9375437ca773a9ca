from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi_users.exceptions import InvalidPasswordException, UserAlreadyExists
from typing import List, Literal
from uuid import UUID
from starlette.responses import Response
import logging

from ..dependencies import current_admin, get_backend
from ..errors import DuplicateRecordError
from ..models.user_model import UserRole
from ..schemas.user_schema import StudentCreate, StudentRead, StudentSummary, StudentUpdate, UserCreate
from ..security import get_user_manager
from ..services.backend_service import Backend
from ..services.stats_service import summarize_students

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/students", tags=["Students"], dependencies=[Depends(current_admin)])

DUPLICATE_NATIONAL_ID = "A student with this national ID already exists"
_ACTIVE_FILTER = {"all": None, "active": True, "inactive": False}


async def _get_student_or_404(backend: Backend, student_id: UUID) -> StudentRead:
    student = await backend.get_student(str(student_id))
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return student


@router.get("/", response_model=List[StudentRead])
async def list_students(
    search: str = "",
    account_status: Literal["all", "active", "inactive"] = Query("all", alias="status"),
    backend: Backend = Depends(get_backend),
):
    # search by name, national id or phone; filter on active accounts
    return await backend.list_students(search=search.strip(), active=_ACTIVE_FILTER[account_status])


@router.get("/summary", response_model=StudentSummary)
async def student_summary(backend: Backend = Depends(get_backend)):
    return summarize_students(await backend.list_students())


@router.post("/", response_model=StudentRead, status_code=status.HTTP_201_CREATED)
async def create_student(payload: StudentCreate, backend: Backend = Depends(get_backend), user_manager=Depends(get_user_manager)):
    """
    Create the login account (student role) and the student profile under
    the same id.
    """
    if await backend.find_student_by_national_id(payload.national_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_NATIONAL_ID)

    try:
        user = await user_manager.create(
            UserCreate(
                email=payload.email,
                password=payload.password,
                full_name=payload.name,
                role=UserRole.STUDENT,
                is_active=payload.is_active,
            )
        )
    except UserAlreadyExists:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A user with this email already exists")
    except InvalidPasswordException as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.reason)

    try:
        student = await backend.save_student(str(user.id), payload.profile())
    except DuplicateRecordError:
        # lost a race on the national id; do not leave an account without a profile
        await backend.delete_student(str(user.id))
        raise
    logger.info("Created student %s", student.id)
    return student


@router.get("/{student_id}", response_model=StudentRead)
async def get_student(student_id: UUID, backend: Backend = Depends(get_backend)):
    return await _get_student_or_404(backend, student_id)


@router.put("/{student_id}", response_model=StudentRead)
async def update_student(student_id: UUID, payload: StudentUpdate, backend: Backend = Depends(get_backend)):
    # update only fields sent
    student = await _get_student_or_404(backend, student_id)
    fields = payload.model_dump(exclude_unset=True)

    national_id = fields.get("national_id")
    if national_id and national_id != student.national_id:
        other = await backend.find_student_by_national_id(national_id)
        if other is not None and other.id != student.id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_NATIONAL_ID)

    return await backend.save_student(student.id, fields)


@router.delete("/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_student(student_id: UUID, backend: Backend = Depends(get_backend)):
    # account, profile and test records go together
    if not await backend.delete_student(str(student_id)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)

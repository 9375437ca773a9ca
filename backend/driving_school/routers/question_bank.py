from fastapi import APIRouter, Depends, HTTPException, status
from typing import Optional
from uuid import UUID
from starlette.responses import Response

from ..dependencies import current_admin, get_backend
from ..schemas.question_schema import QuestionCategory, QuestionCreate, QuestionRead, QuestionUpdate
from ..services.backend_service import Backend

router = APIRouter(prefix="/questionbank", tags=["Question Bank"], dependencies=[Depends(current_admin)])


async def _get_question_or_404(backend: Backend, question_id: UUID) -> QuestionRead:
    question = await backend.get_question(str(question_id))
    if not question:
        raise HTTPException(status_code=404, detail="Question not found.")
    return question


@router.post("/", response_model=QuestionRead, status_code=status.HTTP_201_CREATED)
async def create_question(payload: QuestionCreate, backend: Backend = Depends(get_backend)):
    return await backend.create_question(payload.model_dump(mode="json"))


@router.get("/list")
async def list_questions(
    search: str = "",
    category: Optional[QuestionCategory] = None,
    page: int = 1,
    per_page: int = 20,
    backend: Backend = Depends(get_backend),
):
    # list and filter questions with pagination
    if page < 1:
        page = 1
    if per_page < 1:
        per_page = 20

    items, total = await backend.list_questions(
        search=search,
        category=category.value if category is not None else None,
        page=page,
        per_page=per_page,
    )
    return {"items": items, "total": total, "page": page, "per_page": per_page}


@router.get("/{question_id}", response_model=QuestionRead)
async def get_question(question_id: UUID, backend: Backend = Depends(get_backend)):
    return await _get_question_or_404(backend, question_id)


@router.put("/{question_id}", response_model=QuestionRead)
async def update_question(question_id: UUID, payload: QuestionUpdate, backend: Backend = Depends(get_backend)):
    await _get_question_or_404(backend, question_id)
    return await backend.update_question(str(question_id), payload.model_dump(exclude_unset=True, mode="json"))


@router.delete("/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_question(question_id: UUID, backend: Backend = Depends(get_backend)):
    if not await backend.delete_question(str(question_id)):
        raise HTTPException(status_code=404, detail="Question not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)

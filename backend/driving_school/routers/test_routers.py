from fastapi import APIRouter, Depends, HTTPException, status
from typing import List, Optional
from uuid import UUID
from starlette.responses import Response

from ..schemas.test_schema import TestCreate, TestRead, TestUpdate
from ..services.backend_service import Backend
from ..dependencies import current_admin, get_backend

router = APIRouter(prefix="/tests", tags=["Tests"], dependencies=[Depends(current_admin)])

NO_QUESTIONS = "Cannot activate a test with no questions"


async def _check_questions(backend: Backend, question_ids: Optional[List[UUID]]) -> List[str]:
    # every id must name an existing question; the schema already rejected duplicates
    ids = [str(qid) for qid in question_ids or []]
    if ids and await backend.missing_questions(ids):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="One or more question IDs are invalid")
    return ids


async def _get_test_or_404(backend: Backend, test_id: UUID) -> TestRead:
    test = await backend.get_test(str(test_id))
    if not test:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Test not found")
    return test


@router.get("/", response_model=List[TestRead])
async def get_all_tests(backend: Backend = Depends(get_backend)):
    return await backend.list_tests()


@router.post("/", response_model=TestRead, status_code=status.HTTP_201_CREATED)
async def create_test(payload: TestCreate, backend: Backend = Depends(get_backend)):
    # create test and link questions in the order provided
    if payload.is_active and not payload.questions:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NO_QUESTIONS)
    question_ids = await _check_questions(backend, payload.questions)
    return await backend.create_test(payload.model_dump(exclude={"questions"}), question_ids)


@router.get("/{test_id}", response_model=TestRead)
async def get_test(test_id: UUID, backend: Backend = Depends(get_backend)):
    return await _get_test_or_404(backend, test_id)


@router.put("/{test_id}", response_model=TestRead)
async def update_test(test_id: UUID, payload: TestUpdate, backend: Backend = Depends(get_backend)):
    # update only fields sent and replace question order if provided
    test = await _get_test_or_404(backend, test_id)
    fields = payload.model_dump(exclude_unset=True, exclude={"questions"})
    fields = {key: value for key, value in fields.items() if value is not None}

    question_ids = None
    if payload.questions is not None:
        question_ids = await _check_questions(backend, payload.questions)

    will_be_active = fields.get("is_active", test.is_active)
    final_questions = question_ids if question_ids is not None else test.questions
    if will_be_active and not final_questions:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NO_QUESTIONS)

    return await backend.update_test(str(test_id), fields, question_ids)


@router.delete("/{test_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_test(test_id: UUID, backend: Backend = Depends(get_backend)):
    # delete test; question links and test records go with it
    if not await backend.delete_test(str(test_id)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Test not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{test_id}/activate", response_model=TestRead)
async def activate_test(test_id: UUID, backend: Backend = Depends(get_backend)):
    test = await _get_test_or_404(backend, test_id)
    if len(test.questions) == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NO_QUESTIONS)
    return await backend.update_test(str(test_id), {"is_active": True})


@router.post("/{test_id}/deactivate", response_model=TestRead)
async def deactivate_test(test_id: UUID, backend: Backend = Depends(get_backend)):
    await _get_test_or_404(backend, test_id)
    return await backend.update_test(str(test_id), {"is_active": False})

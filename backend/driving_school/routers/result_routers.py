# filepath: backend/driving_school/routers/result_routers.py
from fastapi import APIRouter, Depends, HTTPException, status
from typing import List, Optional

from ..dependencies import current_admin, current_student, get_backend
from ..security import current_active_user
from ..schemas.record_schema import DashboardStats, StudentStats, TestRecordRead
from ..services.backend_service import Backend
from ..services.stats_service import summarize_dashboard, summarize_records

router = APIRouter()


@router.get('/student/results', response_model=List[TestRecordRead])
async def get_student_results(user = Depends(current_student), backend: Backend = Depends(get_backend)):
    """The student's own test records, newest first."""
    return await backend.list_test_records(student_id=str(user.id))


@router.get('/student/results/stats', response_model=StudentStats)
async def get_student_stats(user = Depends(current_student), backend: Backend = Depends(get_backend)):
    records = await backend.list_test_records(student_id=str(user.id))
    return summarize_records(records)


@router.get('/student/results/{record_id}', response_model=TestRecordRead)
async def get_result(record_id: str, user = Depends(current_active_user), backend: Backend = Depends(get_backend)):
    """
    One test record with its full answer script.
    Students only see their own records; admins see any.
    """
    record = await backend.get_test_record(record_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Test record not found')
    if not user.is_admin and record.student_id != str(user.id):
        # same answer as a missing record, ids are not confirmed to other students
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Test record not found')
    return record


@router.get('/admin/results', response_model=List[TestRecordRead], dependencies=[Depends(current_admin)])
async def query_results(test_id: Optional[str] = None, student_id: Optional[str] = None, backend: Backend = Depends(get_backend)):
    """
    Query test records across students.
    - no filters -> every record
    - test_id and/or student_id narrow the result
    """
    return await backend.list_test_records(student_id=student_id, test_id=test_id)


@router.get('/admin/dashboard', response_model=DashboardStats, dependencies=[Depends(current_admin)])
async def dashboard(backend: Backend = Depends(get_backend)):
    """Totals, pass rate, flagged scripts and the latest attempts across the school."""
    records = await backend.list_test_records()
    students = await backend.list_students()
    return summarize_dashboard(records, students)

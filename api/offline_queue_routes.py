from typing import List

from fastapi import APIRouter, Depends
from sqlmodel import Session

from core.deps import EmployeeContext, get_employee
from db.session import get_session
from models.geo import LocationSample
from models.offline_clock import FlushResult, OfflineClockPayload, OfflineClockRequest
from services.offline_queue import OfflineQueueService

# Defines API Endpoints
router = APIRouter()


# Queue a Clock Event Captured Without Connectivity
@router.post("", response_model=OfflineClockPayload)
def enqueue_clock_event(
    data: OfflineClockRequest,
    session: Session = Depends(get_session),
    employee: EmployeeContext = Depends(get_employee),
):
    sample = None
    if data.latitude is not None and data.longitude is not None:
        sample = LocationSample(
            latitude=data.latitude,
            longitude=data.longitude,
            accuracy=data.accuracy,
            **({"captured_at": data.captured_at} if data.captured_at else {}),
        )
    return OfflineQueueService.enqueue(employee.employee_id, data.kind, sample, session)


# List Queued Clock Events, Oldest First
@router.get("", response_model=List[OfflineClockPayload])
def list_queued_events(
    session: Session = Depends(get_session),
    employee: EmployeeContext = Depends(get_employee),
):
    return OfflineQueueService.pending(employee.employee_id, session)


# Replay Queued Clock Events Against the Time-Tracking Service
@router.post("/flush", response_model=FlushResult)
async def flush_queue(
    session: Session = Depends(get_session),
    employee: EmployeeContext = Depends(get_employee),
):
    result = await OfflineQueueService.flush(employee.employee_id, employee.client, session)
    # Replayed events change the session on the server
    if result.sent:
        await employee.controller.refresh_session()
    return result

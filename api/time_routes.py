import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel

from core.deps import EmployeeContext, get_employee
from core.errors import (
    GeofenceViolationError,
    OutsideShiftWindowError,
    PermissionDeniedError,
    PositionTimeoutError,
    SessionConflictError,
    TimeClockError,
)
from models.geo import LocationSample

logger = logging.getLogger(__name__)


# --- Pydantic Models for Request Payloads ---


class LocationErrorPayload(BaseModel):
    kind: str
    message: Optional[str] = None


def to_http_error(error: TimeClockError) -> HTTPException:
    """Map a time clock failure onto the HTTP status the device should see."""
    if isinstance(error, (GeofenceViolationError, OutsideShiftWindowError, PermissionDeniedError)):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, SessionConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, PositionTimeoutError):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    else:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HTTPException(status_code=code, detail=error.message)


# Defines API Endpoints
router = APIRouter()


# Device Pushes a New Location Fix
@router.post("/location")
async def push_location(
    sample: LocationSample, employee: EmployeeContext = Depends(get_employee)
):
    await employee.positions.push(sample)
    employee.controller.observe(sample)
    return employee.controller.snapshot()


# Device Reports a Positioning Failure
@router.post("/location-error")
async def push_location_error(
    data: LocationErrorPayload, employee: EmployeeContext = Depends(get_employee)
):
    error = await employee.positions.report_error(data.kind, data.message)
    employee.controller.location_error = error.message
    employee.controller.last_message = error.message
    return {"message": error.message, "transient": error.transient}


# Acquire a Fix (High Accuracy, Then Low Accuracy) and Assess It
@router.post("/refresh-location")
async def refresh_location(employee: EmployeeContext = Depends(get_employee)):
    try:
        assessment = await employee.controller.refresh_location()
    except TimeClockError as e:
        raise to_http_error(e)
    return {
        "local_in_range": None if assessment.local is None else assessment.local.within_range,
        "remote_in_range": None if assessment.remote is None else assessment.remote.within_range,
        "message": assessment.message,
    }


# On-Demand Authoritative Location Check
@router.post("/verify-location")
async def verify_location(
    sample: Optional[LocationSample] = Body(default=None),
    employee: EmployeeContext = Depends(get_employee),
):
    try:
        return await employee.controller.verify_location(sample)
    except TimeClockError as e:
        raise to_http_error(e)


# Clock In Endpoint
@router.post("/clock-in")
async def clock_in(
    sample: Optional[LocationSample] = Body(default=None),
    employee: EmployeeContext = Depends(get_employee),
):
    try:
        return await employee.controller.clock_in(sample)
    except TimeClockError as e:
        raise to_http_error(e)


# Clock Out Endpoint
@router.post("/clock-out")
async def clock_out(
    sample: Optional[LocationSample] = Body(default=None),
    employee: EmployeeContext = Depends(get_employee),
):
    try:
        return await employee.controller.clock_out(sample)
    except TimeClockError as e:
        raise to_http_error(e)


@router.post("/start-break")
async def start_break(employee: EmployeeContext = Depends(get_employee)):
    try:
        return await employee.controller.start_break()
    except TimeClockError as e:
        raise to_http_error(e)


@router.post("/end-break")
async def end_break(employee: EmployeeContext = Depends(get_employee)):
    try:
        return await employee.controller.end_break()
    except TimeClockError as e:
        raise to_http_error(e)


# Current State, Session and Eligibility; Loads Session Data on First Call
@router.get("/status")
async def get_status(
    refresh: bool = False, employee: EmployeeContext = Depends(get_employee)
):
    controller = employee.controller
    try:
        if refresh or not controller.loaded:
            await controller.load()
    except TimeClockError as e:
        raise to_http_error(e)
    return controller.snapshot()


# Attendance History for a Date Range (Defaults to Today)
@router.get("/history")
async def get_history(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    employee: EmployeeContext = Depends(get_employee),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_date must not be before start_date",
        )
    try:
        return await employee.controller.history(start_date, end_date)
    except TimeClockError as e:
        raise to_http_error(e)

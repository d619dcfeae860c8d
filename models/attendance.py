from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_serializer, field_validator, model_validator

from utils.datetime_helpers import ensure_utc, format_utc_datetime, utc_now


# Enum Limiting Controller State to the Attendance Lifecycle
class SessionState(str, Enum):
    NO_SESSION = "no_session"
    CLOCKED_IN = "clocked_in"
    ON_BREAK = "on_break"
    CLOCKED_OUT = "clocked_out"


class ClockOutMethod(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


# One Continuous Work Period, as Reported by the Time-Tracking Service
class AttendanceSession(BaseModel):
    id: Optional[str] = None
    clock_in_time: datetime
    clock_out_time: Optional[datetime] = None
    is_break: bool = False
    break_start: Optional[datetime] = None
    break_end: Optional[datetime] = None
    verified_location: bool = False
    clock_in_latitude: Optional[float] = None
    clock_in_longitude: Optional[float] = None
    clock_out_latitude: Optional[float] = None
    clock_out_longitude: Optional[float] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        return None if value is None else str(value)

    @field_validator("clock_in_time", "clock_out_time", "break_start", "break_end")
    @classmethod
    def normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def check_ordering(self):
        if self.clock_out_time is not None and self.clock_out_time < self.clock_in_time:
            raise ValueError("clock_out_time must not precede clock_in_time")
        if (
            self.break_end is not None
            and self.break_start is not None
            and self.break_end < self.break_start
        ):
            raise ValueError("break_end must not precede break_start")
        return self

    @field_serializer("clock_in_time", "clock_out_time", "break_start", "break_end")
    def serialize_timestamps(self, dt: Optional[datetime]) -> Optional[str]:
        return format_utc_datetime(dt)

    @property
    def is_open(self) -> bool:
        return self.clock_out_time is None

    @property
    def on_break(self) -> bool:
        # Only one break may be active at a time
        return bool(self.is_break and self.break_start and not self.break_end)

    def break_minutes(self, now: Optional[datetime] = None) -> float:
        """Minutes spent in the active break, 0.0 when not on break."""
        if not self.on_break:
            return 0.0
        now = ensure_utc(now) or utc_now()
        return max(0.0, (now - self.break_start).total_seconds() / 60.0)


# Today's Scheduled Shift; Optional Gate on Clock-In
class ShiftWindow(BaseModel):
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_bounds(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_serializer("start_time", "end_time")
    def serialize_bounds(self, dt: datetime) -> str:
        return format_utc_datetime(dt)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = ensure_utc(now) or utc_now()
        return self.start_time <= now <= self.end_time


# Response Shape of the Clock-In / Clock-Out / Break Endpoints
class ClockEventResponse(BaseModel):
    message: Optional[str] = None
    event: Optional[AttendanceSession] = None
    clock_in_time: Optional[datetime] = None
    clock_out_time: Optional[datetime] = None

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_serializer
from sqlmodel import Field, Index, SQLModel

from utils.datetime_helpers import format_utc_datetime, utc_now


# Enum Limiting Queued Actions to Clock Events
class OfflineClockKind(str, Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"


# Defines the Structure of Data for Queueing a Clock Event While Offline
class OfflineClockRequest(BaseModel):
    kind: OfflineClockKind
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    captured_at: Optional[datetime] = None


# Defines a Table "offline_clock_payload" Holding Clock Events Awaiting Replay
class OfflineClockPayload(SQLModel, table=True):
    __tablename__ = "offline_clock_payload"

    __table_args__ = (
        # Replay is per employee, oldest first
        Index("ix_offline_clock_payload_employee_id_created_at", "employee_id", "created_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    employee_id: str
    kind: OfflineClockKind
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    captured_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    attempts: int = Field(default=0)
    last_error: Optional[str] = Field(default=None)

    @field_serializer("captured_at", "created_at")
    def serialize_timestamps(self, dt: datetime) -> str:
        """Ensure timestamp is formatted as UTC with Z suffix"""
        result = format_utc_datetime(dt)
        return result if result is not None else dt.isoformat()


# Outcome of Replaying the Queue Against the Time-Tracking Service
class FlushResult(BaseModel):
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    remaining: int = 0

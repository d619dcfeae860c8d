from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from utils.datetime_helpers import ensure_utc, format_utc_datetime, utc_now


# A Point on the Earth's Surface in Decimal Degrees
class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


# One Reading From the Device's Positioning Subsystem; Never Persisted
class LocationSample(GeoPoint):
    accuracy: Optional[float] = Field(default=None, ge=0, description="Meters")
    captured_at: datetime = Field(default_factory=utc_now)

    @field_validator("captured_at")
    @classmethod
    def normalize_captured_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_serializer("captured_at")
    def serialize_captured_at(self, dt: datetime) -> str:
        return format_utc_datetime(dt)

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)


# Restaurant's Permitted Zone (Circle); Read-Only to the Engine
class Geofence(BaseModel):
    model_config = ConfigDict(frozen=True)

    center: GeoPoint
    radius: float = Field(..., gt=0, description="Allowed clock-in radius in meters")


# Result of a Single Geofence Check; Never Stored
class VerificationResult(BaseModel):
    within_range: bool
    message: Optional[str] = None

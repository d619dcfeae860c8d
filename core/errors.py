"""
Error taxonomy for the time clock engine.

Every error carries a user-facing message; routes convert them to HTTP
responses and the monitoring loop logs them instead of surfacing them.
"""

from typing import Optional


class TimeClockError(Exception):
    """Base class for all time clock failures."""

    default_message = "Time clock operation failed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# --- Device positioning ---


class PositionError(TimeClockError):
    default_message = "Failed to get location."
    # Transient errors get one low-accuracy retry before being surfaced
    transient = True


class PermissionDeniedError(PositionError):
    default_message = (
        "Location permission denied. Please enable location access in your browser."
    )
    transient = False


class PositionUnavailableError(PositionError):
    default_message = (
        "Position update is unavailable. Check GPS/location services and try again."
    )


class PositionTimeoutError(PositionError):
    default_message = (
        "Timed out while obtaining location. Move to an open area and retry."
    )


# --- Attendance rules ---


class GeofenceViolationError(TimeClockError):
    default_message = "You must be within the restaurant geofence to clock in."


class OutsideShiftWindowError(TimeClockError):
    default_message = "Clock-in is only allowed during your scheduled shift."


# --- Time-tracking service ---


class ServiceUnavailableError(TimeClockError):
    default_message = "Time tracking service is unavailable. Please try again."

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SessionConflictError(ServiceUnavailableError):
    """The service rejected the action because of the open-session invariant."""

    default_message = "The action conflicts with your current attendance session."

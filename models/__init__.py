from .attendance import AttendanceSession, ClockEventResponse, ClockOutMethod, SessionState, ShiftWindow
from .geo import GeoPoint, Geofence, LocationSample, VerificationResult
from .offline_clock import FlushResult, OfflineClockKind, OfflineClockPayload, OfflineClockRequest

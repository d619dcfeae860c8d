"""
Async client for the external time-tracking service.

The service owns attendance sessions, the restaurant geofence and staff
schedules. This client only translates calls to HTTP and normalizes the
response shapes the service is known to return.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from core import settings
from core.errors import GeofenceViolationError, ServiceUnavailableError, SessionConflictError
from models.attendance import AttendanceSession, ClockEventResponse, ShiftWindow
from models.geo import GeoPoint, Geofence, VerificationResult

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Pull the most useful message out of an error response body."""
    try:
        data = response.json()
    except ValueError:
        return fallback
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


def _rejected_for_location(response: httpx.Response) -> bool:
    try:
        data = response.json()
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("within_range") is False


def parse_geofence(payload: Any, default_radius: float) -> Optional[Geofence]:
    """
    Build a Geofence from a restaurant-location payload.

    Supports both top-level and nested 'restaurant' payloads; radius prefers
    'geofence_radius', then 'radius', then the default.
    """
    if not isinstance(payload, dict):
        return None
    restaurant = payload.get("restaurant")
    # 'restaurant' may also be a bare id next to top-level coordinates
    data = restaurant if isinstance(restaurant, dict) else payload
    lat = data.get("latitude")
    lon = data.get("longitude")
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return None

    radius = data.get("geofence_radius")
    if radius is None:
        radius = data.get("radius")
    if radius is None:
        radius = default_radius

    try:
        return Geofence(
            center=GeoPoint(latitude=lat, longitude=lon), radius=float(radius)
        )
    except (ValidationError, TypeError, ValueError):
        logger.warning(f"[TIMECLOCK_API] Ignoring invalid geofence payload: {payload}")
        return None


def parse_current_session(data: Any) -> Optional[AttendanceSession]:
    """Normalize the various current-session shapes into a session or None."""
    if not isinstance(data, dict):
        return None
    # Preferred shape: { currentSession: ClockEvent | null, is_clocked_in: bool }
    if "currentSession" in data or "is_clocked_in" in data:
        raw = data.get("currentSession")
        return AttendanceSession.model_validate(raw) if raw else None
    # Fallback: backend returns the session directly
    if "clock_in_time" in data:
        return AttendanceSession.model_validate(data)
    return None


class TimeClockClient:
    """
    Authenticated client for one employee.

    The access token is supplied by the caller; this client never refreshes
    it or reads it from ambient storage.
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = settings.TIMECLOCK_API_URL,
        timeout: float = settings.TIMECLOCK_HTTP_TIMEOUT,
        default_radius: float = settings.DEFAULT_GEOFENCE_RADIUS_M,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.default_radius = default_radius
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )

    def set_access_token(self, access_token: str) -> None:
        """Use a renewed token for the same employee on later requests."""
        self._http.headers["Authorization"] = f"Bearer {access_token}"

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        failure: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            return await self._http.request(method, path, json=json, params=params)
        except httpx.TimeoutException:
            logger.error(f"[TIMECLOCK_API] Timeout calling {method} {path}")
            raise ServiceUnavailableError(f"{failure}: request timed out")
        except httpx.HTTPError as e:
            logger.error(f"[TIMECLOCK_API] Error calling {method} {path}: {e}")
            raise ServiceUnavailableError(f"{failure}: {e}")

    async def _call(
        self,
        method: str,
        path: str,
        failure: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        response = await self._request(method, path, failure, json=json, params=params)

        if response.is_error:
            message = _error_message(response, failure)
            logger.error(
                f"[TIMECLOCK_API] {method} {path} returned {response.status_code}: {message}"
            )
            if response.status_code == 409:
                raise SessionConflictError(message, status_code=409)
            if _rejected_for_location(response):
                raise GeofenceViolationError(message)
            raise ServiceUnavailableError(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError:
            raise ServiceUnavailableError(
                "Unexpected response format from server (not JSON). Please retry.",
                status_code=response.status_code,
            )

    @staticmethod
    def _clock_event(data: Any) -> ClockEventResponse:
        if not isinstance(data, dict):
            return ClockEventResponse()
        try:
            return ClockEventResponse.model_validate(data)
        except ValidationError as e:
            # The action succeeded; the session is re-fetched by the caller anyway
            logger.warning(f"[TIMECLOCK_API] Unparsable clock event ({e.error_count()} errors)")
            message = data.get("message")
            return ClockEventResponse(message=message if isinstance(message, str) else None)

    # --- Restaurant configuration ---

    async def get_restaurant_geofence(self) -> Optional[Geofence]:
        data = await self._call(
            "GET", "/timeclock/restaurant-location/", "Failed to fetch restaurant location"
        )
        return parse_geofence(data, self.default_radius)

    async def get_shift_window(self) -> Optional[ShiftWindow]:
        """Today's shift, or None when no schedule data is available."""
        try:
            data = await self._call(
                "GET", "/timeclock/staff-dashboard/", "Failed to fetch staff dashboard"
            )
        except ServiceUnavailableError as e:
            logger.warning(f"[TIMECLOCK_API] No schedule data: {e.message}")
            return None

        shift = data.get("todaysShift") if isinstance(data, dict) else None
        if not isinstance(shift, dict) or not shift.get("start_time") or not shift.get("end_time"):
            return None
        try:
            return ShiftWindow(start_time=shift["start_time"], end_time=shift["end_time"])
        except ValidationError:
            logger.warning(f"[TIMECLOCK_API] Ignoring unparsable shift: {shift}")
            return None

    # --- Location verification ---

    async def verify_location(self, latitude: float, longitude: float) -> VerificationResult:
        failure = "Failed to verify location"
        response = await self._request(
            "POST",
            "/timeclock/verify-location/",
            failure,
            json={"latitude": latitude, "longitude": longitude},
        )
        try:
            data = response.json()
        except ValueError:
            data = None

        # A verdict is honored even on an error status (e.g. 400 "outside zone")
        if isinstance(data, dict) and isinstance(data.get("within_range"), bool):
            message = data.get("message")
            return VerificationResult(
                within_range=data["within_range"],
                message=message if isinstance(message, str) else None,
            )

        if response.is_error:
            raise ServiceUnavailableError(
                _error_message(response, failure), status_code=response.status_code
            )
        raise ServiceUnavailableError("Location verification unavailable")

    # --- Clock events ---

    async def clock_in(
        self, latitude: float, longitude: float, accuracy: Optional[float] = None
    ) -> ClockEventResponse:
        failure = "Failed to clock in"
        data = await self._call(
            "POST",
            "/timeclock/web-clock-in/",
            failure,
            json={"latitude": latitude, "longitude": longitude, "accuracy": accuracy},
        )
        return self._clock_event(data)

    async def clock_out(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        accuracy: Optional[float] = None,
    ) -> ClockEventResponse:
        failure = "Failed to clock out"
        data = await self._call(
            "POST",
            "/timeclock/web-clock-out/",
            failure,
            json={"latitude": latitude, "longitude": longitude, "accuracy": accuracy},
        )
        return self._clock_event(data)

    async def start_break(self) -> ClockEventResponse:
        failure = "Failed to start break"
        data = await self._call("POST", "/timeclock/start-break/", failure)
        return self._clock_event(data)

    async def end_break(self) -> ClockEventResponse:
        failure = "Failed to end break"
        data = await self._call("POST", "/timeclock/end-break/", failure)
        return self._clock_event(data)

    # --- Sessions ---

    async def get_current_session(self) -> Optional[AttendanceSession]:
        failure = "Failed to fetch current session"
        response = await self._request("GET", "/timeclock/current-session/", failure)
        if response.status_code == 404:
            # No active session
            return None
        if response.is_error:
            raise ServiceUnavailableError(
                _error_message(response, failure), status_code=response.status_code
            )
        try:
            return parse_current_session(response.json())
        except (ValueError, ValidationError):
            raise ServiceUnavailableError(f"{failure}: malformed response")

    async def get_attendance_history(
        self, start_date: date, end_date: date
    ) -> List[AttendanceSession]:
        failure = "Failed to fetch attendance history"
        data = await self._call(
            "GET",
            "/timeclock/attendance-history/",
            failure,
            params={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
        if not isinstance(data, list):
            raise ServiceUnavailableError(f"{failure}: malformed response")
        try:
            return [AttendanceSession.model_validate(item) for item in data]
        except ValidationError:
            raise ServiceUnavailableError(f"{failure}: malformed response")

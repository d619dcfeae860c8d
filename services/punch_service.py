import asyncio
import logging
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from core import settings
from core.errors import (
    GeofenceViolationError,
    OutsideShiftWindowError,
    PositionError,
    PositionUnavailableError,
    ServiceUnavailableError,
    TimeClockError,
)
from models.attendance import (
    AttendanceSession,
    ClockEventResponse,
    ClockOutMethod,
    SessionState,
    ShiftWindow,
)
from models.geo import Geofence, LocationSample, VerificationResult
from services.geofence_evaluator import Assessment, GeofenceEvaluator
from services.positioning import WATCH, PositionProvider, locate
from services.shift_guard import ZoneGuard, run_zone_guard
from utils.datetime_helpers import utc_now

logger = logging.getLogger(__name__)

ACTIVE_STATES = (SessionState.CLOCKED_IN, SessionState.ON_BREAK)


class TimeClockService(Protocol):
    """Operations the controller needs from the time-tracking service."""

    async def get_restaurant_geofence(self) -> Optional[Geofence]: ...

    async def get_shift_window(self) -> Optional[ShiftWindow]: ...

    async def verify_location(self, latitude: float, longitude: float) -> VerificationResult: ...

    async def clock_in(self, latitude: float, longitude: float, accuracy: Optional[float] = None) -> ClockEventResponse: ...

    async def clock_out(self, latitude: Optional[float] = None, longitude: Optional[float] = None, accuracy: Optional[float] = None) -> ClockEventResponse: ...

    async def start_break(self) -> ClockEventResponse: ...

    async def end_break(self) -> ClockEventResponse: ...

    async def get_current_session(self) -> Optional[AttendanceSession]: ...

    async def get_attendance_history(self, start_date: date, end_date: date) -> List[AttendanceSession]: ...


class PunchService:
    """
    Attendance session controller for one employee.

    Tracks NO_SESSION -> CLOCKED_IN <-> ON_BREAK -> CLOCKED_OUT, watches the
    device location while a session is active and clocks the employee out
    after sustained zone violations. The time-tracking service is the source
    of truth: the cached session is re-fetched after every mutating action.
    """

    def __init__(
        self,
        client: TimeClockService,
        positions: Optional[PositionProvider] = None,
        guard: Optional[ZoneGuard] = None,
        precise_accuracy_m: float = settings.PRECISE_ACCURACY_M,
        clock: Callable = utc_now,
    ):
        self.client = client
        self.positions = positions
        self.evaluator = GeofenceEvaluator(client)
        self.guard = guard or ZoneGuard()
        self.precise_accuracy_m = precise_accuracy_m
        self._clock = clock

        self.state = SessionState.NO_SESSION
        self.session: Optional[AttendanceSession] = None
        self.geofence: Optional[Geofence] = None
        self.shift_window: Optional[ShiftWindow] = None

        self.current_location: Optional[LocationSample] = None
        self.local_result: Optional[VerificationResult] = None
        self.remote_result: Optional[VerificationResult] = None
        self.last_message: Optional[str] = None
        self.location_error: Optional[str] = None

        self.loaded = False
        self.loading = False
        self.verifying = False

        self._geofence_loaded = False
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._monitor_task: Optional[asyncio.Task] = None
        self._in_breach = False

    # --- Session data ---

    async def load(self) -> None:
        """Fetch geofence (once), schedule and current session."""
        self.loading = True
        try:
            if not self._geofence_loaded:
                try:
                    self.geofence = await self.client.get_restaurant_geofence()
                    self._geofence_loaded = True
                except ServiceUnavailableError as e:
                    logger.warning(f"[TIMECLOCK] Geofence unavailable, local check disabled: {e.message}")
            self.shift_window = await self.client.get_shift_window()
            await self.refresh_session()
            self.loaded = True
        finally:
            self.loading = False

    async def refresh_session(self) -> Optional[AttendanceSession]:
        self._apply_session(await self.client.get_current_session())
        return self.session

    def _apply_session(self, session: Optional[AttendanceSession]) -> None:
        self.session = session
        if session is None:
            # A closed session stays terminal until the next clock-in
            if self.state != SessionState.CLOCKED_OUT:
                self.state = SessionState.NO_SESSION
        elif not session.is_open:
            self.state = SessionState.CLOCKED_OUT
        elif session.on_break:
            self.state = SessionState.ON_BREAK
        else:
            self.state = SessionState.CLOCKED_IN

        # Keep the location watch in step with what the service reports
        if self.state in ACTIVE_STATES:
            self.start_monitoring()
        else:
            self.stop_monitoring()

    async def _refresh_after(self, expected: SessionState) -> None:
        try:
            await self.refresh_session()
        except ServiceUnavailableError as e:
            # The action itself succeeded; keep the expected state until the next refresh
            logger.warning(f"[TIMECLOCK] Could not re-fetch session: {e.message}")
            self.state = expected

    async def history(
        self, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> List[AttendanceSession]:
        today = self._clock().date()
        return await self.client.get_attendance_history(start_date or today, end_date or today)

    # --- Location status ---

    def observe(self, sample: LocationSample) -> Optional[VerificationResult]:
        """Record a new fix and update the optimistic local status."""
        self.current_location = sample
        self.remote_result = None
        self.location_error = None
        if self.geofence is None:
            self.local_result = None
            self.last_message = "GPS live"
            return None
        self.local_result = self.evaluator.evaluate(sample, self.geofence)
        self.last_message = self.local_result.message
        return self.local_result

    async def assess(self, sample: LocationSample) -> Assessment:
        """Local check plus an authoritative remote check for live status."""
        self.observe(sample)
        self.verifying = True
        try:
            assessment = await self.evaluator.assess(sample, self.geofence)
        finally:
            self.verifying = False

        self.remote_result = assessment.remote
        self.last_message = assessment.message
        if assessment.remote_error is not None:
            self.location_error = assessment.remote_error.message
        elif not assessment.remote.within_range:
            self.location_error = assessment.message
        return assessment

    async def refresh_location(self) -> Assessment:
        sample = await self._locate()
        return await self.assess(sample)

    async def verify_location(self, sample: Optional[LocationSample] = None) -> VerificationResult:
        """On-demand authoritative check; failures are raised."""
        sample = sample or self.current_location
        if sample is None:
            raise PositionUnavailableError("Location not available. Cannot verify.")
        return await self._verify(sample)

    async def _locate(self) -> LocationSample:
        if self.positions is None:
            raise PositionUnavailableError("Geolocation is not supported on this device.")
        try:
            sample = await locate(self.positions)
        except PositionError as e:
            self.location_error = e.message
            self.last_message = e.message
            raise
        self.observe(sample)
        return sample

    async def _verify(self, sample: LocationSample) -> VerificationResult:
        self.verifying = True
        try:
            result = await self.evaluator.verify(sample)
        finally:
            self.verifying = False
        self.remote_result = result
        if result.message:
            self.last_message = result.message
        return result

    @property
    def in_range(self) -> bool:
        local = self.local_result is not None and self.local_result.within_range
        remote = self.remote_result is not None and self.remote_result.within_range
        return local or remote

    @property
    def schedule_active(self) -> bool:
        # No schedule data means clock-in is not gated by time
        return self.shift_window is None or self.shift_window.is_active(self._clock())

    @property
    def can_clock_in(self) -> bool:
        """Advisory gate; the authoritative check re-runs on clock-in."""
        return self.in_range and self.schedule_active and not self.loading and not self.verifying

    # --- Actions ---

    async def _single_flight(self, action: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Join an identical in-flight action instead of issuing a second request."""
        future = self._in_flight.get(action)
        if future is None or future.done():
            future = asyncio.ensure_future(factory())
            self._in_flight[action] = future

            def _forget(done: asyncio.Future, action: str = action) -> None:
                if self._in_flight.get(action) is done:
                    del self._in_flight[action]

            future.add_done_callback(_forget)
        return await asyncio.shield(future)

    async def clock_in(self, sample: Optional[LocationSample] = None) -> ClockEventResponse:
        return await self._single_flight("clock_in", lambda: self._clock_in(sample))

    async def _clock_in(self, sample: Optional[LocationSample]) -> ClockEventResponse:
        if sample is not None:
            self.observe(sample)
        else:
            sample = self.current_location or await self._locate()

        if not self.schedule_active:
            raise OutsideShiftWindowError()

        result = await self._verify(sample)
        if not result.within_range:
            raise GeofenceViolationError(result.message or None)

        response = await self.client.clock_in(sample.latitude, sample.longitude, sample.accuracy)
        logger.info(f"[TIMECLOCK] Clocked in at {sample.latitude},{sample.longitude}")

        self.state = SessionState.CLOCKED_IN
        await self._refresh_after(SessionState.CLOCKED_IN)
        self.start_monitoring()
        return response

    async def clock_out(
        self,
        sample: Optional[LocationSample] = None,
        method: ClockOutMethod = ClockOutMethod.MANUAL,
    ) -> ClockEventResponse:
        return await self._single_flight("clock_out", lambda: self._clock_out(sample, method))

    async def _clock_out(
        self, sample: Optional[LocationSample], method: ClockOutMethod
    ) -> ClockEventResponse:
        sample = sample or self.current_location

        # Imprecise fixes are dropped so the service does not reject the clock-out
        if (
            sample is not None
            and sample.accuracy is not None
            and sample.accuracy <= self.precise_accuracy_m
        ):
            response = await self.client.clock_out(sample.latitude, sample.longitude, sample.accuracy)
        else:
            response = await self.client.clock_out()
        logger.info(f"[TIMECLOCK] Clocked out ({method.value})")

        self.stop_monitoring()
        self.state = SessionState.CLOCKED_OUT
        await self._refresh_after(SessionState.CLOCKED_OUT)
        return response

    async def start_break(self) -> ClockEventResponse:
        return await self._single_flight("start_break", self._start_break)

    async def _start_break(self) -> ClockEventResponse:
        response = await self.client.start_break()
        await self._refresh_after(SessionState.ON_BREAK)
        return response

    async def end_break(self) -> ClockEventResponse:
        return await self._single_flight("end_break", self._end_break)

    async def _end_break(self) -> ClockEventResponse:
        response = await self.client.end_break()
        await self._refresh_after(SessionState.CLOCKED_IN)
        return response

    # --- Continuous monitoring ---

    @property
    def monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    @property
    def monitor_task(self) -> Optional[asyncio.Task]:
        return self._monitor_task

    def start_monitoring(self) -> None:
        if self.positions is None or self.monitoring or self.state not in ACTIVE_STATES:
            return
        self.guard.reset()
        self._monitor_task = asyncio.create_task(self._monitor())
        self._monitor_task.add_done_callback(self._monitor_done)

    def stop_monitoring(self) -> None:
        if not self.monitoring:
            return
        # An automatic clock-out ends the loop on its own
        if self._in_breach:
            return
        self._monitor_task.cancel()

    async def _monitor(self) -> None:
        stream = self.positions.watch_position(WATCH)
        try:
            await run_zone_guard(
                stream,
                self._verify_live,
                self.guard,
                self._auto_clock_out,
                on_sample=self.observe,
            )
        finally:
            # Release the location watch
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def _monitor_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[TIMECLOCK] Location monitoring stopped unexpectedly: {error!r}", exc_info=error)
            self.last_message = "Location monitoring stopped. Refresh to resume."

    async def _verify_live(self, sample: LocationSample) -> VerificationResult:
        result = await self.evaluator.verify(sample)
        self.remote_result = result
        return result

    async def _auto_clock_out(self, sample: LocationSample) -> bool:
        self._in_breach = True
        try:
            await self.clock_out(sample, ClockOutMethod.AUTOMATIC)
        except TimeClockError as e:
            logger.error(f"[TIMECLOCK] Automatic clock-out failed: {e.message}")
            self.last_message = e.message
            return False
        finally:
            self._in_breach = False
        self.last_message = "Automatically clocked out after leaving the work zone."
        return True

    async def close(self) -> None:
        """Release the location watch; safe to call more than once."""
        task = self._monitor_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # --- Status ---

    def snapshot(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            "state": self.state,
            "session": self.session,
            "geofence": self.geofence,
            "shift_window": self.shift_window,
            "current_location": self.current_location,
            "local_in_range": None if self.local_result is None else self.local_result.within_range,
            "remote_in_range": None if self.remote_result is None else self.remote_result.within_range,
            "in_range": self.in_range,
            "schedule_active": self.schedule_active,
            "can_clock_in": self.can_clock_in,
            "verifying": self.verifying,
            "monitoring": self.monitoring,
            "break_minutes": self.session.break_minutes(now) if self.session else 0.0,
            "last_message": self.last_message,
            "location_error": self.location_error,
        }

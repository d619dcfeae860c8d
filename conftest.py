import os

# Keep the offline queue off disk during tests
os.environ.setdefault("DATABASE_URL", "sqlite://")

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Union

import pytest

from core.errors import PositionError, SessionConflictError, TimeClockError
from models.attendance import AttendanceSession, ClockEventResponse, ShiftWindow
from models.geo import GeoPoint, Geofence, LocationSample, VerificationResult
from services.positioning import PositionOptions
from utils.geofence import haversine_dist

RESTAURANT = GeoPoint(latitude=40.7128, longitude=-74.0060)
T0 = datetime(2025, 6, 7, 13, 0, 0, tzinfo=timezone.utc)


def sample_at(
    distance_north_m: float = 0.0,
    accuracy: Optional[float] = 5.0,
    captured_at: Optional[datetime] = None,
) -> LocationSample:
    """A fix the given distance due north of the restaurant."""
    # One degree of latitude is ~111195 m on a 6371 km sphere
    return LocationSample(
        latitude=RESTAURANT.latitude + distance_north_m / 111195.0,
        longitude=RESTAURANT.longitude,
        accuracy=accuracy,
        captured_at=captured_at or T0,
    )


class FakeTimeClockService:
    """In-memory time-tracking service that enforces one open session."""

    def __init__(self, geofence: Optional[Geofence] = None, shift_window: Optional[ShiftWindow] = None):
        self.geofence = geofence or Geofence(center=RESTAURANT, radius=100)
        self.shift_window = shift_window
        self.sessions: List[AttendanceSession] = []
        self.calls: List[tuple] = []
        # Queued verdicts/exceptions for verify_location, consumed in order
        self.verify_script: List[Union[VerificationResult, Exception]] = []
        # One-shot failures keyed by method name
        self.failures: Dict[str, Exception] = {}
        self.now: Callable[[], datetime] = lambda: T0
        self.verify_gate: Optional[asyncio.Event] = None

    def _record(self, name: str, *args):
        self.calls.append((name,) + args)
        failure = self.failures.pop(name, None)
        if failure is not None:
            raise failure

    def count(self, name: str) -> int:
        return len([c for c in self.calls if c[0] == name])

    def _open(self) -> Optional[AttendanceSession]:
        for session in self.sessions:
            if session.is_open:
                return session
        return None

    def _replace(self, old: AttendanceSession, **changes) -> AttendanceSession:
        new = old.model_copy(update=changes)
        self.sessions[self.sessions.index(old)] = new
        return new

    async def get_restaurant_geofence(self):
        self._record("get_restaurant_geofence")
        return self.geofence

    async def get_shift_window(self):
        self._record("get_shift_window")
        return self.shift_window

    async def verify_location(self, latitude, longitude):
        self._record("verify_location", latitude, longitude)
        if self.verify_gate is not None:
            await self.verify_gate.wait()
        if self.verify_script:
            item = self.verify_script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        distance = haversine_dist(GeoPoint(latitude=latitude, longitude=longitude), self.geofence.center)
        within = distance <= self.geofence.radius
        return VerificationResult(
            within_range=within,
            message="Location verified" if within else f"You are {distance:.0f}m away from the restaurant",
        )

    async def clock_in(self, latitude, longitude, accuracy=None):
        self._record("clock_in", latitude, longitude, accuracy)
        if self._open() is not None:
            raise SessionConflictError("You are already clocked in", status_code=409)
        session = AttendanceSession(
            id=str(len(self.sessions) + 1),
            clock_in_time=self.now(),
            verified_location=True,
            clock_in_latitude=latitude,
            clock_in_longitude=longitude,
        )
        self.sessions.append(session)
        return ClockEventResponse(message="Clocked in", event=session, clock_in_time=session.clock_in_time)

    async def clock_out(self, latitude=None, longitude=None, accuracy=None):
        self._record("clock_out", latitude, longitude, accuracy)
        session = self._open()
        if session is None:
            raise SessionConflictError("No active session", status_code=409)
        changes = {"clock_out_time": self.now(), "clock_out_latitude": latitude, "clock_out_longitude": longitude}
        if session.on_break:
            changes["break_end"] = self.now()
        session = self._replace(session, **changes)
        return ClockEventResponse(message="Clocked out", event=session, clock_out_time=session.clock_out_time)

    async def start_break(self):
        self._record("start_break")
        session = self._open()
        if session is None or session.on_break:
            raise SessionConflictError("Cannot start a break now", status_code=409)
        session = self._replace(session, is_break=True, break_start=self.now(), break_end=None)
        return ClockEventResponse(message="Break started", event=session)

    async def end_break(self):
        self._record("end_break")
        session = self._open()
        if session is None or not session.on_break:
            raise SessionConflictError("No active break", status_code=409)
        session = self._replace(session, break_end=self.now())
        return ClockEventResponse(message="Break ended", event=session)

    async def get_current_session(self):
        self._record("get_current_session")
        return self._open()

    async def get_attendance_history(self, start_date: date, end_date: date):
        self._record("get_attendance_history", start_date, end_date)
        return [s for s in self.sessions if start_date <= s.clock_in_time.date() <= end_date]


_END = object()


class ScriptedPositions:
    """PositionProvider fed by the test: scripted one-shot fixes and a live queue."""

    def __init__(self, fixes: Optional[List[Union[LocationSample, PositionError]]] = None):
        self.fixes = list(fixes or [])
        self.requests: List[PositionOptions] = []
        self.watch_options: List[PositionOptions] = []
        self.open_watches = 0
        self._queue: Optional[asyncio.Queue] = None

    async def get_current_position(self, options: PositionOptions) -> LocationSample:
        self.requests.append(options)
        item = self.fixes.pop(0)
        if isinstance(item, TimeClockError):
            raise item
        return item

    def _live(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def feed(self, *samples: LocationSample) -> None:
        for sample in samples:
            self._live().put_nowait(sample)

    def end(self) -> None:
        self._live().put_nowait(_END)

    async def watch_position(self, options: PositionOptions):
        self.watch_options.append(options)
        self.open_watches += 1
        try:
            while True:
                item = await self._live().get()
                if item is _END:
                    return
                yield item
        finally:
            self.open_watches -= 1


class StepClock:
    """Deterministic clock the test advances by hand."""

    def __init__(self, start: datetime = T0):
        self.at = start

    def advance(self, seconds: float) -> datetime:
        self.at = self.at + timedelta(seconds=seconds)
        return self.at

    def __call__(self) -> datetime:
        return self.at


@pytest.fixture
def service():
    return FakeTimeClockService()


@pytest.fixture
def positions():
    return ScriptedPositions()


@pytest.fixture
def clock():
    return StepClock()

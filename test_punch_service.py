"""
Tests for the attendance session controller: state transitions, clock-in
gating, exit coordinates, break handling and joined duplicate actions.
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import T0, FakeTimeClockService, sample_at
from core.errors import (
    GeofenceViolationError,
    OutsideShiftWindowError,
    ServiceUnavailableError,
    SessionConflictError,
)
from models.attendance import AttendanceSession, SessionState, ShiftWindow
from models.geo import VerificationResult
from services.punch_service import PunchService


def test_load_reports_no_session_and_caches_geofence(service):
    controller = PunchService(service)

    async def run():
        await controller.load()
        await controller.load()

    asyncio.run(run())

    assert controller.state == SessionState.NO_SESSION
    assert controller.geofence == service.geofence
    assert service.count("get_restaurant_geofence") == 1
    assert service.count("get_current_session") == 2


def test_load_resumes_open_session_and_starts_monitoring(service, positions):
    service.sessions.append(AttendanceSession(id=7, clock_in_time=T0))
    controller = PunchService(service, positions)

    async def run():
        await controller.load()
        monitoring = controller.monitoring
        await controller.close()
        return monitoring

    assert asyncio.run(run()) is True
    assert controller.state == SessionState.CLOCKED_IN
    assert controller.session.id == "7"


def test_load_resumes_break(service):
    service.sessions.append(
        AttendanceSession(id=1, clock_in_time=T0, is_break=True, break_start=T0 + timedelta(hours=2))
    )
    controller = PunchService(service)
    asyncio.run(controller.load())
    assert controller.state == SessionState.ON_BREAK


def test_clock_in_inside_zone(service):
    controller = PunchService(service)
    sample = sample_at(20, accuracy=8)

    async def run():
        await controller.load()
        return await controller.clock_in(sample)

    response = asyncio.run(run())

    assert response.message == "Clocked in"
    assert controller.state == SessionState.CLOCKED_IN
    assert controller.session.is_open
    assert ("clock_in", sample.latitude, sample.longitude, 8) in service.calls


def test_clock_in_outside_zone_is_rejected(service):
    controller = PunchService(service)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(250))

    with pytest.raises(GeofenceViolationError) as exc:
        asyncio.run(run())

    assert "away from the restaurant" in exc.value.message
    assert service.count("clock_in") == 0
    assert controller.state == SessionState.NO_SESSION


def test_remote_verdict_overrides_local_check_on_clock_in(service):
    service.verify_script.append(VerificationResult(within_range=False, message="Outside work zone"))
    controller = PunchService(service)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(10))

    with pytest.raises(GeofenceViolationError):
        asyncio.run(run())
    assert controller.local_result.within_range is True
    assert service.count("clock_in") == 0


def test_clock_in_outside_shift_window(service, clock):
    service.shift_window = ShiftWindow(
        start_time=T0 + timedelta(hours=1), end_time=T0 + timedelta(hours=9)
    )
    controller = PunchService(service, clock=clock)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))

    with pytest.raises(OutsideShiftWindowError):
        asyncio.run(run())
    assert service.count("clock_in") == 0


def test_clock_in_at_shift_start_is_allowed(service, clock):
    service.shift_window = ShiftWindow(start_time=T0, end_time=T0 + timedelta(hours=8))
    controller = PunchService(service, clock=clock)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))

    asyncio.run(run())
    assert controller.state == SessionState.CLOCKED_IN


def test_clock_in_fails_when_verification_unavailable(service):
    service.verify_script.append(ServiceUnavailableError("Failed to verify location"))
    controller = PunchService(service)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))

    with pytest.raises(ServiceUnavailableError):
        asyncio.run(run())
    assert service.count("clock_in") == 0
    assert controller.state == SessionState.NO_SESSION


def test_second_clock_in_conflicts_and_keeps_state(service):
    controller = PunchService(service)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))
        await controller.clock_in(sample_at(0))

    with pytest.raises(SessionConflictError):
        asyncio.run(run())
    assert controller.state == SessionState.CLOCKED_IN
    assert len([s for s in service.sessions if s.is_open]) == 1


def test_break_cycle(service):
    controller = PunchService(service)
    states = []

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))
        states.append(controller.state)
        await controller.start_break()
        states.append(controller.state)
        await controller.end_break()
        states.append(controller.state)

    asyncio.run(run())
    assert states == [SessionState.CLOCKED_IN, SessionState.ON_BREAK, SessionState.CLOCKED_IN]


def test_break_minutes_in_snapshot(service, clock):
    service.sessions.append(AttendanceSession(id=1, clock_in_time=T0, is_break=True, break_start=T0))
    controller = PunchService(service, clock=clock)
    asyncio.run(controller.load())

    clock.advance(15 * 60)
    assert controller.snapshot()["break_minutes"] == pytest.approx(15.0)


def test_clock_out_sends_precise_exit_location(service):
    controller = PunchService(service)
    exit_fix = sample_at(30, accuracy=6)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))
        await controller.clock_out(exit_fix)

    asyncio.run(run())

    assert ("clock_out", exit_fix.latitude, exit_fix.longitude, 6) in service.calls
    assert controller.state == SessionState.CLOCKED_OUT
    assert service.sessions[0].clock_out_time is not None


def test_clock_out_drops_imprecise_exit_location(service):
    controller = PunchService(service)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))
        await controller.clock_out(sample_at(30, accuracy=45))

    asyncio.run(run())
    assert ("clock_out", None, None, None) in service.calls
    assert controller.state == SessionState.CLOCKED_OUT


def test_clock_out_while_on_break(service):
    controller = PunchService(service)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))
        await controller.start_break()
        await controller.clock_out()

    asyncio.run(run())
    assert controller.state == SessionState.CLOCKED_OUT
    assert service.sessions[0].break_end is not None


def test_clocking_in_again_after_clock_out(service):
    controller = PunchService(service)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))
        await controller.clock_out()
        await controller.clock_in(sample_at(5))

    asyncio.run(run())
    assert controller.state == SessionState.CLOCKED_IN
    assert len(service.sessions) == 2


def test_failed_refresh_after_clock_in_keeps_expected_state(service):
    controller = PunchService(service)

    async def run():
        await controller.load()
        service.failures["get_current_session"] = ServiceUnavailableError("Failed to fetch current session")
        await controller.clock_in(sample_at(0))

    asyncio.run(run())
    assert controller.state == SessionState.CLOCKED_IN


def test_duplicate_clock_in_joins_in_flight_request(service):
    controller = PunchService(service)
    sample = sample_at(0)

    async def run():
        await controller.load()
        return await asyncio.gather(controller.clock_in(sample), controller.clock_in(sample))

    first, second = asyncio.run(run())
    assert first is second
    assert service.count("clock_in") == 1
    assert service.count("verify_location") == 1


def test_eligibility_follows_local_and_remote_checks(service, clock):
    controller = PunchService(service, clock=clock)
    asyncio.run(controller.load())

    controller.observe(sample_at(300))
    assert controller.can_clock_in is False

    # Remote in-range enables clock-in even when the local check disagrees
    controller.remote_result = VerificationResult(within_range=True)
    assert controller.can_clock_in is True

    controller.observe(sample_at(50))
    assert controller.can_clock_in is True

    service.shift_window = ShiftWindow(
        start_time=T0 - timedelta(hours=9), end_time=T0 - timedelta(hours=1)
    )
    asyncio.run(controller.load())
    assert controller.can_clock_in is False


def test_eligibility_is_false_while_verifying(service):
    controller = PunchService(service)
    observed = []

    async def run():
        await controller.load()
        service.verify_gate = asyncio.Event()
        task = asyncio.create_task(controller.assess(sample_at(10)))
        await asyncio.sleep(0)
        observed.append((controller.verifying, controller.can_clock_in))
        service.verify_gate.set()
        await task
        observed.append((controller.verifying, controller.can_clock_in))

    asyncio.run(run())
    assert observed == [(True, False), (False, True)]


def test_assess_surfaces_remote_failure_and_keeps_local_status(service):
    service.verify_script.append(ServiceUnavailableError("Failed to verify location"))
    controller = PunchService(service)

    async def run():
        await controller.load()
        return await controller.assess(sample_at(10))

    assessment = asyncio.run(run())
    assert assessment.local.within_range is True
    assert assessment.remote is None
    assert controller.location_error == "Failed to verify location"
    assert controller.in_range is True


def test_observe_without_geofence_reports_gps_live(service):
    service.geofence = None
    controller = PunchService(service)
    asyncio.run(controller.load())

    assert controller.observe(sample_at(0)) is None
    assert controller.last_message == "GPS live"
    assert controller.in_range is False


def test_history_defaults_to_today(service, clock):
    controller = PunchService(service, clock=clock)

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))
        return await controller.history()

    sessions = asyncio.run(run())
    assert len(sessions) == 1
    assert ("get_attendance_history", T0.date(), T0.date()) in service.calls


def test_controller_accepts_fake_without_positions():
    controller = PunchService(FakeTimeClockService())
    assert controller.monitoring is False

    async def run():
        await controller.load()
        await controller.clock_in(sample_at(0))

    asyncio.run(run())
    # No position source, so nothing to monitor
    assert controller.monitoring is False

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from core.errors import ServiceUnavailableError
from models.geo import Geofence, LocationSample, VerificationResult
from utils.geofence import is_within_radius

logger = logging.getLogger(__name__)

WITHIN_RANGE_MESSAGE = "Within range"
OUTSIDE_RANGE_MESSAGE = "Outside work zone"


class LocationVerifier(Protocol):
    async def verify_location(self, latitude: float, longitude: float) -> VerificationResult:
        ...


@dataclass
class Assessment:
    """Local and remote verdicts for one sample."""

    local: Optional[VerificationResult]
    remote: Optional[VerificationResult] = None
    remote_error: Optional[ServiceUnavailableError] = None

    @property
    def message(self) -> Optional[str]:
        # The backend's message is authoritative when it has one
        if self.remote is not None and self.remote.message:
            return self.remote.message
        if self.remote_error is not None:
            return self.remote_error.message
        if self.remote is not None:
            return WITHIN_RANGE_MESSAGE if self.remote.within_range else OUTSIDE_RANGE_MESSAGE
        if self.local is not None:
            return self.local.message
        return None


class GeofenceEvaluator:
    """
    Two-tier geofence check.

    The local check is optimistic and drives live status only. The remote
    check goes to the time-tracking service and is the one that gates
    clock-in/out; its failures are raised, never replaced by the local verdict.
    """

    def __init__(self, verifier: LocationVerifier):
        self.verifier = verifier

    @staticmethod
    def evaluate(sample: LocationSample, fence: Geofence) -> VerificationResult:
        within = is_within_radius(sample.point, fence.center, fence.radius)
        return VerificationResult(
            within_range=within,
            message=WITHIN_RANGE_MESSAGE if within else OUTSIDE_RANGE_MESSAGE,
        )

    async def verify(self, sample: LocationSample) -> VerificationResult:
        return await self.verifier.verify_location(sample.latitude, sample.longitude)

    async def assess(self, sample: LocationSample, fence: Optional[Geofence]) -> Assessment:
        local = self.evaluate(sample, fence) if fence is not None else None
        try:
            remote = await self.verify(sample)
        except ServiceUnavailableError as e:
            logger.warning(f"[GEOFENCE] Remote verification failed: {e.message}")
            return Assessment(local=local, remote_error=e)
        return Assessment(local=local, remote=remote)

import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from core import settings
from core.errors import ServiceUnavailableError
from models.geo import LocationSample, VerificationResult

logger = logging.getLogger(__name__)


class ZoneGuard:
    """
    Hysteresis counter for out-of-zone readings.

    A breach is reported on the N-th consecutive out-of-range result
    (N=2 by default); any in-range result resets the count.
    """

    def __init__(self, threshold: int = settings.AUTO_CLOCK_OUT_AFTER):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self.outside_count = 0

    def record(self, within_range: bool) -> bool:
        if within_range:
            self.outside_count = 0
            return False

        self.outside_count += 1
        if self.outside_count >= self.threshold:
            self.outside_count = 0
            return True
        return False

    def reset(self) -> None:
        self.outside_count = 0


async def run_zone_guard(
    samples: AsyncIterator[LocationSample],
    verify: Callable[[LocationSample], Awaitable[VerificationResult]],
    guard: ZoneGuard,
    on_breach: Callable[[LocationSample], Awaitable[bool]],
    on_sample: Optional[Callable[[LocationSample], None]] = None,
) -> int:
    """
    Consume live samples in arrival order until the stream ends or
    on_breach asks to stop (returns True).

    Verification errors are logged and leave the counter untouched so a
    connectivity blip never counts against the employee.

    Returns:
        int: Number of breaches reported.
    """
    breaches = 0
    async for sample in samples:
        if on_sample is not None:
            on_sample(sample)

        try:
            result = await verify(sample)
        except ServiceUnavailableError as e:
            logger.warning(f"[SHIFT_GUARD] Ignoring failed verification: {e.message}")
            continue

        if not guard.record(result.within_range):
            continue

        breaches += 1
        logger.warning(
            f"[SHIFT_GUARD] {guard.threshold} consecutive out-of-zone readings "
            f"(last at {sample.latitude},{sample.longitude})"
        )
        if await on_breach(sample):
            break

    return breaches

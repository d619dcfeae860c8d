"""
Device positioning.

The engine never talks to GPS hardware itself. A PositionProvider gives it
one-shot fixes and a live stream of fixes; PushPositionSource is the provider
fed by the device over the local HTTP API.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncIterator, Callable, List, Optional, Protocol

from core import settings
from core.errors import (
    PermissionDeniedError,
    PositionError,
    PositionTimeoutError,
    PositionUnavailableError,
)
from models.geo import LocationSample
from utils.datetime_helpers import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionOptions:
    enable_high_accuracy: bool
    timeout_s: Optional[float] = None
    maximum_age_s: float = 0.0


HIGH_ACCURACY = PositionOptions(
    enable_high_accuracy=True, timeout_s=settings.HIGH_ACCURACY_TIMEOUT_S, maximum_age_s=0.0
)
LOW_ACCURACY = PositionOptions(
    enable_high_accuracy=False,
    timeout_s=settings.LOW_ACCURACY_TIMEOUT_S,
    maximum_age_s=settings.LOW_ACCURACY_MAX_AGE_S,
)
WATCH = PositionOptions(enable_high_accuracy=True, maximum_age_s=settings.WATCH_MAX_AGE_S)


ERROR_KINDS = {
    "permission_denied": PermissionDeniedError,
    "position_unavailable": PositionUnavailableError,
    "timeout": PositionTimeoutError,
}


class PositionProvider(Protocol):
    async def get_current_position(self, options: PositionOptions) -> LocationSample:
        ...

    def watch_position(self, options: PositionOptions) -> AsyncIterator[LocationSample]:
        ...


async def locate(provider: PositionProvider) -> LocationSample:
    """
    Get a fix, trying high accuracy first and low accuracy once.

    Permission denial is not retried; it is fatal until the user grants access.
    """
    try:
        return await provider.get_current_position(HIGH_ACCURACY)
    except PositionError as e:
        if not e.transient:
            raise
        logger.warning(f"[POSITIONING] High accuracy location failed: {e.message}")

    # Fallback: low accuracy, tolerating a cached fix
    return await provider.get_current_position(LOW_ACCURACY)


class PushPositionSource:
    """
    PositionProvider backed by samples pushed from the device.

    Every watcher gets its own queue so samples reach each subscriber in
    arrival order; a watcher's queue is released when its iterator closes.
    """

    def __init__(self, clock: Callable = utc_now):
        self._clock = clock
        self._latest: Optional[LocationSample] = None
        self._latest_error: Optional[PositionError] = None
        self._changed = asyncio.Condition()
        self._watchers: List[asyncio.Queue] = []

    @property
    def latest(self) -> Optional[LocationSample]:
        return self._latest

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    async def push(self, sample: LocationSample) -> None:
        self._latest = sample
        self._latest_error = None
        for queue in self._watchers:
            queue.put_nowait(sample)
        async with self._changed:
            self._changed.notify_all()

    async def report_error(self, kind: str, message: Optional[str] = None) -> PositionError:
        error_cls = ERROR_KINDS.get(kind, PositionUnavailableError)
        error = error_cls(message)
        self._latest_error = error
        async with self._changed:
            self._changed.notify_all()
        return error

    def _fresh(self, options: PositionOptions) -> Optional[LocationSample]:
        if self._latest is None:
            return None
        age = self._clock() - self._latest.captured_at
        if options.maximum_age_s > 0 and age <= timedelta(seconds=options.maximum_age_s):
            return self._latest
        return None

    async def get_current_position(self, options: PositionOptions) -> LocationSample:
        cached = self._fresh(options)
        if cached is not None:
            return cached

        previous = self._latest
        self._latest_error = None

        def arrived() -> bool:
            return self._latest is not previous or self._latest_error is not None

        async with self._changed:
            try:
                await asyncio.wait_for(self._changed.wait_for(arrived), options.timeout_s)
            except asyncio.TimeoutError:
                raise PositionTimeoutError()

        if self._latest_error is not None:
            raise self._latest_error
        return self._latest

    async def watch_position(self, options: PositionOptions) -> AsyncIterator[LocationSample]:
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._watchers.remove(queue)

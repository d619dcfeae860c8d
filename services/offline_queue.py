import logging
from typing import List, Optional

from sqlmodel import Session, select

from core.errors import TimeClockError
from models.geo import LocationSample
from models.offline_clock import FlushResult, OfflineClockKind, OfflineClockPayload
from services.punch_service import TimeClockService

logger = logging.getLogger(__name__)


class OfflineQueueService:
    """Clock events captured without connectivity, replayed in order later."""

    @staticmethod
    def enqueue(
        employee_id: str,
        kind: OfflineClockKind,
        sample: Optional[LocationSample],
        session: Session,
    ) -> OfflineClockPayload:
        payload = OfflineClockPayload(employee_id=employee_id, kind=kind)
        if sample is not None:
            payload.latitude = sample.latitude
            payload.longitude = sample.longitude
            payload.accuracy = sample.accuracy
            payload.captured_at = sample.captured_at

        session.add(payload)
        session.commit()
        session.refresh(payload)
        logger.info(f"[OFFLINE_QUEUE] Queued {kind.value} for {employee_id} (id={payload.id})")
        return payload

    @staticmethod
    def pending(employee_id: str, session: Session) -> List[OfflineClockPayload]:
        statement = (
            select(OfflineClockPayload)
            .where(OfflineClockPayload.employee_id == employee_id)
            .order_by(OfflineClockPayload.id)
        )
        return list(session.exec(statement).all())

    @staticmethod
    async def flush(
        employee_id: str, client: TimeClockService, session: Session
    ) -> FlushResult:
        """
        Replay queued clock events oldest first.

        Sent payloads are deleted; failed ones stay queued with their attempt
        count bumped. The service still enforces the geofence on replay.
        """
        result = FlushResult()

        for payload in OfflineQueueService.pending(employee_id, session):
            if payload.kind == OfflineClockKind.CLOCK_IN:
                if payload.latitude is None or payload.longitude is None:
                    # Clock-in cannot be verified without a position
                    result.skipped += 1
                    continue
                action = client.clock_in(payload.latitude, payload.longitude, payload.accuracy)
            else:
                action = client.clock_out(payload.latitude, payload.longitude, payload.accuracy)

            try:
                await action
            except TimeClockError as e:
                payload.attempts += 1
                payload.last_error = e.message
                session.add(payload)
                session.commit()
                result.failed += 1
                logger.warning(
                    f"[OFFLINE_QUEUE] Replay of {payload.kind.value} (id={payload.id}) "
                    f"failed, attempt {payload.attempts}: {e.message}"
                )
                continue

            session.delete(payload)
            session.commit()
            result.sent += 1

        result.remaining = len(OfflineQueueService.pending(employee_id, session))
        logger.info(
            f"[OFFLINE_QUEUE] Flush for {employee_id}: sent={result.sent} "
            f"failed={result.failed} skipped={result.skipped}"
        )
        return result

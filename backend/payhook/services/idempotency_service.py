"""Deduplication of provider events

Every event ID gets one row in ``processed_webhook_events``. The first
delivery claims the row with a lease; a concurrent duplicate sees the claim
and waits for the holder to finish. A holder that crashes leaves a lease that
expires, after which the next delivery takes the claim over.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payhook.core.config import settings
from payhook.db import redis as redis_module
from payhook.db.helpers import run_in_session, utcnow
from payhook.models.processed_event import (
    OUTCOME_FAILED,
    OUTCOME_IN_PROGRESS,
    OUTCOME_PROCESSED,
    ProcessedWebhookEvent,
)
from payhook.schemas.events import WebhookEvent

logger = logging.getLogger(__name__)


class ClaimStatus(str, Enum):
    CLAIMED = "claimed"        # caller owns processing
    PROCESSED = "processed"    # already done, answer as duplicate
    IN_FLIGHT = "in_flight"    # another delivery holds a live lease


@dataclass(frozen=True)
class Claim:
    status: ClaimStatus
    attempt: int = 0


class DeduplicationStore:
    """Durable dedup record with a Redis fast path for processed IDs"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        timeout_ms: Optional[int] = None,
        lease_seconds: Optional[int] = None,
        use_cache: bool = True,
    ):
        self.session_factory = session_factory
        self.timeout_ms = timeout_ms or settings.DB_OPERATION_TIMEOUT_MS
        self.lease_seconds = lease_seconds or settings.IDEMPOTENCY_LEASE_SECONDS
        self.use_cache = use_cache

    async def _run(self, work, operation: str):
        return await run_in_session(self.session_factory, work, self.timeout_ms, operation)

    async def has_been_processed(self, event_id: str) -> bool:
        def _check(db: Session) -> bool:
            if self.use_cache and redis_module.is_event_cached(event_id):
                return True
            record = db.get(ProcessedWebhookEvent, event_id)
            processed = record is not None and record.outcome == OUTCOME_PROCESSED
            if processed and self.use_cache:
                redis_module.mark_event_cached(event_id)
            return processed

        return await self._run(_check, "dedup_lookup")

    async def claim(self, event: WebhookEvent) -> Claim:
        """Atomically take ownership of `event`, or report who holds it"""
        lease = timedelta(seconds=self.lease_seconds)

        def _claim(db: Session) -> Claim:
            now = utcnow()
            record = db.get(ProcessedWebhookEvent, event.id)
            if record is None:
                db.add(ProcessedWebhookEvent(
                    provider_event_id=event.id,
                    event_type=event.type,
                    outcome=OUTCOME_IN_PROGRESS,
                    attempts=1,
                    lease_expires_at=now + lease,
                    seen_at=now,
                ))
                try:
                    db.commit()
                    return Claim(ClaimStatus.CLAIMED, attempt=1)
                except IntegrityError:
                    # Lost the insert race
                    db.rollback()
                    record = db.get(ProcessedWebhookEvent, event.id)
                    if record is None:
                        return Claim(ClaimStatus.IN_FLIGHT)

            if record.outcome == OUTCOME_PROCESSED:
                return Claim(ClaimStatus.PROCESSED, attempt=record.attempts)

            # Take over a released claim or an expired lease
            result = db.execute(
                update(ProcessedWebhookEvent)
                .where(
                    ProcessedWebhookEvent.provider_event_id == event.id,
                    or_(
                        ProcessedWebhookEvent.outcome == OUTCOME_FAILED,
                        and_(
                            ProcessedWebhookEvent.outcome == OUTCOME_IN_PROGRESS,
                            ProcessedWebhookEvent.lease_expires_at < now,
                        ),
                    ),
                )
                .values(
                    outcome=OUTCOME_IN_PROGRESS,
                    lease_expires_at=now + lease,
                    attempts=ProcessedWebhookEvent.attempts + 1,
                    last_error=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                db.commit()
                return Claim(ClaimStatus.CLAIMED, attempt=record.attempts + 1)

            db.refresh(record)
            if record.outcome == OUTCOME_PROCESSED:
                return Claim(ClaimStatus.PROCESSED, attempt=record.attempts)
            return Claim(ClaimStatus.IN_FLIGHT, attempt=record.attempts)

        claim = await self._run(_claim, "dedup_claim")
        if claim.status == ClaimStatus.CLAIMED and claim.attempt > 1:
            logger.info(f"Took over claim for {event.id} (attempt {claim.attempt})")
        return claim

    async def wait_for_claim(self, event: WebhookEvent, wait_ms: int = None, poll_ms: int = None) -> Claim:
        """Block a concurrent duplicate until the holder finishes or `wait_ms` passes"""
        wait_ms = settings.DEDUP_WAIT_MS if wait_ms is None else wait_ms
        poll_ms = settings.DEDUP_POLL_INTERVAL_MS if poll_ms is None else poll_ms
        deadline = time.monotonic() + wait_ms / 1000

        claim = await self.claim(event)
        while claim.status == ClaimStatus.IN_FLIGHT and time.monotonic() < deadline:
            await asyncio.sleep(poll_ms / 1000)
            claim = await self.claim(event)
        return claim

    async def mark_processed(self, event_id: str, outcome_summary: Optional[dict] = None) -> None:
        def _mark(db: Session) -> None:
            db.execute(
                update(ProcessedWebhookEvent)
                .where(ProcessedWebhookEvent.provider_event_id == event_id)
                .values(
                    outcome=OUTCOME_PROCESSED,
                    processed_at=utcnow(),
                    lease_expires_at=None,
                    summary=outcome_summary or {},
                    last_error=None,
                )
                .execution_options(synchronize_session=False)
            )

        await self._run(_mark, "dedup_mark_processed")
        if self.use_cache:
            await asyncio.to_thread(redis_module.mark_event_cached, event_id)

    async def release(self, event_id: str, error: Optional[str] = None) -> None:
        """Give up a claim after a failed attempt so a redelivery can retry"""
        def _release(db: Session) -> None:
            db.execute(
                update(ProcessedWebhookEvent)
                .where(
                    ProcessedWebhookEvent.provider_event_id == event_id,
                    ProcessedWebhookEvent.outcome == OUTCOME_IN_PROGRESS,
                )
                .values(outcome=OUTCOME_FAILED, lease_expires_at=None, last_error=(error or "")[:2000])
                .execution_options(synchronize_session=False)
            )

        await self._run(_release, "dedup_release")

    async def get_record(self, event_id: str) -> Optional[ProcessedWebhookEvent]:
        def _get(db: Session):
            return db.get(ProcessedWebhookEvent, event_id)

        return await self._run(_get, "dedup_get")

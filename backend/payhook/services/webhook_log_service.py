"""Processing log: one ``webhook_logs`` row per processing attempt"""
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from payhook.core.config import settings
from payhook.db.helpers import run_in_session, utcnow
from payhook.models.webhook_log import WebhookLog
from payhook.services.monitor_service import WebhookMonitor

logger = logging.getLogger(__name__)

# Context keys copied onto dedicated columns
_COLUMN_KEYS = ("preorder_id", "email")


def _merge(current: Optional[dict], extra: Optional[dict]) -> dict:
    merged = dict(current or {})
    merged.update(extra or {})
    return merged


def _has_other_success(db: Session, row: WebhookLog) -> bool:
    query = db.query(WebhookLog.id).filter(
        WebhookLog.provider_event_id == row.provider_event_id,
        WebhookLog.status == "success",
    )
    if row.id is not None:
        query = query.filter(WebhookLog.id != row.id)
    return query.first() is not None


class ProcessingLogger:
    """Writes processing log rows without ever failing the caller

    Every write runs under the database budget. Errors are logged and reported
    to the monitor, then swallowed: losing a log row must not fail a webhook.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        monitor: WebhookMonitor,
        timeout_ms: Optional[int] = None,
        provider: str = "stripe",
    ):
        self.session_factory = session_factory
        self.monitor = monitor
        self.timeout_ms = timeout_ms or settings.DB_OPERATION_TIMEOUT_MS
        self.provider = provider

    async def _safe(self, operation: str, work, default=None):
        try:
            return await run_in_session(self.session_factory, work, self.timeout_ms, f"log_{operation}")
        except Exception as e:
            logger.error(f"Failed to write processing log ({operation}): {type(e).__name__}: {e}")
            self.monitor.record_logging_failure(operation)
            return default

    async def log_start(
        self,
        event_type: str,
        event_id: str,
        context: Optional[Dict[str, Any]] = None,
        attempt: int = 1,
    ) -> Optional[int]:
        """Create the `started` row. Returns its ID, or None if the write failed."""
        context = dict(context or {})

        def _start(db: Session) -> int:
            row = WebhookLog(
                provider=self.provider,
                event_type=event_type,
                provider_event_id=event_id,
                status="started",
                attempt=attempt,
                detail=context,
                **{key: context.get(key) for key in _COLUMN_KEYS},
            )
            db.add(row)
            db.flush()
            return row.id

        log_id = await self._safe("start", _start)
        if log_id is not None:
            logger.info(f"📝 {event_type} {event_id}: processing started (log {log_id}, attempt {attempt})")
        return log_id

    async def _finish(
        self,
        log_id: Optional[int],
        status: str,
        detail: Optional[dict],
        error: Optional[str] = None,
        event_type: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> None:
        def _update(db: Session) -> None:
            row = db.get(WebhookLog, log_id) if log_id is not None else None
            if row is None:
                if event_id is None:
                    raise LookupError(f"webhook log {log_id} not found")
                # The started row was never written; record the outcome on its own
                row = WebhookLog(
                    provider=self.provider,
                    event_type=event_type or "unknown",
                    provider_event_id=event_id,
                )
                db.add(row)
            final_status, final_detail, final_error = status, detail, error
            if status == "success" and _has_other_success(db, row):
                # One success row per event; the earlier one stands
                final_status = "failure"
                final_detail = _merge(detail, {"duplicate_success": True})
                final_error = "Event already has a success log"
            row.status = final_status
            row.detail = _merge(row.detail, final_detail)
            for key in _COLUMN_KEYS:
                if (final_detail or {}).get(key) and not getattr(row, key):
                    setattr(row, key, final_detail[key])
            if final_error is not None:
                row.error = final_error[:4000]
            row.processed_at = utcnow()

        await self._safe(status, _update)

    async def update_detail(self, log_id: Optional[int], detail: Dict[str, Any]) -> None:
        """Record sub-step outcomes while the row is still `started`"""
        if log_id is None:
            return

        def _update(db: Session) -> None:
            row = db.get(WebhookLog, log_id)
            if row is None:
                raise LookupError(f"webhook log {log_id} not found")
            row.detail = _merge(row.detail, detail)

        await self._safe("update", _update)

    async def log_success(self, log_id, detail=None, event_type=None, event_id=None) -> None:
        await self._finish(log_id, "success", detail, event_type=event_type, event_id=event_id)

    async def log_failure(self, log_id, reason: str, detail=None, event_type=None, event_id=None) -> None:
        await self._finish(log_id, "failure", detail, error=reason, event_type=event_type, event_id=event_id)

    async def log_expired(self, log_id, detail=None, event_type=None, event_id=None) -> None:
        await self._finish(log_id, "expired", detail, event_type=event_type, event_id=event_id)

    async def find_success(self, event_id: str) -> Optional[int]:
        """ID of the success row for `event_id`, or None (also when the lookup fails)"""
        def _find(db: Session) -> Optional[int]:
            row = (
                db.query(WebhookLog.id)
                .filter(WebhookLog.provider_event_id == event_id, WebhookLog.status == "success")
                .first()
            )
            return row[0] if row else None

        return await self._safe("lookup", _find)

    async def find_by_event_id(self, event_id: str) -> List[dict]:
        """All attempts for one provider event, oldest first"""
        def _find(db: Session) -> List[dict]:
            rows = (
                db.query(WebhookLog)
                .filter(WebhookLog.provider_event_id == event_id)
                .order_by(WebhookLog.id.asc())
                .all()
            )
            return [row.to_dict() for row in rows]

        return await run_in_session(self.session_factory, _find, self.timeout_ms, "log_find")

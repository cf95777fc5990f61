"""Preorder persistence used by the checkout and payment handlers"""
import logging
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from payhook.core.config import settings
from payhook.db.helpers import run_in_session, utcnow
from payhook.models.preorder import Preorder, TERMINAL_PREORDER_STATUSES

logger = logging.getLogger(__name__)

# Statuses a failed payment may move to `failed`
PAYMENT_PENDING_STATUSES = ("initiated", "processing")


class PreorderRepository:
    """Async access to preorders. Every call is bounded by the database budget."""

    def __init__(self, session_factory: Callable[[], Session], timeout_ms: Optional[int] = None):
        self.session_factory = session_factory
        self.timeout_ms = timeout_ms or settings.DB_OPERATION_TIMEOUT_MS

    async def get(self, preorder_id: str) -> Optional[Preorder]:
        return await run_in_session(
            self.session_factory,
            lambda db: db.get(Preorder, preorder_id),
            self.timeout_ms,
            "preorder_fetch",
        )

    async def mark_completed(self, preorder_id: str, values: dict) -> Optional[Preorder]:
        """Move a non-terminal preorder to `completed`

        Returns the updated row, or None when another delivery completed it
        first (zero rows matched the conditional update).
        """
        def _complete(db: Session) -> Optional[Preorder]:
            result = db.execute(
                update(Preorder)
                .where(
                    Preorder.id == preorder_id,
                    Preorder.status.notin_(TERMINAL_PREORDER_STATUSES),
                )
                .values(status="completed", completed_at=utcnow(), updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            db.flush()
            return db.get(Preorder, preorder_id, populate_existing=True)

        return await run_in_session(self.session_factory, _complete, self.timeout_ms, "preorder_complete")

    async def mark_payment_failed(self, preorder_id: str, error: str) -> bool:
        def _fail(db: Session) -> bool:
            result = db.execute(
                update(Preorder)
                .where(
                    Preorder.id == preorder_id,
                    Preorder.status.in_(PAYMENT_PENDING_STATUSES),
                )
                .values(status="failed", payment_error=error[:2000], updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

        return await run_in_session(self.session_factory, _fail, self.timeout_ms, "preorder_payment_failed")

    async def record_side_effects(self, preorder_id: str, values: dict) -> None:
        """Bookkeeping columns written after secondary notifications ran"""
        if not values:
            return

        def _record(db: Session) -> None:
            db.execute(
                update(Preorder)
                .where(Preorder.id == preorder_id)
                .values(updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )

        await run_in_session(self.session_factory, _record, self.timeout_ms, "preorder_bookkeeping")

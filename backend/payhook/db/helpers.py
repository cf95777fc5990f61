"""Helpers for running blocking database work from async code"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from payhook.services.reliability import with_timeout

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; treat them as UTC"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def run_session_work(session_factory: Callable[[], Session], work: Callable[[Session], Any]) -> Any:
    """Run `work(db)` in a fresh session, committing on success

    Objects returned by `work` stay readable after the session closes.
    """
    db = session_factory()
    db.expire_on_commit = False
    try:
        result = work(db)
        db.commit()
        return result
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def run_in_session(
    session_factory: Callable[[], Session],
    work: Callable[[Session], Any],
    timeout_ms: int,
    operation: str,
) -> Any:
    """Run `work` in a worker thread under a time budget"""
    return await with_timeout(
        asyncio.to_thread(run_session_work, session_factory, work),
        timeout_ms,
        operation,
    )

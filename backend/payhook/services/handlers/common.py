"""Helpers shared by the side-effect handlers"""
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple

from payhook.core.errors import OperationTimeoutError
from payhook.services.collaborators.base import CollaboratorResult
from payhook.services.reliability import with_timeout

logger = logging.getLogger(__name__)

# Sub-step outcomes recorded in the processing log detail
SUCCESS = "success"
FAILED = "failed"
TIMEOUT = "timeout"
SKIPPED = "skipped"


@dataclass
class HandlerOutcome:
    """What a handler did. `status` becomes the terminal log status."""
    status: str = "success"
    detail: dict = field(default_factory=dict)


async def run_side_effect(
    ctx,
    step: str,
    call: Callable[[], Awaitable[CollaboratorResult]],
    budget_ms: int,
) -> Tuple[str, Optional[CollaboratorResult]]:
    """Run a non-critical collaborator call under its own budget

    Never raises. Returns the outcome label and the collaborator result
    (None on timeout).
    """
    result = None
    try:
        result = await with_timeout(call(), budget_ms, step)
    except OperationTimeoutError:
        outcome = TIMEOUT
    except Exception as e:
        logger.error(f"{step} raised {type(e).__name__}: {e}", exc_info=True)
        outcome = FAILED
        result = CollaboratorResult.failure(f"{type(e).__name__}: {e}")
    else:
        if result.skipped:
            outcome = SKIPPED
        elif result.ok:
            outcome = SUCCESS
        else:
            outcome = FAILED
            logger.warning(f"{step} failed: {result.error}")

    ctx.monitor.record_side_effect(step, outcome)
    return outcome, result

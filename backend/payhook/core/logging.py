"""Root logging setup and the named loggers of the webhook pipeline"""
import logging
from typing import Optional

from payhook.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Client libraries capped at WARNING
QUIET_LOGGERS = ("stripe", "httpx", "httpcore", "urllib3", "sqlalchemy.engine")

# One line per delivery exit path (rejected, duplicate, processed, failed)
webhook_logger = logging.getLogger("payhook.webhook")

# Outbound calls to user accounts, marketing and commerce
collaborator_logger = logging.getLogger("payhook.collaborators")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger from LOG_LEVEL, or `level` when given"""
    name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

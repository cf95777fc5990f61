"""Access control for the operator routes"""
import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from payhook.core.config import settings

security_logger = logging.getLogger("payhook.security")

_bearer = HTTPBearer(auto_error=False)


def require_operator(credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer)) -> None:
    """Dependency: Require the operator bearer token

    Log and stats routes expose buyer emails and preorder IDs. They stay
    closed (403) while OPERATOR_API_TOKEN is unset.
    """
    if credentials is None:
        raise HTTPException(401, "Operator token required", headers={"WWW-Authenticate": "Bearer"})

    expected = settings.OPERATOR_API_TOKEN
    if not expected:
        security_logger.warning("Operator route called but OPERATOR_API_TOKEN is not configured")
        raise HTTPException(403, "Operator access is not configured")

    if not hmac.compare_digest(credentials.credentials.encode("utf-8"), expected.encode("utf-8")):
        security_logger.warning("Rejected operator request with an invalid token")
        raise HTTPException(403, "Invalid operator token")

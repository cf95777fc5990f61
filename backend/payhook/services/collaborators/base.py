"""Shared pieces of the collaborator clients"""
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from payhook.core.logging import collaborator_logger

logger = collaborator_logger


@dataclass(frozen=True)
class CollaboratorResult:
    """Outcome of a collaborator call. Expected failures are values, not exceptions."""
    ok: bool
    value: Any = None
    error: Optional[str] = None
    skipped: bool = False
    meta: dict = field(default_factory=dict)

    @classmethod
    def success(cls, value: Any = None, **meta) -> "CollaboratorResult":
        return cls(ok=True, value=value, meta=meta)

    @classmethod
    def failure(cls, error: str, **meta) -> "CollaboratorResult":
        return cls(ok=False, error=error, meta=meta)

    @classmethod
    def skip(cls, reason: str) -> "CollaboratorResult":
        return cls(ok=True, skipped=True, error=reason)


class HttpCollaborator:
    """Base for collaborators reached over HTTP

    Pass `client` to share a connection pool (or a mock transport in tests);
    otherwise a short-lived AsyncClient is opened per call.
    """

    name = "collaborator"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.client = client
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return True

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        return await client.request(method, url, **kwargs)

    async def _request(self, method: str, url: str, **kwargs) -> CollaboratorResult:
        try:
            if self.client is not None:
                response = await self._send(self.client, method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._send(client, method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{self.name}: request to {url} failed: {type(e).__name__}: {e}")
            return CollaboratorResult.failure(f"{type(e).__name__}: {e}")

        if response.status_code >= 400:
            logger.warning(f"{self.name}: {method} {url} returned {response.status_code}: {response.text[:500]}")
            return CollaboratorResult.failure(
                f"HTTP {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        return CollaboratorResult.success(body, status_code=response.status_code)

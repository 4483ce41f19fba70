from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx
from loguru import logger

from squad_session.errors import TransportError

_DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class HttpRequest:
    method: str
    path: str
    json_body: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        return json.loads(self.body)


def default_headers() -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


def auth_headers(token: str) -> dict[str, str]:
    headers = default_headers()
    headers["Authorization"] = f"Bearer {token}"
    return headers


@runtime_checkable
class Transport(Protocol):
    async def execute(self, request: HttpRequest) -> HttpResponse:
        """Send one request. Raises TransportError when no response arrives."""
        ...


class HttpxTransport:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def execute(self, request: HttpRequest) -> HttpResponse:
        headers = {**default_headers(), **request.headers}
        try:
            response = await self._client.request(
                request.method,
                request.path,
                json=request.json_body,
                headers=headers,
            )
        except httpx.TimeoutException as ex:
            logger.warning(f"{request.method} {request.path} timed out: {type(ex).__name__}")
            raise TransportError(f"Request timed out: {type(ex).__name__}") from ex
        except httpx.RequestError as ex:
            # Connection failures, undecodable bodies, redirect loops.
            logger.warning(f"{request.method} {request.path} failed: {type(ex).__name__}: {ex}")
            raise TransportError(f"{type(ex).__name__}: {ex}" if str(ex) else type(ex).__name__) from ex

        logger.debug(f"{request.method} {request.path} -> HTTP {response.status_code} ({len(response.content)} bytes)")
        return HttpResponse(
            status_code=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    async def close(self) -> None:
        await self._client.aclose()

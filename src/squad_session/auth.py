from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from squad_session.endpoints import ApiPaths
from squad_session.errors import AuthError, DecodeError, RefreshError, TransportError
from squad_session.request_builder import parse_error_body
from squad_session.token_store import TokenStore
from squad_session.token_validator import TokenValidator
from squad_session.transport import HttpRequest, HttpResponse, Transport

_REJECTED_REFRESH_STATUSES = {400, 401, 403}


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _extract_tokens(response: HttpResponse) -> tuple[str, str | None]:
    try:
        data = response.json()
    except ValueError as ex:
        raise DecodeError(f"Token response is not valid JSON: {ex}") from ex
    if not isinstance(data, dict):
        raise DecodeError("Token response is not a JSON object")
    if isinstance(data.get("tokens"), dict):
        data = data["tokens"]
    access = data.get("accessToken")
    refresh = data.get("refreshToken")
    if not isinstance(access, str) or not access:
        raise DecodeError("Token response has no accessToken")
    if refresh is not None and not isinstance(refresh, str):
        raise DecodeError("Token response has a non-string refreshToken")
    return access, refresh or None


class TokenRefresher:
    """Single-flight access-token refresh.

    Only one refresh request is outstanding at a time; concurrent callers
    await the same task. The task is shielded so that cancelling one waiter
    does not cancel the refresh for the others.
    """

    def __init__(
        self,
        transport: Transport,
        token_store: TokenStore,
        validator: TokenValidator,
        refresh_path: str,
    ):
        self._transport = transport
        self._store = token_store
        self._validator = validator
        self._refresh_path = refresh_path
        self._inflight: asyncio.Future[str] | None = None
        self.refresh_count = 0

    def can_refresh(self) -> bool:
        refresh_token = self._store.get_refresh_token()
        return bool(refresh_token) and not self._validator.is_expired(refresh_token)

    async def refresh(self, stale_access_token: str | None = None) -> str:
        current = self._store.get_access_token()
        if current and current != stale_access_token and not self._validator.is_expired(current):
            # Someone else already refreshed past the caller's token.
            return current

        if self._inflight is None:
            task = asyncio.ensure_future(self._refresh_once())
            task.add_done_callback(self._on_refresh_done)
            self._inflight = task
        return await asyncio.shield(self._inflight)

    def _on_refresh_done(self, task: asyncio.Future[str]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            task.exception()

    async def _refresh_once(self) -> str:
        refresh_token = self._store.get_refresh_token()
        if not refresh_token or self._validator.is_expired(refresh_token):
            self._store.clear_tokens()
            raise RefreshError("Refresh token is missing or expired", irrecoverable=True)

        self.refresh_count += 1
        logger.info("Refreshing access token")
        try:
            response = await self._transport.execute(
                HttpRequest("POST", self._refresh_path, json_body={"refreshToken": refresh_token})
            )
        except TransportError as ex:
            logger.warning(f"Token refresh failed: {ex}")
            raise RefreshError(f"Token refresh failed: {ex}") from ex

        if response.status_code in _REJECTED_REFRESH_STATUSES:
            detail = parse_error_body(response.body) or f"HTTP {response.status_code}"
            logger.warning(f"Refresh token rejected: {detail}")
            self._store.clear_tokens()
            raise RefreshError(f"Refresh token rejected: {detail}", irrecoverable=True)
        if not _is_success(response.status_code):
            logger.warning(f"Token refresh failed with HTTP {response.status_code}")
            raise RefreshError(f"Token refresh failed with HTTP {response.status_code}")

        try:
            access, new_refresh = _extract_tokens(response)
        except DecodeError as ex:
            logger.warning(f"Token refresh response unreadable: {ex}")
            raise RefreshError(str(ex)) from ex

        self._store.save_tokens(access, new_refresh or refresh_token)
        logger.info("Access token refreshed")
        return access


class AuthClient:
    def __init__(self, transport: Transport, token_store: TokenStore, paths: ApiPaths):
        self._transport = transport
        self._store = token_store
        self._paths = paths

    async def login(self, email: str, password: str) -> dict[str, Any]:
        return await self._authenticate(self._paths.login, {"email": email, "password": password})

    async def register(self, email: str, password: str, name: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"email": email, "password": password}
        if name is not None:
            body["name"] = name
        return await self._authenticate(self._paths.register, body)

    def logout(self) -> None:
        self._store.clear_tokens()
        logger.info("Logged out; credentials cleared")

    def is_authenticated(self) -> bool:
        return self._store.get_access_token() is not None

    async def _authenticate(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._transport.execute(HttpRequest("POST", path, json_body=body))
        except TransportError as ex:
            raise AuthError(f"Could not reach the server: {ex}") from ex

        if not _is_success(response.status_code):
            detail = parse_error_body(response.body) or f"HTTP {response.status_code}"
            raise AuthError(detail, status_code=response.status_code)

        try:
            access, refresh = _extract_tokens(response)
            data = response.json()
        except (DecodeError, ValueError) as ex:
            raise AuthError(f"Unexpected auth response: {ex}", status_code=response.status_code) from ex
        if refresh is None:
            raise AuthError("Auth response has no refreshToken", status_code=response.status_code)

        self._store.save_tokens(access, refresh)
        user = data.get("user") if isinstance(data.get("user"), dict) else {}
        user_id = user.get("id")
        if user_id is not None:
            self._store.save_user_id(str(user_id))
        logger.info(f"Authenticated user {user_id or '(unknown id)'}")
        return user

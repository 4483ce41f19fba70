from __future__ import annotations

import asyncio
from enum import Enum
from uuid import uuid4

from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from squad_session.auth import TokenRefresher
from squad_session.endpoints import ApiPaths
from squad_session.errors import AuthError, DecodeError, InvalidRequestError, RefreshError, TransportError
from squad_session.events import EventSink, NullEventSink
from squad_session.history import HistoryTruncator
from squad_session.memory.message_store import LocalMessageStore
from squad_session.models import ConversationTurn, RequestSettings, Role
from squad_session.rate_limiter import FixedWindowRateLimiter
from squad_session.request_builder import (
    IntegrationMode,
    RequestBuilder,
    decode_response,
    encode_payload,
    parse_error_body,
)
from squad_session.results import (
    DecodeFailure,
    InvalidRequest,
    RateLimited,
    ServerError,
    SessionResult,
    Success,
    TransportFailure,
    Unauthenticated,
)
from squad_session.token_store import TokenStore
from squad_session.token_validator import TokenValidator
from squad_session.transport import HttpRequest, HttpResponse, Transport, auth_headers

_DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
_AUTH_REJECTED_STATUSES = {401, 403}


class SendState(str, Enum):
    IDLE = "idle"
    ADMITTING = "admitting"
    AUTHENTICATING = "authenticating"
    DISPATCHING = "dispatching"
    CLASSIFYING = "classifying"
    REFRESHING_THEN_RETRY = "refreshing_then_retry"
    COMPLETED = "completed"
    FAILED = "failed"


class _AuthRejected(Exception):
    def __init__(self, status_code: int, detail: str | None):
        super().__init__(detail or f"HTTP {status_code}")
        self.status_code = status_code


def _header(headers: dict[str, str], name: str) -> str | None:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _retry_after_seconds(response: HttpResponse) -> float | None:
    value = _header(response.headers, "Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class SessionClient:
    """Run one chat send from admission to a typed ``SessionResult``.

    ``send`` goes through admission (local rate limit), authentication
    (refreshing an expired access token), dispatch and classification. A
    401/403 on dispatch triggers at most one refresh-and-retry per call,
    including any refresh already done while authenticating; every other
    retry decision is left to the caller.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        token_store: TokenStore,
        rate_limiter: FixedWindowRateLimiter,
        message_store: LocalMessageStore,
        request_builder: RequestBuilder,
        paths: ApiPaths,
        truncator: HistoryTruncator | None = None,
        settings: RequestSettings | None = None,
        validator: TokenValidator | None = None,
        refresher: TokenRefresher | None = None,
        events: EventSink | None = None,
        model: str = "",
        request_timeout: float = _DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        self._transport = transport
        self._token_store = token_store
        self._rate_limiter = rate_limiter
        self._message_store = message_store
        self._builder = request_builder
        self._paths = paths
        self._truncator = truncator or HistoryTruncator()
        self._settings = settings or RequestSettings()
        self._validator = validator or TokenValidator()
        self._refresher = refresher or TokenRefresher(
            transport, token_store, self._validator, paths.refresh_token
        )
        self._events = events or NullEventSink()
        self._model = model
        self._request_timeout = request_timeout

    @property
    def mode(self) -> IntegrationMode:
        return self._builder.mode

    @property
    def _dispatch_path(self) -> str:
        if self._builder.mode is IntegrationMode.DIRECT:
            return self._paths.chat_completions
        return self._paths.generate

    def history(self, conversation_id: str, limit: int = 50) -> list[ConversationTurn]:
        return self._message_store.load_recent(conversation_id, limit)

    def clear_conversation(self, conversation_id: str) -> None:
        self._message_store.clear_conversation(conversation_id)

    async def send(
        self,
        message: str,
        conversation_id: str,
        personality_id: str | None = None,
    ) -> SessionResult:
        send_id = uuid4().hex[:12]
        try:
            result = await self._send(send_id, message, conversation_id, personality_id)
        except asyncio.CancelledError:
            logger.info(f"[{send_id}] send cancelled for conversation {conversation_id}")
            self._emit(conversation_id, "send.cancelled", {"send_id": send_id})
            raise

        if result.ok:
            self._transition(send_id, conversation_id, SendState.COMPLETED)
            self._emit(conversation_id, "send.completed", {"send_id": send_id})
        else:
            self._transition(send_id, conversation_id, SendState.FAILED)
            self._emit(
                conversation_id,
                "send.failed",
                {"send_id": send_id, "result": type(result).__name__},
            )
        logger.info(f"[{send_id}] send finished: {type(result).__name__}")
        return result

    async def _send(
        self,
        send_id: str,
        message: str,
        conversation_id: str,
        personality_id: str | None,
    ) -> SessionResult:
        try:
            self._builder.validate(message, personality_id, self._settings)
        except InvalidRequestError as ex:
            return InvalidRequest(str(ex))

        self._transition(send_id, conversation_id, SendState.ADMITTING)
        if not self._rate_limiter.try_acquire():
            retry_after = self._rate_limiter.retry_after()
            logger.info(f"[{send_id}] rejected by local rate limit (retry in {retry_after:.0f}s)")
            return RateLimited(source="local", retry_after=retry_after)

        history = self._message_store.load_recent(conversation_id, self._truncator.max_turns)
        user_turn = ConversationTurn.create(Role.USER, message)
        self._message_store.append(conversation_id, user_turn)
        self._emit(
            conversation_id,
            "message.appended",
            {"send_id": send_id, "turn_id": user_turn.id, "role": Role.USER.value},
        )

        self._transition(send_id, conversation_id, SendState.AUTHENTICATING)
        access_token = self._token_store.get_access_token()
        if not access_token:
            return Unauthenticated("Not logged in")

        refreshed = False
        if self._validator.is_expired(access_token):
            logger.info(f"[{send_id}] access token expired; refreshing before dispatch")
            try:
                access_token = await self._refresher.refresh(access_token)
            except RefreshError as ex:
                return Unauthenticated(f"Session expired: {ex}")
            refreshed = True

        try:
            request = self._builder.build(
                message,
                personality_id,
                self._truncator.truncate(history),
                self._settings,
                conversation_id,
            )
        except InvalidRequestError as ex:
            return InvalidRequest(str(ex))
        payload = encode_payload(request, self._builder.mode, self._model)

        token = access_token
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(1 if refreshed else 2),
                retry=retry_if_exception_type(_AuthRejected),
                before_sleep=lambda state: logger.info(
                    f"[{send_id}] dispatch rejected ({state.outcome.exception()}); refreshing and retrying once"
                ),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        self._transition(send_id, conversation_id, SendState.REFRESHING_THEN_RETRY)
                        token = await self._refresher.refresh(token)
                    result = await self._dispatch(send_id, conversation_id, payload, token)
        except _AuthRejected as ex:
            return Unauthenticated(f"Rejected after token refresh: {ex}")
        except RefreshError as ex:
            return Unauthenticated(f"Token refresh failed: {ex}")

        if not isinstance(result, Success):
            return result

        assistant_turn = ConversationTurn.create(Role.ASSISTANT, result.content)
        self._message_store.append(conversation_id, assistant_turn)
        self._emit(
            conversation_id,
            "message.appended",
            {"send_id": send_id, "turn_id": assistant_turn.id, "role": Role.ASSISTANT.value},
        )
        return Success(content=result.content, metadata=result.metadata, turn=assistant_turn)

    async def authorized_request(
        self,
        method: str,
        path: str,
        json_body: dict | None = None,
    ) -> HttpResponse:
        """Send an authenticated request outside the chat flow.

        Token handling matches ``send``: an expired access token is refreshed
        first and a 401/403 gets at most one refresh-and-retry. Any other
        status is returned to the caller. Raises AuthError when there is no
        usable session and TransportError when no response arrives.
        """
        token = self._token_store.get_access_token()
        if not token:
            raise AuthError("Not logged in")

        refreshed = False
        if self._validator.is_expired(token):
            try:
                token = await self._refresher.refresh(token)
            except RefreshError as ex:
                raise AuthError(f"Session expired: {ex}") from ex
            refreshed = True

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(1 if refreshed else 2),
                retry=retry_if_exception_type(_AuthRejected),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(f"{method} {path} rejected; refreshing and retrying once")
                        token = await self._refresher.refresh(token)
                    request = HttpRequest(method, path, json_body=json_body, headers=auth_headers(token))
                    response = await self._execute(request)
                    if response.status_code in _AUTH_REJECTED_STATUSES:
                        raise _AuthRejected(response.status_code, parse_error_body(response.body))
        except _AuthRejected as ex:
            raise AuthError(f"Rejected after token refresh: {ex}", ex.status_code) from ex
        except RefreshError as ex:
            raise AuthError(f"Token refresh failed: {ex}") from ex
        return response

    async def _execute(self, request: HttpRequest) -> HttpResponse:
        try:
            return await asyncio.wait_for(self._transport.execute(request), timeout=self._request_timeout)
        except asyncio.TimeoutError as ex:
            raise TransportError(f"No response within {self._request_timeout:.0f}s") from ex

    async def _dispatch(
        self,
        send_id: str,
        conversation_id: str,
        payload: dict,
        token: str,
    ) -> SessionResult:
        self._transition(send_id, conversation_id, SendState.DISPATCHING)
        request = HttpRequest("POST", self._dispatch_path, json_body=payload, headers=auth_headers(token))
        logger.debug(f"[{send_id}] POST {request.path} (conversation={conversation_id})")
        try:
            response = await self._execute(request)
        except TransportError as ex:
            logger.warning(f"[{send_id}] transport failure: {ex}")
            return TransportFailure(str(ex))

        self._transition(send_id, conversation_id, SendState.CLASSIFYING)
        return self._classify(send_id, response)

    def _classify(self, send_id: str, response: HttpResponse) -> SessionResult:
        status = response.status_code

        if 200 <= status < 300:
            try:
                content, metadata = decode_response(response.body, self._builder.mode)
            except DecodeError as ex:
                logger.warning(f"[{send_id}] HTTP {status} with undecodable body: {ex}")
                return DecodeFailure(str(ex))
            return Success(content=content, metadata=metadata)

        detail = parse_error_body(response.body)
        if status in _AUTH_REJECTED_STATUSES:
            raise _AuthRejected(status, detail)
        if status == 429:
            return RateLimited(source="server", retry_after=_retry_after_seconds(response))
        if 500 <= status < 600:
            logger.warning(f"[{send_id}] server error HTTP {status}: {detail or '(no detail)'}")
            return ServerError(status, detail)
        if 400 <= status < 500:
            return InvalidRequest(detail or f"HTTP {status}")
        return ServerError(status, detail)

    def _transition(self, send_id: str, conversation_id: str, state: SendState) -> None:
        self._emit(conversation_id, "send.state", {"send_id": send_id, "state": state.value})

    def _emit(self, conversation_id: str, event_type: str, payload: dict) -> None:
        self._events.emit(conversation_id, event_type, payload)

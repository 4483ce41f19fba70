from __future__ import annotations

import shlex

from loguru import logger

from squad_session.auth import AuthClient
from squad_session.catalog import CatalogClient
from squad_session.errors import ApiError, AuthError, DecodeError, TransportError
from squad_session.personalities import PersonalityRegistry
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
from squad_session.session_client import SessionClient

_HELP_LINES = [
    "/login <email> <password>   log in and store tokens",
    "/logout                     clear stored tokens",
    "/use <personality-id>       talk to a personality or squad (/use - for default)",
    "/personalities              list configured personalities",
    "/sync                       fetch personalities and squads from the backend",
    "/me                         show the logged-in user",
    "/clear                      delete the current conversation",
    "/history [n]                show the last n turns",
    "exit | quit                 leave",
]


def describe_result(result: SessionResult) -> str:
    """User-facing text for a send outcome."""
    if isinstance(result, Success):
        return result.content
    if isinstance(result, RateLimited):
        if result.retry_after:
            return f"Slow down! Try again in {result.retry_after:.0f}s."
        return "Slow down! Too many messages, try again shortly."
    if isinstance(result, Unauthenticated):
        return f"Please log in again ({result.reason}). Use /login <email> <password>."
    if isinstance(result, (ServerError, TransportFailure)):
        return "The AI is taking a break. Please try again in a moment."
    if isinstance(result, DecodeFailure):
        return "Received a response this app version can't read. Please update the app."
    if isinstance(result, InvalidRequest):
        return f"That message couldn't be sent: {result.reason}"
    return str(result)


class ChatRepl:
    _LINE_PREFIX = "assistant> "

    def __init__(
        self,
        client: SessionClient,
        auth: AuthClient,
        personalities: PersonalityRegistry,
        *,
        catalog: CatalogClient | None = None,
        conversation_id: str = "default",
    ):
        self._client = client
        self._auth = auth
        self._personalities = personalities
        self._catalog = catalog
        self._conversation_id = conversation_id
        self._personality_id: str | None = None

    @property
    def conversation_id(self) -> str:
        if self._personality_id is None:
            return self._conversation_id
        return f"{self._conversation_id}:{self._personality_id}"

    async def handle(self, line: str) -> list[str]:
        """Process one input line and return the lines to print."""
        trimmed = line.strip()
        if not trimmed:
            return []
        if trimmed.startswith("/"):
            return await self._handle_command(trimmed)

        result = await self._client.send(trimmed, self.conversation_id, self._personality_id)
        return [self._LINE_PREFIX + describe_result(result)]

    async def _handle_command(self, command: str) -> list[str]:
        try:
            parts = shlex.split(command)
        except ValueError as ex:
            return [f"{self._LINE_PREFIX}Could not parse command: {ex}"]
        name, args = parts[0], parts[1:]

        if name == "/help":
            return [self._LINE_PREFIX + "Commands:"] + [f"{self._LINE_PREFIX}  {h}" for h in _HELP_LINES]
        if name == "/login":
            return await self._login(args)
        if name == "/logout":
            self._auth.logout()
            return [self._LINE_PREFIX + "Logged out."]
        if name == "/use":
            return self._use(args)
        if name == "/personalities":
            return self._list_personalities()
        if name == "/sync":
            return await self._sync()
        if name == "/me":
            return await self._me()
        if name == "/clear":
            self._client.clear_conversation(self.conversation_id)
            return [self._LINE_PREFIX + "Conversation cleared."]
        if name == "/history":
            return self._history(args)
        return [f"{self._LINE_PREFIX}Unknown command: {name}. Try /help."]

    async def _login(self, args: list[str]) -> list[str]:
        if len(args) != 2:
            return [self._LINE_PREFIX + "Usage: /login <email> <password>"]
        try:
            user = await self._auth.login(args[0], args[1])
        except AuthError as ex:
            logger.warning(f"Login failed: {ex}")
            return [f"{self._LINE_PREFIX}Login failed: {ex}"]
        name = user.get("name") or user.get("email") or args[0]
        return [f"{self._LINE_PREFIX}Logged in as {name}."]

    async def _sync(self) -> list[str]:
        if self._catalog is None:
            return [self._LINE_PREFIX + "No backend catalog configured."]
        try:
            synced = await self._catalog.sync_registry(self._personalities)
        except (ApiError, AuthError, DecodeError, TransportError) as ex:
            logger.warning(f"Catalog sync failed: {ex}")
            return [f"{self._LINE_PREFIX}Sync failed: {ex}"]
        squads = sum(1 for p in synced if p.is_squad)
        return [f"{self._LINE_PREFIX}Synced {len(synced) - squads} personalities and {squads} squads."]

    async def _me(self) -> list[str]:
        if self._catalog is None:
            return [self._LINE_PREFIX + "No backend catalog configured."]
        try:
            user = await self._catalog.fetch_current_user()
        except (ApiError, AuthError, DecodeError, TransportError) as ex:
            return [f"{self._LINE_PREFIX}Could not load your profile: {ex}"]
        name = user.get("name") or user.get("email") or user.get("id") or "unknown"
        return [f"{self._LINE_PREFIX}Logged in as {name}."]

    def _use(self, args: list[str]) -> list[str]:
        if len(args) != 1:
            return [self._LINE_PREFIX + "Usage: /use <personality-id>"]
        if args[0] == "-":
            self._personality_id = None
            return [self._LINE_PREFIX + "Using the default AI."]
        personality = self._personalities.get(args[0])
        if personality is None:
            return [f"{self._LINE_PREFIX}Unknown personality: {args[0]}"]
        self._personality_id = personality.id
        return [f"{self._LINE_PREFIX}Now chatting with {personality.display_name}."]

    def _list_personalities(self) -> list[str]:
        entries = self._personalities.all()
        if not entries:
            return [self._LINE_PREFIX + "No personalities configured."]
        lines = [self._LINE_PREFIX + "Personalities:"]
        for p in entries:
            marker = "*" if p.id == self._personality_id else " "
            lines.append(f"{self._LINE_PREFIX}{marker} {p.id}: {p.display_name} - {p.combined_description()}")
        return lines

    def _history(self, args: list[str]) -> list[str]:
        limit = 10
        if args:
            try:
                limit = max(1, int(args[0]))
            except ValueError:
                return [self._LINE_PREFIX + "Usage: /history [n]"]
        turns = self._client.history(self.conversation_id, limit)
        if not turns:
            return [self._LINE_PREFIX + "No messages yet."]
        return [
            f"{self._LINE_PREFIX}[{t.created_at:%H:%M:%S}] {t.role.value}: {t.content}"
            for t in turns
        ]

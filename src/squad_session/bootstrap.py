from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from squad_session.app_config import AppConfig, RuntimeEnv
from squad_session.auth import AuthClient, TokenRefresher
from squad_session.catalog import CatalogClient
from squad_session.endpoints import ApiPaths
from squad_session.events import EventEmitter
from squad_session.history import HistoryTruncator
from squad_session.logging_config import setup_logging
from squad_session.memory import MemoryStore, SqliteMessageStore
from squad_session.models import RequestSettings
from squad_session.personalities import PersonalityRegistry, load_personalities
from squad_session.rate_limiter import FixedWindowRateLimiter
from squad_session.request_builder import IntegrationMode, RequestBuilder
from squad_session.session_client import SessionClient
from squad_session.token_store import FileTokenStore
from squad_session.token_validator import TokenValidator
from squad_session.transport import HttpxTransport


@dataclass
class AppRuntime:
    client: SessionClient
    auth: AuthClient
    catalog: CatalogClient
    transport: HttpxTransport
    memory_store: MemoryStore
    events: EventEmitter
    personalities: PersonalityRegistry
    log_descriptions: list[str]

    async def close(self) -> None:
        await self.transport.close()
        self.memory_store.close()


def _resolve_path(value: str) -> Path:
    path = Path(value)
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    mode = IntegrationMode.parse(app.integration_mode)
    paths = ApiPaths.for_version(app.api_version)
    transport = HttpxTransport(env.base_url_override or app.base_url, timeout=app.request_timeout_seconds)
    token_store = FileTokenStore(str(_resolve_path(app.token_store_path)))
    memory_store = MemoryStore(str(_resolve_path(app.message_db_path)))
    personalities = load_personalities(app.personalities)
    validator = TokenValidator()
    events = EventEmitter()

    client = SessionClient(
        transport=transport,
        token_store=token_store,
        rate_limiter=FixedWindowRateLimiter(app.rate_limit, app.rate_window_seconds),
        message_store=SqliteMessageStore(memory_store),
        request_builder=RequestBuilder(mode, personalities),
        paths=paths,
        truncator=HistoryTruncator(
            app.message_history_limit,
            app.token_budget,
            always_include_latest=app.always_include_latest_turn,
        ),
        settings=RequestSettings(
            max_tokens=app.max_tokens,
            temperature=app.temperature,
            language=app.language,
        ),
        validator=validator,
        refresher=TokenRefresher(transport, token_store, validator, paths.refresh_token),
        events=events,
        model=app.model,
        request_timeout=app.request_timeout_seconds,
    )

    return AppRuntime(
        client=client,
        auth=AuthClient(transport, token_store, paths),
        catalog=CatalogClient(client, paths),
        transport=transport,
        memory_store=memory_store,
        events=events,
        personalities=personalities,
        log_descriptions=log_descriptions,
    )

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class RuntimeEnv:
    base_url_override: str | None
    email: str | None
    password: str | None


@dataclass
class AppConfig:
    base_url: str = "http://localhost:3000"
    api_version: str = "v1"
    integration_mode: str = "routed"
    model: str = "gpt-4o-mini"
    max_tokens: int = 150
    temperature: float = 0.7
    language: str | None = None
    message_history_limit: int = 10
    token_budget: int = 4096
    always_include_latest_turn: bool = True
    rate_limit: int = 3
    rate_window_seconds: float = 60.0
    request_timeout_seconds: float = 30.0
    message_db_path: str = ".squad/messages.db"
    token_store_path: str = ".squad/tokens.json"
    personalities: list = field(default_factory=list)
    log_level: str = "INFO"
    log_consumers: list | None = None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    language = str(config.get("Language") or "").strip() or None
    return AppConfig(
        base_url=str(config.get("BaseUrl", "http://localhost:3000")).rstrip("/"),
        api_version=str(config.get("ApiVersion", "v1")),
        integration_mode=str(config.get("IntegrationMode", "routed")).strip().lower(),
        model=str(config.get("Model", "gpt-4o-mini")),
        max_tokens=int(config.get("MaxTokens", 150)),
        temperature=float(config.get("Temperature", 0.7)),
        language=language,
        message_history_limit=int(config.get("MessageHistoryLimit", 10)),
        token_budget=int(config.get("TokenBudget", 4096)),
        always_include_latest_turn=_to_bool(config.get("AlwaysIncludeLatestTurn", True), default=True),
        rate_limit=int(config.get("RateLimit", 3)),
        rate_window_seconds=float(config.get("RateWindowSeconds", 60)),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 30)),
        message_db_path=str(config.get("MessageDbPath", ".squad/messages.db")),
        token_store_path=str(config.get("TokenStorePath", ".squad/tokens.json")),
        personalities=list(config.get("Personalities", [])),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        base_url_override=os.environ.get("SQUAD_BASE_URL") or None,
        email=os.environ.get("SQUAD_EMAIL") or None,
        password=os.environ.get("SQUAD_PASSWORD") or None,
    )

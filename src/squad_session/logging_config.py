import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

# Bearer headers and JWT-shaped strings must never reach a sink.
_SECRET_PATTERNS = [
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+"), r"\1<redacted>"),
    (re.compile(r"\beyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*"), "<redacted-jwt>"),
]

_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"


def redact_secrets(message: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def _patch_record(record: dict) -> None:
    record["message"] = redact_secrets(record["message"])


@runtime_checkable
class LogSink(Protocol):
    level: str

    def attach(self) -> str:
        """Add the sink to loguru and return a short description of it."""
        ...


@dataclass
class ConsoleSink:
    level: str = "WARNING"

    def attach(self) -> str:
        logger.add(sys.stderr, level=self.level, format=_CONSOLE_FORMAT)
        return f"console (stderr, {self.level})"


@dataclass
class FileSink:
    level: str = "INFO"
    path: str = ".squad/squad.log"
    rotation: str = "10 MB"
    retention: int = 3
    serialize: bool = False

    def attach(self) -> str:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self.path,
            level=self.level,
            format=_FILE_FORMAT,
            rotation=self.rotation,
            retention=self.retention,
            serialize=self.serialize,
            enqueue=True,
        )
        kind = "json" if self.serialize else "text"
        return f"file ({self.path}, {kind}, {self.level})"


_SINKS_BY_TYPE: dict[str, type] = {"console": ConsoleSink, "file": FileSink}


def sink_from_config(entry: dict[str, Any], default_level: str) -> LogSink | None:
    """Build a sink from one ``LogConsumers`` entry; None for an unknown type."""
    options = dict(entry)
    sink_cls = _SINKS_BY_TYPE.get(options.pop("type", ""))
    if sink_cls is None:
        return None
    options.setdefault("level", default_level)
    return sink_cls(**options)


def setup_logging(level: str = "INFO", consumers: list[dict[str, Any]] | None = None) -> list[str]:
    """Replace loguru's sinks with the configured ones, all with token redaction.

    With no ``consumers`` the console only shows warnings and everything at
    ``level`` goes to ``.squad/squad.log``.
    """
    logger.remove()
    logger.configure(patcher=_patch_record)

    if consumers is None:
        sinks: list[LogSink] = [ConsoleSink(), FileSink(level=level)]
    else:
        sinks = []
        for entry in consumers:
            sink = sink_from_config(entry, level)
            if sink is None:
                logger.warning(f"Ignoring log consumer of unknown type {entry.get('type')!r}")
                continue
            sinks.append(sink)

    return [sink.attach() for sink in sinks]

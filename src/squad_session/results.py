"""Typed outcomes of a single ``SessionClient.send`` call.

Exactly one of these is returned per call. ``ok`` is true only for
``Success``; every other variant tells the caller what kind of follow-up
makes sense (re-login, back off, retry later, report a bug).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

from squad_session.models import ChatMetadata, ConversationTurn


@dataclass(frozen=True)
class Success:
    content: str
    metadata: ChatMetadata = field(default_factory=ChatMetadata)
    turn: ConversationTurn | None = None
    ok = True


@dataclass(frozen=True)
class RateLimited:
    source: Literal["local", "server"]
    retry_after: float | None = None
    ok = False


@dataclass(frozen=True)
class Unauthenticated:
    reason: str
    ok = False


@dataclass(frozen=True)
class TransportFailure:
    reason: str
    ok = False


@dataclass(frozen=True)
class ServerError:
    status_code: int
    message: str | None = None
    ok = False


@dataclass(frozen=True)
class DecodeFailure:
    reason: str
    ok = False


@dataclass(frozen=True)
class InvalidRequest:
    reason: str
    ok = False


SessionResult = Union[
    Success,
    RateLimited,
    Unauthenticated,
    TransportFailure,
    ServerError,
    DecodeFailure,
    InvalidRequest,
]

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(UTC)


def approx_token_count(text: str) -> int:
    """Rough token estimate: one token per four UTF-8 bytes, rounded up."""
    return math.ceil(len(text.encode("utf-8")) / 4)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationTurn:
    id: str
    role: Role
    content: str
    created_at: datetime
    approx_token_count: int

    @classmethod
    def create(cls, role: Role, content: str, *, created_at: datetime | None = None) -> ConversationTurn:
        return cls(
            id=str(uuid4()),
            role=role,
            content=content,
            created_at=created_at or utc_now(),
            approx_token_count=approx_token_count(content),
        )


@dataclass(frozen=True)
class Credentials:
    access_token: str
    refresh_token: str
    access_expires_at: float | None = None
    refresh_expires_at: float | None = None


@dataclass(frozen=True)
class RequestSettings:
    max_tokens: int = 150
    temperature: float = 0.7
    language: str | None = None


@dataclass(frozen=True)
class OutboundRequest:
    conversation_id: str
    new_message: str
    settings: RequestSettings
    truncated_history: tuple[ConversationTurn, ...] = ()
    personality_id: str | None = None
    ai_id: str | None = None
    squad_id: str | None = None
    system_prompt: str | None = None

    def __post_init__(self) -> None:
        routed = self.ai_id is not None or self.squad_id is not None
        if routed and self.system_prompt is not None:
            raise ValueError("A request is either backend-routed (ai_id/squad_id) or direct (system_prompt), not both")


@dataclass(frozen=True)
class ChatMetadata:
    tokens: int | None = None
    processing_time_ms: float | None = None
    ai_personality: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


@dataclass(frozen=True)
class Personality:
    id: str
    name: str
    description: str
    tone: str | None = None
    backend_id: str | None = None
    members: tuple[Personality, ...] = field(default_factory=tuple)

    @property
    def is_squad(self) -> bool:
        return bool(self.members)

    @property
    def display_name(self) -> str:
        return f"{self.name} Squad" if self.is_squad else self.name

    def combined_description(self) -> str:
        if not self.is_squad:
            return self.description
        return "Combined expertise of: " + " + ".join(m.description for m in self.members)

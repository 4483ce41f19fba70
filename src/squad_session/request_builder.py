from __future__ import annotations

import json
from enum import Enum
from typing import Any, Sequence

from squad_session.errors import DecodeError, InvalidRequestError
from squad_session.models import ChatMetadata, ConversationTurn, OutboundRequest, RequestSettings
from squad_session.personalities import PersonalityRegistry, build_system_prompt


class IntegrationMode(str, Enum):
    ROUTED = "routed"
    DIRECT = "direct"

    @classmethod
    def parse(cls, value: str) -> IntegrationMode:
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown integration mode: {value!r}. Supported: 'routed', 'direct'") from None


class RequestBuilder:
    """Assemble an ``OutboundRequest`` for one deployment mode.

    Routed deployments name the personality through ``ai_id`` (``squad_id``
    for a squad) and let the backend apply it; direct deployments inline it
    as a system prompt. A builder only ever does one of the two.
    """

    def __init__(self, mode: IntegrationMode, personalities: PersonalityRegistry | None = None):
        self._mode = mode
        self._personalities = personalities if personalities is not None else PersonalityRegistry()

    @property
    def mode(self) -> IntegrationMode:
        return self._mode

    def validate(self, message: str, personality_id: str | None, settings: RequestSettings) -> None:
        """Raise InvalidRequestError for anything ``build`` would reject, without building."""
        if not message or not message.strip():
            raise InvalidRequestError("message must not be empty")
        if settings.max_tokens <= 0:
            raise InvalidRequestError("settings.max_tokens must be positive")
        if (
            personality_id is not None
            and self._mode is IntegrationMode.DIRECT
            and personality_id not in self._personalities
        ):
            raise InvalidRequestError(f"Unknown personality: {personality_id!r}")

    def build(
        self,
        message: str,
        personality_id: str | None,
        truncated_history: Sequence[ConversationTurn],
        settings: RequestSettings,
        conversation_id: str = "",
    ) -> OutboundRequest:
        self.validate(message, personality_id, settings)

        ai_id: str | None = None
        squad_id: str | None = None
        system_prompt: str | None = None
        if personality_id is not None:
            if self._mode is IntegrationMode.ROUTED:
                ai_id, squad_id = self._routed_ids(personality_id)
            else:
                system_prompt = build_system_prompt(self._personalities.require(personality_id))

        return OutboundRequest(
            conversation_id=conversation_id,
            new_message=message,
            settings=settings,
            truncated_history=tuple(truncated_history),
            personality_id=personality_id,
            ai_id=ai_id,
            squad_id=squad_id,
            system_prompt=system_prompt,
        )

    def _routed_ids(self, personality_id: str) -> tuple[str | None, str | None]:
        """``(ai_id, squad_id)``; squads travel as ``squadId``, unknown ids as ``aiId``."""
        personality = self._personalities.get(personality_id)
        if personality is None:
            return personality_id, None
        backend_id = personality.backend_id or personality.id
        if personality.is_squad:
            return None, backend_id
        return backend_id, None


def encode_payload(request: OutboundRequest, mode: IntegrationMode, model: str = "") -> dict[str, Any]:
    if mode is IntegrationMode.ROUTED:
        return _encode_routed(request)
    return _encode_direct(request, model)


def _encode_routed(request: OutboundRequest) -> dict[str, Any]:
    settings: dict[str, Any] = {
        "maxTokens": request.settings.max_tokens,
        "temperature": request.settings.temperature,
    }
    if request.settings.language:
        settings["language"] = request.settings.language

    body: dict[str, Any] = {"message": request.new_message, "settings": settings}
    if request.ai_id is not None:
        body["aiId"] = request.ai_id
    if request.squad_id is not None:
        body["squadId"] = request.squad_id
    if request.truncated_history:
        body["history"] = [
            {"role": t.role.value, "content": t.content} for t in request.truncated_history
        ]
    return body


def _encode_direct(request: OutboundRequest, model: str) -> dict[str, Any]:
    """OpenAI-compatible chat-completions body."""
    messages: list[dict[str, str]] = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    for turn in request.truncated_history:
        messages.append({"role": turn.role.value, "content": turn.content})
    messages.append({"role": "user", "content": request.new_message})

    return {
        "model": model,
        "messages": messages,
        "max_tokens": request.settings.max_tokens,
        "temperature": request.settings.temperature,
    }


def _load_json_object(body: bytes | str) -> dict[str, Any]:
    try:
        data = json.loads(body)
    except (ValueError, TypeError) as ex:
        raise DecodeError(f"Response body is not valid JSON: {ex}") from ex
    if not isinstance(data, dict):
        raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _first(mapping: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in mapping and mapping[key] is not None:
            return mapping[key]
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def decode_response(body: bytes | str, mode: IntegrationMode) -> tuple[str, ChatMetadata]:
    data = _load_json_object(body)
    if mode is IntegrationMode.ROUTED:
        return _decode_routed(data)
    return _decode_direct(data)


def _decode_routed(data: dict[str, Any]) -> tuple[str, ChatMetadata]:
    content = data.get("content")
    if not isinstance(content, str):
        raise DecodeError("Response has no string 'content' field")

    raw_meta = data.get("metadata")
    if not isinstance(raw_meta, dict):
        return content, ChatMetadata()

    personality = _first(raw_meta, "aiPersonality", "ai_personality")
    metadata = ChatMetadata(
        tokens=_as_int(raw_meta.get("tokens")),
        processing_time_ms=_as_float(
            _first(raw_meta, "processingTimeMs", "processingTime", "processing_time")
        ),
        ai_personality=personality if isinstance(personality, str) else None,
        prompt_tokens=_as_int(_first(raw_meta, "promptTokens", "prompt_tokens")),
        completion_tokens=_as_int(_first(raw_meta, "completionTokens", "completion_tokens")),
    )
    return content, metadata


def _decode_direct(data: dict[str, Any]) -> tuple[str, ChatMetadata]:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise DecodeError("Response has no 'choices'")
    message = choices[0].get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise DecodeError("Response choice has no string message content")

    usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
    model = data.get("model")
    metadata = ChatMetadata(
        tokens=_as_int(usage.get("total_tokens")),
        ai_personality=model if isinstance(model, str) else None,
        prompt_tokens=_as_int(usage.get("prompt_tokens")),
        completion_tokens=_as_int(usage.get("completion_tokens")),
    )
    return content, metadata


def parse_error_body(body: bytes | str) -> str | None:
    """Best-effort ``{error, message?}`` extraction; None when unparseable."""
    try:
        data = json.loads(body)
    except (ValueError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    message = data.get("message")
    if isinstance(error, dict):
        # OpenAI-style {"error": {"message": ...}}
        message = message or error.get("message")
        error = error.get("type") or error.get("code")
    parts = [str(p) for p in (error, message) if isinstance(p, str) and p]
    return ": ".join(parts) if parts else None

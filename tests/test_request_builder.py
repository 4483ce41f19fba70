import json
import unittest

from squad_session.errors import DecodeError, InvalidRequestError
from squad_session.models import ConversationTurn, Personality, RequestSettings, Role
from squad_session.personalities import PersonalityRegistry
from squad_session.request_builder import (
    IntegrationMode,
    RequestBuilder,
    decode_response,
    encode_payload,
    parse_error_body,
)


def _registry() -> PersonalityRegistry:
    return PersonalityRegistry([
        Personality(id="friend", name="Friend AI", description="A friendly companion.", tone="warm", backend_id="ai-17"),
        Personality(id="coach", name="Coach", description="Keeps you on track."),
    ])


class RequestBuilderTests(unittest.TestCase):
    def test_routed_mode_maps_personality_to_backend_id(self) -> None:
        builder = RequestBuilder(IntegrationMode.ROUTED, _registry())
        request = builder.build("hello", "friend", [], RequestSettings(), "conv1")
        self.assertEqual("ai-17", request.ai_id)
        self.assertIsNone(request.system_prompt)
        self.assertEqual("conv1", request.conversation_id)

    def test_routed_mode_falls_back_to_personality_id(self) -> None:
        builder = RequestBuilder(IntegrationMode.ROUTED, _registry())
        self.assertEqual("coach", builder.build("hi", "coach", [], RequestSettings()).ai_id)
        self.assertEqual("unknown-7", builder.build("hi", "unknown-7", [], RequestSettings()).ai_id)

    def test_direct_mode_inlines_system_prompt(self) -> None:
        builder = RequestBuilder(IntegrationMode.DIRECT, _registry())
        request = builder.build("hello", "friend", [], RequestSettings())
        self.assertIsNone(request.ai_id)
        self.assertIn("Friend AI", request.system_prompt)
        self.assertIn("warm", request.system_prompt)

    def test_direct_mode_rejects_unknown_personality(self) -> None:
        builder = RequestBuilder(IntegrationMode.DIRECT, _registry())
        with self.assertRaises(InvalidRequestError):
            builder.build("hello", "nobody", [], RequestSettings())

    def test_routed_squad_travels_as_squad_id(self) -> None:
        registry = _registry()
        registry.create_squad("duo", "Duo", ["friend", "coach"])
        registry.register(
            Personality(
                id="remote-squad",
                name="Remote",
                description="",
                backend_id="sq-9",
                members=(registry.require("friend"), registry.require("coach")),
            )
        )
        builder = RequestBuilder(IntegrationMode.ROUTED, registry)

        request = builder.build("hi", "duo", [], RequestSettings())
        self.assertIsNone(request.ai_id)
        self.assertEqual("duo", request.squad_id)
        payload = encode_payload(request, IntegrationMode.ROUTED)
        self.assertEqual("duo", payload["squadId"])
        self.assertNotIn("aiId", payload)

        self.assertEqual("sq-9", builder.build("hi", "remote-squad", [], RequestSettings()).squad_id)
        self.assertIsNone(builder.build("hi", "friend", [], RequestSettings()).squad_id)

    def test_registry_filled_after_construction_is_seen(self) -> None:
        registry = PersonalityRegistry()
        builder = RequestBuilder(IntegrationMode.DIRECT, registry)
        registry.register(Personality(id="late", name="Late", description="Joined later."))
        self.assertIn("Late", builder.build("hi", "late", [], RequestSettings()).system_prompt)

    def test_validate_rejects_without_building(self) -> None:
        direct = RequestBuilder(IntegrationMode.DIRECT, _registry())
        direct.validate("hi", "friend", RequestSettings())
        with self.assertRaises(InvalidRequestError):
            direct.validate("hi", "nobody", RequestSettings())
        with self.assertRaises(InvalidRequestError):
            direct.validate("hi", None, RequestSettings(max_tokens=-1))
        RequestBuilder(IntegrationMode.ROUTED, _registry()).validate("hi", "nobody", RequestSettings())

    def test_no_personality_sets_neither_field(self) -> None:
        for mode in IntegrationMode:
            with self.subTest(mode=mode):
                request = RequestBuilder(mode, _registry()).build("hello", None, [], RequestSettings())
                self.assertIsNone(request.ai_id)
                self.assertIsNone(request.system_prompt)

    def test_validation(self) -> None:
        builder = RequestBuilder(IntegrationMode.ROUTED)
        with self.assertRaises(InvalidRequestError):
            builder.build("", None, [], RequestSettings())
        with self.assertRaises(InvalidRequestError):
            builder.build("   ", None, [], RequestSettings())
        with self.assertRaises(InvalidRequestError):
            builder.build("hi", None, [], RequestSettings(max_tokens=0))

    def test_build_is_deterministic(self) -> None:
        builder = RequestBuilder(IntegrationMode.ROUTED, _registry())
        history = [ConversationTurn.create(Role.USER, "earlier")]
        first = builder.build("hi", "friend", history, RequestSettings(), "c")
        second = builder.build("hi", "friend", history, RequestSettings(), "c")
        self.assertEqual(first, second)

    def test_parse_integration_mode(self) -> None:
        self.assertIs(IntegrationMode.DIRECT, IntegrationMode.parse(" Direct "))
        with self.assertRaises(ValueError):
            IntegrationMode.parse("hybrid")


class EncodePayloadTests(unittest.TestCase):
    def test_routed_payload_shape(self) -> None:
        builder = RequestBuilder(IntegrationMode.ROUTED, _registry())
        history = [
            ConversationTurn.create(Role.USER, "hey"),
            ConversationTurn.create(Role.ASSISTANT, "hi there"),
        ]
        request = builder.build(
            "how are you?", "friend", history, RequestSettings(max_tokens=150, temperature=0.7, language="en")
        )
        payload = encode_payload(request, IntegrationMode.ROUTED)
        self.assertEqual(
            {
                "message": "how are you?",
                "aiId": "ai-17",
                "settings": {"maxTokens": 150, "temperature": 0.7, "language": "en"},
                "history": [
                    {"role": "user", "content": "hey"},
                    {"role": "assistant", "content": "hi there"},
                ],
            },
            payload,
        )

    def test_routed_payload_omits_optional_fields(self) -> None:
        request = RequestBuilder(IntegrationMode.ROUTED).build("hi", None, [], RequestSettings())
        payload = encode_payload(request, IntegrationMode.ROUTED)
        self.assertEqual({"message", "settings"}, set(payload))
        self.assertNotIn("language", payload["settings"])

    def test_direct_payload_is_chat_completions_shape(self) -> None:
        builder = RequestBuilder(IntegrationMode.DIRECT, _registry())
        history = [ConversationTurn.create(Role.ASSISTANT, "welcome back")]
        request = builder.build("hi", "coach", history, RequestSettings(max_tokens=64, temperature=0.2))
        payload = encode_payload(request, IntegrationMode.DIRECT, model="gpt-test")
        self.assertEqual("gpt-test", payload["model"])
        self.assertEqual(64, payload["max_tokens"])
        self.assertEqual(0.2, payload["temperature"])
        roles = [m["role"] for m in payload["messages"]]
        self.assertEqual(["system", "assistant", "user"], roles)
        self.assertEqual("hi", payload["messages"][-1]["content"])


class DecodeResponseTests(unittest.TestCase):
    def test_routed_full_metadata(self) -> None:
        body = json.dumps({
            "content": "hi",
            "metadata": {
                "tokens": 12,
                "processingTimeMs": 340,
                "aiPersonality": "friend",
                "promptTokens": 8,
                "completionTokens": 4,
            },
        })
        content, meta = decode_response(body, IntegrationMode.ROUTED)
        self.assertEqual("hi", content)
        self.assertEqual(12, meta.tokens)
        self.assertEqual(340.0, meta.processing_time_ms)
        self.assertEqual("friend", meta.ai_personality)
        self.assertEqual(8, meta.prompt_tokens)
        self.assertEqual(4, meta.completion_tokens)

    def test_routed_snake_case_metadata_and_missing_metadata(self) -> None:
        _, meta = decode_response(
            b'{"content": "x", "metadata": {"processing_time": 1.5, "ai_personality": "coach"}}',
            IntegrationMode.ROUTED,
        )
        self.assertEqual(1.5, meta.processing_time_ms)
        self.assertEqual("coach", meta.ai_personality)

        content, meta = decode_response(b'{"content": "hi"}', IntegrationMode.ROUTED)
        self.assertEqual("hi", content)
        self.assertIsNone(meta.tokens)

    def test_direct_response(self) -> None:
        body = json.dumps({
            "model": "gpt-test",
            "choices": [{"message": {"role": "assistant", "content": "hello!"}}],
            "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
        })
        content, meta = decode_response(body, IntegrationMode.DIRECT)
        self.assertEqual("hello!", content)
        self.assertEqual(7, meta.tokens)
        self.assertEqual("gpt-test", meta.ai_personality)

    def test_bad_bodies_raise_decode_error(self) -> None:
        cases = [
            (b"", IntegrationMode.ROUTED),
            (b"<html>", IntegrationMode.ROUTED),
            (b"[]", IntegrationMode.ROUTED),
            (b'{"content": 5}', IntegrationMode.ROUTED),
            (b'{"message": "hi"}', IntegrationMode.ROUTED),
            (b'{"choices": []}', IntegrationMode.DIRECT),
            (b'{"choices": [{"message": {}}]}', IntegrationMode.DIRECT),
        ]
        for body, mode in cases:
            with self.subTest(body=body):
                with self.assertRaises(DecodeError):
                    decode_response(body, mode)


class ParseErrorBodyTests(unittest.TestCase):
    def test_error_and_message(self) -> None:
        self.assertEqual("validation: bad input", parse_error_body(b'{"error": "validation", "message": "bad input"}'))
        self.assertEqual("oops", parse_error_body(b'{"error": "oops"}'))

    def test_openai_style_error(self) -> None:
        self.assertEqual(
            "invalid_request_error: too long",
            parse_error_body(b'{"error": {"type": "invalid_request_error", "message": "too long"}}'),
        )

    def test_unparseable_returns_none(self) -> None:
        self.assertIsNone(parse_error_body(b"Internal Server Error"))
        self.assertIsNone(parse_error_body(b"{}"))
        self.assertIsNone(parse_error_body(b"[1]"))


if __name__ == "__main__":
    unittest.main()

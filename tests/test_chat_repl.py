import asyncio
import unittest

from squad_session.auth import AuthClient
from squad_session.catalog import CatalogClient
from squad_session.chat_repl import ChatRepl, describe_result
from squad_session.endpoints import ApiPaths
from squad_session.memory import InMemoryMessageStore
from squad_session.models import Personality
from squad_session.personalities import PersonalityRegistry
from squad_session.rate_limiter import FixedWindowRateLimiter
from squad_session.request_builder import IntegrationMode, RequestBuilder
from squad_session.results import (
    DecodeFailure,
    InvalidRequest,
    RateLimited,
    ServerError,
    Success,
    TransportFailure,
    Unauthenticated,
)
from squad_session.session_client import SessionClient
from squad_session.token_store import InMemoryTokenStore
from tests.fakes import FakeTransport, json_response, valid_token

PATHS = ApiPaths.for_version("v1")


class DescribeResultTests(unittest.TestCase):
    def test_messages_per_outcome(self) -> None:
        self.assertEqual("hi", describe_result(Success("hi")))
        self.assertEqual("Slow down! Try again in 42s.", describe_result(RateLimited("local", 42.0)))
        self.assertIn("Slow down!", describe_result(RateLimited("server")))
        self.assertIn("log in again", describe_result(Unauthenticated("expired")))
        self.assertIn("taking a break", describe_result(ServerError(503)))
        self.assertIn("taking a break", describe_result(TransportFailure("offline")))
        self.assertIn("update the app", describe_result(DecodeFailure("bad json")))
        self.assertIn("too long", describe_result(InvalidRequest("too long")))


class ChatReplTests(unittest.TestCase):
    def setUp(self) -> None:
        self.transport = FakeTransport()
        self.tokens = InMemoryTokenStore()
        self.messages = InMemoryMessageStore()
        self.personalities = PersonalityRegistry([
            Personality(id="friend", name="Friend AI", description="Casual chats."),
            Personality(id="pro", name="Pro AI", description="Career advice."),
        ])
        client = SessionClient(
            transport=self.transport,
            token_store=self.tokens,
            rate_limiter=FixedWindowRateLimiter(limit=10),
            message_store=self.messages,
            request_builder=RequestBuilder(IntegrationMode.ROUTED, self.personalities),
            paths=PATHS,
        )
        self.repl = ChatRepl(
            client,
            AuthClient(self.transport, self.tokens, PATHS),
            self.personalities,
            catalog=CatalogClient(client, PATHS),
        )

    def handle(self, line: str) -> list[str]:
        return asyncio.run(self.repl.handle(line))

    def test_login_then_chat(self) -> None:
        self.transport.on(
            PATHS.login,
            json_response(200, {
                "user": {"id": "u-1", "name": "Sam"},
                "tokens": {"accessToken": valid_token("a"), "refreshToken": valid_token("r")},
            }),
        )
        self.transport.on(PATHS.generate, json_response(200, {"content": "hey Sam"}))

        self.assertEqual(["assistant> Logged in as Sam."], self.handle("/login sam@example.com secret"))
        self.assertEqual(["assistant> hey Sam"], self.handle("  hello  "))
        self.assertEqual("hello", self.transport.calls_to(PATHS.generate)[0].json_body["message"])

    def test_chat_without_login_asks_to_log_in(self) -> None:
        lines = self.handle("hello")
        self.assertIn("log in again", lines[0])

    def test_login_failure_is_reported(self) -> None:
        self.transport.on(PATHS.login, json_response(401, {"error": "invalid_credentials"}))
        self.assertEqual(["assistant> Login failed: invalid_credentials"], self.handle("/login a@b.c nope"))
        self.assertEqual(["assistant> Usage: /login <email> <password>"], self.handle("/login only-email"))

    def test_use_switches_personality_and_conversation(self) -> None:
        self.assertEqual("default", self.repl.conversation_id)
        self.assertEqual(["assistant> Now chatting with Friend AI."], self.handle("/use friend"))
        self.assertEqual("default:friend", self.repl.conversation_id)
        self.assertEqual(["assistant> Unknown personality: ghost"], self.handle("/use ghost"))
        self.assertEqual(["assistant> Using the default AI."], self.handle("/use -"))
        self.assertEqual("default", self.repl.conversation_id)

    def test_personalities_listing_marks_active(self) -> None:
        self.handle("/use pro")
        lines = self.handle("/personalities")
        self.assertEqual("assistant> Personalities:", lines[0])
        self.assertIn("assistant> * pro: Pro AI - Career advice.", lines)
        self.assertIn("assistant>   friend: Friend AI - Casual chats.", lines)

    def test_history_and_clear(self) -> None:
        self.tokens.save_tokens(valid_token("a"), valid_token("r"))
        self.transport.on(PATHS.generate, json_response(200, {"content": "hi"}))
        self.assertEqual(["assistant> No messages yet."], self.handle("/history"))

        self.handle("hello")
        lines = self.handle("/history 5")
        self.assertEqual(2, len(lines))
        self.assertTrue(lines[0].endswith("user: hello"))
        self.assertTrue(lines[1].endswith("assistant: hi"))

        self.assertEqual(["assistant> Conversation cleared."], self.handle("/clear"))
        self.assertEqual(["assistant> No messages yet."], self.handle("/history"))
        self.assertEqual(["assistant> Usage: /history [n]"], self.handle("/history many"))

    def test_sync_adds_backend_squads_to_use(self) -> None:
        self.tokens.save_tokens(valid_token("a"), valid_token("r"))
        self.transport.on(
            PATHS.personalities,
            json_response(200, [{"id": "creative", "name": "Creative AI", "category": "creative", "description": "Ideas."}]),
        )
        self.transport.on(
            PATHS.squads,
            json_response(200, [{
                "id": "sq-1",
                "name": "Brain",
                "members": [{"id": "friend", "name": "Friend AI"}, {"id": "creative", "name": "Creative AI"}],
            }]),
        )

        self.assertEqual(["assistant> Synced 1 personalities and 1 squads."], self.handle("/sync"))
        self.assertEqual(["assistant> Now chatting with Brain Squad."], self.handle("/use sq-1"))

    def test_sync_and_me_report_failures(self) -> None:
        self.assertEqual(["assistant> Sync failed: Not logged in"], self.handle("/sync"))

        self.tokens.save_tokens(valid_token("a"), valid_token("r"))
        self.transport.on(PATHS.current_user, json_response(200, {"user": {"id": "u-1", "name": "Sam"}}))
        self.assertEqual(["assistant> Logged in as Sam."], self.handle("/me"))

        self.transport.on(PATHS.current_user, json_response(500, {"error": "boom"}))
        self.assertIn("boom", self.handle("/me")[0])

    def test_logout_and_unknown_command(self) -> None:
        self.tokens.save_tokens(valid_token("a"), valid_token("r"))
        self.assertEqual(["assistant> Logged out."], self.handle("/logout"))
        self.assertIsNone(self.tokens.get_access_token())
        self.assertEqual(["assistant> Unknown command: /dance. Try /help."], self.handle("/dance"))
        self.assertGreater(len(self.handle("/help")), 1)
        self.assertEqual([], self.handle("   "))


if __name__ == "__main__":
    unittest.main()

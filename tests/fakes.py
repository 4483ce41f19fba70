import base64
import inspect
import json
import time
from typing import Any, Callable

from squad_session.transport import HttpRequest, HttpResponse


def _b64(obj: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()


def make_jwt(exp: float | None, **claims: Any) -> str:
    payload = dict(claims)
    if exp is not None:
        payload["exp"] = exp
    return f"{_b64({'alg': 'HS256', 'typ': 'JWT'})}.{_b64(payload)}.sig"


def valid_token(name: str = "access", ttl: float = 3600) -> str:
    return make_jwt(time.time() + ttl, sub=name)


def expired_token(name: str = "access") -> str:
    return make_jwt(time.time() - 60, sub=name)


def json_response(status: int, body: Any, headers: dict[str, str] | None = None) -> HttpResponse:
    return HttpResponse(status_code=status, body=json.dumps(body).encode(), headers=headers or {})


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Path-routed transport double.

    Each route holds a queue of responses; the last one repeats. An entry may
    be an HttpResponse, an exception to raise, or a callable taking the
    request (sync or async) that returns an HttpResponse.
    """

    def __init__(self) -> None:
        self.calls: list[HttpRequest] = []
        self._routes: dict[str, list[Any]] = {}

    def on(self, path: str, *responses: HttpResponse | BaseException | Callable) -> "FakeTransport":
        self._routes[path] = list(responses)
        return self

    def calls_to(self, path: str) -> list[HttpRequest]:
        return [c for c in self.calls if c.path == path]

    async def execute(self, request: HttpRequest) -> HttpResponse:
        self.calls.append(request)
        queue = self._routes.get(request.path)
        if not queue:
            raise AssertionError(f"Unexpected request to {request.path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            result = item(request)
            if inspect.isawaitable(result):
                result = await result
            return result
        return item


class RecordingEvents:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []

    def emit(self, conversation_id: str, event_type: str, payload: dict) -> None:
        self.events.append((conversation_id, event_type, payload))

    def states(self) -> list[str]:
        return [p["state"] for _, t, p in self.events if t == "send.state"]

    def of_type(self, event_type: str) -> list[dict]:
        return [p for _, t, p in self.events if t == event_type]

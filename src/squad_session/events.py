from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from loguru import logger

EventListener = Callable[[str, str, dict], None]


@runtime_checkable
class EventSink(Protocol):
    def emit(self, conversation_id: str, event_type: str, payload: dict) -> None: ...


class EventEmitter:
    """Fan send-lifecycle events out to presentation-layer listeners.

    Listeners are called synchronously with ``(conversation_id, event_type,
    payload)``. A failing listener is logged and skipped; it never affects
    the send that produced the event.
    """

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, conversation_id: str, event_type: str, payload: dict) -> None:
        for listener in list(self._listeners):
            try:
                listener(conversation_id, event_type, payload)
            except Exception as ex:
                logger.warning(f"Event listener failed for {event_type} ({conversation_id}): {ex}")


class NullEventSink:
    def emit(self, conversation_id: str, event_type: str, payload: dict) -> None:
        return

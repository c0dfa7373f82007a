from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], Awaitable[None] | None]


class EventChannel(Generic[T]):
    """Single-producer notification channel.

    Handlers run sequentially in subscription order, so payloads reach each
    subscriber in the order they were emitted. A failing handler is logged
    and does not prevent delivery to the others.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Handler] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        if self._closed:
            raise RuntimeError(f"Channel {self.name!r} is closed")
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def emit(self, payload: T) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                LOGGER.exception("Handler on channel %s failed", self.name)

    def close(self) -> None:
        self._handlers.clear()
        self._closed = True

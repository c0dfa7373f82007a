from __future__ import annotations

import asyncio
import inspect
import logging
import operator
from collections.abc import Awaitable, Callable
from typing import Final, Generic, TypeVar

LOGGER = logging.getLogger(__name__)

DEFAULT_QUIET_PERIOD: Final[float] = 0.1

K = TypeVar("K")
V = TypeVar("V")

Sink = Callable[[K, V], Awaitable[None] | None]


class DebouncedAggregator(Generic[K, V]):
    """Accumulate fragments per key and flush once the key has gone quiet.

    Every ``push`` restarts the key's quiet-period timer. When the timer
    expires the combined value is handed to ``sink`` and the key's state is
    dropped. ``clear`` cancels the pending timer so nothing stale is flushed
    afterwards.
    """

    def __init__(
        self,
        sink: Sink,
        *,
        quiet_period: float = DEFAULT_QUIET_PERIOD,
        combine: Callable[[V, V], V] = operator.add,
    ) -> None:
        self._sink = sink
        self._quiet_period = quiet_period
        self._combine = combine
        self._buffers: dict[K, V] = {}
        self._timers: dict[K, asyncio.Task] = {}

    def push(self, key: K, fragment: V) -> None:
        buffered = self._buffers.get(key)
        self._buffers[key] = fragment if buffered is None else self._combine(buffered, fragment)
        self._cancel_timer(key)
        self._timers[key] = asyncio.get_running_loop().create_task(self._flush_later(key))

    def has_pending(self, key: K) -> bool:
        return key in self._buffers

    async def flush(self, key: K) -> None:
        """Flush ``key`` now instead of waiting for the quiet period."""

        self._cancel_timer(key)
        await self._deliver(key)

    def clear(self, key: K) -> None:
        self._cancel_timer(key)
        self._buffers.pop(key, None)

    def clear_all(self) -> None:
        for key in list(self._timers):
            self._cancel_timer(key)
        self._buffers.clear()

    def _cancel_timer(self, key: K) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _flush_later(self, key: K) -> None:
        await asyncio.sleep(self._quiet_period)
        self._timers.pop(key, None)
        try:
            await self._deliver(key)
        except Exception:
            LOGGER.exception("Debounced flush failed for key %s", key)

    async def _deliver(self, key: K) -> None:
        value = self._buffers.pop(key, None)
        if value is None:
            return
        result = self._sink(key, value)
        if inspect.isawaitable(result):
            await result

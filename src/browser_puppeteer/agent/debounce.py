"""Trailing-edge debounce timers keyed by source."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Hashable
from typing import Any

logger = logging.getLogger(__name__)


class Debouncer:
    """Coalesce bursts per key: only the last call of a burst runs, *delay*
    seconds after the burst went quiet.
    """

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self._timers: dict[Hashable, asyncio.TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._timers)

    def trigger(self, key: Hashable, callback: Callable[..., Any], *args: Any) -> None:
        """(Re)arm the timer for *key*; a pending call for the same key is dropped."""
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self.delay, self._fire, key, callback, args)

    def _fire(self, key: Hashable, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self._timers.pop(key, None)
        try:
            callback(*args)
        except Exception:
            logger.exception("Debounced callback for %r failed", key)

    def cancel(self, key: Hashable) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

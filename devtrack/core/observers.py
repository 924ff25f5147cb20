"""Observer registry with explicit unsubscribe handles."""

from __future__ import annotations

import itertools
import threading
from typing import Callable, Generic, TypeVar

from devtrack.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle returned by ObserverRegistry.subscribe; unsubscribing twice is harmless."""

    def __init__(self, registry: "ObserverRegistry[object]", key: int) -> None:
        self._registry = registry
        self.key = key

    @property
    def active(self) -> bool:
        return self._registry.has(self.key)

    def unsubscribe(self) -> None:
        self._registry.unsubscribe(self.key)


class ObserverRegistry(Generic[T]):
    """Callbacks keyed by subscription id, notified in subscription order.

    A failing callback is logged and does not stop delivery to the others.
    New subscribers only see payloads published after they subscribed.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._callbacks: dict[int, Callable[[T], None]] = {}

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        with self._lock:
            key = next(self._ids)
            self._callbacks[key] = callback
        return Subscription(self, key)  # type: ignore[arg-type]

    def unsubscribe(self, key: int) -> None:
        with self._lock:
            self._callbacks.pop(key, None)

    def has(self, key: int) -> bool:
        with self._lock:
            return key in self._callbacks

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def publish(self, payload: T) -> None:
        with self._lock:
            callbacks = list(self._callbacks.values())
        for callback in callbacks:
            try:
                callback(payload)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Observer %s callback failed: %s", self.name or "?", e, exc_info=True)

"""Cooperative cancellation scopes.

A scope is cancelled explicitly or because its parent was. Long-running
upstream calls (builds) receive a scope and poll ``cancelled``; the
coordinator holds one root scope for the whole runtime.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, Optional


class CancelScope:
    def __init__(self, parent: Optional["CancelScope"] = None, name: str = "") -> None:
        self.name = name
        self._parent = parent
        self._cancelled = False
        self._lock = threading.Lock()
        self._children: list[CancelScope] = []
        self._callbacks: list[Callable[[], None]] = []
        self._event: Optional[asyncio.Event] = None
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: "CancelScope") -> None:
        with self._lock:
            cancelled = self._cancelled
            if not cancelled:
                self._children.append(child)
        if cancelled:
            child.cancel()

    def child(self, name: str = "") -> "CancelScope":
        return CancelScope(parent=self, name=name)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            children = list(self._children)
            callbacks = list(self._callbacks)
            self._children.clear()
            self._callbacks.clear()
        if self._parent is not None:
            self._parent._forget(self)
        if self._event is not None:
            self._event.set()
        for callback in callbacks:
            callback()
        for child in children:
            child.cancel()

    def _forget(self, child: "CancelScope") -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def release(self) -> None:
        """Detach a finished scope from its parent without cancelling it."""
        if self._parent is not None:
            self._parent._forget(self)

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once on cancellation (immediately if already cancelled)."""
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return
        callback()

    async def wait(self) -> None:
        """Block until the scope is cancelled. Must be called from the event loop."""
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()

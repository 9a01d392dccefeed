"""Subscription registries for raw lines, bus errors, and decoded payloads."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from elmlink.core.model import DataReceivedEvent

LOGGER = logging.getLogger(__name__)

Callback = Callable[[Any], None]


class EventHook:
    """Ordered callback list; a failing callback does not stop the rest."""

    def __init__(self, name: str = "event") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._callbacks: list[Callback] = []

    def subscribe(self, callback: Callback) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: Callback) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()

    def fire(self, event: Any) -> None:
        with self._lock:
            callbacks = tuple(self._callbacks)
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                LOGGER.exception("Subscriber %r for %s failed", callback, self.name)

    def __len__(self) -> int:
        return len(self._callbacks)


class EventDispatcher:
    """Per-payload-type hooks plus a wildcard hook keyed by ``wildcard``."""

    def __init__(self, wildcard: type) -> None:
        self.wildcard = wildcard
        self._lock = threading.Lock()
        self._hooks: dict[type, EventHook] = {}

    def _hook(self, payload_type: type) -> EventHook:
        with self._lock:
            hook = self._hooks.get(payload_type)
            if hook is None:
                hook = self._hooks[payload_type] = EventHook(payload_type.__name__)
            return hook

    def subscribe(self, payload_type: type, callback: Callback) -> None:
        self._hook(payload_type).subscribe(callback)

    def subscribe_any(self, callback: Callback) -> None:
        self.subscribe(self.wildcard, callback)

    def unsubscribe(self, payload_type: type, callback: Callback) -> None:
        hook = self._hooks.get(payload_type)
        if hook is not None:
            hook.unsubscribe(callback)

    def unsubscribe_any(self, callback: Callback) -> None:
        self.unsubscribe(self.wildcard, callback)

    def raise_event(self, payload_type: type, value: Any, timestamp: datetime) -> None:
        event = DataReceivedEvent(data=value, timestamp=timestamp)
        hook = self._hooks.get(payload_type)
        if hook is not None and payload_type is not self.wildcard:
            hook.fire(event)
        wildcard = self._hooks.get(self.wildcard)
        if wildcard is not None:
            wildcard.fire(event)

    def subscriber_count(self, payload_type: type) -> int:
        hook = self._hooks.get(payload_type)
        return len(hook) if hook is not None else 0

    def clear(self) -> None:
        with self._lock:
            self._hooks.clear()

"""Minimal observer registration with disposers."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List

logger = logging.getLogger(__name__)

Disposer = Callable[[], None]


class Signal:
    """A named event; ``connect`` returns a callable that removes the handler."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: List[Callable[..., Any]] = []
        self._lock = threading.Lock()

    def connect(self, handler: Callable[..., Any]) -> Disposer:
        with self._lock:
            self._handlers.append(handler)

        def dispose() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return dispose

    def emit(self, *args: Any) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(*args)
            except Exception:  # noqa: BLE001
                logger.exception("Handler for %s failed", self.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

"""Keyed debounce timers.

Each key has at most one pending timer. Re-scheduling a key cancels the
previous timer, so a burst of triggers only ever runs the most recent action.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Hashable

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], Any]


def _thread_timer(interval: float, function: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval, function)
    timer.daemon = True
    return timer


class DebounceScheduler:
    def __init__(self, timer_factory: TimerFactory = _thread_timer) -> None:
        self._timer_factory = timer_factory
        self._pending: Dict[Hashable, Any] = {}
        self._lock = threading.Lock()

    def schedule(self, key: Hashable, delay_ms: int, action: Callable[[], None]) -> None:
        """Arm ``action`` to run once after ``delay_ms`` unless re-scheduled or cancelled."""
        holder: Dict[str, Any] = {}

        def _fire() -> None:
            with self._lock:
                # A superseded timer may still wake up; only the registered one runs.
                if self._pending.get(key) is not holder.get("timer"):
                    return
                del self._pending[key]
            try:
                action()
            except Exception:  # noqa: BLE001
                logger.exception("Debounced action for key=%s failed", key)

        timer = self._timer_factory(max(delay_ms, 0) / 1000.0, _fire)
        holder["timer"] = timer
        with self._lock:
            previous = self._pending.pop(key, None)
            self._pending[key] = timer
        if previous is not None:
            previous.cancel()
            logger.debug("Re-armed debounce timer for key=%s", key)
        timer.start()

    def cancel(self, key: Hashable) -> bool:
        with self._lock:
            timer = self._pending.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._pending.values())
            self._pending.clear()
        for timer in timers:
            timer.cancel()

    def is_pending(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._pending

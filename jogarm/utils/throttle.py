"""Rate limiting for log messages emitted from high-rate loops."""

from __future__ import annotations

import logging
import threading
import time

from jogarm.config import WARN_INTERVAL_S


class LogThrottle:
    """Emit a given message key at most once per ``interval`` seconds."""

    def __init__(self, logger: logging.Logger, interval: float = WARN_INTERVAL_S):
        self._logger = logger
        self._interval = interval
        self._last: dict[str, float] = {}
        self._lock = threading.Lock()

    def _ready(self, key: str) -> bool:
        now = time.monotonic()
        with self._lock:
            last = self._last.get(key)
            if last is not None and now - last < self._interval:
                return False
            self._last[key] = now
            return True

    def warning(self, key: str, msg: str, *args: object) -> None:
        if self._ready(key):
            self._logger.warning(msg, *args)

    def info(self, key: str, msg: str, *args: object) -> None:
        if self._ready(key):
            self._logger.info(msg, *args)

    def clear(self, key: str) -> None:
        """Forget ``key`` so the next message for it is logged immediately."""
        with self._lock:
            self._last.pop(key, None)

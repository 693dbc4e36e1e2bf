"""Queue-based logging so control threads never block on log I/O."""

import logging
import queue
from logging.handlers import QueueHandler, QueueListener


class AsyncLogHandler:
    """Route one logger subtree through a QueueHandler + QueueListener.

    Records emitted by the jog and collision loops are queued without
    blocking; a listener thread hands them to the handlers that were
    active when ``start()`` was called.
    """

    def __init__(self, logger_name: str = "jogarm"):
        self._queue: queue.Queue[logging.LogRecord] = queue.Queue(-1)
        self._listener: QueueListener | None = None
        self._logger = logging.getLogger(logger_name)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def _find_handlers(self) -> list[logging.Handler]:
        current: logging.Logger | None = self._logger
        while current is not None:
            if current.handlers:
                return current.handlers[:]
            if not current.propagate:
                break
            current = current.parent
        return []

    def start(self) -> None:
        """Swap the logger's output to the queue. Safe to call twice."""
        if self._started:
            return
        targets = self._find_handlers()
        if not targets:
            return

        self._logger.handlers = [QueueHandler(self._queue)]
        self._logger.propagate = False
        self._listener = QueueListener(
            self._queue, *targets, respect_handler_level=True
        )
        self._listener.start()
        self._started = True

    def stop(self) -> None:
        """Flush queued records and restore normal propagation."""
        if not self._started:
            return
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        self._logger.handlers = []
        self._logger.propagate = True
        self._started = False

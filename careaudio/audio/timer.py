"""Periodic ticker driving the elapsed-time counter."""

import logging
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class Ticker(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TickerFactory = Callable[[float, Callable[[], None]], Ticker]


class IntervalTicker:
    """Calls a callback every `interval` seconds on a daemon thread until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._cancelled.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="IntervalTicker")
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1.0)

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Ticker callback failed: {e}")

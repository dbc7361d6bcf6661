from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class DebouncedTimer:
    """Runs callback once, delay seconds after the first schedule() since the last run or cancel."""

    def __init__(self, delay: float, callback: Callable[[], None], name: str = "debounced-timer") -> None:
        self.delay = delay
        self._callback = callback
        self._name = name
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    @property
    def scheduled(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self) -> bool:
        """Returns False when a run is already pending."""
        with self._lock:
            if self._timer is not None:
                return False
            timer = threading.Timer(self.delay, self._fire)
            timer.daemon = True
            timer.name = self._name
            self._timer = timer
        timer.start()
        return True

    def cancel(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _fire(self) -> None:
        with self._lock:
            if self._timer is None or self._timer is not threading.current_thread():
                return
            self._timer = None
        self._callback()


class PeriodicTask:
    """
    Background asyncio task that awaits func every interval seconds.

    Failures are logged and do not stop the loop; stop() cancels the task and
    waits for it to finish.
    """

    def __init__(self, interval: float, func: Callable[[], Awaitable[None]], name: str = "periodic-task") -> None:
        self.interval = interval
        self._func = func
        self._name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._func()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s failed", self._name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

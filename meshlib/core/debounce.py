"""Per-key trailing-edge debouncing on the running asyncio loop."""

import asyncio
import inspect
from typing import Callable, Dict, Hashable, Set

from meshlib.utils.console import log_error


class Debouncer:
    """
    Coalesces bursts of calls per key: every ``schedule`` restarts the key's
    timer and only the last callback runs, ``delay`` seconds after the burst.
    """

    def __init__(self, delay: float, name: str = "debounce"):
        self.delay = delay
        self.name = name
        self._timers: Dict[Hashable, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, key: Hashable, callback: Callable) -> None:
        loop = asyncio.get_running_loop()
        timer = self._timers.pop(key, None)
        if timer:
            timer.cancel()
        self._timers[key] = loop.call_later(self.delay, self._fire, key, callback)

    def pending(self, key: Hashable) -> bool:
        return key in self._timers

    def _fire(self, key: Hashable, callback: Callable) -> None:
        self._timers.pop(key, None)
        try:
            result = callback()
        except Exception as e:
            log_error(f"{self.name}[{key}]", e)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._task_done(key, t))

    def _task_done(self, key: Hashable, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            log_error(f"{self.name}[{key}]", task.exception())

    def cancel(self, key: Hashable) -> None:
        timer = self._timers.pop(key, None)
        if timer:
            timer.cancel()

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

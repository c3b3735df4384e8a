# timing.py
"""
Timing primitives shared by the cart and the scanner.

All of them run on the asyncio event loop and must be used from code
already executing inside it.
"""
import time
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("pos_system.timing")


class Debouncer:
    """
    Trailing-edge debounce: every `schedule()` cancels the previous timer
    and starts a new one; only the last call in a burst runs `callback`.
    """
    def __init__(self, delay: float, callback: Callable[[], Awaitable]):
        self.delay = delay
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks = set()

    @property
    def pending(self):
        return self._handle is not None

    def schedule(self):
        loop = asyncio.get_running_loop()
        self.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._callback())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self):
        """Wait for the pending timer (if any) and every fired callback to finish."""
        while self._handle is not None or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(self.delay / 4 or 0.001)

    def close(self):
        self.cancel()
        for task in list(self._tasks):
            task.cancel()


class RepeatFilter:
    """
    Drops a value identical to the last accepted one while inside `window`
    seconds of its acceptance. Dropped repeats do not extend the window.
    """
    def __init__(self, window: float, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self._clock = clock
        self._last_value = None
        self._last_time = None

    def accept(self, value) -> bool:
        now = self._clock()
        if (value == self._last_value and self._last_time is not None
                and now - self._last_time < self.window):
            return False
        self._last_value = value
        self._last_time = now
        return True

    def reset(self):
        self._last_value = None
        self._last_time = None


class TransientMessage:
    """A message that clears itself `seconds` after it was last set."""
    def __init__(self, seconds: float, on_change: Optional[Callable[[Optional[str]], None]] = None):
        self.seconds = seconds
        self.value: Optional[str] = None
        self._on_change = on_change
        self._handle: Optional[asyncio.TimerHandle] = None

    def set(self, message: Optional[str]):
        self._cancel_timer()
        self._update(message)
        if message is None or not self.seconds:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the message simply stays until replaced
            return
        self._handle = loop.call_later(self.seconds, self._expire)

    def clear(self):
        self._cancel_timer()
        self._update(None)

    def _expire(self):
        self._handle = None
        self._update(None)

    def _update(self, message):
        self.value = message
        if self._on_change is not None:
            self._on_change(message)

    def _cancel_timer(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

# poller.py
import time
import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger("pos_system.poller")


class PollOutcome(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    MATCHED = "MATCHED"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED"
    STOPPED = "STOPPED"


class PaymentPoller:
    """
    Periodically asks the payment backend whether a bank transfer with the
    given reference and amount has arrived.

    Checks run one at a time inside a single task. `on_match` fires at most
    once and never after `stop()`. When `max_attempts` or `timeout` is set,
    running out of either ends the poll as PAYMENT_EXPIRED and fires
    `on_expired` once.
    """
    def __init__(self, order_client, transfer_content: str, amount: float,
                 on_match: Callable[[], None], interval: float = 5.0,
                 max_attempts: Optional[int] = None, timeout: Optional[float] = None,
                 on_expired: Optional[Callable[[], None]] = None, limit: int = 20,
                 clock: Callable[[], float] = time.monotonic):
        self.client = order_client
        self.transfer_content = transfer_content
        self.amount = amount
        self.interval = interval
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.limit = limit
        self._on_match = on_match
        self._on_expired = on_expired
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._started_at = None
        self._stopped = False
        self._fired = False
        self.attempts = 0
        self.outcome = PollOutcome.IDLE

    @property
    def running(self):
        return self.outcome == PollOutcome.RUNNING

    def start(self):
        if self._task is not None or self._stopped:
            return
        self.outcome = PollOutcome.RUNNING
        self._started_at = self._clock()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Polling for transfer '{self.transfer_content}' ({self.amount})")

    def stop(self):
        """Stop polling. Safe to call repeatedly and from inside a callback."""
        if self._stopped:
            return
        self._stopped = True
        if self.outcome == PollOutcome.RUNNING:
            self.outcome = PollOutcome.STOPPED
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        logger.info(f"Payment polling stopped ({self.outcome.value})")

    async def wait(self):
        """Wait for the polling task to end, however it ends."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    def _exhausted(self) -> bool:
        if self.max_attempts is not None and self.attempts >= self.max_attempts:
            return True
        if self.timeout is not None and self._clock() - self._started_at >= self.timeout:
            return True
        return False

    async def _run(self):
        while not self._stopped:
            await asyncio.sleep(self.interval)
            if self._stopped:
                return
            self.attempts += 1
            try:
                matched = await self.client.match_payment(self.transfer_content, self.amount, self.limit)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Error checking payment status: {e}")
                matched = False

            # stop() may have landed while the check was in flight
            if self._stopped:
                return
            if matched:
                logger.info(f"Payment confirmed after {self.attempts} check(s)")
                self._finish(PollOutcome.MATCHED, self._on_match)
                return
            if self._exhausted():
                logger.warning(f"No matching transfer after {self.attempts} check(s); giving up")
                self._finish(PollOutcome.PAYMENT_EXPIRED, self._on_expired)
                return

    def _finish(self, outcome, callback):
        if self._fired:
            return
        self._fired = True
        self._stopped = True
        self.outcome = outcome
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception(f"Payment poll callback failed ({outcome.value})")

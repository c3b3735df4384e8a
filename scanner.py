# scanner.py
"""
Barcode input for the cart.

A `BarcodeSource` makes one decode attempt at a time; `decode_stream`
turns it into an endless async stream of codes. `BarcodeCartAdapter`
drops repeated scans, resolves each code through the catalog and adds the
priority unit to the cart.
"""
import time
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

from config import EngineContext
from errors import describe_error
from timing import RepeatFilter, TransientMessage

logger = logging.getLogger("pos_system.scanner")


class BarcodeSource:
    """A camera or any other device that yields barcode strings."""

    async def decode(self) -> Optional[str]:
        raise NotImplementedError

    def is_alive(self) -> bool:
        return True

    async def restart(self):
        pass

    def close(self):
        pass


class QueueBarcodeSource(BarcodeSource):
    """Codes pushed in from code: keyboard wedge, terminal input, tests."""
    def __init__(self):
        self._queue = deque()
        self._alive = True
        self.restarts = 0

    def push(self, code: str):
        self._queue.append(code)

    async def decode(self):
        return self._queue.popleft() if self._queue else None

    def is_alive(self):
        return self._alive

    async def restart(self):
        self._alive = True
        self.restarts += 1

    def close(self):
        self._alive = False


async def decode_stream(source: BarcodeSource, interval: float = 0.1):
    """
    Yield decoded codes forever. Polls faster while nothing is read and
    backs off while the source is down.
    """
    while True:
        if not source.is_alive():
            await asyncio.sleep(interval * 2)
            continue
        try:
            code = await source.decode()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Barcode decode failed: {e}")
            code = None
        if code and code.strip():
            yield code.strip()
            await asyncio.sleep(interval)
        else:
            await asyncio.sleep(interval / 2)


@dataclass
class ScanResult:
    code: str
    accepted: bool
    added: bool = False
    message: Optional[str] = None


class BarcodeCartAdapter:
    def __init__(self, context: EngineContext, source: BarcodeSource, product_client, cart,
                 clock=time.monotonic):
        self.context = context
        self.source = source
        self.products = product_client
        self.cart = cart
        self._filter = RepeatFilter(context.scan_dedup_window, clock)
        self._error = TransientMessage(context.error_display_seconds)
        self._message = TransientMessage(context.error_display_seconds)
        self._tasks = []

    @property
    def error(self):
        return self._error.value

    @property
    def message(self):
        return self._message.value

    @property
    def running(self):
        return any(not t.done() for t in self._tasks)

    def start(self):
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._scan_loop()),
            loop.create_task(self._watch_source()),
        ]
        logger.info("Barcode scanning started")

    def stop(self):
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        self.source.close()
        logger.info("Barcode scanning stopped")

    async def _scan_loop(self):
        async for code in decode_stream(self.source, self.context.scan_interval):
            await self.handle_code(code)

    async def _watch_source(self):
        while True:
            await asyncio.sleep(self.context.camera_check_interval)
            if self.source.is_alive():
                continue
            logger.warning("Barcode source lost, restarting")
            try:
                await self.source.restart()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error restarting barcode source: {e}")
                self._error.set(f"Could not restart the scanner: {e}")

    def _reject(self, code, message) -> ScanResult:
        logger.warning(message)
        self._message.clear()
        self._error.set(message)
        return ScanResult(code=code, accepted=True, message=message)

    async def handle_code(self, code: str) -> ScanResult:
        """Look up one scanned code and add its priority unit to the cart."""
        code = (code or "").strip()
        if not code or not self._filter.accept(code):
            return ScanResult(code=code, accepted=False)

        try:
            item = await self.products.find_by_code(code)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._reject(code, f"Error looking up product {code}: {describe_error(e)}")

        if item is None:
            return self._reject(code, f"No product found for code: {code}")
        if not item.units:
            return self._reject(code, f"Product \"{item.name}\" has no sellable unit.")
        unit = item.units[0]
        if unit.price is None or unit.price <= 0:
            return self._reject(code, f"\"{item.name} - {unit.unit_name}\" has no price yet.")

        if not self.cart.add(unit):
            return self._reject(code, f"Could not add \"{item.name}\" to the cart.")
        message = f"Added {unit.product_name} - {unit.unit_name}"
        self._error.clear()
        self._message.set(message)
        return ScanResult(code=code, accepted=True, added=True, message=message)

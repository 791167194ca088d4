"""In-process periodic reconciliation."""

import asyncio
import contextlib
import logging

from entitlement_engine.reconciliation.scanner import ReconciliationScanner

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Runs ``scanner.scan()`` every ``interval`` seconds until stopped."""

    def __init__(self, scanner: ReconciliationScanner, interval: float):
        if interval <= 0:
            raise ValueError("Reconciliation interval must be positive")
        self.scanner = scanner
        self.interval = interval
        self.runs = 0
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        try:
            await self.scanner.scan()
        except Exception:
            logger.exception("Scheduled reconciliation failed")
        finally:
            self.runs += 1

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        logger.info("Starting reconciliation scheduler", extra={"interval": self.interval})
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Stopped reconciliation scheduler")

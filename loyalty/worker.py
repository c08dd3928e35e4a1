# loyalty/worker.py
"""Background reconciliation of local orders with the accrual system.

One task per process. Every ``poll_interval`` seconds it loads the orders
that are not final yet (NEW / REGISTERED / PROCESSING), asks the accrual
system about each of them one after another and stores what it says.

Failures are per order: the order stays non-final and is asked about again
on the next tick. A 429 ends the current tick, and the next one starts no
earlier than the Retry-After the accrual system asked for.

There is no per-order backoff: an order that keeps failing is retried every
tick until it becomes final.
"""
import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .accrual import AccrualClient, OutcomeKind
from .errors import OracleProtocolError
from .models import OrderStatus
from .schemas import AccrualStatus, OrderRecord
from .storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    queried: int = 0
    updated: int = 0
    failed: int = 0
    # seconds the accrual system asked us to stay away, if it rate limited us
    cooldown: Optional[float] = None


class ReconciliationWorker:
    def __init__(
        self,
        storage: Storage,
        client: AccrualClient,
        poll_interval: float = 5.0,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.storage = storage
        self.client = client
        self.poll_interval = poll_interval
        self.stop_event = stop_event or asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self.run(), name="accrual-worker")
        return self._task

    def stop(self) -> None:
        self.stop_event.set()

    async def shutdown(self, grace: float) -> None:
        """Signal the loop and give an in-flight tick ``grace`` seconds to notice."""
        self.stop()
        if self._task is None:
            return
        done, _ = await asyncio.wait({self._task}, timeout=grace)
        if not done:
            logger.warning("accrual worker did not stop within %.1fs, cancelling", grace)
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def run(self) -> None:
        logger.info("accrual worker started (interval %.1fs, accrual system %s)",
                    self.poll_interval, self.client.base_url)
        delay = self.poll_interval
        while not await self._wait(delay):
            report = await self.run_once()
            delay = self.poll_interval
            if report.cooldown is not None:
                delay = max(delay, report.cooldown)
        logger.info("accrual worker stopped")

    async def _wait(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True when the stop signal is set."""
        if self.stop_event.is_set():
            return True
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def run_once(self) -> TickReport:
        report = TickReport()
        try:
            orders = await self.storage.fetch_non_terminal_orders()
        except Exception:
            logger.exception("loading orders for accrual update failed")
            return report

        logger.debug("worker tick: %d orders to check", len(orders))
        for order in orders:
            # no new requests once shutdown has been asked for
            if self.stop_event.is_set():
                break
            report.queried += 1
            try:
                cooldown = await self._reconcile(order, report)
            except Exception:
                report.failed += 1
                logger.exception("accrual update of order %s failed", order.number)
                continue
            if cooldown is not None:
                report.cooldown = cooldown
                break

        if report.queried:
            logger.info("worker tick: queried=%d updated=%d failed=%d%s",
                        report.queried, report.updated, report.failed,
                        f" cooldown={report.cooldown:.0f}s" if report.cooldown is not None else "")
        return report

    async def _reconcile(self, order: OrderRecord, report: TickReport) -> Optional[float]:
        """Query and apply one order. Returns a cooldown when rate limited."""
        try:
            outcome = await self.client.get_order(order.number)
        except httpx.HTTPError as e:
            report.failed += 1
            logger.warning("accrual request for order %s failed: %r", order.number, e)
            return None
        except OracleProtocolError as e:
            report.failed += 1
            logger.error("%s", e)
            return None

        if outcome.kind is OutcomeKind.RATE_LIMITED:
            cooldown = outcome.retry_after if outcome.retry_after is not None else self.poll_interval
            logger.warning("too many requests to accrual system, pausing for %.0fs", cooldown)
            return cooldown
        if outcome.kind is OutcomeKind.NO_DATA:
            return None
        if outcome.kind is OutcomeKind.UNEXPECTED:
            logger.warning("unexpected status %d from accrual system for order %s",
                           outcome.status_code, order.number)
            return None

        payload = outcome.response
        status = OrderStatus(payload.status.value)
        accrual = payload.accrual if payload.status is AccrualStatus.PROCESSED else None
        if await self.storage.apply_order_outcome(order.number, status, accrual):
            report.updated += 1
            logger.info("order %s updated to %s", order.number, status.value)
        return None

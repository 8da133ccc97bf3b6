import asyncio
import random
from dataclasses import dataclass
from typing import Callable, Optional

from config.constants import SWEEP_JITTER
from models.rental import Rental, RentalStatus
from services.errors import LedgerError
from services.rental_service import RentalService
from services.rental_store import RentalStore
from utils.logger import app_logger
from utils.time import utc_now


@dataclass
class SweepReport:
    completed: int = 0
    cancelled: int = 0
    forced: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.completed + self.cancelled + self.forced + self.skipped


class ExpirySweeper:
    """
    Settles rentals whose window closed while nobody was polling them.

    A late code is still honoured and billed; otherwise the number is released
    and the hold refunded. One rental's failure never stops the rest of the
    batch, and a rental that cannot be settled normally is forced to cancelled.
    """

    def __init__(self, rentals: RentalService, store: RentalStore, interval_seconds: int = 60,
                 clock: Callable = utc_now):
        self._rentals = rentals
        self._store = store
        self._interval = interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._shutdown: Optional[asyncio.Event] = None

    async def run_once(self, user_id: Optional[int] = None) -> SweepReport:
        report = SweepReport()
        now = self._clock()
        expired = await self._store.list_expired_active(now, user_id=user_id)
        if not expired:
            app_logger.debug("No expired rentals to sweep.")
            return report

        app_logger.info(f"Sweeping {len(expired)} expired rental(s)")
        for rental in expired:
            try:
                outcome = await self._settle(rental)
            except Exception:
                app_logger.exception(f"Error settling expired rental {rental.id}; forcing cancel")
                outcome = "forced" if await self._rentals.force_cancel(rental, reason="Expiry normalization") else "skipped"
            setattr(report, outcome, getattr(report, outcome) + 1)

        app_logger.info(
            f"Sweep done: {report.completed} completed, {report.cancelled} cancelled, "
            f"{report.forced} forced, {report.skipped} skipped"
        )
        return report

    async def _settle(self, rental: Rental) -> str:
        code = await self._rentals.fetch_code(rental)
        if code:
            settled = await self._rentals.complete(rental, code)
            app_logger.info(f"Expired rental {rental.id} completed by a late code")
            return "completed" if settled.status == RentalStatus.COMPLETED.value else "skipped"

        await self._rentals.cancel_on_provider(rental)
        try:
            await self._rentals.refund_hold(rental, reason="Expired rental")
        except LedgerError as e:
            app_logger.error(f"Refund on expiry of rental {rental.id} failed: {e}")

        cancelled = await self._rentals.mark_cancelled(rental)
        if cancelled is None:
            return "skipped"
        app_logger.info(f"Expired rental {rental.id} cancelled and refunded")
        return "cancelled"

    async def _loop(self):
        app_logger.info(f"Expiry sweeper started (interval {self._interval}s).")
        while not self._shutdown.is_set():
            try:
                await self.run_once()
            except Exception:
                app_logger.exception("Critical error in expiry sweeper")

            delay = self._interval * random.uniform(1 - SWEEP_JITTER, 1 + SWEEP_JITTER)
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        app_logger.info("Expiry sweeper stopped.")

    def start(self):
        if self._task is not None and not self._task.done():
            return
        self._shutdown = asyncio.Event()
        self._task = asyncio.create_task(self._loop())

    async def stop(self):
        if self._task is None:
            return
        self._shutdown.set()
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None

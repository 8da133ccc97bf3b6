import asyncio
from typing import Dict, Iterable, Sequence

from config.constants import POLL_BACKOFF_SECONDS
from models.rental import Rental
from services.errors import RentalNotFound
from services.rental_service import RentalService
from utils.logger import app_logger


class PollSupervisor:
    """
    Polls watched, active rentals for their code with a capped backoff.

    There is at most one loop per rental id. A loop ends when its rental
    settles, expires (the expiry sweeper takes it from there), disappears
    or is unwatched.
    """

    def __init__(self, rentals: RentalService, backoff: Sequence[float] = POLL_BACKOFF_SECONDS):
        if not backoff:
            raise ValueError("backoff schedule must not be empty")
        self._rentals = rentals
        self._backoff = tuple(backoff)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._owners: Dict[str, int] = {}

    @property
    def watched_ids(self) -> set:
        return set(self._tasks)

    def is_watching(self, rental_id: str) -> bool:
        return rental_id in self._tasks

    def watch(self, user_id: int, rental: Rental) -> bool:
        """Starts a loop for an active rental. Returns False if nothing was started."""
        if not rental.is_active or rental.id in self._tasks:
            return False
        task = asyncio.create_task(self._poll(user_id, rental.id), name=f"poll:{rental.id}")
        self._tasks[rental.id] = task
        self._owners[rental.id] = user_id
        app_logger.debug(f"Started polling rental {rental.id}")
        return True

    def unwatch(self, rental_id: str) -> bool:
        task = self._tasks.pop(rental_id, None)
        self._owners.pop(rental_id, None)
        if task is None:
            return False
        task.cancel()
        app_logger.debug(f"Stopped polling rental {rental_id}")
        return True

    def sync(self, user_id: int, rentals: Iterable[Rental]):
        """
        Reconciles loops with the user's current rentals: new active rentals get
        a loop, loops for this user's rentals that are gone or settled are stopped.
        """
        rentals = list(rentals)
        active_ids = {r.id for r in rentals if r.is_active}
        owned_ids = {r.id for r in rentals}

        for rental_id in list(self._tasks):
            if self._owners.get(rental_id) == user_id and rental_id not in active_ids:
                self.unwatch(rental_id)

        for rental in rentals:
            if rental.id in active_ids:
                self.watch(user_id, rental)
        app_logger.debug(f"Synced pollers for user {user_id}: {len(active_ids)} active of {len(owned_ids)}")

    async def stop(self):
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._owners.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _poll(self, user_id: int, rental_id: str):
        step = 0
        try:
            while True:
                await asyncio.sleep(self._backoff[step])
                step = min(step + 1, len(self._backoff) - 1)
                try:
                    rental = await self._rentals.check_status(user_id, rental_id)
                except RentalNotFound:
                    app_logger.info(f"Rental {rental_id} disappeared; stopping its poller")
                    return
                except Exception as e:
                    app_logger.warning(f"Polling rental {rental_id} failed, will retry: {e}")
                    continue

                if not rental.is_active:
                    app_logger.info(f"Rental {rental_id} is {rental.status}; stopping its poller")
                    return
                if rental.is_expired():
                    app_logger.info(f"Rental {rental_id} expired; leaving it to the expiry sweeper")
                    return
        finally:
            current = asyncio.current_task()
            if self._tasks.get(rental_id) is current:
                del self._tasks[rental_id]
                self._owners.pop(rental_id, None)

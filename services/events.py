"""
In-process event channels the presentation layer subscribes to.

The saga publishes and moves on: publishing never awaits and never raises,
so a slow or broken subscriber cannot stall a purchase or a sweep.
"""
import asyncio
from dataclasses import dataclass
from typing import Generic, Set, TypeVar

from models.rental import Rental
from utils.logger import app_logger

E = TypeVar("E")


@dataclass(frozen=True)
class BalanceChanged:
    user_id: int
    balance_cents: int


@dataclass(frozen=True)
class RentalUpdated:
    user_id: int
    rental: Rental


class Subscription(Generic[E]):
    """A bounded queue of events for one subscriber. Iterate it, or call get()."""

    def __init__(self, channel: "EventChannel[E]", maxsize: int):
        self._channel = channel
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def get(self) -> E:
        return await self.queue.get()

    def get_nowait(self) -> E:
        return self.queue.get_nowait()

    def close(self):
        self._channel._unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> E:
        return await self.queue.get()


class EventChannel(Generic[E]):
    def __init__(self, name: str, maxsize: int = 100):
        self.name = name
        self._maxsize = maxsize
        self._subscribers: Set[Subscription[E]] = set()

    def subscribe(self) -> Subscription[E]:
        subscription = Subscription(self, self._maxsize)
        self._subscribers.add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription[E]):
        self._subscribers.discard(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: E):
        for subscription in list(self._subscribers):
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                app_logger.warning(f"{self.name} subscriber is full; dropping {event!r}")


class BrokerEvents:
    """The two channels the broker publishes to."""

    def __init__(self, maxsize: int = 100):
        self.balance: EventChannel[BalanceChanged] = EventChannel("balance", maxsize)
        self.rentals: EventChannel[RentalUpdated] = EventChannel("rentals", maxsize)

    def balance_changed(self, user_id: int, balance_cents: int):
        self.balance.publish(BalanceChanged(user_id=user_id, balance_cents=balance_cents))

    def rental_updated(self, rental: Rental):
        self.rentals.publish(RentalUpdated(user_id=rental.user_id, rental=rental))

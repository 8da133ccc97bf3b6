"""
Event channel tests.
"""

import asyncio

import pytest

from conftest import USER_ID, make_rental
from services.events import BalanceChanged, BrokerEvents, EventChannel, RentalUpdated
from utils.time import utc_now


@pytest.mark.asyncio
async def test_every_subscriber_receives_published_events():
    channel = EventChannel("balance")
    first = channel.subscribe()
    second = channel.subscribe()

    channel.publish(BalanceChanged(USER_ID, 300))

    assert await first.get() == BalanceChanged(USER_ID, 300)
    assert await second.get() == BalanceChanged(USER_ID, 300)


@pytest.mark.asyncio
async def test_closed_subscription_stops_receiving():
    channel = EventChannel("balance")
    subscription = channel.subscribe()
    subscription.close()

    channel.publish(BalanceChanged(USER_ID, 300))

    assert channel.subscriber_count == 0
    with pytest.raises(asyncio.QueueEmpty):
        subscription.get_nowait()


@pytest.mark.asyncio
async def test_full_subscriber_drops_events_without_raising():
    channel = EventChannel("balance", maxsize=1)
    slow = channel.subscribe()

    channel.publish(BalanceChanged(USER_ID, 300))
    channel.publish(BalanceChanged(USER_ID, 100))

    assert slow.get_nowait().balance_cents == 300
    with pytest.raises(asyncio.QueueEmpty):
        slow.get_nowait()


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_a_no_op():
    EventChannel("rentals").publish(BalanceChanged(USER_ID, 1))


@pytest.mark.asyncio
async def test_subscription_is_async_iterable():
    events = BrokerEvents()
    subscription = events.rentals.subscribe()
    rental = make_rental("evt-1", utc_now())

    events.rental_updated(rental)

    async for event in subscription:
        assert event == RentalUpdated(user_id=USER_ID, rental=rental)
        break

"""
Poll supervisor tests.
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import OTHER_USER_ID, USER_ID, make_rental
from models.rental import RentalStatus
from services.daisy_service import CodeDelivered
from workers.poll_worker import PollSupervisor

FAST_BACKOFF = (0.01, 0.02)


async def wait_until(predicate, timeout: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
async def poller(service):
    poller = PollSupervisor(service, backoff=FAST_BACKOFF)
    yield poller
    await poller.stop()


@pytest.mark.asyncio
async def test_poll_completes_rental_when_code_arrives(poller, service, ledger, provider, store):
    rental = await service.purchase(USER_ID, "wa")
    provider.statuses[rental.provider_rental_id] = [CodeDelivered("7777")]

    assert poller.watch(USER_ID, rental) is True
    await wait_until(lambda: not poller.is_watching(rental.id))

    stored = await store.get_by_id(USER_ID, rental.id)
    assert stored.status == RentalStatus.COMPLETED.value
    assert stored.code == "7777"
    assert ledger.count("commit") == 1


@pytest.mark.asyncio
async def test_one_loop_per_rental(poller, service):
    rental = await service.purchase(USER_ID, "wa")

    assert poller.watch(USER_ID, rental) is True
    assert poller.watch(USER_ID, rental) is False
    assert poller.watched_ids == {rental.id}


@pytest.mark.asyncio
async def test_settled_rentals_are_not_watched(poller, service):
    rental = await service.purchase(USER_ID, "wa")
    await service.cancel(USER_ID, rental.id)
    cancelled = await service.get_rental(USER_ID, rental.id)

    assert poller.watch(USER_ID, cancelled) is False
    assert poller.watched_ids == set()


@pytest.mark.asyncio
async def test_errors_are_logged_and_polling_continues(poller, service, provider, store):
    rental = await service.purchase(USER_ID, "wa")
    provider.statuses[rental.provider_rental_id] = [RuntimeError("boom"), CodeDelivered("8888")]

    poller.watch(USER_ID, rental)
    await wait_until(lambda: not poller.is_watching(rental.id))

    stored = await store.get_by_id(USER_ID, rental.id)
    assert stored.status == RentalStatus.COMPLETED.value
    assert len(provider.status_calls) == 2


@pytest.mark.asyncio
async def test_expired_rental_is_left_to_the_sweeper(poller, store, clock, provider):
    rental = make_rental("late-1", clock.now - timedelta(minutes=20))
    await store.create(rental)

    poller.watch(USER_ID, rental)
    await wait_until(lambda: not poller.is_watching(rental.id))

    stored = await store.get_by_id(USER_ID, rental.id)
    assert stored.status == RentalStatus.ACTIVE.value
    assert provider.status_calls == ["act-late-1"]


@pytest.mark.asyncio
async def test_missing_rental_stops_its_loop(poller, clock, provider):
    ghost = make_rental("ghost-1", clock.now)

    poller.watch(USER_ID, ghost)
    await wait_until(lambda: not poller.is_watching(ghost.id))

    assert provider.status_calls == []


@pytest.mark.asyncio
async def test_unwatch_cancels_loop(poller, service):
    rental = await service.purchase(USER_ID, "wa")
    poller.watch(USER_ID, rental)

    assert poller.unwatch(rental.id) is True
    assert poller.unwatch(rental.id) is False
    assert not poller.is_watching(rental.id)


@pytest.mark.asyncio
async def test_sync_matches_loops_to_active_rentals(poller, service, ledger):
    ledger.default_balance = 1000
    kept = await service.purchase(USER_ID, "wa")
    dropped = await service.purchase(USER_ID, "tg")
    theirs = await service.purchase(OTHER_USER_ID, "wa")
    poller.watch(USER_ID, dropped)
    poller.watch(OTHER_USER_ID, theirs)

    await service.cancel(USER_ID, dropped.id)
    poller.sync(USER_ID, await service.list_rentals(USER_ID))

    assert poller.watched_ids == {kept.id, theirs.id}


@pytest.mark.asyncio
async def test_stop_cancels_every_loop(service, ledger):
    ledger.default_balance = 1000
    poller = PollSupervisor(service, backoff=(60,))
    first = await service.purchase(USER_ID, "wa")
    second = await service.purchase(USER_ID, "tg")
    poller.watch(USER_ID, first)
    poller.watch(USER_ID, second)

    await poller.stop()

    assert poller.watched_ids == set()


def test_empty_backoff_is_rejected():
    with pytest.raises(ValueError):
        PollSupervisor(rentals=None, backoff=())

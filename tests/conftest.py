"""
Pytest fixtures for the rental broker tests.
"""

import os
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Settings are read at import time, so test config goes in first.
os.environ.setdefault("BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("DAISY_API_KEY", "test-daisy-key")
os.environ.setdefault("DAISY_BASE_URL", "https://daisy.test/stubs/handler_api.php")
os.environ.setdefault("LEDGER_BASE_URL", "https://ledger.test")
os.environ.setdefault("LEDGER_API_KEY", "test-ledger-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from database.connection import init_db
from models.rental import Rental, RentalStatus
from services.daisy_service import ProviderNumber, ProviderPrice, Waiting
from services.errors import HoldAlreadySettled, HoldNotFound, InsufficientFunds
from services.events import BrokerEvents
from services.ledger_service import HoldReceipt
from services.pricing_service import PricingService
from services.rental_service import RentalService
from services.rental_store import RentalStore
from utils.time import utc_now

pytest_plugins = ("pytest_asyncio",)

USER_ID = 1
OTHER_USER_ID = 2


@dataclass
class Hold:
    hold_id: str
    user_id: int
    amount_cents: int
    reference_id: str
    state: str = "reserved"


class FakeLedger:
    """
    In-memory wallet ledger.

    Reserving lowers the spendable balance, a refund gives it back and a
    commit keeps it spent. A hold settles once. Failures are scripted per
    method through 'fail'.
    """

    def __init__(self, balance: int = 500):
        self.default_balance = balance
        self.balances: Dict[int, int] = {}
        self.holds: Dict[str, Hold] = {}
        self.by_reference: Dict[str, str] = {}
        self.debits: List[tuple] = []
        self.calls: List[str] = []
        self.fail: Dict[str, List[Exception]] = {}

    def _record(self, name: str):
        self.calls.append(name)
        queue = self.fail.get(name)
        if queue:
            raise queue.pop(0)

    def balance_of(self, user_id: int) -> int:
        return self.balances.setdefault(user_id, self.default_balance)

    def count(self, name: str) -> int:
        return self.calls.count(name)

    def _hold(self, hold_id: str) -> Hold:
        if hold_id not in self.holds:
            raise HoldNotFound(hold_id)
        return self.holds[hold_id]

    async def get_balance(self, user_id: int) -> int:
        self._record("get_balance")
        return self.balance_of(user_id)

    async def reserve(self, user_id: int, amount_cents: int, reference_id: str, reason: str = "") -> HoldReceipt:
        self._record("reserve")
        if reference_id in self.by_reference:
            hold_id = self.by_reference[reference_id]
            return HoldReceipt(hold_id=hold_id, balance_after_cents=self.balance_of(user_id))
        if self.balance_of(user_id) < amount_cents:
            raise InsufficientFunds(self.balance_of(user_id), amount_cents)
        hold_id = f"hold-{len(self.holds) + 1}"
        self.holds[hold_id] = Hold(hold_id, user_id, amount_cents, reference_id)
        self.by_reference[reference_id] = hold_id
        self.balances[user_id] = self.balance_of(user_id) - amount_cents
        return HoldReceipt(hold_id=hold_id, balance_after_cents=self.balances[user_id])

    async def commit(self, hold_id: str) -> int:
        self._record("commit")
        hold = self._hold(hold_id)
        if hold.state != "reserved":
            raise HoldAlreadySettled(hold_id)
        hold.state = "committed"
        return self.balance_of(hold.user_id)

    async def refund(self, hold_id: str, reason: str = "") -> int:
        self._record("refund")
        hold = self._hold(hold_id)
        if hold.state != "reserved":
            raise HoldAlreadySettled(hold_id)
        hold.state = "refunded"
        self.balances[hold.user_id] = self.balance_of(hold.user_id) + hold.amount_cents
        return self.balances[hold.user_id]

    async def legacy_debit_on_success(self, user_id: int, amount_cents: int, reference_id: str, reason: str = "") -> int:
        self._record("legacy_debit_on_success")
        self.debits.append((user_id, amount_cents, reference_id))
        self.balances[user_id] = self.balance_of(user_id) - amount_cents
        return self.balances[user_id]

    async def find_hold(self, reference_id: str) -> Optional[str]:
        self._record("find_hold")
        return self.by_reference.get(reference_id)


class FakeProvider:
    """
    Scripted numbering provider.

    'rent_results' is consumed in order (a number or an exception); when it
    runs dry fresh numbers are handed out. 'statuses' maps an activation id
    to a script of answers whose last entry repeats.
    """

    def __init__(self):
        self.prices: Dict[str, ProviderPrice] = {
            "wa": ProviderPrice(price=Decimal("1.00"), available=True, count=25, name="WhatsApp"),
            "tg": ProviderPrice(price=Decimal("0.35"), available=True, count=4, ttl_seconds=600, name="Telegram"),
            "ds": ProviderPrice(price=Decimal("0.20"), available=False, count=0, name="Discord"),
        }
        self.rent_results: List = []
        self.statuses: Dict[str, List] = {}
        self.cancel_error: Optional[Exception] = None
        self.rented: List[tuple] = []
        self.cancelled: List[str] = []
        self.status_calls: List[str] = []
        self.price_calls = 0

    async def get_prices(self) -> Dict[str, ProviderPrice]:
        self.price_calls += 1
        return dict(self.prices)

    async def rent(self, service_code: str, max_price: Decimal) -> ProviderNumber:
        self.rented.append((service_code, max_price))
        if self.rent_results:
            result = self.rent_results.pop(0)
        else:
            n = len(self.rented)
            result = ProviderNumber(external_id=f"act-{n}", phone_number=f"+1555000{n:04d}")
        if isinstance(result, Exception):
            raise result
        return result

    async def get_status(self, external_id: str):
        self.status_calls.append(external_id)
        script = self.statuses.get(external_id)
        if not script:
            return Waiting()
        result = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def cancel(self, external_id: str) -> bool:
        self.cancelled.append(external_id)
        if self.cancel_error is not None:
            raise self.cancel_error
        return True


def make_rental(rental_id: str, now, user_id: int = USER_ID, **overrides) -> Rental:
    """An active rental as a purchase would have stored it."""
    fields = dict(
        id=rental_id,
        user_id=user_id,
        provider_rental_id=f"act-{rental_id}",
        service_code="wa",
        service_name="WhatsApp",
        phone_number="+15550009999",
        original_price=Decimal("1.00"),
        price_cents=200,
        status=RentalStatus.ACTIVE.value,
        created_at=now,
        expires_at=now + timedelta(minutes=15),
        wallet_hold_id=None,
    )
    fields.update(overrides)
    return Rental(**fields)


class Clock:
    """Settable UTC clock."""

    def __init__(self):
        self.now = utc_now()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
async def engine(tmp_path):
    # A file database gives every session its own connection, as in production.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'broker.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return RentalStore(session_factory)


@pytest.fixture
def ledger():
    return FakeLedger(balance=500)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def events():
    return BrokerEvents()


@pytest.fixture
def pricing(provider):
    return PricingService(provider, markup_multiplier=2.0, cache_seconds=60)


@pytest.fixture
def service(ledger, provider, store, pricing, events, clock):
    return RentalService(
        ledger, provider, store, pricing,
        events=events,
        refund_retry_delay=0,
        clock=clock,
    )

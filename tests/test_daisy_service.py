"""
DaisySMS client tests: response parsing and the HTTP boundary.
"""

import re
from decimal import Decimal

import pytest
from aioresponses import aioresponses

from services.daisy_service import (
    Cancelled, CodeDelivered, DaisyService, ProviderNumber, Unknown, Waiting,
    parse_prices, parse_rent_response, parse_status_response,
)
from services.errors import (
    MaxPriceExceeded, NoMoney, NoNumbers, ProviderRejected, ProviderTransportError,
)

BASE_URL = "https://daisy.test/stubs/handler_api.php"


def action_url(action: str):
    return re.compile(rf"^{re.escape(BASE_URL)}\?.*action={action}.*$")


@pytest.fixture
def daisy():
    return DaisyService(api_key="key", base_url=BASE_URL, timeout_seconds=5)


# --- Parsers ---

def test_parse_rent_response_number():
    assert parse_rent_response("ACCESS_NUMBER:999:12025550143\n") == ProviderNumber("999", "12025550143")


@pytest.mark.parametrize("text, error", [
    ("NO_NUMBERS", NoNumbers),
    ("NO_MONEY", NoMoney),
    ("MAX_PRICE_EXCEEDED", MaxPriceExceeded),
    ("BAD_KEY", ProviderRejected),
    ("ACCESS_NUMBER:999", ProviderRejected),
])
def test_parse_rent_response_failures(text, error):
    with pytest.raises(error):
        parse_rent_response(text)


@pytest.mark.parametrize("text, expected", [
    ("STATUS_OK:482913", CodeDelivered("482913")),
    ("STATUS_WAIT_CODE", Waiting()),
    ("STATUS_WAIT_RETRY", Waiting()),
    ("STATUS_CANCEL", Cancelled()),
    ("STATUS_OK:", Unknown("STATUS_OK:")),
    ("NO_ACTIVATION", Unknown("NO_ACTIVATION")),
])
def test_parse_status_response(text, expected):
    assert parse_status_response(text) == expected


def test_parse_prices_picks_a_stocked_country():
    prices = parse_prices({
        "wa": {
            "187": {"cost": "0.90", "count": 0, "name": "WhatsApp"},
            "188": {"cost": "1.05", "count": "12", "ttl": "1200", "name": " WhatsApp "},
        },
        "ig": {"187": {"cost": 0.4, "count": 0}},
        "broken": "nope",
    })

    assert set(prices) == {"wa", "ig"}
    assert prices["wa"].price == Decimal("1.05")
    assert prices["wa"].count == 12
    assert prices["wa"].ttl_seconds == 1200
    assert prices["wa"].name == "WhatsApp"
    assert prices["wa"].available is True
    assert prices["ig"].available is False
    assert prices["ig"].price == Decimal("0.4")
    assert prices["ig"].name is None


def test_parse_prices_rejects_non_mapping():
    with pytest.raises(ProviderRejected):
        parse_prices(["unexpected"])


# --- HTTP ---

@pytest.mark.asyncio
async def test_rent_sends_max_price_and_parses_number(daisy):
    with aioresponses() as mocked:
        mocked.get(action_url("getNumber"), body="ACCESS_NUMBER:42:12025550143")

        number = await daisy.rent("wa", Decimal("1.1"))

        assert number == ProviderNumber("42", "12025550143")
        (method, url), = mocked.requests.keys()
        assert url.query["max_price"] == "1.10"
        assert url.query["service"] == "wa"
        assert url.query["api_key"] == "key"


@pytest.mark.asyncio
async def test_rent_max_price_exceeded_carries_limit(daisy):
    with aioresponses() as mocked:
        mocked.get(action_url("getNumber"), body="MAX_PRICE_EXCEEDED")

        with pytest.raises(MaxPriceExceeded) as exc_info:
            await daisy.rent("wa", Decimal("0.55"))

    assert exc_info.value.max_price == "0.55"


@pytest.mark.asyncio
async def test_http_error_is_a_transport_error(daisy):
    with aioresponses() as mocked:
        mocked.get(action_url("getStatus"), status=502)

        with pytest.raises(ProviderTransportError):
            await daisy.get_status("42")


@pytest.mark.asyncio
async def test_get_status_and_cancel(daisy):
    with aioresponses() as mocked:
        mocked.get(action_url("getStatus"), body="STATUS_OK:1234")
        mocked.get(action_url("setStatus"), body="ACCESS_CANCEL")

        assert await daisy.get_status("42") == CodeDelivered("1234")
        assert await daisy.cancel("42") is True


@pytest.mark.asyncio
async def test_get_prices_rejects_non_json(daisy):
    with aioresponses() as mocked:
        mocked.get(action_url("getPricesVerification"), body="BAD_KEY")

        with pytest.raises(ProviderRejected):
            await daisy.get_prices()


@pytest.mark.asyncio
async def test_get_prices_parses_feed(daisy):
    with aioresponses() as mocked:
        mocked.get(
            action_url("getPricesVerification"),
            payload={"tg": {"187": {"cost": "0.35", "count": 3, "name": "Telegram"}}},
        )

        prices = await daisy.get_prices()

    assert prices["tg"].price == Decimal("0.35")
    assert prices["tg"].count == 3


@pytest.mark.asyncio
async def test_health_check(daisy):
    with aioresponses() as mocked:
        mocked.get(action_url("getBalance"), body="ACCESS_BALANCE:12.50")
        mocked.get(action_url("getBalance"), body="BAD_KEY")

        assert await daisy.get_balance() == Decimal("12.50")
        assert await daisy.health_check() is False

import asyncio
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Union

import aiohttp

from config.constants import (
    DAISY_ACTION_BALANCE, DAISY_ACTION_PRICES, DAISY_ACTION_RENT,
    DAISY_ACTION_SET_STATUS, DAISY_ACTION_STATUS, DAISY_STATUS_CANCEL,
)
from services.errors import (
    MaxPriceExceeded, NoMoney, NoNumbers, ProviderRejected, ProviderTransportError,
)
from utils.logger import app_logger


@dataclass(frozen=True)
class ProviderNumber:
    external_id: str
    phone_number: str


@dataclass(frozen=True)
class ProviderPrice:
    price: Decimal
    available: bool
    count: int
    ttl_seconds: Optional[int] = None
    name: Optional[str] = None


# --- Activation status, parsed once at this boundary ---

@dataclass(frozen=True)
class Waiting:
    pass


@dataclass(frozen=True)
class CodeDelivered:
    code: str


@dataclass(frozen=True)
class Cancelled:
    pass


@dataclass(frozen=True)
class Unknown:
    raw: str


ActivationStatus = Union[Waiting, CodeDelivered, Cancelled, Unknown]

_RENT_FAILURES = {
    "NO_NUMBERS": NoNumbers,
    "NO_MONEY": NoMoney,
    "MAX_PRICE_EXCEEDED": MaxPriceExceeded,
}


def parse_rent_response(text: str) -> ProviderNumber:
    """Turns a getNumber answer into a number or the matching provider error."""
    text = text.strip()
    if text.startswith("ACCESS_NUMBER:"):
        parts = text.split(":")
        if len(parts) >= 3 and parts[1] and parts[2]:
            return ProviderNumber(external_id=parts[1], phone_number=parts[2])
        raise ProviderRejected(text)
    failure = _RENT_FAILURES.get(text)
    if failure is not None:
        raise failure()
    raise ProviderRejected(text)


def parse_status_response(text: str) -> ActivationStatus:
    text = text.strip()
    if text.startswith("STATUS_OK:"):
        code = text.split(":", 1)[1].strip()
        return CodeDelivered(code) if code else Unknown(text)
    if text in ("STATUS_WAIT_CODE", "STATUS_WAIT_RETRY"):
        return Waiting()
    if text == "STATUS_CANCEL":
        return Cancelled()
    return Unknown(text)


def _parse_int(value) -> Optional[int]:
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return None


def parse_prices(data) -> Dict[str, ProviderPrice]:
    """
    Flattens {service: {country: {cost, count, ttl, name}}} to one price per service.

    The provider rents US numbers only, so the first country entry with stock
    stands in for the service.
    """
    if not isinstance(data, dict):
        raise ProviderRejected(f"unexpected price feed: {str(data)[:200]}")

    prices = {}
    for service_code, countries in data.items():
        if not isinstance(countries, dict) or not countries:
            continue
        entries = [c for c in countries.values() if isinstance(c, dict)]
        if not entries:
            continue
        entry = next((c for c in entries if (_parse_int(c.get("count")) or 0) > 0), entries[0])
        try:
            price = Decimal(str(entry.get("cost", "0")))
        except InvalidOperation:
            app_logger.warning(f"Skipping {service_code}: unparsable cost {entry.get('cost')!r}")
            continue
        count = _parse_int(entry.get("count")) or 0
        name = (str(entry.get("name") or "")).strip() or None
        prices[service_code] = ProviderPrice(
            price=price,
            available=count > 0,
            count=count,
            ttl_seconds=_parse_int(entry.get("ttl")),
            name=name,
        )
    return prices


class DaisyService:
    """Typed client for the DaisySMS handler API."""

    def __init__(self, api_key: str, base_url: str, timeout_seconds: int = 30):
        if not api_key:
            app_logger.warning("DAISY_API_KEY is not set. Provider calls will be rejected.")
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _make_request(self, action: str, **params) -> str:
        query = {"api_key": self._api_key, "action": action, **params}
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(self._base_url, params=query) as response:
                    response.raise_for_status()
                    text = await response.text()
                    app_logger.debug(f"Daisy API Response for {action} ({response.status}): {text[:200]}")
                    return text
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            app_logger.error(f"Daisy request {action} failed: {e!r}")
            raise ProviderTransportError(str(e) or e.__class__.__name__) from e

    async def get_prices(self) -> Dict[str, ProviderPrice]:
        text = await self._make_request(DAISY_ACTION_PRICES)
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            raise ProviderRejected(text.strip()[:200])
        return parse_prices(data)

    async def rent(self, service_code: str, max_price: Decimal) -> ProviderNumber:
        max_price_str = f"{max_price:.2f}"
        app_logger.info(f"Renting a {service_code} number (max price ${max_price_str})")
        text = await self._make_request(DAISY_ACTION_RENT, service=service_code, max_price=max_price_str)
        try:
            number = parse_rent_response(text)
        except MaxPriceExceeded:
            raise MaxPriceExceeded(max_price_str)
        app_logger.info(f"Provider granted {number.phone_number} (activation {number.external_id})")
        return number

    async def get_status(self, external_id: str) -> ActivationStatus:
        text = await self._make_request(DAISY_ACTION_STATUS, id=external_id)
        status = parse_status_response(text)
        if isinstance(status, Unknown):
            app_logger.info(f"Daisy status for activation {external_id}: {status.raw}")
        return status

    async def cancel(self, external_id: str) -> bool:
        text = await self._make_request(DAISY_ACTION_SET_STATUS, id=external_id, status=DAISY_STATUS_CANCEL)
        return text.strip() == "ACCESS_CANCEL"

    async def get_balance(self) -> Decimal:
        text = (await self._make_request(DAISY_ACTION_BALANCE)).strip()
        if text.startswith("ACCESS_BALANCE:"):
            try:
                return Decimal(text.split(":", 1)[1])
            except InvalidOperation:
                pass
        raise ProviderRejected(text)

    async def health_check(self) -> bool:
        try:
            await self.get_balance()
            return True
        except (ProviderTransportError, ProviderRejected) as e:
            app_logger.warning(f"Daisy health check failed: {e}")
            return False

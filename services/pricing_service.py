import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, List, Optional

from config.constants import CENTS_PER_UNIT
from utils.logger import app_logger


@dataclass(frozen=True)
class ServiceQuote:
    service_code: str
    name: str
    original_price: Decimal
    price_cents: int
    available: bool
    count: int
    ttl_seconds: Optional[int] = None


def calculate_price_cents(original_price: Decimal, multiplier: Decimal) -> int:
    """Marked-up price in cents, rounded half-up to the nearest cent."""
    cents = original_price * multiplier * CENTS_PER_UNIT
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_max_price(original_price: Decimal, ceiling: Decimal) -> Decimal:
    """Highest provider price accepted at rent time."""
    return (original_price * ceiling).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class PricingService:
    """
    Quotes derived from the provider's price feed.

    The feed is volatile, so one snapshot is reused for a short TTL and the
    feed is read again on every miss. Unavailable services are not quoted.
    """

    def __init__(self, provider, markup_multiplier: float = 2.0, cache_seconds: int = 60,
                 clock: Callable[[], float] = time.monotonic):
        self._provider = provider
        self._multiplier = Decimal(str(markup_multiplier))
        self._cache_seconds = cache_seconds
        self._clock = clock
        self._cached: Optional[Dict[str, ServiceQuote]] = None
        self._cached_at: float = 0.0

    def _is_fresh(self) -> bool:
        return self._cached is not None and (self._clock() - self._cached_at) < self._cache_seconds

    def invalidate(self):
        self._cached = None

    async def get_quotes(self) -> Dict[str, ServiceQuote]:
        if self._is_fresh():
            return self._cached

        app_logger.info("Quote cache miss. Reading the provider price feed...")
        prices = await self._provider.get_prices()
        quotes = {}
        for service_code, price in prices.items():
            if not price.available or price.price <= 0:
                continue
            quotes[service_code] = ServiceQuote(
                service_code=service_code,
                name=price.name or service_code.upper(),
                original_price=price.price,
                price_cents=calculate_price_cents(price.price, self._multiplier),
                available=price.available,
                count=price.count,
                ttl_seconds=price.ttl_seconds,
            )
        app_logger.info(f"Quoted {len(quotes)} of {len(prices)} services")
        self._cached = quotes
        self._cached_at = self._clock()
        return quotes

    async def get_quote(self, service_code: str) -> Optional[ServiceQuote]:
        return (await self.get_quotes()).get(service_code)

    async def list_quotes(self) -> List[ServiceQuote]:
        """Available quotes, most stocked first."""
        quotes = await self.get_quotes()
        return sorted(quotes.values(), key=lambda q: (-q.count, q.name.lower()))

"""
Rental lifecycle saga.

A rental touches three systems that share no transaction: the wallet ledger
(reserve, then commit or refund), the numbering provider and the rental
store. The user is billed only when a code was delivered. Every step that
settles money first re-reads the rental, and status changes are conditional
on the rental still being active, so two paths racing on the same rental
leave exactly one winner and the loser does nothing.
"""
import asyncio
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from models.rental import Rental, RentalStatus
from services.daisy_service import CodeDelivered, DaisyService
from services.errors import (
    InsufficientFunds, InternalReconciliationError, LedgerError, LedgerUnauthorized,
    ProviderFailure, RentalIdTaken, RentalNotFound, ServiceUnavailable, Unauthenticated,
)
from services.events import BrokerEvents
from services.ledger_service import LedgerService
from services.pricing_service import PricingService, calculate_max_price
from services.rental_store import RentalStore
from utils.logger import app_logger
from utils.time import utc_now


def new_rental_id() -> str:
    return uuid.uuid4().hex


class RentalService:
    """Drives purchase, status checks and cancellation of rentals."""

    def __init__(
            self,
            ledger: LedgerService,
            provider: DaisyService,
            store: RentalStore,
            pricing: PricingService,
            events: Optional[BrokerEvents] = None,
            max_price_ceiling: float = 1.1,
            default_rental_minutes: int = 15,
            refund_retry_delay: float = 0.5,
            clock: Callable[[], datetime] = utc_now,
            id_factory: Callable[[], str] = new_rental_id,
    ):
        self._ledger = ledger
        self._provider = provider
        self._store = store
        self._pricing = pricing
        self.events = events or BrokerEvents()
        self._ceiling = Decimal(str(max_price_ceiling))
        self._default_window = timedelta(minutes=default_rental_minutes)
        self._refund_retry_delay = refund_retry_delay
        self._clock = clock
        self._id_factory = id_factory

    @staticmethod
    def _require_user(user_id: Optional[int]):
        if user_id is None:
            raise Unauthenticated()

    def _publish_balance(self, user_id: int, balance_cents: int):
        self.events.balance_changed(user_id, balance_cents)

    # --- Queries ---

    async def get_balance(self, user_id: Optional[int]) -> int:
        self._require_user(user_id)
        return await self._ledger.get_balance(user_id)

    async def list_rentals(self, user_id: Optional[int], status: Optional[RentalStatus] = None) -> List[Rental]:
        self._require_user(user_id)
        return await self._store.list_for_user(user_id, status)

    async def get_rental(self, user_id: Optional[int], rental_id: str) -> Rental:
        self._require_user(user_id)
        rental = await self._store.get_by_id(user_id, rental_id)
        if rental is None:
            raise RentalNotFound(rental_id)
        return rental

    # --- Purchase ---

    async def purchase(self, user_id: Optional[int], service_code: str, rental_id: Optional[str] = None) -> Rental:
        """
        Reserves the price, rents a number and records the rental.

        Passing the same 'rental_id' again never reserves twice: the ledger
        dedupes on it, and a rental already stored under it is returned as is.
        An id stored for another user is refused before anything is reserved.
        """
        self._require_user(user_id)

        # Authoritative balance, read before anything is reserved.
        balance = await self._ledger.get_balance(user_id)
        if balance <= 0:
            raise InsufficientFunds(balance, None)

        quote = await self._pricing.get_quote(service_code)
        if quote is None:
            raise ServiceUnavailable(service_code)
        if balance < quote.price_cents:
            raise InsufficientFunds(balance, quote.price_cents)

        if rental_id is not None:
            owner = await self._store.owner_of(rental_id)
            if owner is not None and owner != user_id:
                app_logger.warning(f"Purchase by user {user_id} reused rental id {rental_id} of user {owner}")
                raise RentalIdTaken(rental_id)
            if owner is not None:
                app_logger.info(f"Purchase retry for rental {rental_id}; returning the stored rental")
                return await self.get_rental(user_id, rental_id)
        else:
            rental_id = self._id_factory()

        app_logger.info(f"Purchase {rental_id}: user {user_id}, service {service_code}, {quote.price_cents}¢")
        receipt = await self._ledger.reserve(
            user_id, quote.price_cents, rental_id, reason=f"Hold for {service_code} rental"
        )
        self._publish_balance(user_id, receipt.balance_after_cents)

        try:
            number = await self._provider.rent(service_code, calculate_max_price(quote.original_price, self._ceiling))
        except Exception as e:
            app_logger.warning(f"Purchase {rental_id}: provider rent failed ({e}); releasing reservation")
            await self._release_reservation(user_id, receipt.hold_id, rental_id, reason="Provider rent failed")
            raise

        now = self._clock()
        if quote.ttl_seconds and quote.ttl_seconds > 0:
            expires_at = now + timedelta(seconds=quote.ttl_seconds)
        else:
            expires_at = now + self._default_window

        rental = Rental(
            id=rental_id,
            user_id=user_id,
            provider_rental_id=number.external_id,
            service_code=service_code,
            service_name=quote.name,
            phone_number=number.phone_number,
            original_price=quote.original_price,
            price_cents=quote.price_cents,
            status=RentalStatus.ACTIVE.value,
            created_at=now,
            expires_at=expires_at,
            wallet_hold_id=receipt.hold_id,
        )
        try:
            rental = await self._store.create(rental)
        except Exception as e:
            app_logger.exception(f"Purchase {rental_id}: storing the rental failed")
            await self._release_reservation(user_id, receipt.hold_id, rental_id, reason="Rental record not stored")
            # The provider number stays allocated until its own TTL runs out.
            app_logger.error(
                f"Purchase {rental_id}: provider activation {number.external_id} "
                f"({number.phone_number}) was not released"
            )
            raise InternalReconciliationError(f"Rental {rental_id} could not be stored: {e}") from e

        app_logger.info(f"Purchase {rental_id}: {rental.phone_number} active until {expires_at.isoformat()}")
        self.events.rental_updated(rental)
        return rental

    async def _release_reservation(self, user_id: int, hold_id: str, rental_id: str, reason: str) -> bool:
        """Compensation step: refund the hold placed by a purchase that did not finish."""
        try:
            balance = await self._ledger.refund(hold_id, reason)
        except Exception as e:
            app_logger.error(f"Compensation 'release reservation' failed for rental {rental_id} (hold {hold_id}): {e}")
            return False
        app_logger.info(f"Compensation 'release reservation' done for rental {rental_id}; balance {balance}¢")
        self._publish_balance(user_id, balance)
        return True

    # --- Code delivery ---

    async def check_status(self, user_id: Optional[int], rental_id: str) -> Rental:
        """
        Looks for a delivered code. Non-active rentals come back unchanged, which
        makes repeated polling free of side effects.
        """
        rental = await self.get_rental(user_id, rental_id)
        if not rental.is_active:
            return rental

        code = await self.fetch_code(rental)
        if code is None:
            return rental
        return await self.complete(rental, code)

    async def fetch_code(self, rental: Rental) -> Optional[str]:
        """Asks the provider for a code. Anything but a delivered code means 'not yet'."""
        try:
            status = await self._provider.get_status(rental.provider_rental_id)
        except ProviderFailure as e:
            app_logger.warning(f"Status check for rental {rental.id} failed; treating as waiting: {e}")
            return None
        if isinstance(status, CodeDelivered):
            return status.code
        return None

    async def complete(self, rental: Rental, code: str) -> Rental:
        """Records the code, then bills. Only the caller that wins the transition bills."""
        updated = await self._store.update(rental.user_id, rental.id, status=RentalStatus.COMPLETED, code=code)
        if updated is None:
            app_logger.info(f"Rental {rental.id} was settled elsewhere; not billing again")
            current = await self._store.get_by_id(rental.user_id, rental.id)
            return current or rental

        app_logger.info(f"Rental {rental.id} received its code")
        await self._bill(updated)
        self.events.rental_updated(updated)
        return updated

    async def _bill(self, rental: Rental):
        """Commits the hold, or debits directly for legacy rentals without one."""
        try:
            if rental.wallet_hold_id:
                balance = await self._ledger.commit(rental.wallet_hold_id)
            else:
                balance = await self._ledger.legacy_debit_on_success(
                    rental.user_id, rental.price_cents, rental.id,
                    reason=f"SMS code received for {rental.service_name}",
                )
        except LedgerError as e:
            # The delivery record stands; the ledger reconciles the balance.
            app_logger.error(f"Billing rental {rental.id} failed: {e}")
            return
        self._publish_balance(rental.user_id, balance)

    # --- Cancellation ---

    async def cancel(self, user_id: Optional[int], rental_id: str) -> bool:
        """
        Cancels an active rental: provider first, then the refund, then the
        status, so 'cancelled' is never observed next to a stale balance.
        """
        self._require_user(user_id)
        rental = await self._store.get_by_id(user_id, rental_id)
        if rental is None or not rental.is_active:
            return False

        await self.cancel_on_provider(rental)
        await self.refund_hold(rental, reason="User cancelled rental", retry_unauthorized=True)
        cancelled = await self.mark_cancelled(rental)
        return cancelled is not None

    async def cancel_on_provider(self, rental: Rental) -> bool:
        """Best effort; the outcome never gates the refund."""
        try:
            released = await self._provider.cancel(rental.provider_rental_id)
        except ProviderFailure as e:
            app_logger.warning(f"Provider cancel for rental {rental.id} failed: {e}")
            return False
        if not released:
            app_logger.info(f"Provider did not confirm cancel of activation {rental.provider_rental_id}")
        return released

    async def _resolve_hold_id(self, rental: Rental) -> Optional[str]:
        if rental.wallet_hold_id:
            return rental.wallet_hold_id
        return await self._ledger.find_hold(rental.id)

    async def refund_hold(self, rental: Rental, reason: str, retry_unauthorized: bool = False) -> Optional[int]:
        """
        Refunds the rental's hold if the rental is still active.

        Returns the new balance, or None when there was nothing to refund.
        """
        hold_id = await self._resolve_hold_id(rental)
        if not hold_id:
            app_logger.info(f"Rental {rental.id} has no wallet hold; nothing to refund")
            return None

        current = await self._store.get_by_id(rental.user_id, rental.id)
        if current is None or not current.is_active:
            app_logger.info(f"Rental {rental.id} is no longer active; refund skipped")
            return None

        return await self._issue_refund(rental, hold_id, reason, retry_unauthorized)

    async def _issue_refund(self, rental: Rental, hold_id: str, reason: str, retry_unauthorized: bool) -> int:
        try:
            balance = await self._ledger.refund(hold_id, reason)
        except LedgerUnauthorized as e:
            if not retry_unauthorized:
                raise
            # A just-cancelled activation can briefly fail the ledger's ownership check.
            app_logger.warning(f"Refund of hold {hold_id} refused ({e}); retrying once")
            await asyncio.sleep(self._refund_retry_delay)
            balance = await self._ledger.refund(hold_id, reason)
        app_logger.info(f"Refunded hold {hold_id} for rental {rental.id}; balance {balance}¢")
        self._publish_balance(rental.user_id, balance)
        return balance

    async def mark_cancelled(self, rental: Rental) -> Optional[Rental]:
        updated = await self._store.update(rental.user_id, rental.id, status=RentalStatus.CANCELLED)
        if updated is not None:
            self.events.rental_updated(updated)
        return updated

    async def force_cancel(self, rental: Rental, reason: str) -> bool:
        """
        Last-resort flip to cancelled with a refund attempt, so a rental never
        stays active (and keeps funds reserved) because some step keeps failing.
        """
        try:
            updated = await self.mark_cancelled(rental)
        except Exception:
            app_logger.exception(f"Forced cancel of rental {rental.id} could not be stored")
            return False
        if updated is None:
            return False

        try:
            hold_id = await self._resolve_hold_id(rental)
            if hold_id:
                await self._issue_refund(rental, hold_id, reason, retry_unauthorized=False)
        except Exception as e:
            app_logger.error(f"Refund during forced cancel of rental {rental.id} failed: {e}")
        return True

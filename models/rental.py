from __future__ import annotations
from typing import TYPE_CHECKING, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import ForeignKey, Integer, Numeric, String, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import BaseModel
from utils.time import ensure_utc, utc_now

if TYPE_CHECKING:
    from .user import User


class RentalStatus(str, Enum):
    """Rental lifecycle. Both non-active states are terminal."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({RentalStatus.COMPLETED.value, RentalStatus.CANCELLED.value})


class Rental(BaseModel):
    """
    A short-lived rental of a provider number, and the unit of billing.

    A rental is billed through its wallet hold only once a code arrives;
    every other ending refunds the hold.
    """
    __tablename__ = "rentals"

    # Generated before the wallet reservation and used as its idempotency key.
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    # The activation id handed out by the numbering provider.
    provider_rental_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    service_code: Mapped[str] = mapped_column(String(20), nullable=False)
    service_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(30), nullable=False)

    # Provider price in dollars, and what the user is billed in cents.
    original_price: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=RentalStatus.ACTIVE.value,
        nullable=False,
        index=True
    )

    code: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Null only on legacy rows that are billed by a direct debit on success.
    wallet_hold_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="rentals", lazy="raise")

    @property
    def is_active(self) -> bool:
        return self.status == RentalStatus.ACTIVE.value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once the provider window has passed (strictly)."""
        now = now or utc_now()
        return ensure_utc(self.expires_at) < now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "provider_rental_id": self.provider_rental_id,
            "service_code": self.service_code,
            "service_name": self.service_name,
            "phone_number": self.phone_number,
            "original_price": str(self.original_price),
            "price_cents": self.price_cents,
            "status": self.status,
            "code": self.code,
            "created_at": ensure_utc(self.created_at).isoformat() if self.created_at else None,
            "expires_at": ensure_utc(self.expires_at).isoformat(),
            "wallet_hold_id": self.wallet_hold_id,
        }

    def __repr__(self) -> str:
        return (
            f"<Rental(id={self.id}, user_id={self.user_id}, phone_number='{self.phone_number}', "
            f"status='{self.status}', expires_at='{self.expires_at}')>"
        )

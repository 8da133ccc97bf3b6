from __future__ import annotations
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import BaseModel

if TYPE_CHECKING:
    from .rental import Rental


class User(BaseModel):
    """
    A wallet owner. The integer id is the account id sent to the wallet ledger.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    telegram_id: Mapped[int] = mapped_column(
        BigInteger,
        unique=True,
        nullable=True,
        index=True,
        comment="The user's unique Telegram ID, when they use the bot"
    )

    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=True,
        comment="User's full name from Telegram"
    )

    username: Mapped[str] = mapped_column(
        String(100),
        nullable=True,
        comment="User's Telegram username"
    )

    language_code: Mapped[str] = mapped_column(
        String(5),
        default='en',
        nullable=False,
        comment="User's preferred language code"
    )

    total_rentals: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
        comment="Numbers rented, counted when the rental is stored"
    )

    total_spent_cents: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
        comment="Sum of rental prices in cents, counted when the rental is stored"
    )

    rentals: Mapped[list["Rental"]] = relationship(
        "Rental",
        back_populates="user",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, telegram_id={self.telegram_id}, username='{self.username}')>"

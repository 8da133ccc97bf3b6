from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.future import select

from models.rental import Rental, RentalStatus
from models.user import User
from utils.logger import app_logger
from utils.time import utc_now


class RentalStore:
    """
    Durable rental records. Every read and write is scoped to the owning user;
    only owner_of() looks across users, so ids picked by callers stay unique.

    Writes are conditional on the rental's current status, active unless the
    caller says otherwise, so a completed or cancelled row is never mutated by
    the saga. Callers racing on the same rental get None back from update()
    when they lose.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def create(self, rental: Rental) -> Rental:
        """Inserts the rental and bumps the owner's purchase totals in one commit."""
        async with self._session_factory() as session:
            session.add(rental)
            await session.flush()
            await session.execute(
                update(User)
                .where(User.id == rental.user_id)
                .values(
                    total_rentals=User.total_rentals + 1,
                    total_spent_cents=User.total_spent_cents + rental.price_cents,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            app_logger.debug(f"Stored rental {rental.id} for user {rental.user_id}")
            return rental

    async def owner_of(self, rental_id: str) -> Optional[int]:
        """The user a rental id belongs to, across all users."""
        async with self._session_factory() as session:
            query = select(Rental.user_id).where(Rental.id == rental_id)
            return (await session.execute(query)).scalar_one_or_none()

    async def get_by_id(self, user_id: int, rental_id: str) -> Optional[Rental]:
        async with self._session_factory() as session:
            query = select(Rental).where(Rental.id == rental_id, Rental.user_id == user_id)
            return (await session.execute(query)).scalar_one_or_none()

    async def update(self, user_id: int, rental_id: str,
                     expected_status: RentalStatus = RentalStatus.ACTIVE, **fields) -> Optional[Rental]:
        """
        Applies 'fields' to the rental if it is still in 'expected_status' and
        returns the fresh row.

        Returns None when the rental is missing or has already moved on.
        """
        values = {k: (v.value if isinstance(v, Enum) else v) for k, v in fields.items()}
        values["updated_at"] = utc_now()
        async with self._session_factory() as session:
            result = await session.execute(
                update(Rental)
                .where(
                    Rental.id == rental_id,
                    Rental.user_id == user_id,
                    Rental.status == expected_status.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount == 0:
                app_logger.debug(f"Rental {rental_id} is no longer active; update {sorted(fields)} skipped")
                return None
            query = select(Rental).where(Rental.id == rental_id)
            return (await session.execute(query)).scalar_one()

    async def list_for_user(self, user_id: int, status: Optional[RentalStatus] = None) -> List[Rental]:
        async with self._session_factory() as session:
            query = select(Rental).where(Rental.user_id == user_id)
            if status is not None:
                query = query.where(Rental.status == status.value)
            query = query.order_by(Rental.created_at.desc())
            return list((await session.execute(query)).scalars().all())

    async def list_expired_active(self, now: datetime, user_id: Optional[int] = None) -> List[Rental]:
        """Active rentals whose window closed strictly before 'now'."""
        async with self._session_factory() as session:
            query = select(Rental).where(
                Rental.status == RentalStatus.ACTIVE.value,
                Rental.expires_at < now,
            )
            if user_id is not None:
                query = query.where(Rental.user_id == user_id)
            return list((await session.execute(query.order_by(Rental.expires_at))).scalars().all())

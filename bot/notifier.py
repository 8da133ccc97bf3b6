import asyncio
from typing import List, Optional

from aiogram import Bot
from sqlalchemy.future import select

from models.rental import RentalStatus
from models.user import User
from services.events import BalanceChanged, BrokerEvents, RentalUpdated
from utils.logger import app_logger
import bot.keyboards as kb
import bot.messages as msg


class TelegramNotifier:
    """
    Relays broker events to users' chats.

    Runs as its own tasks, so a slow Telegram API never holds up a purchase,
    a poll or a sweep.
    """

    def __init__(self, bot: Bot, events: BrokerEvents, session_factory):
        self._bot = bot
        self._events = events
        self._session_factory = session_factory
        self._tasks: List[asyncio.Task] = []

    async def _chat_id(self, user_id: int) -> Optional[int]:
        async with self._session_factory() as session:
            query = select(User.telegram_id).where(User.id == user_id)
            return (await session.execute(query)).scalar_one_or_none()

    async def _send(self, user_id: int, text: str, reply_markup=None):
        chat_id = await self._chat_id(user_id)
        if chat_id is None:
            return
        try:
            await self._bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)
        except Exception as e:
            app_logger.error(f"Failed to notify user {user_id}: {e}")

    async def on_rental_updated(self, event: RentalUpdated):
        rental = event.rental
        if rental.status == RentalStatus.COMPLETED.value and rental.code:
            await self._send(event.user_id, msg.code_received_message(rental.phone_number, rental.code))
        elif rental.status == RentalStatus.CANCELLED.value:
            await self._send(event.user_id, msg.rental_cancelled_message(rental.phone_number),
                             reply_markup=kb.main_menu_keyboard())

    async def on_balance_changed(self, event: BalanceChanged):
        await self._send(event.user_id, msg.balance_message(event.balance_cents))

    async def _consume(self, channel, handler):
        subscription = channel.subscribe()
        try:
            async for event in subscription:
                try:
                    await handler(event)
                except Exception:
                    app_logger.exception(f"Notifier failed on {event!r}")
        finally:
            subscription.close()

    def start(self):
        self._tasks = [
            asyncio.create_task(self._consume(self._events.rentals, self.on_rental_updated)),
            asyncio.create_task(self._consume(self._events.balance, self.on_balance_changed)),
        ]
        app_logger.info("Telegram notifier started.")

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

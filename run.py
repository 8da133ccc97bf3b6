import asyncio
import sys
from aiohttp import web

from aiogram.types import BotCommand

from config.settings import settings
from utils.logger import app_logger
from api.routes import create_app
from bot.main import create_bot, create_dispatcher
from bot.notifier import TelegramNotifier
from database.connection import init_db, async_session_factory
from database.redis import close_redis
from services.daisy_service import DaisyService
from services.events import BrokerEvents
from services.ledger_service import LedgerService
from services.pricing_service import PricingService
from services.rental_service import RentalService
from services.rental_store import RentalStore
from workers.expiry_worker import ExpirySweeper
from workers.poll_worker import PollSupervisor


def build_services():
    """Wires the broker components from settings."""
    provider = DaisyService(settings.DAISY_API_KEY, settings.DAISY_BASE_URL, settings.HTTP_TIMEOUT_SECONDS)
    ledger = LedgerService(settings.LEDGER_BASE_URL, settings.LEDGER_API_KEY, settings.HTTP_TIMEOUT_SECONDS)
    store = RentalStore(async_session_factory)
    pricing = PricingService(
        provider,
        markup_multiplier=settings.PRICE_MARKUP_MULTIPLIER,
        cache_seconds=settings.QUOTE_CACHE_SECONDS,
    )
    rentals = RentalService(
        ledger, provider, store, pricing,
        events=BrokerEvents(),
        max_price_ceiling=settings.MAX_PRICE_CEILING,
        default_rental_minutes=settings.DEFAULT_RENTAL_MINUTES,
        refund_retry_delay=settings.REFUND_RETRY_DELAY_SECONDS,
    )
    poller = PollSupervisor(rentals)
    sweeper = ExpirySweeper(rentals, store, interval_seconds=settings.SWEEP_INTERVAL_SECONDS)
    return provider, pricing, rentals, poller, sweeper


async def set_bot_commands(bot):
    commands = [
        BotCommand(command="start", description="Start/Restart the bot"),
        BotCommand(command="balance", description="Show your wallet balance"),
    ]
    await bot.set_my_commands(commands)
    app_logger.info("Bot commands set successfully.")


async def main():
    app_logger.info("Application starting up...")
    provider, pricing, rentals, poller, sweeper = build_services()
    bot = create_bot()
    dp = create_dispatcher(async_session_factory, rentals, pricing, poller)
    try:
        await bot.get_me()
        await set_bot_commands(bot)
        await init_db()
        app_logger.info("Bot, commands, and database initialized successfully.")
    except Exception as e:
        app_logger.critical(f"Initialization failed: {e}")
        sys.exit(1)

    if not await provider.health_check():
        app_logger.warning("Provider health check failed; continuing, rentals will fail until it recovers.")

    runner = web.AppRunner(create_app(rentals, pricing, poller))
    await runner.setup()
    site = web.TCPSite(runner, settings.API_HOST, settings.API_PORT)
    await site.start()
    app_logger.info(f"JSON API started on {settings.API_HOST}:{settings.API_PORT}.")

    notifier = TelegramNotifier(bot, rentals.events, async_session_factory)
    notifier.start()
    sweeper.start()

    try:
        app_logger.info("Starting bot polling...")
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        app_logger.warning("Shutdown sequence initiated...")
        await sweeper.stop()
        await poller.stop()
        await notifier.stop()
        await runner.cleanup()
        await close_redis()
        await bot.session.close()
        app_logger.info("Shutdown complete.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        app_logger.warning("Application was stopped manually.")

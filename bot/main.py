from aiogram import Bot, Dispatcher
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.client.default import DefaultBotProperties

from config.settings import settings
from bot.router import main_router
from bot.middlewares import DbSessionMiddleware
from security.rate_limit import RateLimitMiddleware
from utils.logger import app_logger


def create_bot() -> Bot:
    return Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )


def create_dispatcher(session_factory, rentals, pricing, poller) -> Dispatcher:
    """
    Builds the dispatcher. The broker components are injected into every
    handler by name ('rentals', 'pricing', 'poller').
    """
    dp = Dispatcher(storage=MemoryStorage(), rentals=rentals, pricing=pricing, poller=poller)

    # --- Middleware Registration ---
    # Registered on the router, so they run for its handlers only.
    if not main_router.message.middleware:
        main_router.message.middleware(DbSessionMiddleware(session_pool=session_factory))
        main_router.callback_query.middleware(DbSessionMiddleware(session_pool=session_factory))
        main_router.message.middleware(RateLimitMiddleware(limit=3, period=1))
        main_router.callback_query.middleware(RateLimitMiddleware(limit=3, period=1))
        app_logger.info("Database session and rate limiting middlewares registered on router.")

    dp.include_router(main_router)
    app_logger.info("Main router included.")
    return dp

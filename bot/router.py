import aiogram.exceptions
from aiogram import Router, F
from aiogram.filters import Command, CommandStart
from aiogram.types import Message, CallbackQuery, User
from sqlalchemy.future import select

from config.constants import SERVICES_PER_PAGE
from models.rental import RentalStatus
from models.user import User as DBUser
from services.errors import RentalError
from utils.logger import app_logger
import bot.keyboards as kb
import bot.messages as msg

main_router = Router()


async def get_or_create_user(session, telegram_user: User) -> DBUser:
    query = select(DBUser).where(DBUser.telegram_id == telegram_user.id)
    result = await session.execute(query)
    user = result.scalar_one_or_none()
    if not user:
        user = DBUser(
            telegram_id=telegram_user.id, full_name=telegram_user.full_name,
            username=telegram_user.username, language_code=telegram_user.language_code or 'en'
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        app_logger.info(f"Registered user {user.id} for Telegram account {telegram_user.id}")
    return user


async def _edit(callback: CallbackQuery, text: str, reply_markup=None):
    try:
        await callback.message.edit_text(text, reply_markup=reply_markup)
    except aiogram.exceptions.TelegramBadRequest as e:
        if "message is not modified" not in e.message:
            raise


@main_router.message(CommandStart())
async def handle_start(message: Message, session):
    user_data = await get_or_create_user(session, message.from_user)
    await message.answer(msg.welcome_message(user_data.full_name), reply_markup=kb.main_menu_keyboard())


@main_router.message(Command("balance"))
async def handle_balance(message: Message, session, rentals):
    user_data = await get_or_create_user(session, message.from_user)
    balance = await rentals.get_balance(user_data.id)
    await message.answer(msg.balance_message(balance), reply_markup=kb.main_menu_keyboard())


# --- MAIN MENU & TOP-LEVEL ACTIONS ---
@main_router.callback_query(F.data == "balance")
async def cq_balance(callback: CallbackQuery, session, rentals):
    await callback.answer()
    user_data = await get_or_create_user(session, callback.from_user)
    balance = await rentals.get_balance(user_data.id)
    await _edit(callback, msg.balance_message(balance), kb.main_menu_keyboard())


@main_router.callback_query(F.data == "my_numbers")
async def cq_my_numbers(callback: CallbackQuery, session, rentals, poller):
    await callback.answer()
    user_data = await get_or_create_user(session, callback.from_user)
    all_rentals = await rentals.list_rentals(user_data.id)
    # Reloading the list is what defines the watched set.
    poller.sync(user_data.id, all_rentals)
    active = [r for r in all_rentals if r.status == RentalStatus.ACTIVE.value]
    await _edit(callback, msg.my_numbers_message(len(active)), kb.my_numbers_keyboard(active))


@main_router.callback_query(F.data.startswith(kb.CB_BACK))
async def cq_back_handler(callback: CallbackQuery):
    await callback.answer()
    await _edit(callback, msg.welcome_message(callback.from_user.full_name), kb.main_menu_keyboard())


# --- ORDER FLOW ---
async def show_services(callback: CallbackQuery, pricing, offset: int = 0):
    quotes = await pricing.list_quotes()
    if not quotes:
        await _edit(callback, msg.NO_SERVICES, kb.back_to_menu_keyboard())
        return
    page = quotes[offset: offset + SERVICES_PER_PAGE]
    await _edit(callback, msg.SELECT_SERVICE, kb.service_list_keyboard(page, offset, len(quotes), SERVICES_PER_PAGE))


@main_router.callback_query(F.data == "order_number")
async def cq_order_number(callback: CallbackQuery, pricing):
    await callback.answer()
    await show_services(callback, pricing, offset=0)


@main_router.callback_query(F.data.startswith(kb.CB_PREFIX_SERVICE_PAGE))
async def cq_service_page(callback: CallbackQuery, pricing):
    await callback.answer()
    try:
        offset = int(callback.data.split(':', 1)[1])
    except ValueError:
        return
    await show_services(callback, pricing, offset=offset)


@main_router.callback_query(F.data.startswith(kb.CB_PREFIX_SERVICE))
async def cq_service_selected(callback: CallbackQuery, pricing):
    await callback.answer()
    service_code = callback.data.split(':', 1)[1]
    quote = await pricing.get_quote(service_code)
    if quote is None:
        await _edit(callback, msg.SERVICE_UNAVAILABLE, kb.back_to_menu_keyboard())
        return
    await _edit(
        callback,
        msg.confirm_purchase_message(quote.name, quote.price_cents, quote.count),
        kb.confirm_purchase_keyboard(service_code),
    )


@main_router.callback_query(F.data.startswith(kb.CB_PREFIX_BUY))
async def cq_buy(callback: CallbackQuery, session, rentals, poller):
    await callback.answer()
    service_code = callback.data.split(':', 1)[1]
    user_data = await get_or_create_user(session, callback.from_user)
    await _edit(callback, msg.PURCHASING)
    try:
        rental = await rentals.purchase(user_data.id, service_code)
    except RentalError as e:
        app_logger.warning(f"Purchase of {service_code} for user {user_data.id} failed: {e.code} {e.message}")
        await _edit(callback, msg.error_message(e), kb.main_menu_keyboard())
        return

    await _edit(
        callback,
        msg.number_issued_message(rental.phone_number, rental.expires_at),
        kb.rental_actions_keyboard(rental.id),
    )
    poller.watch(user_data.id, rental)


# --- RENTAL ACTIONS ---
@main_router.callback_query(F.data.startswith(kb.CB_PREFIX_CHECK))
async def cq_check(callback: CallbackQuery, session, rentals, poller):
    rental_id = callback.data.split(':', 1)[1]
    user_data = await get_or_create_user(session, callback.from_user)
    try:
        rental = await rentals.check_status(user_data.id, rental_id)
    except RentalError as e:
        await callback.answer(msg.error_message(e), show_alert=True)
        return

    if rental.code:
        await callback.answer()
        await callback.message.answer(msg.code_received_message(rental.phone_number, rental.code))
    elif not rental.is_active:
        await callback.answer(msg.ALREADY_ENDED, show_alert=True)
    else:
        poller.watch(user_data.id, rental)
        await callback.answer(msg.NO_SMS_YET)


@main_router.callback_query(F.data.startswith(kb.CB_PREFIX_CANCEL))
async def cq_cancel(callback: CallbackQuery, session, rentals, poller):
    rental_id = callback.data.split(':', 1)[1]
    user_data = await get_or_create_user(session, callback.from_user)
    try:
        cancelled = await rentals.cancel(user_data.id, rental_id)
    except RentalError as e:
        app_logger.error(f"Cancel of rental {rental_id} failed: {e.code} {e.message}")
        await callback.answer(msg.error_message(e), show_alert=True)
        return

    poller.unwatch(rental_id)
    await callback.answer(msg.CANCEL_DONE if cancelled else msg.ALREADY_ENDED, show_alert=not cancelled)

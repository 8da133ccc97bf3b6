from typing import List

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from bot.messages import format_cents
from models.rental import Rental
from services.pricing_service import ServiceQuote

# --- Callback Data Prefixes ---
CB_PREFIX_SERVICE = "svc:"
CB_PREFIX_SERVICE_PAGE = "svcpage:"
CB_PREFIX_BUY = "buy:"
CB_PREFIX_CHECK = "check:"
CB_PREFIX_CANCEL = "cancel:"
CB_BACK = "back:"


# --- Main Menu & General Keyboards ---
def main_menu_keyboard() -> InlineKeyboardMarkup:
    """Creates the main menu keyboard."""
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🛒 Get a Number", callback_data="order_number"))
    builder.row(
        InlineKeyboardButton(text="My Numbers", callback_data="my_numbers"),
        InlineKeyboardButton(text="💰 Balance", callback_data="balance")
    )
    return builder.as_markup()


def back_to_menu_keyboard() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="⬅️ Back to Main Menu", callback_data=f"{CB_BACK}main_menu"))
    return builder.as_markup()


def service_list_keyboard(quotes: List[ServiceQuote], offset: int, total_count: int, page_size: int) -> InlineKeyboardMarkup:
    """One button per quoted service, with 'Load More' while more remain."""
    builder = InlineKeyboardBuilder()
    for quote in quotes:
        builder.add(InlineKeyboardButton(
            text=f"{quote.name} · {format_cents(quote.price_cents)}",
            callback_data=f"{CB_PREFIX_SERVICE}{quote.service_code}"
        ))
    builder.adjust(2)

    next_offset = offset + page_size
    if next_offset < total_count:
        builder.row(InlineKeyboardButton(text="Load More »", callback_data=f"{CB_PREFIX_SERVICE_PAGE}{next_offset}"))
    builder.row(InlineKeyboardButton(text="⬅️ Back", callback_data=f"{CB_BACK}main_menu"))
    return builder.as_markup()


def confirm_purchase_keyboard(service_code: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="✅ Buy Now", callback_data=f"{CB_PREFIX_BUY}{service_code}"))
    builder.row(InlineKeyboardButton(text="⬅️ Back", callback_data="order_number"))
    return builder.as_markup()


def rental_actions_keyboard(rental_id: str) -> InlineKeyboardMarkup:
    """Check / cancel buttons shown under an active number."""
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="🔄 Check SMS", callback_data=f"{CB_PREFIX_CHECK}{rental_id}"),
        InlineKeyboardButton(text="✖️ Cancel", callback_data=f"{CB_PREFIX_CANCEL}{rental_id}")
    )
    return builder.as_markup()


def my_numbers_keyboard(rentals: List[Rental]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for rental in rentals:
        builder.row(
            InlineKeyboardButton(text=f"🔄 {rental.phone_number}", callback_data=f"{CB_PREFIX_CHECK}{rental.id}"),
            InlineKeyboardButton(text="✖️", callback_data=f"{CB_PREFIX_CANCEL}{rental.id}")
        )
    builder.row(InlineKeyboardButton(text="⬅️ Back to Main Menu", callback_data=f"{CB_BACK}main_menu"))
    return builder.as_markup()

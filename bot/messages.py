"""
Centralized repository for all user-facing messages.
"""
from datetime import datetime
from html import escape

from services.errors import ExitCode, RentalError


def format_cents(cents: int) -> str:
    return f"${cents / 100:,.2f}"


# --- Welcome & Main Menu ---
def welcome_message(name: str) -> str:
    """Greets the user upon starting the bot."""
    return (
        f"👋 Hello, <b>{escape(name or 'there')}</b>!\n\n"
        "Rent a number, receive your verification code, and pay only if a code arrives.\n\n"
        "Please select an option below to get started."
    )


# --- Service Selection Flow ---
SELECT_SERVICE = "Please select a service:"
NO_SERVICES = "😕 No services are available right now. Please try again in a minute."


def confirm_purchase_message(name: str, price_cents: int, count: int) -> str:
    return (
        f"📦 <b>{escape(name)}</b>\n"
        f"💰 Price: <b>{format_cents(price_cents)}</b>\n"
        f"📶 Numbers in stock: {count}\n\n"
        "Your wallet is only charged if a code is received. "
        "Otherwise the reserved amount is returned."
    )


# --- Number & SMS Handling ---
PURCHASING = "⚙️ Reserving funds and ordering your number..."


def number_issued_message(number: str, expires_at: datetime) -> str:
    """Informs the user that their number has been issued."""
    return (
        f"✅ Your number is ready!\n\n"
        f"📞 <b>Number:</b> <code>{escape(number)}</code>\n"
        f"⏳ <b>Expires:</b> {expires_at.strftime('%H:%M UTC')}\n\n"
        "I will automatically listen for incoming SMS."
    )


def code_received_message(number: str, code: str) -> str:
    return (
        f"📩 <b>Code received for</b> <code>{escape(number)}</code>\n\n"
        f"<b>Code:</b> <code>{escape(code)}</code>"
    )


def rental_cancelled_message(number: str) -> str:
    return f"✖️ Rental of <code>{escape(number)}</code> ended without a code. The reserved amount was returned."


def balance_message(balance_cents: int) -> str:
    return f"💰 Wallet balance: <b>{format_cents(balance_cents)}</b>"


def my_numbers_message(count: int) -> str:
    if not count:
        return "📭 <b>You have no active numbers.</b>"
    return f"📱 <b>Your Active Numbers ({count}):</b>\nTap a number to check for SMS."


NO_SMS_YET = "No SMS received yet. Still listening..."
ALREADY_ENDED = "This rental has already ended."
CANCEL_DONE = "Rental cancelled and refunded."

# --- Error and System Messages ---
GENERIC_ERROR = "⚠️ An unexpected error occurred. Please try again."
SERVICE_UNAVAILABLE = "Sorry, this service is not available right now."

_ERROR_MESSAGES = {
    ExitCode.INSUFFICIENT_FUNDS: "💸 Insufficient wallet balance. Please top up before purchasing a number.",
    ExitCode.SERVICE_UNAVAILABLE: SERVICE_UNAVAILABLE,
    ExitCode.UNAUTHENTICATED: "Please send /start first.",
}


def error_message(error: RentalError) -> str:
    """The reason shown for a failed action."""
    if error.exit_code == ExitCode.PROVIDER_FAILURE:
        return f"❌ The number provider rejected the order: {escape(error.message)}"
    return _ERROR_MESSAGES.get(error.exit_code, GENERIC_ERROR)

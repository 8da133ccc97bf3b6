"""
Error taxonomy for the rental broker and the exit codes front-ends report.
"""
from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    SUCCESS = 0
    INSUFFICIENT_FUNDS = 1
    SERVICE_UNAVAILABLE = 2
    PROVIDER_FAILURE = 3
    UNAUTHENTICATED = 4
    INTERNAL_RECONCILIATION_ERROR = 5


class RentalError(Exception):
    """Base error for broker operations."""

    exit_code: ExitCode = ExitCode.INTERNAL_RECONCILIATION_ERROR

    def __init__(self, message: str, code: str = "RENTAL_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


# --- User errors: surfaced directly, never retried ---

class InsufficientFunds(RentalError):
    exit_code = ExitCode.INSUFFICIENT_FUNDS

    def __init__(self, balance_cents: Optional[int] = None, required_cents: Optional[int] = None):
        if balance_cents is not None and required_cents is not None:
            message = f"Insufficient wallet balance: {balance_cents}¢ available, {required_cents}¢ required"
        else:
            message = "Insufficient wallet balance. Please top up before purchasing a number."
        super().__init__(message, "INSUFFICIENT_FUNDS")
        self.balance_cents = balance_cents
        self.required_cents = required_cents


class Unauthenticated(RentalError):
    exit_code = ExitCode.UNAUTHENTICATED

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message, "UNAUTHENTICATED")


class ServiceUnavailable(RentalError):
    exit_code = ExitCode.SERVICE_UNAVAILABLE

    def __init__(self, service_code: str):
        super().__init__(f"Service not available: {service_code}", "SERVICE_UNAVAILABLE")
        self.service_code = service_code


# --- Provider errors ---

class ProviderFailure(RentalError):
    """The numbering provider refused or could not be reached."""

    exit_code = ExitCode.PROVIDER_FAILURE

    def __init__(self, message: str, code: str = "PROVIDER_FAILURE"):
        super().__init__(message, code)


class NoNumbers(ProviderFailure):
    def __init__(self):
        super().__init__("No numbers available for this service right now", "NO_NUMBERS")


class NoMoney(ProviderFailure):
    def __init__(self):
        super().__init__("Provider account balance is too low", "NO_MONEY")


class MaxPriceExceeded(ProviderFailure):
    def __init__(self, max_price: Optional[str] = None):
        super().__init__(f"Provider price rose above the accepted maximum ({max_price})", "MAX_PRICE_EXCEEDED")
        self.max_price = max_price


class ProviderTransportError(ProviderFailure):
    def __init__(self, message: str):
        super().__init__(f"Provider request failed: {message}", "PROVIDER_TRANSPORT")


class ProviderRejected(ProviderFailure):
    """Any provider answer we do not have a dedicated type for."""

    def __init__(self, raw: str):
        super().__init__(f"Provider rejected the request: {raw}", "PROVIDER_REJECTED")
        self.raw = raw


# --- Ledger errors ---

class LedgerError(RentalError):
    def __init__(self, message: str, code: str = "LEDGER_ERROR"):
        super().__init__(message, code)


class LedgerUnauthorized(LedgerError):
    def __init__(self, message: str = "Ledger refused the caller"):
        super().__init__(message, "LEDGER_UNAUTHORIZED")


class HoldNotFound(LedgerError):
    def __init__(self, hold_id: str):
        super().__init__(f"Wallet hold not found: {hold_id}", "HOLD_NOT_FOUND")
        self.hold_id = hold_id


class HoldAlreadySettled(LedgerError):
    def __init__(self, hold_id: str):
        super().__init__(f"Wallet hold already committed or refunded: {hold_id}", "HOLD_ALREADY_SETTLED")
        self.hold_id = hold_id


class LedgerTransportError(LedgerError):
    def __init__(self, message: str):
        super().__init__(f"Ledger request failed: {message}", "LEDGER_TRANSPORT")


# --- Internal ---

class RentalNotFound(RentalError):
    def __init__(self, rental_id: str):
        super().__init__(f"Rental not found: {rental_id}", "RENTAL_NOT_FOUND")
        self.rental_id = rental_id


class RentalIdTaken(RentalError):
    """A caller-chosen rental id is already used by another user's rental."""

    def __init__(self, rental_id: str):
        super().__init__(f"Rental id already in use: {rental_id}", "RENTAL_ID_TAKEN")
        self.rental_id = rental_id


class InternalReconciliationError(RentalError):
    """The saga could not leave the three collaborators consistent on its own."""

    def __init__(self, message: str):
        super().__init__(message, "INTERNAL_RECONCILIATION_ERROR")


def exit_code_for(exc: Optional[BaseException]) -> ExitCode:
    """Map an outcome to the code a CLI or API front-end reports."""
    if exc is None:
        return ExitCode.SUCCESS
    if isinstance(exc, RentalError):
        return exc.exit_code
    return ExitCode.INTERNAL_RECONCILIATION_ERROR

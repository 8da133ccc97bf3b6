import asyncio
from typing import Optional

import aiohttp
from pydantic import BaseModel, ValidationError

from config.constants import (
    LEDGER_RPC_BALANCE, LEDGER_RPC_COMMIT, LEDGER_RPC_FIND_HOLD,
    LEDGER_RPC_LEGACY_DEBIT, LEDGER_RPC_REFUND, LEDGER_RPC_RESERVE,
)
from services.errors import (
    HoldAlreadySettled, HoldNotFound, InsufficientFunds, LedgerError,
    LedgerTransportError, LedgerUnauthorized,
)
from utils.logger import app_logger


class HoldReceipt(BaseModel):
    """Answer to a reservation: the hold and the spendable balance left."""

    hold_id: str
    balance_after_cents: int


class BalanceReceipt(BaseModel):
    balance_after_cents: int


class WalletBalance(BaseModel):
    balance_cents: int


class LedgerService:
    """
    Client for the wallet ledger's RPC functions.

    The ledger is the source of truth for balances and enforces that a hold
    is settled once; every call here is safe to retry on its side.
    """

    def __init__(self, base_url: str, api_key: str, timeout_seconds: int = 30):
        if not api_key:
            raise ValueError("Ledger API key is required.")
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _make_request(self, function: str, payload: dict, subject: str = ""):
        """Calls one RPC function and maps failures onto ledger errors."""
        url = f"{self._base_url}/rest/v1/rpc/{function}"
        try:
            async with aiohttp.ClientSession(headers=self._headers, timeout=self._timeout) as session:
                async with session.post(url, json=payload) as response:
                    try:
                        data = await response.json(content_type=None)
                    except ValueError:
                        data = None
                    app_logger.debug(f"Ledger {function} response ({response.status}): {data}")
                    if response.status >= 400:
                        self._raise_for_status(response.status, data, subject)
                    return data
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            app_logger.error(f"Ledger request {function} failed: {e!r}")
            raise LedgerTransportError(str(e) or e.__class__.__name__) from e

    @staticmethod
    def _raise_for_status(status: int, data, subject: str):
        message = ""
        if isinstance(data, dict):
            message = str(data.get("message") or data.get("error") or "")
        if status == 402 or "insufficient" in message.lower():
            raise InsufficientFunds()
        if status in (401, 403):
            raise LedgerUnauthorized(message or "Ledger refused the caller")
        if status == 404:
            raise HoldNotFound(subject)
        if status == 409:
            raise HoldAlreadySettled(subject)
        if status >= 500:
            raise LedgerTransportError(f"HTTP {status}: {message}")
        raise LedgerError(f"Ledger error {status}: {message}")

    @staticmethod
    def _parse(model, data):
        # PostgREST returns set-returning functions as a one-element list.
        if isinstance(data, list):
            data = data[0] if data else None
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise LedgerError(f"Malformed ledger response: {e.errors()[:1]}")

    async def reserve(self, user_id: int, amount_cents: int, reference_id: str, reason: str = "") -> HoldReceipt:
        app_logger.info(f"Reserving {amount_cents}¢ for user {user_id} (ref {reference_id})")
        data = await self._make_request(LEDGER_RPC_RESERVE, {
            "p_user_id": user_id,
            "p_amount_cents": amount_cents,
            "p_rental_id": reference_id,
            "p_reason": reason,
        }, subject=reference_id)
        return self._parse(HoldReceipt, data)

    async def commit(self, hold_id: str) -> int:
        data = await self._make_request(LEDGER_RPC_COMMIT, {"p_hold_id": hold_id}, subject=hold_id)
        return self._parse(BalanceReceipt, data).balance_after_cents

    async def refund(self, hold_id: str, reason: str = "") -> int:
        data = await self._make_request(
            LEDGER_RPC_REFUND, {"p_hold_id": hold_id, "p_reason": reason}, subject=hold_id
        )
        return self._parse(BalanceReceipt, data).balance_after_cents

    async def legacy_debit_on_success(self, user_id: int, amount_cents: int, reference_id: str, reason: str = "") -> int:
        """Direct debit for rentals created before holds existed."""
        data = await self._make_request(LEDGER_RPC_LEGACY_DEBIT, {
            "p_user_id": user_id,
            "p_amount_cents": amount_cents,
            "p_rental_id": reference_id,
            "p_reason": reason,
        }, subject=reference_id)
        return self._parse(BalanceReceipt, data).balance_after_cents

    async def get_balance(self, user_id: int) -> int:
        data = await self._make_request(LEDGER_RPC_BALANCE, {"p_user_id": user_id})
        return self._parse(WalletBalance, data).balance_cents

    async def find_hold(self, reference_id: str) -> Optional[str]:
        """Looks up the hold placed for a rental id, if any."""
        data = await self._make_request(LEDGER_RPC_FIND_HOLD, {"p_rental_id": reference_id}, subject=reference_id)
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            return data.get("hold_id") or None
        if isinstance(data, str):
            return data or None
        return None

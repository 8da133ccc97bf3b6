"""
JSON front-end for the rental broker.

The caller is identified by the X-User-Id header, which an authenticating
proxy in front of this app sets. Failed requests answer with the error code
and the exit code of the failure.
"""
import re
from typing import Optional

from aiohttp import web

from models.rental import RentalStatus
from services.errors import ExitCode, RentalError, RentalIdTaken, RentalNotFound, exit_code_for
from services.pricing_service import ServiceQuote
from utils.logger import app_logger

rentals_key = web.AppKey("rentals", object)
pricing_key = web.AppKey("pricing", object)
poller_key = web.AppKey("poller", object)

USER_HEADER = "X-User-Id"

# Fits the rentals.id column; uuid4().hex ids match too.
RENTAL_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,36}")

_HTTP_STATUS = {
    ExitCode.INSUFFICIENT_FUNDS: 402,
    ExitCode.SERVICE_UNAVAILABLE: 503,
    ExitCode.PROVIDER_FAILURE: 502,
    ExitCode.UNAUTHENTICATED: 401,
    ExitCode.INTERNAL_RECONCILIATION_ERROR: 500,
}


def _user_id(request: web.Request) -> Optional[int]:
    raw = request.headers.get(USER_HEADER)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _quote_to_dict(quote: ServiceQuote) -> dict:
    return {
        "service_code": quote.service_code,
        "name": quote.name,
        "price_cents": quote.price_cents,
        "count": quote.count,
        "ttl_seconds": quote.ttl_seconds,
    }


def _error_response(status: int, code: str, message: str, exit_code: ExitCode) -> web.Response:
    return web.json_response(
        {"error": code, "message": message, "exit_code": int(exit_code)}, status=status
    )


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except RentalNotFound as e:
        return _error_response(404, e.code, e.message, e.exit_code)
    except RentalIdTaken as e:
        return _error_response(409, e.code, e.message, e.exit_code)
    except RentalError as e:
        app_logger.warning(f"{request.method} {request.path} failed: {e.code} {e.message}")
        return _error_response(_HTTP_STATUS[e.exit_code], e.code, e.message, e.exit_code)
    except Exception as e:
        app_logger.exception(f"Unhandled error on {request.method} {request.path}")
        return _error_response(500, "INTERNAL_ERROR", "Internal server error", exit_code_for(e))


async def list_quotes(request: web.Request) -> web.Response:
    quotes = await request.app[pricing_key].list_quotes()
    return web.json_response({"quotes": [_quote_to_dict(q) for q in quotes]})


async def list_rentals(request: web.Request) -> web.Response:
    status = request.query.get("status")
    try:
        status = RentalStatus(status) if status else None
    except ValueError:
        raise web.HTTPBadRequest(text=f"Unknown status: {status}")
    rentals = await request.app[rentals_key].list_rentals(_user_id(request), status)
    return web.json_response({"rentals": [r.to_dict() for r in rentals]})


async def create_rental(request: web.Request) -> web.Response:
    try:
        body = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(text="Body must be JSON")
    service_code = body.get("service_code") if isinstance(body, dict) else None
    if not service_code:
        raise web.HTTPBadRequest(text="'service_code' is required")
    rental_id = body.get("rental_id")
    if rental_id is not None and not (isinstance(rental_id, str) and RENTAL_ID_PATTERN.fullmatch(rental_id)):
        raise web.HTTPBadRequest(text="'rental_id' must be 1-36 letters, digits, '-' or '_'")

    user_id = _user_id(request)
    rental = await request.app[rentals_key].purchase(user_id, service_code, rental_id=rental_id)
    poller = request.app.get(poller_key)
    if poller is not None:
        poller.watch(user_id, rental)
    return web.json_response(rental.to_dict(), status=201)


async def check_rental(request: web.Request) -> web.Response:
    rental = await request.app[rentals_key].check_status(_user_id(request), request.match_info["rental_id"])
    return web.json_response(rental.to_dict())


async def cancel_rental(request: web.Request) -> web.Response:
    rental_id = request.match_info["rental_id"]
    cancelled = await request.app[rentals_key].cancel(_user_id(request), rental_id)
    poller = request.app.get(poller_key)
    if poller is not None:
        poller.unwatch(rental_id)
    return web.json_response({"rental_id": rental_id, "cancelled": cancelled})


def create_app(rentals, pricing, poller=None) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[rentals_key] = rentals
    app[pricing_key] = pricing
    if poller is not None:
        app[poller_key] = poller

    app.router.add_get("/api/quotes", list_quotes)
    app.router.add_get("/api/rentals", list_rentals)
    app.router.add_post("/api/rentals", create_rental)
    app.router.add_post("/api/rentals/{rental_id}/check", check_rental)
    app.router.add_post("/api/rentals/{rental_id}/cancel", cancel_rental)
    return app

"""
FastAPI application factory.

* Registers routes for bids, offers, loads, trucks and admin.
* Starts / stops the background dispatcher worker via lifespan events.
* Renders every error as ``{"success": false, "message": ...}``.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from loadmatch.api.middleware import limiter
from loadmatch.api.routes import admin, bids, loads, offers, trucks
from loadmatch.config import settings
from loadmatch.domain.errors import MarketplaceError
from loadmatch.workers import dispatcher as _dispatcher

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the dispatcher worker on startup; stop on shutdown."""
    await _dispatcher.start_dispatch_loop()
    yield
    await _dispatcher.stop_dispatch_loop()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"success": False, "message": message}
    )


async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return _error(exc.status_code, exc.message)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return _error(400, f"{location}: {message}" if location else message)


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


def create_app() -> FastAPI:
    app = FastAPI(
        title="LoadMatch Freight Bidding API",
        description=(
            "Connects transporters' loads with truckers' trucks: geo "
            "discovery, directional bids with single-winner acceptance, "
            "BlCoins rewards and chat bootstrap."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Errors
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    # Routers
    for module in (bids, offers, loads, trucks, admin):
        app.include_router(module.router, prefix="/api/v1")

    return app

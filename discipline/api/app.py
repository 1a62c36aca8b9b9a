"""
FastAPI application factory.

* Registers routes for disputes, trips and admin.
* Starts / stops the background sanction sweep via lifespan events.
* Maps domain errors to HTTP status codes (not found -> 404, conflict -> 409).
* Applies rate-limiting.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from discipline.api.middleware import limiter
from discipline.api.routes import admin, disputes, trips
from discipline.domain.errors import Conflict, NotFound
from discipline.infrastructure import redis_client as _redis
from discipline.workers import scheduler as _scheduler

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sweep worker on startup; stop on shutdown."""
    await _scheduler.start_sweep_loop()
    yield
    await _scheduler.stop_sweep_loop()
    await _redis.close_redis()


async def _not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _conflict_handler(request: Request, exc: Conflict) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Driver Disciplinary API",
        description=(
            "Turns customer disputes into graduated driver sanctions "
            "(warning, 3-day and 7-day suspensions, permanent ban) and holds "
            "enforcement while a driver is mid-trip."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(NotFound, _not_found_handler)
    app.add_exception_handler(Conflict, _conflict_handler)

    # Routers
    app.include_router(disputes.router, prefix="/api/v1")
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app

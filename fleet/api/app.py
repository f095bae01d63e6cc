"""
FastAPI application factory.

* Registers routes for trips, vehicles, drivers, audit and admin.
* Maps ``DispatchError`` subclasses to classified JSON error bodies.
* Applies rate-limiting middleware.
* Disposes the engine's connection pool on shutdown.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from fleet.api.errors import register_error_handlers
from fleet.api.middleware import limiter
from fleet.api.routes import admin, audit, drivers, trips, vehicles
from fleet.config import settings
from fleet.infrastructure.database import engine

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Fleet Dispatch API",
        description=(
            "Dispatches vehicles and drivers onto cargo trips.  Every status "
            "change is guarded by a state machine, taken under ordered row "
            "locks and paired with an immutable audit record."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    register_error_handlers(app)

    # Routers
    for module in (trips, vehicles, drivers, audit, admin):
        app.include_router(module.router, prefix="/api/v1")

    return app

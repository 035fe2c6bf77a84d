import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

# Load env before settings are read elsewhere
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from dailyq.api import answers, calendar, health, jokers, missed, session, streaks  # noqa: E402
from dailyq.api.deps import ensure_registry  # noqa: E402
from dailyq.core.config import Settings, settings, validate_config  # noqa: E402
from dailyq.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from dailyq.core.logging import configure_logging  # noqa: E402
from dailyq.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from dailyq.features.session import SessionRegistry  # noqa: E402
from dailyq.features.store.base import AnswerStore  # noqa: E402

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("dailyq")
    logger.info("Starting DailyQ engagement engine...")
    registry = ensure_registry(app)
    try:
        yield
    finally:
        registry.close_all()
        logger.info("Stopping DailyQ engagement engine...")


def create_app(store: Optional[AnswerStore] = None, *, settings_obj: Optional[Settings] = None, clock=None) -> FastAPI:
    """
    Build the HTTP app.

    Without ``store`` the store is chosen from DATABASE_URL on startup; tests
    pass a ``MemoryAnswerStore`` and a fixed ``clock``.
    """
    app = FastAPI(title="DailyQ - Engagement engine", lifespan=lifespan)
    app.state.settings = settings_obj or settings
    app.state.clock = clock
    app.state.registry = SessionRegistry(store, app.state.settings, clock) if store is not None else None

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router)
    app.include_router(answers.router)
    app.include_router(calendar.router)
    app.include_router(jokers.router)
    app.include_router(missed.router)
    app.include_router(streaks.router)
    app.include_router(session.router)
    return app


app = create_app()

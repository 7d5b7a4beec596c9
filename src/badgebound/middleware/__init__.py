"""Middleware registration."""

from fastapi import FastAPI

from badgebound.config import Settings
from badgebound.middleware.cors import setup_cors
from badgebound.middleware.error_handler import setup_error_handlers
from badgebound.middleware.logging import setup_logging
from badgebound.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware. Last added is outermost, so CORS goes last."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)

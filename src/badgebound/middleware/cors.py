"""CORS for the quest dashboard origins."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from badgebound.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    # Read endpoints plus the claim POST; no credentials, wallets are public.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
    )

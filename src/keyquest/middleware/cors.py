"""CORS for the typing-practice web clients."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from keyquest.config import Settings

# Bearer tokens travel in Authorization; clients may send their own request id.
ALLOWED_HEADERS = ["Authorization", "Content-Type", "X-Request-Id"]
# Retry-After accompanies 503 responses when a write lost every retry.
EXPOSED_HEADERS = ["X-Request-Id", "Retry-After"]


def setup_cors(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=ALLOWED_HEADERS,
        expose_headers=EXPOSED_HEADERS,
        max_age=600,
    )

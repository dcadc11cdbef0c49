"""Fixture HTTP server for exercising HTTP clients."""

from .http import (
    BadRequest,
    HttpError,
    HttpRequest,
    HttpResponse,
    HttpServer,
    Router,
    compose,
    default_middleware,
)
from .fixtures import SUBJECT, build_app, build_router

__all__ = [
    # Fixture app
    "SUBJECT",
    "build_app",
    "build_router",
    # HTTP
    "HttpRequest",
    "HttpResponse",
    "HttpServer",
    "Router",
    "compose",
    "default_middleware",
    # Errors
    "HttpError",
    "BadRequest",
]

"""Exceptions that map straight onto HTTP error responses."""

from __future__ import annotations


class HttpError(Exception):
    """Raised by handlers to answer with a specific status and text body."""

    status: int = 500

    def __init__(self, message: str = "", *, status: int | None = None):
        super().__init__(message)
        if status is not None:
            self.status = status
        self.message = message


class BadRequest(HttpError):
    status = 400


class PayloadTooLarge(HttpError):
    status = 413

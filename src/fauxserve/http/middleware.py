"""Request-processing stages that wrap a handler.

A middleware is ``async def stage(request, call_next) -> HttpResponse``.
``compose()`` nests them around a handler, first one outermost.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
from typing import AsyncIterator, Awaitable, Callable

import anyio

from .errors import HttpError
from .server import Handler, HttpRequest, HttpResponse


logger = logging.getLogger(__name__)

Middleware = Callable[[HttpRequest, Handler], Awaitable[HttpResponse]]


def compose(handler: Handler, *middlewares: Middleware) -> Handler:
    for middleware in reversed(middlewares):
        handler = functools.partial(middleware, call_next=handler)
    return handler


async def error_handler(request: HttpRequest, call_next: Handler) -> HttpResponse:
    """Catch-all boundary: every failure below becomes a response."""
    try:
        return await call_next(request)
    except HttpError as e:
        return HttpResponse.text(e.message or str(e.status), status=e.status)
    except Exception as e:
        logger.exception("handler error for %s %s", request.method, request.path)
        return HttpResponse.text(f"server error: {e!r}", status=500)


async def access_log(request: HttpRequest, call_next: Handler) -> HttpResponse:
    """Log ``METHOD path status elapsed - length`` once the response is done.

    Bytes bodies are logged when the handler returns. Streamed bodies are
    wrapped so the line is written after the last chunk has been sent, and the
    elapsed time covers the transfer.
    """
    start = anyio.current_time()
    try:
        response = await call_next(request)
    except HttpError as e:
        _log_line(request, e.status, start, "-")
        raise
    except Exception:
        _log_line(request, 500, start, "-")
        raise
    if isinstance(response.body, (bytes, bytearray)):
        _log_line(request, response.status, start, str(len(response.body)))
        return response

    length = "-"
    if response.headers:
        length = {k.lower(): v for k, v in response.headers.items()}.get("content-length", "-")
    if request.method.upper() == "HEAD":
        # the body is never sent
        _log_line(request, response.status, start, length)
        return response
    return dataclasses.replace(response, body=_logged_body(request, response, start, length))


async def _logged_body(
    request: HttpRequest,
    response: HttpResponse,
    start: float,
    length: str,
) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.body:
            yield chunk
    finally:
        _log_line(request, response.status, start, length)


def _log_line(request: HttpRequest, status: int, start: float, length: str) -> None:
    elapsed_ms = (anyio.current_time() - start) * 1000
    logger.info("%s %s %d %.3f ms - %s", request.method, request.path, status, elapsed_ms, length)


def default_middleware() -> tuple[Middleware, ...]:
    return (error_handler, access_log)

"""Canned routes for exercising HTTP clients.

Every handler answers deterministically. ``/loop/1`` and ``/loop/2`` redirect
to each other forever so clients can prove their redirect limits work.
"""

from __future__ import annotations

import gzip

import anyio
from anyio import to_thread

from .http.errors import BadRequest
from .http.middleware import compose, default_middleware
from .http.router import Router
from .http.server import Handler, HttpRequest, HttpResponse


SUBJECT = "some long long long long string"

MAX_TIMEOUT_MS = 24 * 60 * 60 * 1000

LINK_HEADER = '<https://api.github.com/repos/visionmedia/mocha/issues?page=2>; rel="next"'


async def handle_home(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.html("home")


async def handle_gzip(_req: HttpRequest) -> HttpResponse:
    body = await to_thread.run_sync(gzip.compress, SUBJECT.encode("utf-8"))
    return HttpResponse(
        status=200,
        headers={"content-type": "text/plain", "content-encoding": "gzip"},
        body=body,
    )


async def handle_echo(req: HttpRequest) -> HttpResponse:
    # Headers go back as received and the body is piped chunk by chunk.
    return HttpResponse(status=200, headers=dict(req.headers), body=req.body)


async def handle_json(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.json({"name": "jake"})


async def handle_login(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.html('<form id="login"></form>')


async def handle_redirect(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.redirect("/redirect/2")


async def handle_redirect_target(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.html("Oh damn you found me")


async def handle_loop_1(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.redirect("/loop/2")


async def handle_loop_2(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.redirect("/loop/1")


async def handle_links(_req: HttpRequest) -> HttpResponse:
    return HttpResponse(status=200, headers={"link": LINK_HEADER}, body=b"")


async def handle_error(_req: HttpRequest) -> HttpResponse:
    return HttpResponse.html("boom", status=500)


async def handle_timeout(req: HttpRequest) -> HttpResponse:
    raw = req.params.get("ms", "")
    # the length check keeps int() away from huge digit strings
    if not (raw.isascii() and raw.isdigit()) or len(raw) > len(str(MAX_TIMEOUT_MS)):
        raise BadRequest(f"invalid timeout: {raw}")
    ms = int(raw, 10)
    if ms > MAX_TIMEOUT_MS:
        raise BadRequest(f"invalid timeout: {raw}")
    await anyio.sleep(ms / 1000)
    return HttpResponse.html("hello")


def build_router() -> Router:
    return Router(
        {
            ("GET", "/"): handle_home,
            ("GET", "/gzip"): handle_gzip,
            ("POST", "/echo"): handle_echo,
            ("GET", "/json"): handle_json,
            ("GET", "/login"): handle_login,
            ("GET", "/redirect"): handle_redirect,
            ("GET", "/redirect/2"): handle_redirect_target,
            ("GET", "/loop/1"): handle_loop_1,
            ("GET", "/loop/2"): handle_loop_2,
            ("GET", "/links"): handle_links,
            ("GET", "/error"): handle_error,
            ("GET", "/timeout/:ms"): handle_timeout,
        }
    )


def build_app(router: Router | None = None) -> Handler:
    """Fixture router wrapped in the default middleware chain."""
    return compose(router or build_router(), *default_middleware())

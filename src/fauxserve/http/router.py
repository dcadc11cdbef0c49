"""Explicit (method, path pattern) dispatch table."""

from __future__ import annotations

import dataclasses
import re
from typing import Callable, Mapping
from urllib.parse import unquote

from .server import Handler, HttpRequest, HttpResponse


def _compile(pattern: str) -> re.Pattern[str]:
    """Turn ``/timeout/:ms`` into a regex capturing ``ms`` from one path segment."""
    if not pattern.startswith("/"):
        raise ValueError(f"route pattern must start with '/': {pattern!r}")
    parts = []
    for segment in pattern.split("/")[1:]:
        if segment.startswith(":"):
            name = segment[1:]
            if not name.isidentifier():
                raise ValueError(f"invalid parameter name in {pattern!r}")
            parts.append(f"(?P<{name}>[^/]+)")
        else:
            parts.append(re.escape(segment))
    return re.compile("/" + "/".join(parts) + "/?" if pattern != "/" else "/")


def _params(match: re.Match[str]) -> dict[str, str]:
    return {name: unquote(value) for name, value in match.groupdict().items()}


class Router:
    """A small router that dispatches (method, path) to async handlers.

    Routes are tried in the order they were added. The router is itself a
    handler: ``await router(request)``.
    """

    def __init__(self, routes: Mapping[tuple[str, str], Handler] | None = None):
        self._routes: list[tuple[str, str, re.Pattern[str], Handler]] = []
        for (method, pattern), handler in (routes or {}).items():
            self.add(method, pattern, handler)

    def add(self, method: str, pattern: str, handler: Handler) -> None:
        self._routes.append((method.upper(), pattern, _compile(pattern), handler))

    def get(self, pattern: str) -> Callable[[Handler], Handler]:
        return self.route("GET", pattern)

    def post(self, pattern: str) -> Callable[[Handler], Handler]:
        return self.route("POST", pattern)

    def route(self, method: str, pattern: str) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add(method, pattern, handler)
            return handler

        return decorator

    @property
    def routes(self) -> list[tuple[str, str]]:
        return [(method, pattern) for method, pattern, _, _ in self._routes]

    def match(self, method: str, path: str) -> tuple[Handler, dict[str, str]] | None:
        method = method.upper()
        fallback = None
        for route_method, _, regex, handler in self._routes:
            m = regex.fullmatch(path)
            if m is None:
                continue
            if route_method == method:
                return handler, _params(m)
            if method == "HEAD" and route_method == "GET" and fallback is None:
                fallback = (handler, _params(m))
        return fallback

    def allowed_methods(self, path: str) -> list[str]:
        allowed: list[str] = []
        for route_method, _, regex, _ in self._routes:
            if regex.fullmatch(path) and route_method not in allowed:
                allowed.append(route_method)
        if "GET" in allowed and "HEAD" not in allowed:
            allowed.append("HEAD")
        return allowed

    async def __call__(self, request: HttpRequest) -> HttpResponse:
        found = self.match(request.method, request.path)
        if found is None:
            allowed = self.allowed_methods(request.path)
            if allowed:
                return HttpResponse.text(
                    "method not allowed",
                    status=405,
                    headers={"allow": ", ".join(allowed)},
                )
            return HttpResponse.html(f"Cannot {request.method.upper()} {request.path}", status=404)
        handler, params = found
        return await handler(dataclasses.replace(request, params=params))

"""HTTP plumbing for fauxserve.

A small HTTP/1.1 server implemented with AnyIO sockets, an explicit router and
composable middleware.
"""

from .errors import BadRequest, HttpError, PayloadTooLarge
from .middleware import Middleware, access_log, compose, default_middleware, error_handler
from .router import Router
from .server import HttpRequest, HttpResponse, HttpServer, RequestBody

__all__ = [
    "HttpRequest",
    "HttpResponse",
    "HttpServer",
    "RequestBody",
    "Router",
    "Middleware",
    "compose",
    "default_middleware",
    "error_handler",
    "access_log",
    "HttpError",
    "BadRequest",
    "PayloadTooLarge",
]

"""Tiny HTTP/1.1 server built on AnyIO.

It parses requests off AnyIO socket streams and hands them to a single async
handler (usually a middleware chain wrapped around a Router).

Features:
- HTTP/1.1 request line + headers parsing
- Request bodies framed by Content-Length or chunked transfer encoding,
  read lazily so handlers can stream them
- Streamed response bodies (Content-Length, chunked or close-delimited)
- Keep-alive between requests on the same connection
- Fully AnyIO: one task per connection inside the listener's TaskGroup
"""

from __future__ import annotations

import email.utils
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Mapping, Union

import anyio
from anyio.abc import AnyByteReceiveStream, ByteSendStream, SocketAttribute, SocketStream, TaskStatus
from anyio.streams.buffered import BufferedByteReceiveStream

from .errors import PayloadTooLarge


logger = logging.getLogger(__name__)

HeaderMap = dict[str, str]
Body = Union[bytes, AsyncIterable[bytes]]
Handler = Callable[["HttpRequest"], Awaitable["HttpResponse"]]

_CHUNK_SIZE = 64 * 1024
_MAX_CHUNK_LINE = 1024


class RequestBody:
    """Request body read lazily off the connection.

    Iterating yields chunks as they arrive; ``read()`` collects the whole body
    and enforces the server's body size limit. Iteration has no limit, which is
    what lets a handler pipe arbitrarily large bodies straight back out.
    """

    def __init__(
        self,
        receiver: AnyByteReceiveStream | None = None,
        *,
        length: int = 0,
        chunked: bool = False,
        limit: int = 1 * 1024 * 1024,
        data: bytes = b"",
    ):
        if receiver is not None and not isinstance(receiver, BufferedByteReceiveStream):
            receiver = BufferedByteReceiveStream(receiver)
        self._receiver = receiver
        self._remaining = length
        self._chunked = chunked
        self._limit = limit
        self._pending = data
        self._done = receiver is None or (not chunked and length == 0)

    @property
    def consumed(self) -> bool:
        """True once every byte of the body has been read off the connection."""
        return self._done and not self._pending

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[bytes]:
        if self._pending:
            data, self._pending = self._pending, b""
            yield data
        while not self._done:
            chunk = await self._next_chunk()
            if chunk:
                yield chunk

    async def read(self) -> bytes:
        buf = bytearray()
        async for chunk in self:
            buf.extend(chunk)
            if len(buf) > self._limit:
                raise PayloadTooLarge("payload too large")
        return bytes(buf)

    async def _next_chunk(self) -> bytes:
        assert self._receiver is not None
        if not self._chunked:
            data = await self._receiver.receive(min(self._remaining, _CHUNK_SIZE))
            self._remaining -= len(data)
            self._done = self._remaining == 0
            return data

        if self._remaining == 0:
            size = await self._read_chunk_size()
            if size == 0:
                # trailer section ends with an empty line
                while await self._receiver.receive_until(b"\r\n", _MAX_CHUNK_LINE):
                    pass
                self._done = True
                return b""
            self._remaining = size

        data = await self._receiver.receive(min(self._remaining, _CHUNK_SIZE))
        self._remaining -= len(data)
        if self._remaining == 0 and await self._receiver.receive_exactly(2) != b"\r\n":
            raise ValueError("missing chunk terminator")
        return data

    async def _read_chunk_size(self) -> int:
        assert self._receiver is not None
        line = await self._receiver.receive_until(b"\r\n", _MAX_CHUNK_LINE)
        size_text = line.split(b";", 1)[0].strip()
        try:
            size = int(size_text, 16)
        except ValueError:
            raise ValueError(f"invalid chunk size: {size_text!r}") from None
        if size < 0:
            raise ValueError(f"invalid chunk size: {size_text!r}")
        return size


@dataclass(frozen=True, slots=True)
class HttpRequest:
    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: HeaderMap = field(default_factory=dict)
    body: RequestBody = field(default_factory=RequestBody)
    query: str = ""
    params: Mapping[str, str] = field(default_factory=dict)

    @property
    def keep_alive(self) -> bool:
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.0":
            return "keep-alive" in connection
        return "close" not in connection


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int = 200
    headers: Mapping[str, str] | None = None
    body: Body = b""

    @staticmethod
    def _typed(
        content_type: str,
        body: bytes,
        status: int,
        headers: Mapping[str, str] | None,
    ) -> "HttpResponse":
        merged: dict[str, str] = {"content-type": content_type}
        if headers:
            merged.update(_normalize_headers(headers))
        return HttpResponse(status=status, headers=merged, body=body)

    @staticmethod
    def text(
        text: str,
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
        encoding: str = "utf-8",
    ) -> "HttpResponse":
        return HttpResponse._typed(f"text/plain; charset={encoding}", text.encode(encoding), status, headers)

    @staticmethod
    def html(
        html: str,
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
        encoding: str = "utf-8",
    ) -> "HttpResponse":
        return HttpResponse._typed(f"text/html; charset={encoding}", html.encode(encoding), status, headers)

    @staticmethod
    def json(
        obj: Any,
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> "HttpResponse":
        body = json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return HttpResponse._typed("application/json; charset=utf-8", body, status, headers)

    @staticmethod
    def redirect(location: str, *, status: int = 302) -> "HttpResponse":
        text = f"{_STATUS_TEXT.get(status, 'Found')}. Redirecting to {location}"
        return HttpResponse.text(text, status=status, headers={"location": location})


_STATUS_TEXT: dict[int, str] = {
    100: "Continue",
    200: "OK",
    204: "No Content",
    301: "Moved Permanently",
    302: "Found",
    303: "See Other",
    304: "Not Modified",
    307: "Temporary Redirect",
    308: "Permanent Redirect",
    400: "Bad Request",
    404: "Not Found",
    405: "Method Not Allowed",
    413: "Payload Too Large",
    431: "Request Header Fields Too Large",
    500: "Internal Server Error",
}


def _status_line(status: int) -> str:
    text = _STATUS_TEXT.get(status, "OK")
    return f"HTTP/1.1 {status} {text}\r\n"


def _normalize_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    if not headers:
        return {}
    return {k.lower(): v for k, v in headers.items()}


def _parse_headers(block: bytes) -> tuple[str, str, str, HeaderMap]:
    # block holds the request line + headers, without the blank line
    head = block.decode("iso-8859-1")

    lines = head.split("\r\n")
    if not lines or not lines[0]:
        raise ValueError("missing request line")

    parts = lines[0].split(" ")
    if len(parts) != 3:
        raise ValueError("invalid request line")
    method, target, version = parts
    if not version.startswith("HTTP/1."):
        raise ValueError(f"unsupported protocol version: {version}")

    headers: HeaderMap = {}
    for line in lines[1:]:
        if ":" not in line:
            raise ValueError(f"malformed header line: {line!r}")
        k, v = line.split(":", 1)
        name = k.strip().lower()
        value = v.strip()
        headers[name] = f"{headers[name]}, {value}" if name in headers else value
    return method, target, version, headers


def _build_request(head: bytes, receiver: BufferedByteReceiveStream, max_body_bytes: int) -> HttpRequest:
    method, target, version, headers = _parse_headers(head)
    path, _, query = target.partition("?")

    transfer_encoding = headers.get("transfer-encoding", "").lower()
    if transfer_encoding:
        if transfer_encoding.rsplit(",", 1)[-1].strip() != "chunked":
            raise ValueError(f"unsupported transfer-encoding: {transfer_encoding}")
        body = RequestBody(receiver, chunked=True, limit=max_body_bytes)
    else:
        try:
            length = int(headers.get("content-length", "0") or "0")
        except ValueError:
            raise ValueError("invalid content-length") from None
        if length < 0:
            raise ValueError("invalid content-length")
        body = RequestBody(receiver, length=length, limit=max_body_bytes)

    return HttpRequest(
        method=method,
        path=path,
        version=version,
        headers=headers,
        body=body,
        query=query,
    )


async def _write_response(
    stream: ByteSendStream,
    response: HttpResponse,
    *,
    version: str = "HTTP/1.1",
    head_only: bool = False,
    keep_alive: bool = False,
) -> bool:
    """Write ``response``; return whether the connection can take another request."""
    headers = _normalize_headers(response.headers)
    body = response.body
    chunked = False

    if isinstance(body, (bytes, bytearray)):
        headers.pop("transfer-encoding", None)
        headers.setdefault("content-length", str(len(body)))
    elif "chunked" in headers.get("transfer-encoding", "").lower():
        headers.pop("content-length", None)
        chunked = True
    elif "content-length" not in headers:
        if version == "HTTP/1.1":
            headers["transfer-encoding"] = "chunked"
            chunked = True
        else:
            # close-delimited body
            keep_alive = False

    if "close" in headers.get("connection", "").lower():
        keep_alive = False
    headers["connection"] = "keep-alive" if keep_alive else "close"
    headers.setdefault("date", email.utils.formatdate(usegmt=True))

    start = _status_line(response.status).encode("ascii")
    head = b"".join(f"{k}: {v}\r\n".encode("latin-1") for k, v in headers.items())

    if isinstance(body, (bytes, bytearray)):
        await stream.send(start + head + b"\r\n" + (b"" if head_only else bytes(body)))
        return keep_alive

    await stream.send(start + head + b"\r\n")
    if head_only:
        return keep_alive

    sent = 0
    async for chunk in body:
        if not chunk:
            continue
        sent += len(chunk)
        if chunked:
            await stream.send(f"{len(chunk):x}\r\n".encode("ascii") + chunk + b"\r\n")
        else:
            await stream.send(chunk)
    if chunked:
        await stream.send(b"0\r\n\r\n")
    elif "content-length" in headers and str(sent) != headers["content-length"]:
        # framing no longer matches what we announced
        keep_alive = False
    return keep_alive


class HttpServer:
    """HTTP server on an AnyIO TCP listener.

    - ``serve()`` binds the listener and reports the bound (host, port) through
      ``task_status``, so ``await task_group.start(server.serve)`` returns it
    - Accepts connections and handles each one in its own task
    - Hands every parsed request to ``handler``
    """

    def __init__(
        self,
        handler: Handler,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        max_header_bytes: int = 64 * 1024,
        max_body_bytes: int = 1 * 1024 * 1024,
    ):
        self._handler = handler
        self._host = host
        self._port = port
        self._max_header_bytes = max_header_bytes
        self._max_body_bytes = max_body_bytes
        self.address: tuple[str, int] | None = None

    async def serve(self, *, task_status: TaskStatus[tuple[str, int]] = anyio.TASK_STATUS_IGNORED) -> None:
        listener = await anyio.create_tcp_listener(local_host=self._host, local_port=self._port)
        async with listener:
            # with port=0 the kernel picks the port; report the one we got
            self.address = (self._host, listener.extra(SocketAttribute.local_port))
            task_status.started(self.address)
            await listener.serve(self._handle_client)

    async def _handle_client(self, stream: SocketStream) -> None:
        async with stream:
            receiver = BufferedByteReceiveStream(stream)
            try:
                while await self._handle_request(stream, receiver):
                    pass
            except (anyio.BrokenResourceError, anyio.ClosedResourceError, anyio.EndOfStream, anyio.IncompleteRead) as e:
                logger.debug("connection dropped: %r", e)
            except Exception:
                logger.exception("error while serving connection")

    async def _handle_request(self, stream: SocketStream, receiver: BufferedByteReceiveStream) -> bool:
        try:
            head = b""
            while not head:
                # empty lines before the request line are ignored (RFC 9112 section 2.2)
                head = (await receiver.receive_until(b"\r\n\r\n", self._max_header_bytes)).lstrip(b"\r\n")
        except anyio.IncompleteRead:
            # client went away between requests
            return False
        except anyio.DelimiterNotFound:
            await _write_response(stream, HttpResponse.text("request header fields too large", status=431))
            return False

        try:
            request = _build_request(head, receiver, self._max_body_bytes)
        except ValueError as e:
            await _write_response(stream, HttpResponse.text(f"bad request: {e}", status=400))
            return False

        if request.headers.get("expect", "").lower() == "100-continue":
            await stream.send(b"HTTP/1.1 100 Continue\r\n\r\n")

        try:
            response = await self._handler(request)
        except Exception as e:
            logger.exception("unhandled error for %s %s", request.method, request.path)
            response = HttpResponse.text(f"server error: {e!r}", status=500)

        keep_alive = await _write_response(
            stream,
            response,
            version=request.version,
            head_only=request.method.upper() == "HEAD",
            keep_alive=request.keep_alive,
        )
        # leftover body bytes would be parsed as the next request
        return keep_alive and request.body.consumed

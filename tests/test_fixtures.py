"""End-to-end tests for the canned routes."""

from __future__ import annotations

import gzip
import os

import anyio
import httpx
import pytest

from fauxserve import SUBJECT, BadRequest, HttpRequest, build_app, build_router
from fauxserve import fixtures
from fauxserve.fixtures import LINK_HEADER, MAX_TIMEOUT_MS, handle_timeout


pytestmark = pytest.mark.anyio


async def test_home(fixture_client):
    async with fixture_client() as client:
        resp = await client.get("/")
    assert resp.status_code == 200
    assert resp.text == "home"


async def test_gzip_body_decompresses_to_subject(fixture_client):
    async with fixture_client() as client:
        async with client.stream("GET", "/gzip") as resp:
            raw = b"".join([chunk async for chunk in resp.aiter_raw()])
    assert resp.status_code == 200
    assert resp.headers["content-encoding"] == "gzip"
    assert resp.headers["content-type"] == "text/plain"
    assert gzip.decompress(raw).decode("utf-8") == SUBJECT


async def test_gzip_transparently_decoded_by_client(fixture_client):
    async with fixture_client() as client:
        resp = await client.get("/gzip")
    assert resp.text == SUBJECT


async def test_echo_copies_headers_and_body(fixture_client):
    async with fixture_client() as client:
        resp = await client.post("/echo", content=b"hello there", headers={"X-Test": "v"})
    assert resp.status_code == 200
    assert resp.headers["x-test"] == "v"
    assert resp.content == b"hello there"


async def test_echo_empty_body(fixture_client):
    async with fixture_client() as client:
        resp = await client.post("/echo", content=b"")
    assert resp.status_code == 200
    assert resp.content == b""


async def test_echo_large_body(fixture_client):
    payload = os.urandom(256 * 1024)
    async with fixture_client(timeout=30.0) as client:
        resp = await client.post("/echo", content=payload, headers={"X-Test": "big"})
    assert resp.status_code == 200
    assert resp.headers["x-test"] == "big"
    assert resp.content == payload


async def test_echo_chunked_upload(fixture_client):
    async def parts():
        for piece in (b"first ", b"second ", b"third"):
            yield piece

    async with fixture_client() as client:
        resp = await client.post("/echo", content=parts())
    assert resp.status_code == 200
    assert resp.headers["transfer-encoding"] == "chunked"
    assert resp.content == b"first second third"


async def test_json(fixture_client):
    async with fixture_client() as client:
        resp = await client.get("/json")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/json")
    assert resp.json() == {"name": "jake"}
    assert resp.content == b'{"name":"jake"}'


async def test_login_form(fixture_client):
    async with fixture_client() as client:
        resp = await client.get("/login")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert resp.text == '<form id="login"></form>'


async def test_redirect_single_hop(fixture_client):
    async with fixture_client() as client:
        resp = await client.get("/redirect")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/redirect/2"

        followed = await client.get("/redirect", follow_redirects=True)
    assert followed.status_code == 200
    assert followed.text == "Oh damn you found me"
    assert [r.status_code for r in followed.history] == [302]


async def test_loop_routes_point_at_each_other(fixture_client):
    async with fixture_client() as client:
        first = await client.get("/loop/1")
        second = await client.get("/loop/2")
    assert first.status_code == 302
    assert first.headers["location"] == "/loop/2"
    assert second.status_code == 302
    assert second.headers["location"] == "/loop/1"


async def test_loop_trips_client_redirect_limit(fixture_client):
    async with fixture_client(max_redirects=7) as client:
        with pytest.raises(httpx.TooManyRedirects):
            await client.get("/loop/1", follow_redirects=True)


async def test_links_header(fixture_client):
    async with fixture_client() as client:
        resp = await client.get("/links")
    assert resp.status_code == 200
    assert resp.headers["link"] == LINK_HEADER
    assert resp.content == b""


async def test_error_route(fixture_client):
    async with fixture_client() as client:
        resp = await client.get("/error")
    assert resp.status_code == 500
    assert resp.text == "boom"


async def test_timeout_waits_before_answering(fixture_client):
    async with fixture_client() as client:
        start = anyio.current_time()
        resp = await client.get("/timeout/250")
        elapsed = anyio.current_time() - start
    assert resp.status_code == 200
    assert resp.text == "hello"
    assert elapsed >= 0.24


async def test_timeout_does_not_block_other_requests(fixture_client):
    results = {}

    async with fixture_client() as client:
        async def slow():
            results["slow"] = await client.get("/timeout/1000")

        async with anyio.create_task_group() as tg:
            tg.start_soon(slow)
            await anyio.sleep(0.05)
            start = anyio.current_time()
            results["fast"] = await client.get("/")
            fast_elapsed = anyio.current_time() - start

    assert results["fast"].text == "home"
    assert fast_elapsed < 0.5
    assert results["slow"].text == "hello"


@pytest.mark.parametrize(
    "value", ["abc", "-5", "12x", "1.5", "9" * 400, str(MAX_TIMEOUT_MS + 1)]
)
async def test_timeout_rejects_invalid_durations(fixture_client, value):
    async with fixture_client() as client:
        resp = await client.get(f"/timeout/{value}")
    assert resp.status_code == 400
    assert resp.text == f"invalid timeout: {value}"


async def test_unknown_route_is_404(fixture_client):
    async with fixture_client() as client:
        resp = await client.get("/nope")
    assert resp.status_code == 404
    assert resp.text == "Cannot GET /nope"


async def test_wrong_method_is_405(fixture_client):
    async with fixture_client() as client:
        resp = await client.get("/echo")
    assert resp.status_code == 405
    assert resp.headers["allow"] == "POST"


async def test_head_uses_get_route_without_body(fixture_client):
    async with fixture_client() as client:
        resp = await client.head("/")
    assert resp.status_code == 200
    assert resp.headers["content-length"] == "4"
    assert resp.content == b""


async def test_query_string_is_ignored_for_routing(fixture_client):
    async with fixture_client() as client:
        resp = await client.get("/json", params={"page": "2"})
    assert resp.json() == {"name": "jake"}


def test_router_table():
    assert build_router().routes == [
        ("GET", "/"),
        ("GET", "/gzip"),
        ("POST", "/echo"),
        ("GET", "/json"),
        ("GET", "/login"),
        ("GET", "/redirect"),
        ("GET", "/redirect/2"),
        ("GET", "/loop/1"),
        ("GET", "/loop/2"),
        ("GET", "/links"),
        ("GET", "/error"),
        ("GET", "/timeout/:ms"),
    ]


async def test_timeout_handler_zero_delay():
    resp = await handle_timeout(HttpRequest(method="GET", path="/timeout/0", params={"ms": "0"}))
    assert resp.status == 200
    assert resp.body == b"hello"


async def test_timeout_handler_raises_bad_request():
    with pytest.raises(BadRequest, match="invalid timeout: soon"):
        await handle_timeout(HttpRequest(method="GET", path="/timeout/soon", params={"ms": "soon"}))


async def test_timeout_accepts_the_maximum_value():
    req = HttpRequest(method="GET", path="/timeout", params={"ms": str(MAX_TIMEOUT_MS)})
    with anyio.move_on_after(0.05) as scope:
        await handle_timeout(req)
    assert scope.cancelled_caught


async def test_timeout_decodes_percent_encoded_duration():
    app = build_app()
    resp = await app(HttpRequest(method="GET", path="/timeout/%31%30"))
    assert resp.status == 200
    assert resp.body == b"hello"


async def test_gzip_compression_failure_is_500(fixture_client, monkeypatch):
    def broken_compress(data, *args, **kwargs):
        raise OSError("compressor exploded")

    monkeypatch.setattr(fixtures.gzip, "compress", broken_compress)
    async with fixture_client() as client:
        resp = await client.get("/gzip")
    assert resp.status_code == 500
    assert "content-encoding" not in resp.headers
    assert resp.text == "server error: OSError('compressor exploded')"

from __future__ import annotations

from contextlib import asynccontextmanager

import anyio
import httpx
import pytest

from fauxserve import HttpServer, build_app


@pytest.fixture
def anyio_backend():
    return "asyncio"


@asynccontextmanager
async def _running_server(handler=None, **server_kwargs):
    server = HttpServer(handler or build_app(), **server_kwargs)
    async with anyio.create_task_group() as tg:
        yield await tg.start(server.serve)
        tg.cancel_scope.cancel()


@asynccontextmanager
async def _fixture_client(handler=None, **client_kwargs):
    async with _running_server(handler) as (host, port):
        async with httpx.AsyncClient(base_url=f"http://{host}:{port}", **client_kwargs) as client:
            yield client


@pytest.fixture
def running_server():
    """``async with running_server() as (host, port): ...``"""
    return _running_server


@pytest.fixture
def fixture_client():
    """``async with fixture_client() as client: ...`` against a live server."""
    return _fixture_client

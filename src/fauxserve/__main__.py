"""Run the fixture server on localhost:8000 until interrupted."""

from __future__ import annotations

import logging

import anyio

from .fixtures import build_app
from .http.server import HttpServer


logger = logging.getLogger("fauxserve")

HOST = "localhost"
PORT = 8000


async def main() -> None:
    server = HttpServer(build_app(), host=HOST, port=PORT)
    async with anyio.create_task_group() as tg:
        await tg.start(server.serve)
        logger.info("server listening on http://%s:%d", HOST, PORT)


def run() -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        anyio.run(main)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

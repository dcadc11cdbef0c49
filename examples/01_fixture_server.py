"""
Fixture server example

Starts the fixture server on an ephemeral port and walks a few routes with
httpx, including the redirect loop that a client must refuse to follow forever.

Run:
  uv run python examples/01_fixture_server.py
"""

from __future__ import annotations

import anyio
import httpx

from fauxserve import HttpServer, build_app


async def main() -> None:
    async with anyio.create_task_group() as tg:
        host, port = await tg.start(HttpServer(build_app()).serve)
        base = f"http://{host}:{port}"
        print(f"Listening on {base}")

        async with httpx.AsyncClient(base_url=base) as client:
            resp = await client.get("/json")
            print("/json ->", resp.status_code, resp.json())

            resp = await client.post("/echo", content=b"hello there", headers={"x-test": "v"})
            print("/echo ->", resp.status_code, resp.headers["x-test"], resp.content)

            resp = await client.get("/gzip")
            print("/gzip ->", resp.text)

            resp = await client.get("/redirect", follow_redirects=True)
            print("/redirect ->", resp.status_code, resp.text)

            client.max_redirects = 5
            try:
                await client.get("/loop/1", follow_redirects=True)
            except httpx.TooManyRedirects as e:
                print("/loop/1 ->", e)

            start = anyio.current_time()
            resp = await client.get("/timeout/250")
            print(f"/timeout/250 -> {resp.text} after {anyio.current_time() - start:.3f}s")

        tg.cancel_scope.cancel()


if __name__ == "__main__":
    anyio.run(main)

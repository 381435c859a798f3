from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import pytest_asyncio
from websockets.asyncio.server import Server, ServerConnection, serve

HA_VERSION = "2024.6.0"
VALID_TOKEN = "valid-token"


@dataclass
class HassServerInfo:
    """A minimal Home Assistant websocket API running in-process."""

    server: Server
    port: int
    valid_tokens: set[str]
    connections: list[ServerConnection] = field(default_factory=list)
    auth_attempts: list[str] = field(default_factory=list)
    headers: list[Any] = field(default_factory=list)

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    async def drop_all(self, code: int = 1001, reason: str = "going_away") -> None:
        """Close every authenticated socket from the server side."""
        for ws in list(self.connections):
            await ws.close(code, reason)


async def start_hass_server(
    *,
    port: int = 0,
    valid_tokens: set[str] | None = None,
    after_auth: list[dict[str, Any]] | None = None,
) -> HassServerInfo:
    tokens = {VALID_TOKEN} if valid_tokens is None else valid_tokens
    info: HassServerInfo | None = None

    async def handler(ws: ServerConnection) -> None:
        assert info is not None
        info.headers.append(ws.request.headers)
        await ws.send(json.dumps({"type": "auth_required", "ha_version": HA_VERSION}))

        msg = json.loads(await ws.recv())
        token = msg.get("access_token", "")
        info.auth_attempts.append(token)
        if msg.get("type") != "auth" or token not in tokens:
            await ws.send(
                json.dumps(
                    {"type": "auth_invalid", "message": "Invalid access token or password"}
                )
            )
            await ws.close()
            return

        await ws.send(json.dumps({"type": "auth_ok", "ha_version": HA_VERSION}))
        for frame in after_auth or []:
            await ws.send(json.dumps(frame))
        info.connections.append(ws)
        try:
            async for raw in ws:
                request = json.loads(raw)
                if request.get("type") == "ping":
                    await ws.send(json.dumps({"id": request["id"], "type": "pong"}))
        finally:
            info.connections.remove(ws)

    server = await serve(handler, "127.0.0.1", port)
    bound_port = server.sockets[0].getsockname()[1]
    info = HassServerInfo(server=server, port=bound_port, valid_tokens=tokens)
    return info


async def stop_hass_server(info: HassServerInfo) -> None:
    info.server.close()
    await info.server.wait_closed()


async def free_port() -> int:
    """Reserve and release a local port nobody listens on."""
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
    return port


async def wait_for(
    condition: Any,
    *,
    timeout: float = 5.0,
    interval: float = 0.02,
) -> None:
    """Poll *condition* every *interval* seconds until it returns ``True``."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise TimeoutError("wait_for timed out")
        await asyncio.sleep(interval)


@pytest_asyncio.fixture
async def hass_server() -> AsyncIterator[HassServerInfo]:
    info = await start_hass_server()
    yield info
    await stop_hass_server(info)

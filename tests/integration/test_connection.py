from __future__ import annotations

import asyncio
import json

import pytest

from hass_socket import (
    AuthError,
    ClientOptions,
    HassClient,
    HassConnectionError,
    ReconnectOptions,
)
from tests.conftest import (
    HA_VERSION,
    VALID_TOKEN,
    HassServerInfo,
    free_port,
    start_hass_server,
    stop_hass_server,
    wait_for,
)

FAST_RETRY = ReconnectOptions(max_retries=2, retry_delay_ms=20)


def make_client(
    url: str, token: str = VALID_TOKEN, reconnect: ReconnectOptions = FAST_RETRY
) -> HassClient:
    return HassClient(
        url, token, ClientOptions(reconnect=reconnect, connect_timeout_ms=2_000)
    )


# ── Authentication ───────────────────────────────────────────────


async def test_connects_and_authenticates(hass_server: HassServerInfo):
    client = make_client(hass_server.url)
    ready: list[object] = []
    client.on("ready", ready.append)

    conn = await client.connect()

    assert client.state == "ready"
    assert conn.ha_version == HA_VERSION
    assert ready == [conn]
    assert hass_server.auth_attempts == [VALID_TOKEN]
    await client.disconnect()


async def test_channel_carries_messages_after_auth(hass_server: HassServerInfo):
    async with make_client(hass_server.url) as client:
        replies: list[dict] = []
        got_reply = asyncio.Event()

        def on_message(data: str) -> None:
            replies.append(json.loads(data))
            got_reply.set()

        client.channel.on("message", on_message)
        client.channel.send_json({"id": 1, "type": "ping"})

        await asyncio.wait_for(got_reply.wait(), timeout=3)
        assert replies == [{"id": 1, "type": "pong"}]


async def test_frames_sent_right_after_auth_ok_are_delivered():
    events = [
        {"id": 1, "type": "event", "event": {"event_type": "state_changed"}},
        {"id": 2, "type": "event", "event": {"event_type": "call_service"}},
    ]
    info = await start_hass_server(after_auth=events)
    try:
        client = make_client(info.url)
        received: list[dict] = []
        got_both = asyncio.Event()

        def on_message(data: str) -> None:
            received.append(json.loads(data))
            if len(received) == len(events):
                got_both.set()

        client.on("ready", lambda conn: conn.on("message", on_message))
        await client.connect()

        await asyncio.wait_for(got_both.wait(), timeout=3)
        assert received == events
        await client.disconnect()
    finally:
        await stop_hass_server(info)


async def test_invalid_token_is_rejected_without_retry(hass_server: HassServerInfo):
    client = make_client(
        hass_server.url,
        token="wrong-token",
        reconnect=ReconnectOptions(max_retries=-1, retry_delay_ms=20),
    )

    with pytest.raises(HassConnectionError) as exc_info:
        await client.connect()

    assert exc_info.value.kind is AuthError.INVALID_AUTH
    assert hass_server.auth_attempts == ["wrong-token"]
    assert client.state == "closed"


async def test_transport_options_reach_the_server(hass_server: HassServerInfo):
    client = HassClient(
        hass_server.url,
        VALID_TOKEN,
        ClientOptions(
            transport_options={"additional_headers": {"X-Client": "hass-socket"}}
        ),
    )
    await client.connect()
    assert hass_server.headers[0].get("X-Client") == "hass-socket"
    await client.disconnect()


# ── Transport failures ───────────────────────────────────────────


async def test_unreachable_host_fails_after_retries():
    port = await free_port()
    client = make_client(f"http://127.0.0.1:{port}")
    errors: list[str] = []
    client.on("error", lambda _exc, message: errors.append(message))

    with pytest.raises(HassConnectionError) as exc_info:
        await client.connect()

    assert exc_info.value.kind is AuthError.CANNOT_CONNECT
    assert len(errors) == 1
    assert f"127.0.0.1:{port}" in errors[0]
    assert VALID_TOKEN not in errors[0]


async def test_malformed_url_is_not_retried():
    client = make_client(
        "ftp://hass.local",
        reconnect=ReconnectOptions(max_retries=-1, retry_delay_ms=20),
    )

    with pytest.raises(HassConnectionError) as exc_info:
        await asyncio.wait_for(client.connect(), timeout=3)

    assert exc_info.value.kind is AuthError.CANNOT_CONNECT


async def test_retries_until_server_comes_up():
    port = await free_port()
    client = make_client(
        f"http://127.0.0.1:{port}",
        reconnect=ReconnectOptions(max_retries=-1, retry_delay_ms=50),
    )
    pending = asyncio.create_task(client.connect())
    await asyncio.sleep(0.2)
    assert not pending.done()

    info = await start_hass_server(port=port)
    try:
        conn = await asyncio.wait_for(pending, timeout=5)
        assert conn.is_ready
    finally:
        await client.disconnect()
        await stop_hass_server(info)


# ── Lifecycle ────────────────────────────────────────────────────


async def test_server_drop_emits_lost_once(hass_server: HassServerInfo):
    client = make_client(hass_server.url)
    lost: list[str] = []
    client.on("lost", lost.append)
    await client.connect()

    await hass_server.drop_all()
    await wait_for(lambda: client.state == "lost")
    await asyncio.sleep(0.1)

    assert len(lost) == 1
    assert "1001" in lost[0]

    # No silent background retry: the caller reconnects explicitly.
    assert hass_server.auth_attempts == [VALID_TOKEN]
    await client.connect()
    assert hass_server.auth_attempts == [VALID_TOKEN, VALID_TOKEN]
    await client.disconnect()


async def test_disconnect_is_not_reported_as_lost(hass_server: HassServerInfo):
    client = make_client(hass_server.url)
    lost: list[str] = []
    client.on("lost", lost.append)
    await client.connect()
    await wait_for(lambda: len(hass_server.connections) == 1)

    await client.disconnect()
    await wait_for(lambda: len(hass_server.connections) == 0)

    assert lost == []
    assert client.state == "closed"

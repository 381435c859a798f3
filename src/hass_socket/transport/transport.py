from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Protocol

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidURI, WebSocketException

from ..config import DEFAULT_CONNECT_TIMEOUT_MS, TransportState
from ..errors import TransportError

logger = logging.getLogger("hass_socket")

Unsubscribe = Callable[[], None]

CLOSE_NORMAL = 1000
CLOSE_ABNORMAL = 1006


class Transport(Protocol):
    """Bidirectional text message socket.

    Emits ``open``, ``message(text)``, ``close(code, reason)`` and
    ``error(TransportError)``. Connection problems are reported through
    events, never raised by the constructor.
    """

    def on(self, event: str, handler: Callable[..., Any]) -> Unsubscribe: ...

    def send(self, data: str) -> None: ...

    def close(self) -> None: ...

    async def wait_closed(self) -> None: ...


TransportFactory = Callable[[str, Mapping[str, Any]], Transport]


class WebSocketTransport:
    """WebSocket transport that starts connecting as soon as it is created.

    ``options`` are passed through to :func:`websockets.asyncio.client.connect`
    (``additional_headers``, ``ssl``, ``open_timeout`` and so on).
    """

    def __init__(
        self,
        url: str,
        options: Mapping[str, Any] | None = None,
        *,
        connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS,
    ) -> None:
        self._url = url
        self._connect_kwargs: dict[str, Any] = {
            "open_timeout": connect_timeout_ms / 1000,
            **(options or {}),
        }
        self._ws: ClientConnection | None = None
        self._state: TransportState = "connecting"
        self._listeners: dict[str, list[Callable[..., Any]]] = {}
        self._pending_sends: set[asyncio.Task[None]] = set()
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == "connected"

    # -- Communication ----------------------------------------------------

    def send(self, data: str) -> None:
        if self._ws is None or self._state != "connected":
            raise TransportError("Cannot send — transport is not connected")
        # websockets send is a coroutine, fire-and-forget via task
        task = asyncio.get_running_loop().create_task(self._ws.send(data))
        self._pending_sends.add(task)
        task.add_done_callback(self._pending_sends.discard)

    def close(self) -> None:
        if self._state == "disconnected":
            return
        if self._ws is None:
            # Still opening: abandon the handshake.
            self._task.cancel()
            return
        self._state = "disconnected"
        task = asyncio.get_running_loop().create_task(self._ws.close())
        self._pending_sends.add(task)
        task.add_done_callback(self._pending_sends.discard)

    async def wait_closed(self) -> None:
        await asyncio.gather(self._task, return_exceptions=True)

    # -- Events -----------------------------------------------------------

    def on(self, event: str, handler: Callable[..., Any]) -> Unsubscribe:
        listeners = self._listeners.setdefault(event, [])
        listeners.append(handler)

        def unsub() -> None:
            try:
                listeners.remove(handler)
            except ValueError:
                pass

        return unsub

    # -- Private ----------------------------------------------------------

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event, [])):
            try:
                handler(*args)
            except Exception:
                logger.exception("Event handler error for %s", event)

    async def _run(self) -> None:
        try:
            self._ws = await ws_connect(self._url, **self._connect_kwargs)
        except asyncio.CancelledError:
            self._state = "disconnected"
            self._emit("close", CLOSE_NORMAL, "Closed before open")
            return
        except (InvalidURI, ValueError, TypeError) as e:
            self._state = "disconnected"
            self._emit(
                "error",
                TransportError(f"Cannot open {self._url}: {e}", fatal=True, details=e),
            )
            return
        except (OSError, TimeoutError, WebSocketException) as e:
            self._state = "disconnected"
            self._emit(
                "error", TransportError(f"Cannot open {self._url}: {e}", details=e)
            )
            return

        self._state = "connected"
        self._emit("open")
        await self._receive_loop(self._ws)

    async def _receive_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                data = raw if isinstance(raw, str) else raw.decode("utf-8")
                self._emit("message", data)
        except ConnectionClosed:
            code = ws.close_code or CLOSE_ABNORMAL
            reason = ws.close_reason or ""
            self._emit("close", code, reason)
        except asyncio.CancelledError:
            return
        except Exception as e:
            self._emit("error", TransportError(str(e), details=e))
        else:
            # Clean close: the async for loop exits normally for code 1000/1001.
            code = ws.close_code or CLOSE_NORMAL
            reason = ws.close_reason or ""
            self._emit("close", code, reason)
        finally:
            self._state = "disconnected"
            self._ws = None


def websocket_transport_factory(
    *, connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
) -> TransportFactory:
    def factory(url: str, options: Mapping[str, Any]) -> Transport:
        return WebSocketTransport(url, options, connect_timeout_ms=connect_timeout_ms)

    return factory

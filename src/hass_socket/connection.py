from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from .config import ConnectionState
from .errors import DisconnectedError
from .transport.transport import Transport, Unsubscribe

logger = logging.getLogger("hass_socket")


class Connection:
    """Authenticated channel to the server.

    Owns its transport exclusively. An unexpected close or transport error
    moves it to ``lost`` and emits ``lost`` once; :meth:`close` moves it to
    ``closed`` without emitting anything.

    The channel subscribes to its transport as soon as ``auth_ok`` arrives.
    Messages received before anyone listens are held back and delivered,
    in order, to the first ``message`` handlers registered.
    """

    def __init__(
        self, transport: Transport, auth_ok: dict[str, Any] | None = None
    ) -> None:
        self._transport = transport
        self._ha_version: str | None = (auth_ok or {}).get("ha_version")
        self._state: ConnectionState = "ready"
        self._lost_reason: str | None = None
        self._listeners: dict[str, list[Callable[..., Any]]] = {}
        # None once the backlog has been handed to a listener.
        self._backlog: list[str] | None = []
        self._flush_scheduled = False
        self._unsubs = [
            transport.on("message", self._on_transport_message),
            transport.on("close", self._on_transport_close),
            transport.on("error", self._on_transport_error),
        ]

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == "ready"

    @property
    def ha_version(self) -> str | None:
        return self._ha_version

    @property
    def lost_reason(self) -> str | None:
        return self._lost_reason

    @property
    def transport(self) -> Transport:
        return self._transport

    # -- Communication ----------------------------------------------------

    def send(self, data: str) -> None:
        if self._state != "ready":
            raise DisconnectedError(f"Cannot send, connection is {self._state}")
        self._transport.send(data)

    def send_json(self, msg: dict[str, Any]) -> None:
        self.send(json.dumps(msg))

    async def close(self) -> None:
        if self._state in ("closed", "lost"):
            return
        self.abort()
        await self._transport.wait_closed()

    def abort(self) -> None:
        """Close the transport without waiting and without emitting ``lost``."""
        if self._state in ("closed", "lost"):
            return
        self._state = "closed"
        self._detach()
        self._transport.close()

    # -- Events -----------------------------------------------------------

    def on(self, event: str, handler: Callable[..., Any]) -> Unsubscribe:
        """Register a ``message`` or ``lost`` handler. Returns an unsubscribe."""
        listeners = self._listeners.setdefault(event, [])
        listeners.append(handler)
        if event == "message":
            self._claim_backlog()

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

    def _detach(self) -> None:
        for unsub in self._unsubs:
            unsub()
        self._unsubs = []

    def _claim_backlog(self) -> None:
        if self._backlog is None or self._flush_scheduled:
            return
        if not self._backlog:
            self._backlog = None
            return
        # Deliver on the next loop turn so every handler registered in the
        # same callback sees the held-back messages.
        self._flush_scheduled = True
        asyncio.get_running_loop().call_soon(self._flush_backlog)

    def _flush_backlog(self) -> None:
        backlog, self._backlog = self._backlog or [], None
        for data in backlog:
            self._emit("message", data)

    def _on_transport_message(self, data: str) -> None:
        if self._state != "ready":
            return
        if self._backlog is not None:
            self._backlog.append(data)
        else:
            self._emit("message", data)

    def _on_transport_close(self, code: int, reason: str) -> None:
        detail = f"closed with code {code}"
        self._mark_lost(f"{detail}: {reason}" if reason else detail)

    def _on_transport_error(self, error: Exception) -> None:
        self._mark_lost(str(error))

    def _mark_lost(self, reason: str) -> None:
        if self._state != "ready":
            return
        self._state = "lost"
        self._lost_reason = reason
        self._detach()
        self._transport.close()
        logger.warning("Connection lost: %s", reason)
        self._emit("lost", reason)

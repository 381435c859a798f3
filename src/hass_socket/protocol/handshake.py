"""Authentication phase of a single connection attempt.

The server greets every new socket with ``auth_required``. The client answers
with ``auth`` carrying its access token and the server replies ``auth_ok`` or
``auth_invalid``. A handshake owns its transport until it reaches a terminal
state; only an ``AUTHENTICATED`` result hands the transport over, already
wrapped in a listening :class:`~hass_socket.connection.Connection`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from ..auth.credential import Credential
from ..connection import Connection
from ..errors import AuthError, HassConnectionError, TransportError
from ..transport.transport import Transport, TransportFactory, Unsubscribe
from .messages import (
    MSG_TYPE_AUTH_INVALID,
    MSG_TYPE_AUTH_OK,
    MSG_TYPE_AUTH_REQUIRED,
    auth_message,
    parse_message,
)

logger = logging.getLogger("hass_socket")


class HandshakeState(Enum):
    OPENING = "opening"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self not in (HandshakeState.OPENING, HandshakeState.AUTHENTICATING)


_TRANSITIONS: dict[HandshakeState, frozenset[HandshakeState]] = {
    HandshakeState.OPENING: frozenset(
        {HandshakeState.AUTHENTICATING, HandshakeState.FAILED, HandshakeState.ABORTED}
    ),
    HandshakeState.AUTHENTICATING: frozenset(
        {
            HandshakeState.AUTHENTICATED,
            HandshakeState.REJECTED,
            HandshakeState.FAILED,
            HandshakeState.ABORTED,
        }
    ),
}


@dataclass(frozen=True)
class HandshakeResult:
    state: HandshakeState
    transport: Transport | None = None
    auth_ok: dict[str, Any] | None = None
    connection: Connection | None = None
    fatal: bool = False
    detail: object = None

    @property
    def error(self) -> AuthError | None:
        if self.state is HandshakeState.REJECTED:
            return AuthError.INVALID_AUTH
        if self.state is HandshakeState.FAILED:
            return AuthError.CANNOT_CONNECT
        return None


class AuthHandshake:
    """Drives one transport from open to an authenticated (or failed) state."""

    def __init__(
        self,
        transport_factory: TransportFactory,
        url: str,
        credential: Credential,
        transport_options: Mapping[str, Any] | None = None,
    ) -> None:
        self._factory = transport_factory
        self._url = url
        self._credential = credential
        self._transport_options = transport_options or {}
        self._state = HandshakeState.OPENING
        self._invalid_auth = False
        self._auth_sent = False
        self._transport: Transport | None = None
        self._connection: Connection | None = None
        self._unsubs: list[Unsubscribe] = []
        self._refresh_task: asyncio.Task[None] | None = None
        self._result: asyncio.Future[HandshakeResult] | None = None

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def invalid_auth_observed(self) -> bool:
        return self._invalid_auth

    @property
    def auth_sent(self) -> bool:
        return self._auth_sent

    async def run(self) -> HandshakeResult:
        if self._result is not None:
            raise RuntimeError("A handshake can only run once")

        self._result = asyncio.get_running_loop().create_future()
        logger.debug("Auth phase: new connection to %s", self._url)

        transport = self._factory(self._url, self._transport_options)
        self._transport = transport
        self._unsubs = [
            transport.on("open", lambda: self._dispatch("open")),
            transport.on("message", lambda data: self._dispatch("message", data)),
            transport.on(
                "close", lambda code, reason: self._dispatch("close", code, reason)
            ),
            transport.on("error", lambda detail: self._dispatch("error", detail)),
        ]

        try:
            return await self._result
        except asyncio.CancelledError:
            if self._connection is not None:
                self._connection.abort()
            self._resolve(HandshakeResult(HandshakeState.ABORTED))
            raise

    # -- Transitions ------------------------------------------------------

    def _dispatch(self, event: str, *args: Any) -> None:
        if self._state.terminal:
            return

        if event == "open":
            if self._state is HandshakeState.OPENING:
                self._on_open()
        elif event == "message":
            if self._state is HandshakeState.AUTHENTICATING:
                self._on_message(args[0])
        elif event in ("close", "error"):
            self._on_closed(event, args)

    def _on_open(self) -> None:
        self._transition(HandshakeState.AUTHENTICATING)
        if self._credential.expired:
            self._refresh_task = asyncio.get_running_loop().create_task(
                self._refresh_then_authenticate()
            )
        else:
            self._send_auth()

    def _on_message(self, data: str) -> None:
        msg = parse_message(data)
        if msg is None:
            logger.warning("Auth phase: ignoring non-JSON message")
            return

        msg_type = msg.get("type")
        logger.debug("Auth phase: received %s", msg_type)

        if msg_type == MSG_TYPE_AUTH_INVALID:
            self._invalid_auth = True
            self._close_transport()
        elif msg_type == MSG_TYPE_AUTH_OK:
            assert self._transport is not None
            # Subscribe before returning to the loop; the server may push
            # frames right behind auth_ok.
            self._connection = Connection(self._transport, msg)
            self._resolve(
                HandshakeResult(
                    HandshakeState.AUTHENTICATED,
                    transport=self._transport,
                    auth_ok=msg,
                    connection=self._connection,
                )
            )
        elif msg_type != MSG_TYPE_AUTH_REQUIRED:
            logger.warning("Auth phase: unhandled message %s", msg_type)

    def _on_closed(self, event: str, args: tuple[Any, ...]) -> None:
        if self._invalid_auth:
            self._resolve(HandshakeResult(HandshakeState.REJECTED))
            return

        detail: object = args[0] if event == "error" and args else args
        fatal = isinstance(detail, TransportError) and detail.fatal
        if fatal:
            logger.error("Auth phase: %s", detail)
        else:
            logger.debug("Auth phase: transport %s %r", event, detail)
        self._resolve(HandshakeResult(HandshakeState.FAILED, fatal=fatal, detail=detail))

    def _transition(self, new_state: HandshakeState) -> None:
        allowed = _TRANSITIONS.get(self._state, frozenset())
        if new_state not in allowed:
            raise RuntimeError(
                f"Illegal handshake transition {self._state.value} -> {new_state.value}"
            )
        self._state = new_state

    def _resolve(self, result: HandshakeResult) -> None:
        if self._state.terminal:
            return
        self._transition(result.state)

        for unsub in self._unsubs:
            unsub()
        self._unsubs = []

        task = self._refresh_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        if result.state is not HandshakeState.AUTHENTICATED:
            self._close_transport()

        assert self._result is not None
        if not self._result.done():
            self._result.set_result(result)

    # -- Side effects -----------------------------------------------------

    async def _refresh_then_authenticate(self) -> None:
        try:
            await self._credential.ensure_fresh()
        except HassConnectionError as e:
            self._invalid_auth = e.kind is AuthError.INVALID_AUTH
            logger.warning("Auth phase: token refresh failed: %s", e)
            self._close_transport()
            return
        except Exception:
            logger.exception("Auth phase: token refresh failed")
            self._close_transport()
            return

        if self._state is HandshakeState.AUTHENTICATING:
            self._send_auth()

    def _send_auth(self) -> None:
        assert self._transport is not None
        try:
            self._transport.send(auth_message(self._credential.access_token))
        except TransportError as e:
            # The transport reports its own close; that event resolves us.
            logger.debug("Auth phase: could not send auth message: %s", e)
            return
        self._auth_sent = True

    def _close_transport(self) -> None:
        if self._transport is not None:
            self._transport.close()

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Mapping

from .auth.credential import Credential
from .config import ClientOptions, ConnectionState, ConnectOptions, to_websocket_url
from .connection import Connection
from .errors import (
    AuthError,
    DisconnectedError,
    HassConnectionError,
    HassSocketError,
    format_connection_error,
)
from .protocol.handshake import HandshakeState
from .protocol.supervisor import ReconnectSupervisor, SleepFn
from .transport.transport import TransportFactory, Unsubscribe, websocket_transport_factory

logger = logging.getLogger("hass_socket")

ENV_SERVER = "HASS_SERVER"
ENV_TOKEN = "HASS_TOKEN"


class HassClient:
    """Long-lived entry point holding at most one authenticated connection.

    Events:
        ``ready(connection)``: a connection was established.
        ``lost(reason)``: the ready connection closed unexpectedly.
        ``error(exc, message)``: :meth:`connect` failed; ``message`` is safe
        to show to users.
    """

    def __init__(
        self,
        url: str | None,
        credential: Credential | str | None,
        options: ClientOptions | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if isinstance(credential, str):
            credential = Credential.long_lived(credential) if credential else None

        self._hass_url = url
        self._credential = credential
        self._options = options or ClientOptions()
        self._transport_factory = transport_factory or websocket_transport_factory(
            connect_timeout_ms=self._options.connect_timeout_ms
        )
        self._sleep = sleep

        self._state: ConnectionState = "closed"
        self._listeners: dict[str, list[Callable[..., Any]]] = {}
        self._connection: Connection | None = None
        self._connect_task: asyncio.Task[Connection] | None = None
        self._supervisor: ReconnectSupervisor | None = None
        self._resume_task: asyncio.Task[None] | None = None

    @classmethod
    def from_env(
        cls,
        options: ClientOptions | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> HassClient:
        """Build a client from ``HASS_SERVER`` and ``HASS_TOKEN``."""
        env = os.environ if environ is None else environ
        return cls(
            env.get(ENV_SERVER) or None,
            env.get(ENV_TOKEN) or None,
            options,
            **kwargs,
        )

    # ── State ─────────────────────────────────────────────────────

    @property
    def url(self) -> str | None:
        if not self._hass_url:
            return None
        return to_websocket_url(self._hass_url)

    @property
    def configured(self) -> bool:
        return bool(self._hass_url) and self._credential is not None

    @property
    def state(self) -> ConnectionState:
        supervisor = self._supervisor
        if (
            self._state == "connecting"
            and supervisor is not None
            and supervisor.handshake is not None
            and supervisor.handshake.state is HandshakeState.AUTHENTICATING
        ):
            return "authenticating"
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and self._connection.is_ready

    @property
    def channel(self) -> Connection:
        """The ready connection, for issuing higher-level requests."""
        if self._connection is None or not self._connection.is_ready:
            raise DisconnectedError(f"Not connected — client is {self.state}")
        return self._connection

    # ── Lifecycle ─────────────────────────────────────────────────

    async def connect(self) -> Connection:
        """Return the ready connection, establishing it if needed.

        Concurrent callers share a single establishment attempt.
        """
        if self._connection is not None and self._connection.is_ready:
            return self._connection

        if not self.configured:
            error = HassConnectionError(
                AuthError.HOST_REQUIRED, "Home Assistant URL and token are required"
            )
            self._report_failure(error)
            raise error

        task = self._connect_task
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._establish())
            task.add_done_callback(self._on_connect_done)
            self._connect_task = task

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise DisconnectedError("Connect aborted by disconnect()") from None
            raise

    async def disconnect(self) -> None:
        task = self._connect_task
        connection = self._connection
        resume = self._resume_task
        if task is None and connection is None and resume is None:
            return

        logger.info("Disconnecting from Home Assistant")
        self._connection = None
        self._state = "closed"

        if resume is not None and resume is not asyncio.current_task():
            resume.cancel()
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if connection is not None:
            await connection.close()

    # ── Events ────────────────────────────────────────────────────

    def on(self, event: str, handler: Callable[..., Any]) -> Unsubscribe:
        """Register an event handler. Returns a function to unsubscribe."""
        listeners = self._listeners.setdefault(event, [])
        listeners.append(handler)

        def unsub() -> None:
            try:
                listeners.remove(handler)
            except ValueError:
                pass

        return unsub

    # ── Context manager ───────────────────────────────────────────

    async def __aenter__(self) -> HassClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # ── Private ───────────────────────────────────────────────────

    def _emit_event(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event, [])):
            try:
                handler(*args)
            except Exception:
                logger.exception("Event handler error for %s", event)

    async def _establish(self) -> Connection:
        url = self.url
        assert url is not None and self._credential is not None

        self._state = "connecting"
        logger.info("Connecting to Home Assistant at %s", url)
        self._supervisor = ReconnectSupervisor(
            ConnectOptions(
                url=url,
                transport_options=self._options.transport_options,
                reconnect=self._options.reconnect,
            ),
            self._credential,
            self._transport_factory,
            sleep=self._sleep,
        )

        try:
            result = await self._supervisor.run()
        except HassConnectionError as e:
            self._state = "closed"
            self._report_failure(e)
            raise
        except asyncio.CancelledError:
            self._state = "closed"
            raise
        except Exception as e:
            self._state = "closed"
            logger.exception("Unexpected failure while connecting to %s", url)
            error = HassConnectionError(AuthError.CANNOT_CONNECT, str(e))
            self._report_failure(error)
            raise error from e
        finally:
            self._supervisor = None

        connection = result.connection
        assert connection is not None
        connection.on("lost", lambda reason: self._on_lost(connection, reason))
        self._connection = connection
        self._state = "ready"

        logger.info("Connected to Home Assistant at %s", url)
        self._emit_event("ready", connection)
        if connection.state == "lost":
            # Dropped between auth_ok and now; report it like any later loss.
            self._on_lost(connection, connection.lost_reason or "connection lost")
        return connection

    def _on_connect_done(self, task: asyncio.Task[Connection]) -> None:
        if self._connect_task is task:
            self._connect_task = None
        # Failures are raised to every caller; make sure none go unobserved.
        if not task.cancelled():
            task.exception()

    def _on_lost(self, connection: Connection, reason: str) -> None:
        if self._connection is not connection:
            return
        self._connection = None
        self._state = "lost"
        logger.warning("Lost connection with Home Assistant: %s", reason)
        self._emit_event("lost", reason)

        if self._options.resume_on_lost:
            self._resume_task = asyncio.get_running_loop().create_task(self._resume())

    async def _resume(self) -> None:
        try:
            await self.connect()
        except HassSocketError as e:
            # Already logged and emitted as an ``error`` event by connect().
            logger.debug("Resuming after connection loss failed: %s", e)
        finally:
            if self._resume_task is asyncio.current_task():
                self._resume_task = None

    def _report_failure(self, error: HassConnectionError) -> None:
        token = self._credential.access_token if self._credential else None
        message = format_connection_error(self._hass_url, token, error.kind)
        logger.error(message)
        self._emit_event("error", error, message)

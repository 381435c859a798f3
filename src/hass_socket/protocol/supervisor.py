from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..auth.credential import Credential
from ..config import ConnectOptions
from ..errors import AuthError, HassConnectionError
from ..transport.reconnect import ReconnectStrategy
from ..transport.transport import TransportFactory
from .handshake import AuthHandshake, HandshakeResult, HandshakeState

logger = logging.getLogger("hass_socket")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class HandshakeAttempt:
    tries_left: int
    attempts: int = 0
    invalid_auth_observed: bool = False


class ReconnectSupervisor:
    """Runs handshakes until one authenticates or the retry budget is spent.

    Transport failures are retried with back-off; an auth rejection or a
    fatal transport error ends the loop straight away. Cancelling :meth:`run`
    cancels whichever handshake or back-off sleep is pending.
    """

    def __init__(
        self,
        options: ConnectOptions,
        credential: Credential,
        transport_factory: TransportFactory,
        *,
        sleep: SleepFn = asyncio.sleep,
        strategy: ReconnectStrategy | None = None,
    ) -> None:
        self._options = options
        self._credential = credential
        self._factory = transport_factory
        self._sleep = sleep
        self._strategy = strategy or ReconnectStrategy(options.reconnect)
        self._attempt: HandshakeAttempt | None = None
        self._handshake: AuthHandshake | None = None

    @property
    def attempt(self) -> HandshakeAttempt | None:
        return self._attempt

    @property
    def handshake(self) -> AuthHandshake | None:
        """The handshake currently in progress, if any."""
        return self._handshake

    async def run(self) -> HandshakeResult:
        if not self._options.url:
            raise HassConnectionError(AuthError.HOST_REQUIRED, "No URL configured")

        attempt = HandshakeAttempt(tries_left=self._strategy.max_retries)
        self._attempt = attempt

        # Auth is mandatory: refresh an expired token while the socket opens.
        prefetch: asyncio.Task[None] | None = None
        if self._credential.expired:
            prefetch = asyncio.get_running_loop().create_task(self._prefetch_token())

        try:
            while True:
                attempt.attempts += 1
                self._handshake = AuthHandshake(
                    self._factory,
                    self._options.url,
                    self._credential,
                    self._options.transport_options,
                )
                result = await self._handshake.run()
                self._handshake = None

                if result.state is HandshakeState.AUTHENTICATED:
                    logger.debug(
                        "Authenticated with %s after %d attempt(s)",
                        self._options.url,
                        attempt.attempts,
                    )
                    return result

                if result.state is HandshakeState.REJECTED:
                    attempt.invalid_auth_observed = True
                    raise HassConnectionError(
                        AuthError.INVALID_AUTH,
                        f"Access token rejected by {self._options.url}",
                    )

                if result.fatal:
                    raise HassConnectionError(
                        AuthError.CANNOT_CONNECT,
                        f"Cannot connect to {self._options.url}: {result.detail}",
                    )

                if attempt.tries_left == 0:
                    raise HassConnectionError(
                        AuthError.CANNOT_CONNECT,
                        f"Cannot connect to {self._options.url} after "
                        f"{attempt.attempts} attempt(s)",
                    )

                if not self._strategy.unbounded:
                    attempt.tries_left -= 1

                delay = self._strategy.get_delay(attempt.attempts - 1)
                logger.info(
                    "Connection to %s failed, retrying in %.0fms",
                    self._options.url,
                    delay,
                )
                await self._sleep(delay / 1000)
        finally:
            self._handshake = None
            if prefetch is not None and not prefetch.done():
                prefetch.cancel()

    async def _prefetch_token(self) -> None:
        try:
            await self._credential.refresh()
        except Exception as e:
            # The handshake refreshes again on open and reports the failure.
            logger.debug("Early token refresh failed: %s", e)

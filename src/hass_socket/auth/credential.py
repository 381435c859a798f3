from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..errors import AuthError, HassConnectionError

logger = logging.getLogger("hass_socket")

# Long-lived access tokens are issued for ten years; treat them as never expiring.
LONG_LIVED_LIFETIME_MS = 100_000_000_000


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_at_ms: int


RefreshFn = Callable[["Credential"], Awaitable[TokenGrant]]
Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


class Credential:
    """Access token with an expiry and a way to obtain a new one.

    The token and its expiry live in a single immutable ``TokenGrant`` that
    is swapped only after a successful refresh. Concurrent callers of
    :meth:`refresh` share one in-flight refresh task.
    """

    def __init__(
        self,
        access_token: str,
        expires_at_ms: int,
        refresh: RefreshFn,
        *,
        clock: Clock = now_ms,
    ) -> None:
        self._grant = TokenGrant(access_token, expires_at_ms)
        self._refresh_fn = refresh
        self._clock = clock
        self._refresh_task: asyncio.Task[None] | None = None

    @classmethod
    def long_lived(
        cls, access_token: str, *, clock: Clock = now_ms
    ) -> Credential:
        return cls(
            access_token,
            clock() + LONG_LIVED_LIFETIME_MS,
            _reject_refresh,
            clock=clock,
        )

    # -- State ------------------------------------------------------------

    @property
    def access_token(self) -> str:
        return self._grant.access_token

    @property
    def expires_at_ms(self) -> int:
        return self._grant.expires_at_ms

    @property
    def expired(self) -> bool:
        return self._clock() >= self._grant.expires_at_ms

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None

    # -- Refresh ----------------------------------------------------------

    async def refresh(self) -> None:
        """Obtain a new token, joining a refresh that is already running."""
        task = self._refresh_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run_refresh())
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        await asyncio.shield(task)

    async def ensure_fresh(self) -> None:
        if self.expired:
            await self.refresh()

    async def _run_refresh(self) -> None:
        logger.debug("Refreshing access token")
        grant = await self._refresh_fn(self)
        self._grant = grant
        logger.debug("Access token refreshed, expires at %d", grant.expires_at_ms)

    def _on_refresh_done(self, task: asyncio.Task[None]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Waiters may all have been cancelled; mark the outcome as observed.
        if not task.cancelled():
            task.exception()


async def _reject_refresh(credential: Credential) -> TokenGrant:
    raise HassConnectionError(
        AuthError.INVALID_AUTH, "Long-lived access token cannot be refreshed"
    )

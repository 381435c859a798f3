"""OAuth refresh against the Home Assistant ``/auth/token`` endpoint."""

from __future__ import annotations

import logging
from typing import Callable

import aiohttp

from ..errors import AuthError, HassConnectionError
from .credential import Credential, TokenGrant, now_ms

logger = logging.getLogger("hass_socket")

TOKEN_PATH = "/auth/token"
REJECTED_STATUSES = (400, 403)


class TokenEndpointRefresher:
    """``RefreshFn`` that trades a refresh token for a new access token."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        hass_url: str,
        client_id: str,
        refresh_token: str,
        *,
        timeout: float = 10.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._session = session
        self._url = hass_url.rstrip("/") + TOKEN_PATH
        self._client_id = client_id
        self._refresh_token = refresh_token
        self._timeout = timeout
        self._clock = clock

    async def __call__(self, credential: Credential) -> TokenGrant:
        form = {
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "refresh_token": self._refresh_token,
        }
        logger.debug("Requesting new access token from %s", self._url)
        try:
            async with self._session.post(
                self._url,
                data=form,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status in REJECTED_STATUSES:
                    raise HassConnectionError(
                        AuthError.INVALID_AUTH,
                        f"Token refresh rejected with HTTP {resp.status}",
                    )
                if resp.status != 200:
                    raise HassConnectionError(
                        AuthError.CANNOT_CONNECT,
                        f"Unable to fetch tokens: HTTP {resp.status}",
                    )
                data = await resp.json()
        except TimeoutError as err:
            raise HassConnectionError(
                AuthError.CANNOT_CONNECT, "Token refresh timed out"
            ) from err
        except aiohttp.ClientError as err:
            raise HassConnectionError(
                AuthError.CANNOT_CONNECT, "Token refresh request failed"
            ) from err

        try:
            access_token = data["access_token"]
            expires_in = float(data["expires_in"])
        except (KeyError, TypeError, ValueError) as err:
            raise HassConnectionError(
                AuthError.CANNOT_CONNECT, "Malformed token response"
            ) from err

        return TokenGrant(
            access_token=access_token,
            expires_at_ms=self._clock() + int(expires_in * 1000),
        )

    @classmethod
    def credential(
        cls,
        session: aiohttp.ClientSession,
        hass_url: str,
        client_id: str,
        refresh_token: str,
        *,
        access_token: str = "",
        expires_at_ms: int = 0,
    ) -> Credential:
        """Build a credential that refreshes through the token endpoint.

        With the defaults the credential starts out expired, so the first
        connect obtains a token before authenticating.
        """
        refresher = cls(session, hass_url, client_id, refresh_token)
        return Credential(
            access_token, expires_at_ms, refresher, clock=refresher._clock
        )

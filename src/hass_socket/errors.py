from __future__ import annotations

from enum import IntEnum

TOKEN_HINT_LENGTH = 5


class AuthError(IntEnum):
    """Terminal outcomes of establishing an authenticated connection."""

    CANNOT_CONNECT = 1
    INVALID_AUTH = 2
    CONNECTION_LOST = 3
    HOST_REQUIRED = 4


class HassSocketError(Exception):
    """Base error for all hass_socket errors."""

    def __init__(self, code: str, message: str, details: object = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details


class HassConnectionError(HassSocketError):
    """Connecting or authenticating failed with one of the ``AuthError`` kinds."""

    def __init__(self, kind: AuthError, message: str | None = None) -> None:
        super().__init__(kind.name, message or kind.name)
        self.kind = kind


class DisconnectedError(HassSocketError):
    """Client is not connected or the connection attempt was torn down."""

    def __init__(self, message: str = "Not connected") -> None:
        super().__init__("DISCONNECTED", message)


class TransportError(HassSocketError):
    """Payload of a transport ``error`` event.

    ``fatal`` errors (a malformed URL, for instance) will fail the same way on
    every attempt and are never retried.
    """

    def __init__(
        self, message: str, *, fatal: bool = False, details: object = None
    ) -> None:
        super().__init__("TRANSPORT", message, details)
        self.fatal = fatal


def mask_token(token: str | None) -> str:
    if not token:
        return ""
    return f"{token[:TOKEN_HINT_LENGTH]}..."


def format_connection_error(
    url: str | None, token: str | None, kind: AuthError
) -> str:
    """Human-readable connect failure. Only a short token prefix is shown."""
    return (
        f"Error connecting to Home Assistant at {url or '<not configured>'} "
        f"with token '{mask_token(token)}': {kind.name}"
    )

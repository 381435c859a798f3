from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, TypeAlias

ConnectionState: TypeAlias = Literal[
    "connecting", "authenticating", "ready", "lost", "closed"
]
TransportState: TypeAlias = Literal[
    "connecting", "connected", "disconnected"
]

DEFAULT_CONNECT_TIMEOUT_MS = 10_000
DEFAULT_MAX_RETRIES = 1
DEFAULT_RETRY_DELAY_MS = 1_000
UNBOUNDED_RETRIES = -1

WEBSOCKET_PATH = "/api/websocket"


@dataclass(frozen=True)
class ReconnectOptions:
    # -1 retries forever, 0 never retries.
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    max_delay_ms: int = 30_000
    backoff_multiplier: float = 1.0
    jitter_ms: int = 0

    def __post_init__(self) -> None:
        if self.max_retries < UNBOUNDED_RETRIES:
            raise ValueError(
                f"max_retries must be -1 (unbounded) or >= 0, got {self.max_retries}"
            )
        if self.retry_delay_ms < 0:
            raise ValueError("retry_delay_ms must not be negative")


@dataclass(frozen=True)
class ConnectOptions:
    url: str
    transport_options: Mapping[str, Any] = field(default_factory=dict)
    reconnect: ReconnectOptions = ReconnectOptions()

    @property
    def max_retries(self) -> int:
        return self.reconnect.max_retries

    @property
    def retry_delay_ms(self) -> int:
        return self.reconnect.retry_delay_ms


@dataclass(frozen=True)
class ClientOptions:
    reconnect: ReconnectOptions = ReconnectOptions()
    transport_options: Mapping[str, Any] = field(default_factory=dict)
    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    resume_on_lost: bool = False


def to_websocket_url(url: str) -> str:
    """Convert a Home Assistant base URL into its websocket API URL.

    ``http://`` becomes ``ws://`` and ``https://`` becomes ``wss://``; the
    ``/api/websocket`` path is appended when missing. URLs that already use a
    ws(s) scheme keep it.
    """
    base = url.strip().rstrip("/")
    scheme, sep, rest = base.partition("://")
    if sep and scheme.lower() in ("http", "https"):
        base = f"ws{scheme.lower()[len('http'):]}://{rest}"
    if not base.endswith(WEBSOCKET_PATH):
        base += WEBSOCKET_PATH
    return base

from .auth import Credential, TokenEndpointRefresher, TokenGrant
from .client import HassClient
from .config import (
    ClientOptions,
    ConnectionState,
    ConnectOptions,
    ReconnectOptions,
    to_websocket_url,
)
from .connection import Connection
from .errors import (
    AuthError,
    DisconnectedError,
    HassConnectionError,
    HassSocketError,
    TransportError,
    format_connection_error,
)
from .protocol import (
    AuthHandshake,
    HandshakeAttempt,
    HandshakeResult,
    HandshakeState,
    ReconnectSupervisor,
)
from .transport import (
    ReconnectStrategy,
    Transport,
    TransportFactory,
    WebSocketTransport,
    websocket_transport_factory,
)

__all__ = [
    "HassClient",
    "Connection",
    "Credential",
    "TokenGrant",
    "TokenEndpointRefresher",
    "ClientOptions",
    "ConnectOptions",
    "ReconnectOptions",
    "ConnectionState",
    "to_websocket_url",
    "AuthError",
    "HassSocketError",
    "HassConnectionError",
    "DisconnectedError",
    "TransportError",
    "format_connection_error",
    "AuthHandshake",
    "HandshakeAttempt",
    "HandshakeResult",
    "HandshakeState",
    "ReconnectSupervisor",
    "ReconnectStrategy",
    "Transport",
    "TransportFactory",
    "WebSocketTransport",
    "websocket_transport_factory",
]

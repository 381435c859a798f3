from .reconnect import ReconnectStrategy
from .transport import (
    Transport,
    TransportFactory,
    WebSocketTransport,
    websocket_transport_factory,
)

__all__ = [
    "Transport",
    "TransportFactory",
    "WebSocketTransport",
    "websocket_transport_factory",
    "ReconnectStrategy",
]

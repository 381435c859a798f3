from .handshake import AuthHandshake, HandshakeResult, HandshakeState
from .supervisor import HandshakeAttempt, ReconnectSupervisor

__all__ = [
    "AuthHandshake",
    "HandshakeResult",
    "HandshakeState",
    "HandshakeAttempt",
    "ReconnectSupervisor",
]

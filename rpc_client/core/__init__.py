from .backoff import Backoff, format_duration
from .connection import ConnectionState, RpcConnection
from .handlers import EventHandler, LoggingEventHandler
from .session import OneShotFlag, PresenceSession, SessionError
from .transport import NoClientFoundError, PipeAccessDeniedError, Transport, TransportError

__all__ = [
    "Backoff",
    "format_duration",
    "ConnectionState",
    "RpcConnection",
    "EventHandler",
    "LoggingEventHandler",
    "OneShotFlag",
    "PresenceSession",
    "SessionError",
    "NoClientFoundError",
    "PipeAccessDeniedError",
    "Transport",
    "TransportError",
]

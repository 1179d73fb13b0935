"""Client runtime: connection state machine, session orchestrator and transports."""

from .core import EventHandler, PresenceSession, SessionError

__all__ = ["EventHandler", "PresenceSession", "SessionError"]

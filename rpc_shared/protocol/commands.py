from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import Any, Dict, Optional, Union

from .constants import HANDSHAKE_VERSION


class Command(StrEnum):
    """
    Command names carried in the ``cmd`` field of FRAME payloads.
    DISPATCH is the only one the client receives; the rest are issued by it.
    """

    DISPATCH = "DISPATCH"
    SET_ACTIVITY = "SET_ACTIVITY"
    SUBSCRIBE = "SUBSCRIBE"
    SEND_ACTIVITY_JOIN_INVITE = "SEND_ACTIVITY_JOIN_INVITE"
    CLOSE_ACTIVITY_JOIN_REQUEST = "CLOSE_ACTIVITY_JOIN_REQUEST"


class Event(StrEnum):
    """Event names carried in the ``evt`` field."""

    READY = "READY"
    ERROR = "ERROR"
    ACTIVITY_JOIN = "ACTIVITY_JOIN"
    ACTIVITY_SPECTATE = "ACTIVITY_SPECTATE"
    ACTIVITY_JOIN_REQUEST = "ACTIVITY_JOIN_REQUEST"


class JoinReply(IntEnum):
    """Answer given to an incoming join request."""

    NO = 0
    YES = 1


# Events the session subscribes to every time a connection becomes ready.
SUBSCRIBED_EVENTS = (Event.ACTIVITY_JOIN, Event.ACTIVITY_SPECTATE, Event.ACTIVITY_JOIN_REQUEST)


def normalize_name(name: Union[Command, Event, str, None]) -> Optional[str]:
    if name is None:
        return None
    if isinstance(name, (Command, Event)):
        return name.value
    return str(name).strip().upper()


def build_handshake(client_id: str) -> Dict[str, Any]:
    return {"v": HANDSHAKE_VERSION, "client_id": client_id}


def build_subscribe(event: Union[Event, str], nonce: Union[int, str]) -> Dict[str, Any]:
    return {"cmd": Command.SUBSCRIBE.value, "evt": normalize_name(event), "nonce": str(nonce)}


def build_join_reply(user_id: str, reply: JoinReply, nonce: Union[int, str]) -> Dict[str, Any]:
    command = Command.SEND_ACTIVITY_JOIN_INVITE if reply == JoinReply.YES else Command.CLOSE_ACTIVITY_JOIN_REQUEST
    return {"cmd": command.value, "args": {"user_id": user_id}, "nonce": str(nonce)}


__all__ = [
    "Command",
    "Event",
    "JoinReply",
    "SUBSCRIBED_EVENTS",
    "normalize_name",
    "build_handshake",
    "build_subscribe",
    "build_join_reply",
]

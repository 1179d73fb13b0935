"""
Protocol package that centralizes opcodes, framing helpers, command builders,
payload models and inbound validation for the IPC client.
"""

from .commands import (
    SUBSCRIBED_EVENTS,
    Command,
    Event,
    JoinReply,
    build_handshake,
    build_join_reply,
    build_subscribe,
    normalize_name,
)
from .constants import ENCODING, HANDSHAKE_VERSION, HEADER_SIZE, MAX_PAYLOAD_SIZE
from .errors import ErrorCode, ProtocolError, UnsupportedPlatformError
from .framing import Frame, OpCode, decode_header, decode_msg, decode_payload, encode_frame, encode_msg
from .messages import ActivityType, Button, IncomingMessage, JoinRequest, PartyPrivacy, RichPresence, User
from .validator import load_schema, schema_key, validate_msg

__all__ = [
    "SUBSCRIBED_EVENTS",
    "Command",
    "Event",
    "JoinReply",
    "build_handshake",
    "build_join_reply",
    "build_subscribe",
    "normalize_name",
    "ENCODING",
    "HANDSHAKE_VERSION",
    "HEADER_SIZE",
    "MAX_PAYLOAD_SIZE",
    "ErrorCode",
    "ProtocolError",
    "UnsupportedPlatformError",
    "Frame",
    "OpCode",
    "decode_header",
    "decode_msg",
    "decode_payload",
    "encode_frame",
    "encode_msg",
    "ActivityType",
    "Button",
    "IncomingMessage",
    "JoinRequest",
    "PartyPrivacy",
    "RichPresence",
    "User",
    "load_schema",
    "schema_key",
    "validate_msg",
]

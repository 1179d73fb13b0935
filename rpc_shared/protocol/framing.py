from __future__ import annotations

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Tuple, Union

from .constants import ENCODING, HEADER_SIZE, MAX_PAYLOAD_SIZE
from .errors import ErrorCode, ProtocolError


class OpCode(IntEnum):
    """Frame types understood by the IPC channel."""

    HANDSHAKE = 0
    FRAME = 1
    CLOSE = 2
    PING = 3
    PONG = 4


@dataclass(frozen=True)
class Frame:
    """One opcode-tagged, length-prefixed unit on the wire."""

    opcode: OpCode
    payload: bytes = b""

    @property
    def length(self) -> int:
        return len(self.payload)

    def encode(self) -> bytes:
        return encode_frame(self.opcode, self.payload)

    def text(self) -> str:
        return decode_payload(self.payload, self.length)


def encode_frame(opcode: Union[OpCode, int], payload: Union[bytes, str]) -> bytes:
    """
    Encode a frame: 4 bytes little-endian opcode + 4 bytes little-endian len + payload.
    """
    if isinstance(payload, str):
        payload = payload.encode(ENCODING)
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ProtocolError(ErrorCode.UNKNOWN, message=f"Payload too large: {len(payload)} bytes")
    header = int(opcode).to_bytes(4, "little") + len(payload).to_bytes(4, "little")
    return header + payload


def decode_header(data: bytes) -> Tuple[OpCode, int]:
    """Decode the fixed 8 byte header into (opcode, payload length)."""
    if len(data) < HEADER_SIZE:
        raise ProtocolError(ErrorCode.READ_CORRUPT, message="Incomplete frame header")
    raw_opcode = int.from_bytes(data[0:4], "little")
    length = int.from_bytes(data[4:HEADER_SIZE], "little")
    try:
        opcode = OpCode(raw_opcode)
    except ValueError as exc:
        raise ProtocolError(ErrorCode.READ_CORRUPT, message=f"Unknown opcode {raw_opcode}") from exc
    if length > MAX_PAYLOAD_SIZE:
        raise ProtocolError(ErrorCode.READ_CORRUPT, message=f"Frame length {length} exceeds limit")
    return opcode, length


def decode_payload(data: bytes, length: int) -> str:
    """Reinterpret the first ``length`` bytes of ``data`` as UTF-8 text."""
    if len(data) < length:
        raise ProtocolError(ErrorCode.READ_CORRUPT, message="Frame payload truncated")
    try:
        return bytes(data[:length]).decode(ENCODING)
    except UnicodeDecodeError as exc:
        raise ProtocolError(ErrorCode.READ_CORRUPT, message=f"Payload is not UTF-8: {exc}") from exc


def encode_msg(msg: Dict[str, Any]) -> bytes:
    """Encode a message dict into compact UTF-8 JSON."""
    try:
        json_str = json.dumps(msg, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise ProtocolError(ErrorCode.UNKNOWN, message=f"Encode failed: {exc}") from exc
    return json_str.encode(ENCODING)


def decode_msg(data: Union[bytes, str]) -> Dict[str, Any]:
    """Decode a JSON object payload. An empty payload decodes to an empty dict."""
    try:
        text = data.decode(ENCODING) if isinstance(data, (bytes, bytearray)) else data
        if not text.strip():
            return {}
        obj = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(ErrorCode.READ_CORRUPT, message=f"Decode failed: {exc}") from exc
    if not isinstance(obj, dict):
        raise ProtocolError(ErrorCode.READ_CORRUPT, message="Payload is not a JSON object")
    return obj


__all__ = [
    "OpCode",
    "Frame",
    "encode_frame",
    "decode_header",
    "decode_payload",
    "encode_msg",
    "decode_msg",
]

"""Protocol-wide constants for the local IPC channel."""

ENCODING = "utf-8"
HANDSHAKE_VERSION = 1
HEADER_SIZE = 8  # u32 opcode + u32 length, little-endian
MAX_FRAME_SIZE = 65535
MAX_PAYLOAD_SIZE = MAX_FRAME_SIZE - HEADER_SIZE
MAX_BUTTONS = 2
MAX_BUTTON_LABEL = 32

__all__ = [
    "ENCODING",
    "HANDSHAKE_VERSION",
    "HEADER_SIZE",
    "MAX_FRAME_SIZE",
    "MAX_PAYLOAD_SIZE",
    "MAX_BUTTONS",
    "MAX_BUTTON_LABEL",
]

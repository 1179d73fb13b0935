from __future__ import annotations

from enum import IntEnum
from typing import Any, Optional


class ErrorCode(IntEnum):
    """Error causes reported by the IPC channel."""

    SUCCESS = 0
    PIPE_CLOSED = 1
    READ_CORRUPT = 2
    UNKNOWN = -1

    @classmethod
    def from_wire(cls, code: Any) -> "ErrorCode":
        """Map a peer-supplied numeric code onto the table, UNKNOWN when out of range."""
        try:
            value = int(code)
        except (TypeError, ValueError):
            return cls.UNKNOWN
        if 0 <= value < len(cls) - 1:
            return cls(value)
        return cls.UNKNOWN


class ProtocolError(Exception):
    """Structured protocol exception carrying an error code + message."""

    def __init__(self, code: ErrorCode = ErrorCode.READ_CORRUPT, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code.name} ({int(code)}): {message}")

    def to_payload(self) -> dict:
        """Map error into the CLOSE envelope shape used on the wire."""
        return {"code": int(self.code), "message": self.message}


class UnsupportedPlatformError(Exception):
    """Raised when no IPC transport exists for the host platform."""

    def __init__(self, platform: Optional[str] = None) -> None:
        self.platform = platform
        super().__init__(f"Unsupported operating system: {platform or 'unknown'}")


__all__ = ["ErrorCode", "ProtocolError", "UnsupportedPlatformError"]

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class TransportError(Exception):
    """Raised when the IPC channel to the companion cannot be opened."""

    pass


class NoClientFoundError(TransportError):
    """No reachable companion process behind any candidate endpoint."""

    def __init__(self, message: str = "No companion process found on any IPC endpoint") -> None:
        super().__init__(message)


class PipeAccessDeniedError(TransportError):
    """An endpoint exists but the operating system refused access to it."""

    def __init__(self, endpoint: Optional[str] = None) -> None:
        self.endpoint = endpoint
        super().__init__(
            f"Access denied to IPC endpoint {endpoint or '<unknown>'}. "
            "Is the companion running with elevated privileges?"
        )


class Transport(ABC):
    """
    Duplex byte channel to the companion process.

    Implementations move raw bytes only; framing lives in the connection.
    """

    @property
    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    def open(self) -> bool:
        """
        Connect to the first reachable endpoint.

        Raises NoClientFoundError when nothing answers and
        PipeAccessDeniedError when an endpoint refused access.
        """

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def read(self, size: int, wait: bool) -> Optional[bytes]:
        """
        Read up to ``size`` bytes.

        Returns fewer bytes when that is all the channel delivered, ``b""``
        when nothing is ready (``wait=False``) or a blocking read timed out,
        and ``None`` once the channel is closed.
        """

    @abstractmethod
    def write(self, data: bytes) -> bool: ...


__all__ = ["Transport", "TransportError", "NoClientFoundError", "PipeAccessDeniedError"]

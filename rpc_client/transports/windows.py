from __future__ import annotations

import logging
import time
from typing import BinaryIO, List, Optional

from rpc_client.core.transport import NoClientFoundError, PipeAccessDeniedError, Transport

logger = logging.getLogger(__name__)

PIPE_TEMPLATE = r"\\?\pipe\{prefix}-{index}"
PEEK_INTERVAL = 0.01


def _peek_available(pipe: BinaryIO) -> int:
    """Bytes waiting in a named pipe without consuming them."""
    import ctypes
    import msvcrt
    from ctypes import wintypes

    handle = msvcrt.get_osfhandle(pipe.fileno())
    available = wintypes.DWORD(0)
    ok = ctypes.windll.kernel32.PeekNamedPipe(
        wintypes.HANDLE(handle), None, 0, None, ctypes.byref(available), None
    )
    if not ok:
        raise ctypes.WinError()
    return int(available.value)


class NamedPipeTransport(Transport):
    """IPC over a Windows named pipe opened as a binary file."""

    def __init__(self, pipe_prefix: str = "discord-ipc", max_pipes: int = 10, read_timeout: float = 5.0) -> None:
        self.pipe_prefix = pipe_prefix
        self.max_pipes = max_pipes
        self.read_timeout = read_timeout
        self.endpoint: Optional[str] = None
        self._pipe: Optional[BinaryIO] = None

    @property
    def is_open(self) -> bool:
        return self._pipe is not None

    def candidate_paths(self) -> List[str]:
        return [PIPE_TEMPLATE.format(prefix=self.pipe_prefix, index=index) for index in range(self.max_pipes)]

    def open(self) -> bool:
        if self.is_open:
            return True

        denied: Optional[str] = None
        for path in self.candidate_paths():
            try:
                self._pipe = open(path, "r+b", buffering=0)
            except PermissionError:
                logger.error("Access denied to %s. Is the companion running as Administrator?", path)
                denied = path
                continue
            except OSError as exc:
                logger.debug("Failed to connect to pipe %s: %s", path, exc)
                continue
            self.endpoint = path
            logger.debug("Connected to IPC pipe %s", path)
            return True

        if denied:
            raise PipeAccessDeniedError(denied)
        raise NoClientFoundError()

    def close(self) -> None:
        pipe = self._pipe
        self._pipe = None
        self.endpoint = None
        if pipe is None:
            return
        try:
            pipe.close()
        except OSError as exc:
            logger.debug("Failed to close pipe: %s", exc)

    def read(self, size: int, wait: bool) -> Optional[bytes]:
        pipe = self._pipe
        if pipe is None:
            return None
        try:
            available = _peek_available(pipe)
            if wait:
                # Blocking reads on a pipe cannot time out, so poll up to read_timeout.
                deadline = time.monotonic() + self.read_timeout
                while available <= 0 and time.monotonic() < deadline:
                    time.sleep(PEEK_INTERVAL)
                    available = _peek_available(pipe)
            if available <= 0:
                return b""
            data = pipe.read(min(size, available))
        except OSError as exc:
            logger.debug("Pipe read failed: %s", exc)
            self.close()
            return None
        if not data:
            self.close()
            return None
        return data

    def write(self, data: bytes) -> bool:
        pipe = self._pipe
        if pipe is None:
            return False
        try:
            pipe.write(data)
            pipe.flush()
            return True
        except OSError as exc:
            logger.debug("Pipe write failed: %s", exc)
            return False


__all__ = ["NamedPipeTransport", "PIPE_TEMPLATE"]

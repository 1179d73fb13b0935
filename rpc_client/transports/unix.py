from __future__ import annotations

import logging
import os
import select
import socket
from pathlib import Path
from typing import List, Optional

from rpc_client.core.transport import NoClientFoundError, PipeAccessDeniedError, Transport

logger = logging.getLogger(__name__)

# Sandboxed client builds keep their socket one directory deeper.
SANDBOX_SUBDIRS = ("snap.discord", "app/com.discordapp.Discord")


def temp_dir() -> Path:
    for var in ("XDG_RUNTIME_DIR", "TMPDIR", "TMP", "TEMP"):
        value = os.environ.get(var)
        if value:
            return Path(value)
    return Path("/tmp")


class UnixSocketTransport(Transport):
    """IPC over a Unix domain socket (Linux, macOS, BSD)."""

    def __init__(self, pipe_prefix: str = "discord-ipc", max_pipes: int = 10, read_timeout: float = 5.0) -> None:
        self.pipe_prefix = pipe_prefix
        self.max_pipes = max_pipes
        self.read_timeout = read_timeout
        self.endpoint: Optional[str] = None
        self._sock: Optional[socket.socket] = None

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def candidate_dirs(self) -> List[Path]:
        base = temp_dir()
        dirs = [base]
        for sub in SANDBOX_SUBDIRS:
            path = base / sub
            if path.is_dir() and any(path.iterdir()):
                dirs.append(path)
        return dirs

    def candidate_paths(self) -> List[Path]:
        return [
            directory / f"{self.pipe_prefix}-{index}"
            for directory in self.candidate_dirs()
            for index in range(self.max_pipes)
        ]

    def open(self) -> bool:
        if self.is_open:
            return True

        denied: Optional[str] = None
        for path in self.candidate_paths():
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.connect(str(path))
            except PermissionError:
                logger.debug("Permission denied on %s", path)
                denied = str(path)
                sock.close()
                continue
            except OSError as exc:
                logger.debug("Failed to connect to %s: %s", path, exc)
                sock.close()
                continue
            sock.settimeout(self.read_timeout)
            self._sock = sock
            self.endpoint = str(path)
            logger.debug("Connected to IPC socket %s", path)
            return True

        if denied:
            raise PipeAccessDeniedError(denied)
        raise NoClientFoundError()

    def close(self) -> None:
        sock = self._sock
        self._sock = None
        self.endpoint = None
        if sock is None:
            return
        try:
            sock.close()
        except OSError as exc:
            logger.debug("Failed to close socket: %s", exc)

    def read(self, size: int, wait: bool) -> Optional[bytes]:
        sock = self._sock
        if sock is None:
            return None
        try:
            if not wait:
                readable, _, _ = select.select([sock], [], [], 0)
                if not readable:
                    return b""
            data = sock.recv(size)
        except socket.timeout:
            return b""
        except OSError as exc:
            logger.debug("Socket read failed: %s", exc)
            self.close()
            return None
        if not data:
            logger.debug("Peer closed %s", self.endpoint)
            self.close()
            return None
        return data

    def write(self, data: bytes) -> bool:
        sock = self._sock
        if sock is None:
            return False
        try:
            sock.sendall(data)
            return True
        except OSError as exc:
            logger.debug("Socket write failed: %s", exc)
            return False


__all__ = ["UnixSocketTransport", "temp_dir"]

from __future__ import annotations

import sys
from typing import Any, Dict, Optional

from rpc_client.core.transport import Transport
from rpc_shared.protocol.errors import UnsupportedPlatformError

from .unix import UnixSocketTransport
from .windows import NamedPipeTransport

UNIX_PLATFORMS = ("linux", "darwin", "freebsd", "openbsd", "netbsd")


def create_transport(config: Dict[str, Any], platform: Optional[str] = None) -> Transport:
    """Build the transport for the host platform."""
    platform = platform or sys.platform
    prefix = config.get("pipe_prefix", "discord-ipc")
    max_pipes = int(config.get("max_pipes", 10))
    read_timeout = float(config.get("read_timeout", 5.0))
    if platform.startswith("win"):
        return NamedPipeTransport(prefix, max_pipes, read_timeout)
    if platform.startswith(UNIX_PLATFORMS):
        return UnixSocketTransport(prefix, max_pipes, read_timeout)
    raise UnsupportedPlatformError(platform)


__all__ = ["create_transport", "NamedPipeTransport", "UnixSocketTransport"]

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Tuple, Union

import pytest

from rpc_client.config import DEFAULT_CONFIG
from rpc_client.core.connection import ConnectionState, RpcConnection
from rpc_client.core.session import PresenceSession
from rpc_client.core.transport import NoClientFoundError, PipeAccessDeniedError, Transport
from rpc_shared.protocol import OpCode, decode_header, decode_msg, encode_frame, encode_msg

READY_USER = {"userId": "42", "username": "ann"}


class FakeTransport(Transport):
    """In-memory transport: tests feed inbound frames and inspect what was written."""

    def __init__(self, reachable: bool = True, denied: bool = False, chunk_size: Optional[int] = None) -> None:
        self.reachable = reachable
        self.denied = denied
        self.chunk_size = chunk_size
        self.eof = False
        self.fail_writes = False
        self.write_budget: Optional[int] = None
        self.open_calls = 0
        self.close_calls = 0
        self.written: List[bytes] = []
        self.write_event = threading.Event()
        self._inbound = bytearray()
        self._lock = threading.Lock()
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> bool:
        self.open_calls += 1
        if self.denied:
            raise PipeAccessDeniedError("fake-ipc-0")
        if not self.reachable:
            raise NoClientFoundError()
        self._open = True
        return True

    def close(self) -> None:
        self.close_calls += 1
        self._open = False

    def read(self, size: int, wait: bool) -> Optional[bytes]:
        with self._lock:
            if not self._open:
                return None
            if not self._inbound:
                if self.eof:
                    self._open = False
                    return None
                return b""
            count = min(size, len(self._inbound), self.chunk_size or size)
            data = bytes(self._inbound[:count])
            del self._inbound[:count]
            return data

    def write(self, data: bytes) -> bool:
        with self._lock:
            if not self._open or self.fail_writes:
                return False
            if self.write_budget is not None:
                if self.write_budget <= 0:
                    return False
                self.write_budget -= 1
            self.written.append(bytes(data))
        self.write_event.set()
        return True

    # helpers ---------------------------------------------------------------

    def feed_raw(self, data: bytes) -> None:
        with self._lock:
            self._inbound.extend(data)

    def feed(self, opcode: OpCode, payload: Union[bytes, Dict[str, Any]] = b"") -> None:
        if isinstance(payload, dict):
            payload = encode_msg(payload)
        self.feed_raw(encode_frame(opcode, payload))

    def feed_ready(self, user: Optional[Dict[str, Any]] = None) -> None:
        self.feed(OpCode.FRAME, {"cmd": "DISPATCH", "evt": "READY", "data": {"v": 1, "user": user or READY_USER}})

    def frames(self) -> List[Tuple[OpCode, bytes]]:
        result = []
        for data in list(self.written):
            opcode, length = decode_header(data[:8])
            result.append((opcode, data[8 : 8 + length]))
        return result

    def sent_messages(self) -> List[Dict[str, Any]]:
        return [decode_msg(payload) for opcode, payload in self.frames() if opcode is OpCode.FRAME]

    def sent_commands(self, cmd: str) -> List[Dict[str, Any]]:
        return [msg for msg in self.sent_messages() if msg.get("cmd") == cmd]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _connect(connection: RpcConnection, transport: FakeTransport, user: Optional[Dict[str, Any]] = None) -> None:
    connection.open()
    transport.feed_ready(user)
    connection.open()
    assert connection.state is ConnectionState.CONNECTED


@pytest.fixture
def connect():
    """Drive a connection through handshake and READY."""
    return _connect


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def connection(transport: FakeTransport) -> RpcConnection:
    return RpcConnection("1234", lambda: transport)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Dict[str, Any]:
    cfg = dict(DEFAULT_CONFIG)
    cfg["application_id"] = "1234"
    return cfg


@pytest.fixture
def session(config: Dict[str, Any], transport: FakeTransport, clock: FakeClock):
    session = PresenceSession(config, disable_io_thread=True, transport_factory=lambda: transport, clock=clock)
    yield session
    session.shutdown()


def _connect_session(
    session: PresenceSession, transport: FakeTransport, clock: FakeClock, user: Optional[Dict[str, Any]] = None
) -> None:
    session.update_connection()
    transport.feed_ready(user)
    # past any reconnect deadline
    clock.advance(120)
    session.update_connection()
    assert session.is_connected


@pytest.fixture
def connect_session():
    """Drive a started session through handshake and READY with the fake clock."""
    return _connect_session

import io
import time

from rpc_client.transports import create_transport, windows
from rpc_client.transports.windows import NamedPipeTransport


def _transport(monkeypatch, data, available, read_timeout=0.2):
    transport = NamedPipeTransport("test-ipc", 1, read_timeout=read_timeout)
    transport._pipe = io.BytesIO(data)
    monkeypatch.setattr(windows, "_peek_available", lambda pipe: available())
    return transport


def test_waiting_read_gives_up_after_read_timeout(monkeypatch):
    transport = _transport(monkeypatch, b"", lambda: 0, read_timeout=0.1)
    started = time.monotonic()
    assert transport.read(8, wait=True) == b""
    elapsed = time.monotonic() - started
    assert 0.05 <= elapsed < 2.0
    assert transport.is_open


def test_waiting_read_returns_once_data_arrives(monkeypatch):
    peeks = iter([0, 0, 3])
    transport = _transport(monkeypatch, b"abcdef", lambda: next(peeks, 3))
    assert transport.read(4, wait=True) == b"abc"


def test_polling_read_never_blocks(monkeypatch):
    transport = _transport(monkeypatch, b"abc", lambda: 0)
    assert transport.read(3, wait=False) == b""

    transport = _transport(monkeypatch, b"abc", lambda: 3)
    assert transport.read(8, wait=False) == b"abc"


def test_peek_failure_closes_pipe(monkeypatch):
    def broken():
        raise OSError("pipe broken")

    transport = _transport(monkeypatch, b"", broken)
    assert transport.read(8, wait=True) is None
    assert not transport.is_open


def test_read_timeout_comes_from_config():
    pipe = create_transport({"pipe_prefix": "test-ipc", "max_pipes": 1, "read_timeout": 2.5}, platform="win32")
    assert pipe.read_timeout == 2.5

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from rpc_shared.protocol import validator
from rpc_shared.protocol.commands import Command, Event, build_handshake
from rpc_shared.protocol.constants import HEADER_SIZE
from rpc_shared.protocol.errors import ErrorCode, ProtocolError
from rpc_shared.protocol.framing import Frame, OpCode, decode_header, decode_msg, encode_frame, encode_msg
from rpc_shared.protocol.messages import User

from .transport import PipeAccessDeniedError, Transport, TransportError

logger = logging.getLogger(__name__)

ConnectedCallback = Callable[[Optional[User]], None]
DisconnectedCallback = Callable[[ErrorCode, Optional[str]], None]
TransportFactory = Callable[[], Transport]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    SENT_HANDSHAKE = "sent_handshake"
    CONNECTED = "connected"


class RpcConnection:
    """
    Handshake and steady-state framing on top of one transport.

    Recoverable failures never raise: ``open`` returns without changing
    state, ``read`` returns ``None`` and ``write`` returns ``False``, closing
    the channel where the failure warrants it. The closed transport is
    dropped and a fresh one is built on the next ``open``.
    """

    def __init__(self, application_id: str, transport_factory: TransportFactory) -> None:
        self.application_id = application_id
        self._transport_factory = transport_factory
        self.transport: Optional[Transport] = transport_factory()
        self.state = ConnectionState.DISCONNECTED

        self.on_connected: Optional[ConnectedCallback] = None
        self.on_disconnected: Optional[DisconnectedCallback] = None

        self.last_error_code = ErrorCode.SUCCESS
        self.last_error_message: Optional[str] = None
        self.last_open_error: Optional[TransportError] = None

        self._write_lock = threading.Lock()
        self._rx = bytearray()
        self._pending_header: Optional[Tuple[OpCode, int]] = None

    @property
    def is_open(self) -> bool:
        transport = self.transport
        return self.state is ConnectionState.CONNECTED and transport is not None and transport.is_open

    def open(self) -> None:
        if self.state is ConnectionState.CONNECTED:
            return

        if self.state is ConnectionState.SENT_HANDSHAKE:
            self._await_ready()
            return

        if self.transport is None:
            self.transport = self._transport_factory()
        try:
            opened = self.transport.open()
        except PipeAccessDeniedError as exc:
            self.last_open_error = exc
            logger.warning("Cannot open IPC channel: %s", exc)
            return
        except TransportError as exc:
            self.last_open_error = exc
            logger.info("IPC channel unavailable: %s", exc)
            return
        if not opened:
            return

        self.last_open_error = None
        self.last_error_code = ErrorCode.SUCCESS
        self.last_error_message = None
        self._reset_buffer()

        handshake = encode_frame(OpCode.HANDSHAKE, encode_msg(build_handshake(self.application_id)))
        if self._send(handshake):
            self.state = ConnectionState.SENT_HANDSHAKE
            logger.debug("Handshake sent for application %s", self.application_id)
        else:
            logger.warning("Handshake write failed")
            self.close()

    def _await_ready(self) -> None:
        message = self.read(wait=False)
        if message is None:
            return
        if message.get("cmd") != Command.DISPATCH.value or message.get("evt") != Event.READY.value:
            logger.debug("Ignoring %s/%s before READY", message.get("cmd"), message.get("evt"))
            return
        try:
            validator.validate_msg(message)
            user = User.from_dict(message["data"]["user"])
        except ProtocolError as exc:
            logger.warning("Malformed READY dispatch: %s", exc)
            return

        self.state = ConnectionState.CONNECTED
        logger.info("IPC connection ready for user %s", user.user_id)
        if self.on_connected is not None:
            self.on_connected(user)

    def read(self, wait: bool) -> Optional[Dict[str, Any]]:
        """Return the next decoded FRAME payload, or ``None`` when there is nothing (or the channel failed)."""
        if self.state not in (ConnectionState.SENT_HANDSHAKE, ConnectionState.CONNECTED):
            return None

        while True:
            if self._pending_header is None:
                if not self._fill(HEADER_SIZE, wait):
                    if self.transport is None or not self.transport.is_open:
                        self._fail(ErrorCode.PIPE_CLOSED, "Pipe closed")
                    return None
                try:
                    self._pending_header = decode_header(bytes(self._rx[:HEADER_SIZE]))
                except ProtocolError as exc:
                    self._fail(ErrorCode.READ_CORRUPT, exc.message)
                    return None
                del self._rx[:HEADER_SIZE]

            opcode, length = self._pending_header
            if length > 0 and not self._fill(length, True):
                self._fail(ErrorCode.READ_CORRUPT, "Partial data in frame")
                return None
            frame = Frame(opcode, bytes(self._rx[:length]))
            del self._rx[:length]
            self._pending_header = None

            if opcode is OpCode.CLOSE:
                self._handle_close(frame)
                return None

            if opcode is OpCode.FRAME:
                try:
                    return decode_msg(frame.text())
                except ProtocolError as exc:
                    self._fail(ErrorCode.READ_CORRUPT, exc.message)
                    return None

            if opcode is OpCode.PING:
                # The peer's liveness probe ends the session after the reply.
                self._send(Frame(OpCode.PONG, frame.payload).encode())
                logger.debug("Answered PING, closing connection")
                self.close()
                return None

            if opcode is OpCode.PONG:
                continue

            self._fail(ErrorCode.READ_CORRUPT, "Bad IPC frame")
            return None

    def write(self, payload: bytes) -> bool:
        try:
            data = encode_frame(OpCode.FRAME, payload)
        except ProtocolError as exc:
            logger.warning("Refusing to send frame: %s", exc)
            return False
        if not self._send(data):
            self.close()
            return False
        return True

    def close(self) -> None:
        if self.state in (ConnectionState.CONNECTED, ConnectionState.SENT_HANDSHAKE):
            if self.on_disconnected is not None:
                self.on_disconnected(self.last_error_code, self.last_error_message)

        transport = self.transport
        self.transport = None
        if transport is not None:
            transport.close()
        self.state = ConnectionState.DISCONNECTED
        self._reset_buffer()

    def destroy(self) -> None:
        self.close()

    def _handle_close(self, frame: Frame) -> None:
        try:
            envelope = decode_msg(frame.text())
            validator.validate_msg(envelope, validator.load_schema("close"))
        except ProtocolError as exc:
            self._fail(ErrorCode.READ_CORRUPT, exc.message)
            return
        code = envelope.get("code")
        self.last_error_code = ErrorCode.SUCCESS if code is None else ErrorCode.from_wire(code)
        self.last_error_message = envelope.get("message") or ""
        logger.info("Companion closed the connection: %s %s", code, self.last_error_message)
        self.close()

    def _fail(self, code: ErrorCode, message: str) -> None:
        self.last_error_code = code
        self.last_error_message = message
        logger.warning("IPC read failed (%s): %s", code.name, message)
        self.close()

    def _fill(self, size: int, wait: bool) -> bool:
        while len(self._rx) < size:
            transport = self.transport
            if transport is None:
                return False
            chunk = transport.read(size - len(self._rx), wait)
            if not chunk:
                return False
            self._rx.extend(chunk)
        return True

    def _send(self, data: bytes) -> bool:
        with self._write_lock:
            transport = self.transport
            return transport is not None and transport.write(data)

    def _reset_buffer(self) -> None:
        self._rx.clear()
        self._pending_header = None


__all__ = ["ConnectionState", "RpcConnection", "TransportFactory"]

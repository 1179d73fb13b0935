from __future__ import annotations

import itertools
import logging
import os
import threading
import time
from collections import deque
from collections.abc import Callable
from functools import partial
from typing import Any, Deque, Dict, Optional, Union

from rpc_client.config import CLIENT_CONFIG
from rpc_shared.protocol import validator
from rpc_shared.protocol.commands import SUBSCRIBED_EVENTS, Event, JoinReply, build_join_reply, build_subscribe
from rpc_shared.protocol.constants import MAX_PAYLOAD_SIZE
from rpc_shared.protocol.errors import ErrorCode, ProtocolError
from rpc_shared.protocol.framing import encode_msg
from rpc_shared.protocol.messages import IncomingMessage, JoinRequest, RichPresence, User

from .backoff import Backoff, format_duration
from .connection import RpcConnection, TransportFactory
from .handlers import EventHandler
from .transport import TransportError

logger = logging.getLogger(__name__)


class SessionError(ProtocolError):
    """Raised when a destroyed session is used again."""

    def __init__(self, message: str = "Session has been shut down") -> None:
        super().__init__(ErrorCode.UNKNOWN, message)


class OneShotFlag:
    """Boolean that is observed exactly once: ``consume`` reads and clears atomically."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = False

    def set(self) -> None:
        with self._lock:
            self._value = True

    def consume(self) -> bool:
        with self._lock:
            value, self._value = self._value, False
            return value


def _default_transport_factory(config: Dict[str, Any]) -> TransportFactory:
    from rpc_client.transports import create_transport

    return partial(create_transport, config)


class PresenceSession:
    """
    Publishes presence to the companion process and surfaces its events.

    Callers enqueue work from any thread; a single I/O loop (the background
    thread, or the caller when it is disabled) keeps the connection alive,
    drains inbound events and flushes the outbound queues. Events reach the
    handler through ``run_callbacks``, once per transition.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        disable_io_thread: Optional[bool] = None,
        transport_factory: Optional[TransportFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CLIENT_CONFIG
        if disable_io_thread is None:
            disable_io_thread = bool(self.config.get("disable_io_thread", False))
        self.disable_io_thread = disable_io_thread
        self._transport_factory = transport_factory or _default_transport_factory(self.config)
        self._clock = clock

        self.pid = os.getpid()
        self._nonce = itertools.count()
        self.handler: Optional[EventHandler] = None
        self.connection: Optional[RpcConnection] = None
        self.backoff = Backoff(float(self.config["reconnect_min_delay"]), float(self.config["reconnect_max_delay"]))
        self.io_timeout = float(self.config["io_timeout"])
        self._next_connect = clock()

        self.join_secret: Optional[str] = None
        self.spectate_secret: Optional[str] = None
        self.connected_user: Optional[User] = None
        self.last_error_code = ErrorCode.SUCCESS
        self.last_error_message: Optional[str] = None
        self.last_disconnect_code = ErrorCode.SUCCESS
        self.last_disconnect_message: Optional[str] = None

        self._just_connected = OneShotFlag()
        self._just_disconnected = OneShotFlag()
        self._got_error = OneShotFlag()
        self._join_game = OneShotFlag()
        self._spectate_game = OneShotFlag()

        self._send_queue: Deque[bytes] = deque()
        self._presence_queue: Deque[bytes] = deque()
        self._join_queue: Deque[JoinRequest] = deque()

        self._running = False
        self._wake = threading.Condition()
        self._io_thread: Optional[threading.Thread] = None
        self._destroyed = False

    @property
    def is_connected(self) -> bool:
        return self.connection is not None and self.connection.is_open

    @property
    def last_open_error(self) -> Optional[TransportError]:
        """Why the most recent connection attempt failed, if it did."""
        return self.connection.last_open_error if self.connection is not None else None

    def start(self, application_id: Optional[str] = None, handler: Optional[EventHandler] = None) -> None:
        self._ensure_alive()
        if self.connection is not None:
            return

        application_id = application_id or self.config.get("application_id")
        if not application_id:
            raise ValueError("application_id is required to start a presence session")

        self.handler = handler
        self.connection = RpcConnection(str(application_id), self._transport_factory)
        self.connection.on_connected = self._on_connected
        self.connection.on_disconnected = self._on_disconnected
        logger.info("Presence session started for application %s", application_id)

        if not self.disable_io_thread:
            self._running = True
            self._io_thread = threading.Thread(target=self._io_loop, name="rpc-io", daemon=True)
            self._io_thread.start()

    def shutdown(self) -> None:
        if self._destroyed:
            return
        connection = self.connection
        if connection is not None:
            connection.on_connected = None
            connection.on_disconnected = None
        self.handler = None

        io_thread = self._io_thread
        if io_thread is not None:
            self._running = False
            self._signal()
            # From a handler the loop is the caller; it exits once _running is False.
            if io_thread is not threading.current_thread():
                io_thread.join()
            self._io_thread = None

        if connection is not None:
            connection.destroy()
        self.connection = None
        self._destroyed = True
        logger.info("Presence session shut down")

    def update_presence(self, presence: Optional[RichPresence] = None) -> None:
        """Queue a presence update; ``None`` clears the current presence."""
        self._ensure_alive()
        presence = presence or RichPresence()
        payload = encode_msg(presence.to_payload(self.pid, self._next_nonce()))
        if len(payload) > MAX_PAYLOAD_SIZE:
            raise ProtocolError(ErrorCode.UNKNOWN, f"Presence payload too large: {len(payload)} bytes")
        self._presence_queue.append(payload)
        self._signal()

    def clear_presence(self) -> None:
        self.update_presence(None)

    def respond(self, user: Union[User, str], reply: JoinReply) -> bool:
        """Answer a join request. Ignored (returns False) while not connected."""
        self._ensure_alive()
        if self.connection is None or not self.connection.is_open:
            logger.debug("Not connected, dropping join reply for %s", user)
            return False
        user_id = user.user_id if isinstance(user, User) else user
        self._send_queue.append(encode_msg(build_join_reply(user_id, reply, self._next_nonce())))
        self._signal()
        return True

    def run_callbacks(self) -> None:
        """Deliver pending events to the handler; each transition fires once."""
        self._ensure_alive()
        connection = self.connection
        if connection is None:
            return
        handler = self.handler
        if handler is None:
            return

        was_disconnected = self._just_disconnected.consume()
        is_connected = connection.is_open

        # A disconnect may be noticed before or after the reconnect that
        # followed it; either way it is delivered exactly once.
        if is_connected and was_disconnected:
            self._fire(handler.disconnected, self.last_disconnect_code, self.last_disconnect_message)

        if self._just_connected.consume():
            self._fire(handler.ready, self.connected_user)

        if self._got_error.consume():
            self._fire(handler.errored, self.last_error_code, self.last_error_message)

        if self._join_game.consume():
            self._fire(handler.join_game, self.join_secret)

        if self._spectate_game.consume():
            self._fire(handler.spectate_game, self.spectate_secret)

        while self._join_queue:
            self._fire(handler.join_request, self._join_queue.popleft())

        if not is_connected and was_disconnected:
            self._fire(handler.disconnected, self.last_disconnect_code, self.last_disconnect_message)

    def update_connection(self) -> None:
        """Run one polling step: reconnect when due, otherwise drain inbound and flush outbound."""
        self._ensure_alive()
        connection = self.connection
        if connection is None:
            return

        if not connection.is_open:
            if self._clock() >= self._next_connect:
                self._update_reconnect_time()
                connection.open()
            return

        while True:
            message = connection.read(wait=False)
            if message is None:
                break
            try:
                self._handle_message(message)
            except ProtocolError as exc:
                logger.warning("Skipping malformed %s event: %s", message.get("evt"), exc)

        while self._presence_queue:
            if not connection.write(self._presence_queue[0]):
                break
            self._presence_queue.popleft()

        while self._send_queue:
            connection.write(self._send_queue.popleft())

    def _handle_message(self, raw: Dict[str, Any]) -> None:
        message = IncomingMessage.from_dict(raw)

        if message.nonce is not None:
            if message.evt == Event.ERROR.value:
                validator.validate_msg(raw)
                data = message.payload
                self.last_error_code = ErrorCode.from_wire(data["code"]) if "code" in data else ErrorCode.SUCCESS
                self.last_error_message = data.get("message") or ""
                self._got_error.set()
            return

        if message.evt == Event.ACTIVITY_JOIN.value:
            validator.validate_msg(raw)
            self.join_secret = message.payload["secret"]
            self._join_game.set()
        elif message.evt == Event.ACTIVITY_SPECTATE.value:
            validator.validate_msg(raw)
            self.spectate_secret = message.payload["secret"]
            self._spectate_game.set()
        elif message.evt == Event.ACTIVITY_JOIN_REQUEST.value:
            validator.validate_msg(raw)
            self._join_queue.append(JoinRequest(user=User.from_dict(message.payload["user"])))

    def _register_for_event(self, name: Union[Event, str]) -> None:
        self._send_queue.append(encode_msg(build_subscribe(name, self._next_nonce())))
        self._signal()

    def _on_connected(self, user: Optional[User]) -> None:
        self.connected_user = user
        self._just_connected.set()
        self.backoff.reset()
        if self.handler is not None:
            for event in SUBSCRIBED_EVENTS:
                self._register_for_event(event)

    def _on_disconnected(self, code: ErrorCode, message: Optional[str]) -> None:
        self.last_disconnect_code = code
        self.last_disconnect_message = message
        self._just_disconnected.set()
        self._update_reconnect_time()

    def _update_reconnect_time(self) -> None:
        delay = self.backoff.next_delay()
        self._next_connect = self._clock() + delay
        logger.debug("Next connection attempt in %s", format_duration(delay))

    def _next_nonce(self) -> int:
        return next(self._nonce)

    def _signal(self) -> None:
        with self._wake:
            self._wake.notify_all()

    def _fire(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        except Exception as exc:
            logger.exception("Event handler %s failed: %s", getattr(callback, "__name__", callback), exc)

    def _io_loop(self) -> None:
        while self._running:
            try:
                self.update_connection()
                self.run_callbacks()
            except Exception as exc:
                logger.exception("IPC loop iteration failed: %s", exc)
            with self._wake:
                if self._running and not self._has_pending_writes():
                    self._wake.wait(self.io_timeout)

    def _has_pending_writes(self) -> bool:
        return bool(self._presence_queue or self._send_queue) and self.is_connected

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise SessionError()


__all__ = ["OneShotFlag", "PresenceSession", "SessionError"]

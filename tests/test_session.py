import threading
import time

import pytest

from rpc_client.core.handlers import EventHandler
from rpc_client.core.session import OneShotFlag, PresenceSession, SessionError
from rpc_shared.protocol import ErrorCode, JoinReply, OpCode, ProtocolError, RichPresence, User


class RecordingHandler(EventHandler):
    def __init__(self):
        self.calls = []

    def ready(self, user):
        self.calls.append(("ready", user.user_id if user else None))

    def disconnected(self, error_code, message):
        self.calls.append(("disconnected", error_code, message))

    def errored(self, error_code, message):
        self.calls.append(("errored", error_code, message))

    def join_game(self, join_secret):
        self.calls.append(("join_game", join_secret))

    def spectate_game(self, spectate_secret):
        self.calls.append(("spectate_game", spectate_secret))

    def join_request(self, request):
        self.calls.append(("join_request", request.user.user_id))

    def names(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def handler():
    return RecordingHandler()


def _states(transport):
    return [msg["args"]["activity"].get("state") for msg in transport.sent_commands("SET_ACTIVITY")]


def _dispatch(transport, evt, data):
    transport.feed(OpCode.FRAME, {"cmd": "DISPATCH", "evt": evt, "data": data})


def test_one_shot_flag_is_consumed_once():
    flag = OneShotFlag()
    assert not flag.consume()
    flag.set()
    flag.set()
    assert flag.consume()
    assert not flag.consume()


def test_start_requires_application_id(config, transport, clock):
    config["application_id"] = ""
    session = PresenceSession(config, disable_io_thread=True, transport_factory=lambda: transport, clock=clock)
    with pytest.raises(ValueError):
        session.start()


def test_start_is_idempotent(session, handler):
    session.start(handler=handler)
    connection = session.connection
    session.start(handler=RecordingHandler())
    assert session.connection is connection
    assert session.handler is handler


def test_presence_is_held_until_connected(session, transport, clock, connect_session):
    session.start()
    session.update_presence(RichPresence(state="first"))
    session.update_presence(RichPresence(state="second"))
    session.update_connection()
    assert _states(transport) == []

    connect_session(session, transport, clock)
    assert _states(transport) == []

    session.update_connection()
    assert _states(transport) == ["first", "second"]

    session.update_connection()
    assert _states(transport) == ["first", "second"]


def test_presence_payload_carries_pid_and_nonce(session, transport, clock, connect_session):
    session.start()
    connect_session(session, transport, clock)
    session.update_presence(RichPresence(details="Exploring"))
    session.update_connection()

    [msg] = transport.sent_commands("SET_ACTIVITY")
    assert msg["args"]["pid"] == session.pid
    assert isinstance(msg["nonce"], str)
    assert msg["args"]["activity"]["details"] == "Exploring"


def test_failed_presence_write_keeps_rest_of_queue(session, transport, clock, connect_session):
    session.start()
    connect_session(session, transport, clock)
    session.update_connection()

    transport.write_budget = 1
    for state in ("a", "b", "c"):
        session.update_presence(RichPresence(state=state))
    session.update_connection()

    assert _states(transport) == ["a"]
    assert not session.is_connected
    assert len(session._presence_queue) == 2

    transport.write_budget = None
    clock.advance(120)
    connect_session(session, transport, clock)
    session.update_connection()
    assert _states(transport) == ["a", "b", "c"]


def test_failed_command_write_drains_queue_and_reconnects(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)
    assert len(session._send_queue) == 3

    transport.fail_writes = True
    session.update_connection()
    assert len(session._send_queue) == 0
    assert not session.is_connected
    assert transport.sent_commands("SUBSCRIBE") == []

    transport.fail_writes = False
    clock.advance(120)
    connect_session(session, transport, clock)
    session.update_connection()
    events = [msg["evt"] for msg in transport.sent_commands("SUBSCRIBE")]
    assert events == ["ACTIVITY_JOIN", "ACTIVITY_SPECTATE", "ACTIVITY_JOIN_REQUEST"]


def test_oversized_presence_is_rejected(session):
    session.start()
    with pytest.raises(ProtocolError):
        session.update_presence(RichPresence(details="x" * 70000))
    assert len(session._presence_queue) == 0


def test_clear_presence_sends_empty_activity(session, transport, clock, connect_session):
    session.start()
    connect_session(session, transport, clock)
    session.update_presence(None)
    session.clear_presence()
    session.update_connection()

    sent = transport.sent_commands("SET_ACTIVITY")
    assert len(sent) == 2
    assert all(msg["args"]["activity"] == {"type": 0, "instance": False} for msg in sent)


def test_ready_subscribes_to_events_with_handler(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)
    session.update_connection()

    events = [msg["evt"] for msg in transport.sent_commands("SUBSCRIBE")]
    assert events == ["ACTIVITY_JOIN", "ACTIVITY_SPECTATE", "ACTIVITY_JOIN_REQUEST"]
    nonces = [msg["nonce"] for msg in transport.sent_commands("SUBSCRIBE")]
    assert len(set(nonces)) == 3


def test_ready_without_handler_does_not_subscribe(session, transport, clock, connect_session):
    session.start()
    connect_session(session, transport, clock)
    session.update_connection()
    assert transport.sent_commands("SUBSCRIBE") == []


def test_ready_is_delivered_once(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)

    session.run_callbacks()
    session.run_callbacks()
    assert handler.calls == [("ready", "42")]
    assert session.connected_user.username == "ann"


def test_backoff_resets_on_connect(session, transport, clock, connect_session):
    session.start()
    for _ in range(5):
        session.backoff.next_delay()
    connect_session(session, transport, clock)
    assert session.backoff.current == session.backoff.min_amount


def test_error_event_is_reported_without_disconnecting(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)
    session.run_callbacks()

    transport.feed(
        OpCode.FRAME,
        {"cmd": "SET_ACTIVITY", "evt": "ERROR", "nonce": "3", "data": {"code": 4000, "message": "Bad activity"}},
    )
    session.update_connection()
    session.run_callbacks()

    assert handler.calls[-1] == ("errored", ErrorCode.UNKNOWN, "Bad activity")
    assert session.is_connected


def test_error_event_with_known_code(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)

    transport.feed(OpCode.FRAME, {"evt": "ERROR", "nonce": 8, "data": {"code": 2, "message": "oops"}})
    session.update_connection()
    session.run_callbacks()
    assert ("errored", ErrorCode.READ_CORRUPT, "oops") in handler.calls


def test_replies_to_commands_are_ignored(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)
    session.run_callbacks()

    transport.feed(OpCode.FRAME, {"cmd": "SET_ACTIVITY", "nonce": "1", "data": {"state": "ok"}})
    session.update_connection()
    session.run_callbacks()
    assert handler.names() == ["ready"]


def test_join_and_spectate_secrets(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)

    _dispatch(transport, "ACTIVITY_JOIN", {"secret": "join-1"})
    _dispatch(transport, "ACTIVITY_SPECTATE", {"secret": "watch-1"})
    session.update_connection()
    session.run_callbacks()

    assert handler.calls == [("ready", "42"), ("join_game", "join-1"), ("spectate_game", "watch-1")]
    assert session.join_secret == "join-1"
    assert session.spectate_secret == "watch-1"


def test_join_requests_are_drained_in_order(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)
    session.run_callbacks()

    _dispatch(transport, "ACTIVITY_JOIN_REQUEST", {"user": {"id": "7", "username": "bo"}})
    _dispatch(transport, "ACTIVITY_JOIN_REQUEST", {"user": {"id": "8", "username": "cy"}})
    session.update_connection()
    session.run_callbacks()
    session.run_callbacks()

    assert handler.calls[1:] == [("join_request", "7"), ("join_request", "8")]


def test_malformed_event_is_skipped(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)
    session.run_callbacks()

    _dispatch(transport, "ACTIVITY_JOIN", {})
    _dispatch(transport, "ACTIVITY_SPECTATE", {"secret": "watch-2"})
    session.update_connection()
    session.run_callbacks()

    assert handler.calls[1:] == [("spectate_game", "watch-2")]
    assert session.join_secret is None
    assert session.is_connected


def test_disconnect_is_delivered_once(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)
    session.run_callbacks()

    transport.feed(OpCode.CLOSE, {"code": 1, "message": "gone"})
    session.update_connection()
    assert not session.is_connected

    session.run_callbacks()
    session.run_callbacks()
    assert handler.calls == [("ready", "42"), ("disconnected", ErrorCode.PIPE_CLOSED, "gone")]
    assert session.last_disconnect_code is ErrorCode.PIPE_CLOSED


def test_disconnect_precedes_ready_after_quick_reconnect(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)
    session.run_callbacks()

    transport.feed(OpCode.CLOSE, {"code": 1, "message": "restart"})
    session.update_connection()
    clock.advance(120)
    connect_session(session, transport, clock)

    session.run_callbacks()
    assert handler.names() == ["ready", "disconnected", "ready"]


def test_handler_failure_does_not_stop_other_callbacks(session, transport, clock, connect_session):
    class Exploding(RecordingHandler):
        def ready(self, user):
            raise RuntimeError("boom")

    handler = Exploding()
    session.start(handler=handler)
    connect_session(session, transport, clock)
    _dispatch(transport, "ACTIVITY_JOIN", {"secret": "s"})
    session.update_connection()

    session.run_callbacks()
    assert handler.calls == [("join_game", "s")]


def test_respond_requires_connection(session, transport, clock, connect_session):
    session.start()
    assert session.respond("7", JoinReply.YES) is False

    connect_session(session, transport, clock)
    assert session.respond(User(user_id="7"), JoinReply.YES)
    assert session.respond("8", JoinReply.NO)
    session.update_connection()

    [invite] = transport.sent_commands("SEND_ACTIVITY_JOIN_INVITE")
    [declined] = transport.sent_commands("CLOSE_ACTIVITY_JOIN_REQUEST")
    assert invite["args"] == {"user_id": "7"}
    assert declined["args"] == {"user_id": "8"}


def test_reconnect_waits_for_backoff(session, transport, clock):
    transport.reachable = False
    session.start()

    session.update_connection()
    assert transport.open_calls == 1
    session.update_connection()
    assert transport.open_calls == 1
    assert session.last_open_error is not None

    clock.advance(61)
    session.update_connection()
    assert transport.open_calls == 2


def test_shutdown_makes_session_unusable(session, transport, clock, handler, connect_session):
    session.start(handler=handler)
    connect_session(session, transport, clock)
    session.run_callbacks()

    session.shutdown()
    session.shutdown()

    assert not transport.is_open
    assert handler.names() == ["ready"]
    for call in (
        lambda: session.update_presence(RichPresence()),
        session.update_connection,
        session.run_callbacks,
        lambda: session.respond("7", JoinReply.YES),
        session.start,
    ):
        with pytest.raises(SessionError):
            call()


def test_background_thread_flushes_presence(config, transport):
    config.update(reconnect_min_delay=0.01, reconnect_max_delay=0.05, io_timeout=0.05)
    transport.feed_ready()
    session = PresenceSession(config, disable_io_thread=False, transport_factory=lambda: transport)
    try:
        session.start()
        session.update_presence(RichPresence(state="threaded"))
        deadline = time.monotonic() + 5
        while not _states(transport) and time.monotonic() < deadline:
            time.sleep(0.01)
        assert _states(transport) == ["threaded"]
        assert session.is_connected
    finally:
        session.shutdown()
    assert session._io_thread is None


def _wait_for(predicate, timeout):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() >= deadline:
            return False
        time.sleep(0.01)
    return True


def test_enqueue_wakes_idle_background_thread(config, transport):
    config.update(reconnect_min_delay=0.01, reconnect_max_delay=0.05, io_timeout=3.0)
    transport.feed_ready()
    session = PresenceSession(config, disable_io_thread=False, transport_factory=lambda: transport)
    try:
        session.start()
        assert _wait_for(lambda: session.is_connected, 10)
        # let the loop settle into its idle wait
        time.sleep(0.1)

        started = time.monotonic()
        session.update_presence(RichPresence(state="woken"))
        assert _wait_for(lambda: _states(transport), 5)
        assert time.monotonic() - started < 1.5
    finally:
        session.shutdown()


def test_shutdown_from_handler_on_io_thread(config, transport):
    config.update(reconnect_min_delay=0.01, reconnect_max_delay=0.05, io_timeout=0.05)
    transport.feed_ready()
    session = PresenceSession(config, disable_io_thread=False, transport_factory=lambda: transport)
    done = threading.Event()

    class ShutdownOnReady(EventHandler):
        def ready(self, user):
            session.shutdown()
            done.set()

    try:
        session.start(handler=ShutdownOnReady())
        io_thread = session._io_thread
        assert done.wait(5)
        io_thread.join(5)

        assert not io_thread.is_alive()
        assert session.connection is None
        assert not transport.is_open
        with pytest.raises(SessionError):
            session.update_presence(RichPresence())
    finally:
        session.shutdown()

from __future__ import annotations

import logging
import threading
import time

from rpc_client.config import CLIENT_CONFIG, ConfigError, load_config
from rpc_client.core import LoggingEventHandler, PresenceSession
from rpc_shared.protocol import ActivityType, RichPresence

logger = logging.getLogger(__name__)


def build_demo_presence() -> RichPresence:
    presence = RichPresence(
        state="Testing the IPC client",
        details="Idle in the demo runner",
        start_timestamp=int(time.time()),
        activity_type=ActivityType.PLAYING,
    )
    presence.add_button("Project page", "https://example.com")
    return presence


def run_client(stop: threading.Event) -> None:
    load_config()
    logging.basicConfig(level="DEBUG" if CLIENT_CONFIG["debug_mode"] else CLIENT_CONFIG["log_level"])
    if not CLIENT_CONFIG["application_id"]:
        raise ConfigError("RPC_APPLICATION_ID must be set")

    session = PresenceSession()
    session.start(CLIENT_CONFIG["application_id"], LoggingEventHandler())
    session.update_presence(build_demo_presence())
    try:
        while not stop.wait(CLIENT_CONFIG["io_timeout"]):
            if session.disable_io_thread:
                session.update_connection()
                session.run_callbacks()
    finally:
        session.shutdown()


def main() -> None:
    stop = threading.Event()
    try:
        run_client(stop)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()

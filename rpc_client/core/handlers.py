from __future__ import annotations

import logging
from typing import Optional

from rpc_shared.protocol.errors import ErrorCode
from rpc_shared.protocol.messages import JoinRequest, User

logger = logging.getLogger(__name__)


class EventHandler:
    """Receives session events. Override what you need, the rest are no-ops."""

    def ready(self, user: Optional[User]) -> None:
        pass

    def disconnected(self, error_code: ErrorCode, message: Optional[str]) -> None:
        pass

    def errored(self, error_code: ErrorCode, message: Optional[str]) -> None:
        pass

    def join_game(self, join_secret: str) -> None:
        pass

    def spectate_game(self, spectate_secret: str) -> None:
        pass

    def join_request(self, request: JoinRequest) -> None:
        pass


class LoggingEventHandler(EventHandler):
    """Writes every event to the log."""

    def ready(self, user: Optional[User]) -> None:
        name = user.global_name or user.username if user else None
        logger.info("Connected as %s (%s)", name, user.user_id if user else None)

    def disconnected(self, error_code: ErrorCode, message: Optional[str]) -> None:
        logger.info("Disconnected: %s %s", error_code.name, message or "")

    def errored(self, error_code: ErrorCode, message: Optional[str]) -> None:
        logger.warning("Companion reported error %s: %s", error_code.name, message or "")

    def join_game(self, join_secret: str) -> None:
        logger.info("Join approved (secret=%s)", join_secret)

    def spectate_game(self, spectate_secret: str) -> None:
        logger.info("Spectate approved (secret=%s)", spectate_secret)

    def join_request(self, request: JoinRequest) -> None:
        logger.info("Join request from %s", request.user.username or request.user.user_id)


__all__ = ["EventHandler", "LoggingEventHandler"]

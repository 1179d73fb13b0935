from __future__ import annotations

from enum import IntEnum
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .commands import Command
from .constants import MAX_BUTTON_LABEL, MAX_BUTTONS
from .errors import ErrorCode, ProtocolError


def _has_text(value: Optional[str]) -> bool:
    return value is not None and bool(value.strip())


class ActivityType(IntEnum):
    """Kind of activity shown next to the user's name."""

    PLAYING = 0
    STREAMING = 1
    LISTENING = 2
    WATCHING = 3
    CUSTOM = 4
    COMPETING = 5


class PartyPrivacy(IntEnum):
    PRIVATE = 0
    PUBLIC = 1


class User(BaseModel):
    """Subset of the companion's user record that the client cares about."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("user_id", "userId", "id"))
    username: Optional[str] = None
    discriminator: Optional[str] = None
    global_name: Optional[str] = None
    avatar: Optional[str] = None

    @field_validator("user_id", "discriminator", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ProtocolError(ErrorCode.READ_CORRUPT, message=f"User validation failed: {exc}") from exc


class JoinRequest(BaseModel):
    """Someone asked to join the current party."""

    user: User

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JoinRequest":
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ProtocolError(ErrorCode.READ_CORRUPT, message=f"Join request validation failed: {exc}") from exc


class Button(BaseModel):
    label: Optional[str] = None
    url: Optional[str] = None

    def is_valid(self) -> bool:
        return bool(self.label) and bool(self.url)

    def to_payload(self) -> Dict[str, str]:
        return {"label": (self.label or "")[:MAX_BUTTON_LABEL], "url": self.url or ""}


class RichPresence(BaseModel):
    """
    Presence shown for the running application.

    Only fields that are set end up in the SET_ACTIVITY payload; an empty
    instance clears whatever is currently displayed.
    """

    state: Optional[str] = None
    details: Optional[str] = None
    start_timestamp: int = 0
    end_timestamp: int = 0

    large_image_key: Optional[str] = None
    large_image_text: Optional[str] = None
    small_image_key: Optional[str] = None
    small_image_text: Optional[str] = None

    party_id: Optional[str] = None
    party_size: int = 0
    party_max: int = 0
    privacy: PartyPrivacy = PartyPrivacy.PRIVATE

    match_secret: Optional[str] = None
    join_secret: Optional[str] = None
    spectate_secret: Optional[str] = None

    instance: bool = False
    activity_type: ActivityType = ActivityType.PLAYING
    buttons: List[Button] = Field(default_factory=list)

    def add_button(self, label: str, url: str) -> None:
        if len(self.buttons) + 1 > MAX_BUTTONS:
            return
        self.buttons.append(Button(label=label, url=url))

    def clear_buttons(self) -> None:
        self.buttons.clear()

    def to_activity(self) -> Dict[str, Any]:
        activity: Dict[str, Any] = {}

        if _has_text(self.state):
            activity["state"] = self.state
        if _has_text(self.details):
            activity["details"] = self.details

        if self.start_timestamp or self.end_timestamp:
            timestamps: Dict[str, int] = {}
            if self.start_timestamp:
                timestamps["start"] = self.start_timestamp
            if self.end_timestamp:
                timestamps["end"] = self.end_timestamp
            activity["timestamps"] = timestamps

        assets = {
            key: value
            for key, value in (
                ("large_image", self.large_image_key),
                ("large_text", self.large_image_text),
                ("small_image", self.small_image_key),
                ("small_text", self.small_image_text),
            )
            if _has_text(value)
        }
        if assets:
            activity["assets"] = assets

        if _has_text(self.party_id) or self.party_size > 0 or self.party_max > 0:
            party: Dict[str, Any] = {}
            if _has_text(self.party_id):
                party["id"] = self.party_id
            if self.party_size:
                size = [self.party_size]
                if self.party_max > 0:
                    size.append(self.party_max)
                party["size"] = size
            party["privacy"] = int(self.privacy)
            activity["party"] = party

        secrets = {
            key: value
            for key, value in (
                ("match", self.match_secret),
                ("join", self.join_secret),
                ("spectate", self.spectate_secret),
            )
            if _has_text(value)
        }
        if secrets:
            activity["secrets"] = secrets

        if self.buttons:
            valid = [button for button in self.buttons if button.is_valid()][:MAX_BUTTONS]
            activity["buttons"] = [button.to_payload() for button in valid]

        activity["type"] = int(self.activity_type)
        activity["instance"] = self.instance
        return activity

    def to_payload(self, pid: int, nonce: Union[int, str]) -> Dict[str, Any]:
        """Build the SET_ACTIVITY command for this presence."""
        return {
            "cmd": Command.SET_ACTIVITY.value,
            "nonce": str(nonce),
            "args": {"pid": pid, "activity": self.to_activity()},
        }


class IncomingMessage(BaseModel):
    """Loose envelope of a decoded FRAME payload."""

    model_config = ConfigDict(extra="allow")

    cmd: Optional[str] = None
    evt: Optional[str] = None
    nonce: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    @field_validator("nonce", mode="before")
    @classmethod
    def _stringify_nonce(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IncomingMessage":
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ProtocolError(ErrorCode.READ_CORRUPT, message=f"Message validation failed: {exc}") from exc

    @property
    def payload(self) -> Dict[str, Any]:
        return self.data or {}


__all__ = [
    "ActivityType",
    "PartyPrivacy",
    "User",
    "JoinRequest",
    "Button",
    "RichPresence",
    "IncomingMessage",
]

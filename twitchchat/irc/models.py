"""Shared IRC / chat data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class UserType(Enum):
    BROADCASTER = "broadcaster"
    MODERATOR = "moderator"
    VIP = "vip"
    SUBSCRIBER = "subscriber"
    VIEWER = "viewer"


@dataclass(frozen=True, slots=True)
class IRCMessage:
    raw: str
    prefix: str | None
    command: str | None
    params: tuple[str, ...] = ()
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def nick(self) -> str | None:
        """Nickname part of the prefix (``nick!user@host``)."""
        if not self.prefix:
            return None
        return self.prefix.split("!", 1)[0] or None

    @property
    def trailing(self) -> str:
        return self.params[-1] if self.params else ""


@dataclass(frozen=True, slots=True)
class Badge:
    name: str
    version: str


@dataclass(frozen=True, slots=True)
class EmotePosition:
    """Inclusive character offsets into the original message text."""

    start: int
    end: int


@dataclass(frozen=True, slots=True)
class Emote:
    id: str
    name: str
    positions: tuple[EmotePosition, ...]


@dataclass(frozen=True, slots=True)
class ChatMessage:
    id: str
    channel: str
    username: str
    display_name: str
    message: str
    timestamp: datetime
    badges: tuple[Badge, ...] = ()
    emotes: tuple[Emote, ...] = ()
    color: str | None = None
    user_type: UserType = UserType.VIEWER
    is_self: bool = False


__all__ = [
    "Badge",
    "ChatMessage",
    "ConnectionState",
    "Emote",
    "EmotePosition",
    "IRCMessage",
    "UserType",
]

"""Twitch IRC-over-WebSocket layer (codec, transport, session manager)."""

from .connection_manager import IRCConnectionManager  # noqa: F401
from .models import (  # noqa: F401
    Badge,
    ChatMessage,
    ConnectionState,
    Emote,
    EmotePosition,
    IRCMessage,
    UserType,
)
from .transport import ChatTransport, TransportClosed, WebSocketTransport  # noqa: F401

__all__ = [
    "Badge",
    "ChatMessage",
    "ChatTransport",
    "ConnectionState",
    "Emote",
    "EmotePosition",
    "IRCConnectionManager",
    "IRCMessage",
    "TransportClosed",
    "UserType",
    "WebSocketTransport",
]

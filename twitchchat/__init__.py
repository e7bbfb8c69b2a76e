"""Resilient Twitch chat client: OAuth login, IRC-over-WebSocket session, chat events."""

from .client import TwitchChatClient  # noqa: F401
from .config import EnvConfigProvider, StaticConfigProvider  # noqa: F401

__version__ = "1.0.0"

__all__ = ["EnvConfigProvider", "StaticConfigProvider", "TwitchChatClient", "__version__"]

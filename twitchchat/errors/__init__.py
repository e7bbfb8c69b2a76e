"""Error taxonomy and error handling helpers."""

from .internal import (  # noqa: F401
    APIError,
    AuthenticationError,
    ChannelError,
    ChatClientError,
    ChatConnectionError,
    ConfigurationError,
    MessageError,
)

__all__ = [
    "APIError",
    "AuthenticationError",
    "ChannelError",
    "ChatClientError",
    "ChatConnectionError",
    "ConfigurationError",
    "MessageError",
]

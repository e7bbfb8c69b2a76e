"""Centralized error hierarchy for the chat client.

Every error carries a short user-facing message and a longer technical
message. Callers decide the final presentation (see ``handling.ErrorHandler``).

Classes:
  ChatClientError      – Base for all client errors.
  AuthenticationError  – Credentials invalid or rejected (incl. CSRF / callback failures).
  ChatConnectionError  – Network-layer failure; ``retryable`` tells retry code what to do.
  ChannelError         – JOIN / PART / switch failure for ``channel_name``.
  APIError             – Non-2xx response from a Twitch endpoint.
  ConfigurationError   – Missing or invalid required settings.
  MessageError         – Invalid outgoing chat message.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime


class ChatClientError(Exception):
    """Base class for all chat client errors.

    Attributes:
        user_message: Short message suitable for showing to a person.
        technical_message: Diagnostic message for logs.
        timestamp: When the error was created (UTC).
        data: Arbitrary structured context.
    """

    default_message = "An unexpected error occurred. Please try again."

    def __init__(
        self,
        user_message: str | None = None,
        technical_message: str | None = None,
        *,
        data: Mapping[str, object] | None = None,
    ) -> None:
        self.user_message = user_message or self.default_message
        self.technical_message = technical_message or self.user_message
        super().__init__(self.technical_message)
        self.timestamp = datetime.now(UTC)
        # Copy into a plain dict to avoid unexpected mutations from caller.
        self.data = dict(data) if data else {}


class AuthenticationError(ChatClientError):
    """Raised when credentials are invalid, rejected, or the OAuth flow fails."""

    default_message = "Authentication failed. Please check your Twitch credentials."


class ChatConnectionError(ChatClientError):
    """Raised for network-layer failures.

    Args:
        retryable: Whether automatic retry policies may try again.
    """

    default_message = "Connection failed. Please check your internet connection."

    def __init__(
        self,
        user_message: str | None = None,
        technical_message: str | None = None,
        *,
        retryable: bool = True,
        data: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(user_message, technical_message, data=data)
        self.retryable = retryable


class ChannelError(ChatClientError):
    """Raised when a channel operation fails."""

    def __init__(
        self,
        channel_name: str,
        user_message: str | None = None,
        technical_message: str | None = None,
        *,
        data: Mapping[str, object] | None = None,
    ) -> None:
        self.channel_name = channel_name
        super().__init__(
            user_message
            or f'Failed to join channel "{channel_name}". '
            "The channel may not exist or be unavailable.",
            technical_message,
            data=data,
        )


class APIError(ChatClientError):
    """Raised when a Twitch endpoint answers with a non-2xx status.

    HTTP 429 sets ``rate_limited`` and swaps in a rate limit message.
    """

    default_message = "API request failed. Please try again later."

    def __init__(
        self,
        user_message: str | None = None,
        status_code: int | None = None,
        technical_message: str | None = None,
        *,
        data: Mapping[str, object] | None = None,
    ) -> None:
        self.status_code = status_code
        self.rate_limited = status_code == 429
        if self.rate_limited:
            user_message = (
                "API rate limit exceeded. Please wait a moment before trying again."
            )
        super().__init__(user_message, technical_message, data=data)


class ConfigurationError(ChatClientError):
    """Raised when required settings are missing or malformed."""

    def __init__(
        self,
        missing_fields: Sequence[str],
        user_message: str | None = None,
        technical_message: str | None = None,
    ) -> None:
        self.missing_fields = list(missing_fields)
        super().__init__(
            user_message
            or "Configuration incomplete. Missing: "
            f"{', '.join(self.missing_fields)}. Please check your settings.",
            technical_message,
        )


class MessageError(ChatClientError):
    """Raised when an outgoing chat message is invalid or cannot be sent."""

    default_message = "Failed to send message. Please try again."


__all__ = [
    "ChatClientError",
    "AuthenticationError",
    "ChatConnectionError",
    "ChannelError",
    "APIError",
    "ConfigurationError",
    "MessageError",
]

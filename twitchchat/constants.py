"""
Configuration constants for the Twitch chat client

This module contains all tunable constants used throughout the client.
Each constant can be overridden by setting an environment variable with the same name.
"""

import os


def _get_env_int(name: str, default: int) -> int:
    """Retrieve an integer value from an environment variable.

    Attempts to parse the environment variable as an integer. If the variable
    is not set or cannot be parsed, prints a warning and returns the default value.

    Args:
        name: The name of the environment variable to read.
        default: The default integer value to return if parsing fails.

    Returns:
        The parsed integer value from the environment, or the default if unavailable.
    """
    value = os.getenv(name)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            print(
                f"Warning: Invalid integer value for {name}='{value}', using default {default}"
            )
    return default


def _get_env_float(name: str, default: float) -> float:
    """Retrieve a float value from an environment variable.

    Attempts to parse the environment variable as a float. If the variable
    is not set or cannot be parsed, prints a warning and returns the default value.

    Args:
        name: The name of the environment variable to read.
        default: The default float value to return if parsing fails.

    Returns:
        The parsed float value from the environment, or the default if unavailable.
    """
    value = os.getenv(name)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            print(
                f"Warning: Invalid float value for {name}='{value}', using default {default}"
            )
    return default


def _get_env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


# Twitch endpoints (public, well-known URLs; not credentials)
TWITCH_IRC_WEBSOCKET_URL = _get_env_str(
    "TWITCH_IRC_WEBSOCKET_URL", "wss://irc-ws.chat.twitch.tv:443"
)
TWITCH_AUTHORIZE_URL = _get_env_str(
    "TWITCH_AUTHORIZE_URL", "https://id.twitch.tv/oauth2/authorize"
)
TWITCH_TOKEN_URL = _get_env_str(
    "TWITCH_TOKEN_URL", "https://id.twitch.tv/oauth2/token"  # nosec B105  # noqa: S105
)
TWITCH_VALIDATE_URL = _get_env_str(
    "TWITCH_VALIDATE_URL", "https://id.twitch.tv/oauth2/validate"
)

# IRC session constants
IRC_CAPABILITIES = (
    "twitch.tv/commands",
    "twitch.tv/membership",
    "twitch.tv/tags",
)
HEARTBEAT_INTERVAL_SECONDS = _get_env_float(
    "HEARTBEAT_INTERVAL_SECONDS", 300.0
)  # Client keepalive PING interval (5 min)
CONNECT_TIMEOUT_SECONDS = _get_env_float(
    "CONNECT_TIMEOUT_SECONDS", 30.0
)  # Max wait for welcome / auth failure after opening the socket
MAX_MESSAGE_LENGTH = _get_env_int(
    "MAX_MESSAGE_LENGTH", 500
)  # Twitch rejects longer PRIVMSG bodies

# Reconnection constants
RECONNECT_BASE_DELAY_SECONDS = _get_env_float(
    "RECONNECT_BASE_DELAY_SECONDS", 5.0
)  # Delay before the first reconnect attempt; doubles per attempt
MAX_RECONNECT_ATTEMPTS = _get_env_int(
    "MAX_RECONNECT_ATTEMPTS", 5
)  # Attempts before parking in ERROR
RECONNECT_DEBOUNCE_SECONDS = _get_env_float(
    "RECONNECT_DEBOUNCE_SECONDS", 1.0
)  # Ignore reconnect requests closer than this to the previous attempt

# Authentication/token constants
AUTH_CALLBACK_TIMEOUT_SECONDS = _get_env_float(
    "AUTH_CALLBACK_TIMEOUT_SECONDS", 300.0
)  # Browser authorization window (5 min)
TOKEN_EXPIRY_BUFFER_SECONDS = _get_env_int(
    "TOKEN_EXPIRY_BUFFER_SECONDS", 300
)  # Tokens this close to expiry are treated as expired
TOKEN_REQUEST_MAX_ATTEMPTS = _get_env_int(
    "TOKEN_REQUEST_MAX_ATTEMPTS", 3
)  # Network-level attempts for token endpoint calls
MIN_CLIENT_CREDENTIAL_LENGTH = _get_env_int(
    "MIN_CLIENT_CREDENTIAL_LENGTH", 10
)  # Shorter client id / secret values are flagged
DEFAULT_REDIRECT_URI = "http://localhost:7777/auth/callback"
DEFAULT_CALLBACK_PORT = 7777
DEFAULT_SCOPES = ("chat:read", "chat:edit")
REQUIRED_CHAT_SCOPES = ("chat:read", "chat:edit")
TOKEN_STORAGE_KEY = "twitchTokenData"

# Network/HTTP constants
HTTP_REQUEST_TIMEOUT_SECONDS = _get_env_int(
    "HTTP_REQUEST_TIMEOUT_SECONDS", 30
)  # Default HTTP request timeout

"""OAuth authorization, token storage and authentication orchestration."""

from .auth_manager import AuthManager  # noqa: F401
from .callback_server import AuthorizationTransport, LocalCallbackTransport  # noqa: F401
from .models import (  # noqa: F401
    AuthResult,
    CallbackResult,
    ConfigValidation,
    TokenData,
    TwitchConfig,
)
from .oauth_flow import OAuthFlow  # noqa: F401
from .token_store import MemorySecretStorage, SecretStorage, TokenStore  # noqa: F401

__all__ = [
    "AuthManager",
    "AuthResult",
    "AuthorizationTransport",
    "CallbackResult",
    "ConfigValidation",
    "LocalCallbackTransport",
    "MemorySecretStorage",
    "OAuthFlow",
    "SecretStorage",
    "TokenData",
    "TokenStore",
    "TwitchConfig",
]

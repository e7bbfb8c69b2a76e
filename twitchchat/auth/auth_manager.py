"""Authentication orchestration: stored token, refresh, then a fresh flow."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from ..constants import MIN_CLIENT_CREDENTIAL_LENGTH
from ..errors.internal import AuthenticationError, ChatClientError
from ..logging_config import log_structured_error
from .models import AuthResult, ConfigValidation, TokenData, TwitchConfig
from .oauth_flow import OAuthFlow
from .token_store import TokenStore

if TYPE_CHECKING:
    from ..config import ConfigProvider

FlowFactory = Callable[[TwitchConfig], OAuthFlow]


class AuthManager:
    """Single ``authenticate()`` / ``refresh_token()`` / ``logout()`` surface.

    Args:
        config_provider: Source of the OAuth application settings.
        token_store: Token cache; defaults to an in-memory store.
        flow_factory: Builds the ``OAuthFlow`` for a config.
    """

    def __init__(
        self,
        config_provider: ConfigProvider,
        token_store: TokenStore | None = None,
        flow_factory: FlowFactory | None = None,
    ) -> None:
        self.config_provider = config_provider
        self.token_store = token_store or TokenStore()
        self._flow_factory = flow_factory or OAuthFlow
        self.config = config_provider.get_twitch_config()
        self.flow = self._flow_factory(self.config)

    async def reload_config(self) -> None:
        """Re-read settings and rebuild the flow (closing the previous one)."""
        old_flow = self.flow
        self.config = self.config_provider.get_twitch_config()
        self.flow = self._flow_factory(self.config)
        await old_flow.close()
        logging.info("⚙️ Authentication settings reloaded")

    async def close(self) -> None:
        await self.flow.close()

    def validate_config(self, include_username: bool = False) -> ConfigValidation:
        """Report missing or malformed settings.

        Short client id / secret values are warnings only.
        """
        config = self.config
        missing: list[str] = []
        errors: list[str] = []
        warnings: list[str] = []
        if not config.client_id:
            missing.append("client_id")
        if not config.client_secret:
            missing.append("client_secret")
        if not config.redirect_uri:
            missing.append("redirect_uri")
        if include_username and not self.config_provider.get_username():
            missing.append("username")

        if config.redirect_uri:
            parts = urlsplit(config.redirect_uri)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                errors.append(
                    "redirect_uri must be an absolute http(s) URL, e.g. "
                    "http://localhost:7777/auth/callback"
                )
        if config.client_id and len(config.client_id) < MIN_CLIENT_CREDENTIAL_LENGTH:
            warnings.append("client_id looks too short")
        if config.client_secret and len(config.client_secret) < MIN_CLIENT_CREDENTIAL_LENGTH:
            warnings.append("client_secret looks too short")

        return ConfigValidation(
            is_valid=not missing and not errors,
            missing_fields=missing,
            errors=errors,
            warnings=warnings,
        )

    async def authenticate(self) -> AuthResult:
        """Stored token, else refresh, else a fresh authorization flow."""
        try:
            stored = await self.token_store.get_stored_tokens()
            if stored is not None and not self.token_store.is_token_expired(stored):
                logging.debug("🔑 Using stored token")
                return AuthResult(success=True, token=stored)

            if stored is not None and stored.refresh_token:
                try:
                    token = await self.refresh_token()
                    return AuthResult(success=True, token=token)
                except ChatClientError as e:
                    logging.warning(
                        f"⚠️ Token refresh failed, starting a new authorization: {e.technical_message}"
                    )

            token = await self.flow.start_flow()
            await self.token_store.store_tokens(token)
            return AuthResult(success=True, token=token)
        except ChatClientError as e:
            log_structured_error("auth", "Authentication failed", e)
            return AuthResult(success=False, error=e.user_message)

    async def refresh_token(self) -> TokenData:
        """Refresh and persist.

        Raises:
            AuthenticationError: No refresh token is stored.
            ChatClientError: Refresh failed; stored tokens have been cleared.
        """
        refresh = await self.token_store.get_refresh_token()
        if not refresh:
            raise AuthenticationError(
                "Your session has expired. Please log in again.",
                "No refresh token available",
            )
        try:
            token = await self.flow.refresh_access_token(refresh)
        except ChatClientError:
            await self.token_store.clear_tokens()
            raise
        await self.token_store.store_tokens(token)
        return token

    async def logout(self) -> None:
        await self.token_store.clear_tokens()
        logging.info("👋 Logged out")

    async def is_authenticated(self) -> bool:
        return await self.token_store.has_valid_token()

    async def get_access_token(self) -> str | None:
        return await self.token_store.get_access_token()

    async def get_token_info(self) -> dict[str, Any] | None:
        return await self.token_store.get_token_info()

    async def validate_current_token(self) -> bool:
        token = await self.token_store.get_access_token()
        if token is None:
            return False
        return await self.flow.validate_token(token)


__all__ = ["AuthManager"]

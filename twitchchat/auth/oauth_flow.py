"""OAuth2 authorization-code flow against id.twitch.tv."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Mapping
from urllib.parse import quote, urlencode

import aiohttp
from tenacity import wait_exponential
from tenacity.wait import wait_base

from ..constants import (
    AUTH_CALLBACK_TIMEOUT_SECONDS,
    HTTP_REQUEST_TIMEOUT_SECONDS,
    REQUIRED_CHAT_SCOPES,
    TOKEN_REQUEST_MAX_ATTEMPTS,
    TWITCH_AUTHORIZE_URL,
    TWITCH_TOKEN_URL,
    TWITCH_VALIDATE_URL,
)
from ..errors.handling import retry_network_errors
from ..errors.internal import APIError, AuthenticationError, ChatConnectionError
from ..logging_config import token_preview
from .callback_server import AuthorizationTransport, LocalCallbackTransport
from .models import TokenData, TwitchConfig

TransportFactory = Callable[[TwitchConfig], AuthorizationTransport]


def _default_transport_factory(config: TwitchConfig) -> AuthorizationTransport:
    return LocalCallbackTransport(config.redirect_uri)


class OAuthFlow:
    """Runs the authorization-code grant and the token endpoint calls.

    Attributes:
        config: OAuth application settings.
        callback_timeout: Seconds to wait for the browser redirect.
        max_attempts: Token endpoint attempts on network failure.
        retry_wait: tenacity wait strategy between those attempts.
    """

    def __init__(
        self,
        config: TwitchConfig,
        http_session: aiohttp.ClientSession | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self.config = config
        self._session = http_session
        self._owns_session = http_session is None
        self._transport_factory = transport_factory or _default_transport_factory
        self.callback_timeout = AUTH_CALLBACK_TIMEOUT_SECONDS
        self.max_attempts = TOKEN_REQUEST_MAX_ATTEMPTS
        self.retry_wait: wait_base = wait_exponential(multiplier=1, max=10)
        self.last_validated_scopes: list[str] = []

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None if self._owns_session else self._session

    def build_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.config.scopes),
            "state": state,
        }
        return f"{TWITCH_AUTHORIZE_URL}?{urlencode(params, quote_via=quote)}"

    async def start_flow(self) -> TokenData:
        """Run the browser authorization and exchange the returned code.

        Raises:
            AuthenticationError: Callback error, timeout or state mismatch.
            APIError: Token endpoint rejected the code.
            ChatConnectionError: Token endpoint unreachable after retries.
        """
        state = secrets.token_urlsafe(24)
        url = self.build_auth_url(state)
        transport = self._transport_factory(self.config)
        logging.info("🔑 Starting Twitch authorization")
        try:
            await transport.open_authorization_url(url)
            result = await transport.await_callback(self.callback_timeout)
        except TimeoutError as e:
            raise AuthenticationError(
                "Authorization timed out. Please try again.",
                f"No OAuth callback within {self.callback_timeout}s",
            ) from e
        finally:
            await transport.close()
        if not secrets.compare_digest(result.state.encode(), state.encode()):
            logging.error("❌ OAuth state mismatch, rejecting callback")
            raise AuthenticationError(
                "Authorization failed due to a security check. Please try again.",
                "OAuth state mismatch (possible CSRF)",
            )
        return await self.exchange_code_for_tokens(result.code)

    async def exchange_code_for_tokens(self, code: str) -> TokenData:
        form = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.config.redirect_uri,
        }
        token = await self._request_tokens(form, "token exchange")
        logging.info(f"✅ Authorization complete token={token_preview(token.access_token)}")
        return token

    async def refresh_access_token(self, refresh_token: str) -> TokenData:
        """Refresh; the previous refresh token is kept if Twitch omits a new one."""
        form = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        token = await self._request_tokens(
            form, "token refresh", fallback_refresh_token=refresh_token
        )
        logging.info(
            f"🔄 Token refreshed (lifetime {token.expires_in}s) token={token_preview(token.access_token)}"
        )
        return token

    async def _request_tokens(
        self,
        form: Mapping[str, str],
        context: str,
        fallback_refresh_token: str | None = None,
    ) -> TokenData:
        async def _once() -> TokenData:
            session = await self._get_session()
            timeout = aiohttp.ClientTimeout(total=HTTP_REQUEST_TIMEOUT_SECONDS)
            try:
                async with session.post(TWITCH_TOKEN_URL, data=dict(form), timeout=timeout) as resp:
                    if 200 <= resp.status < 300:
                        try:
                            payload = await resp.json()
                            return TokenData.from_token_response(
                                payload, fallback_refresh_token=fallback_refresh_token
                            )
                        except (aiohttp.ContentTypeError, ValueError, AttributeError) as e:
                            raise APIError(
                                "Received an invalid response from Twitch.",
                                resp.status,
                                f"{context}: unusable token response: {e}",
                            ) from e
                    body = await resp.text()
                    logging.warning(f"❌ {context} failed (status={resp.status})")
                    raise APIError(
                        status_code=resp.status,
                        technical_message=f"{context} failed: HTTP {resp.status} {body[:300]}",
                        data={"status": resp.status, "body": body},
                    )
            except TimeoutError as e:
                raise ChatConnectionError(
                    technical_message=f"{context} timed out", retryable=True
                ) from e
            except aiohttp.ClientError as e:
                raise ChatConnectionError(
                    technical_message=f"Network error during {context}: {e}",
                    retryable=True,
                ) from e

        return await retry_network_errors(
            _once, context, max_attempts=self.max_attempts, wait=self.retry_wait
        )

    async def validate_token(self, access_token: str) -> bool:
        """Remote validation; ``True`` only for HTTP 200. Network errors give ``False``."""
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=HTTP_REQUEST_TIMEOUT_SECONDS)
        headers = {"Authorization": f"OAuth {access_token}"}
        try:
            async with session.get(TWITCH_VALIDATE_URL, headers=headers, timeout=timeout) as resp:
                if resp.status != 200:
                    logging.info(f"❌ Token validation failed (status={resp.status})")
                    return False
                try:
                    data = await resp.json()
                except (aiohttp.ContentTypeError, ValueError):
                    data = {}
        except TimeoutError:
            logging.warning("⏱️ Token validation timeout")
            return False
        except aiohttp.ClientError as e:
            logging.warning(f"💥 Network error during token validation: {type(e).__name__}")
            return False
        scopes = list(data.get("scopes") or []) if isinstance(data, dict) else []
        self.last_validated_scopes = scopes
        has_chat_scopes = set(REQUIRED_CHAT_SCOPES).issubset(scopes)
        logging.debug(
            f"Token valid login={data.get('login') if isinstance(data, dict) else None} "
            f"expires_in={data.get('expires_in') if isinstance(data, dict) else None} "
            f"chat_scopes={has_chat_scopes}"
        )
        if not has_chat_scopes:
            logging.warning(f"⚠️ Token lacks chat scopes (has: {' '.join(scopes) or 'none'})")
        return True


__all__ = ["OAuthFlow"]

"""Chat client facade combining authentication and the IRC session."""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime

from .auth.auth_manager import AuthManager
from .auth.models import ConfigValidation
from .auth.token_store import TokenStore
from .config import ConfigProvider
from .errors.handling import ErrorHandler
from .errors.internal import (
    AuthenticationError,
    ChannelError,
    ChatClientError,
    ChatConnectionError,
    ConfigurationError,
)
from .events import EventEmitter, Subscription
from .irc.connection_manager import IRCConnectionManager
from .irc.models import ChatMessage, ConnectionState, IRCMessage, UserType
from .irc.parser import normalize_channel, parse_privmsg
from .logs.logger import logger


class TwitchChatClient:
    """The one object an application talks to.

    Expected failures never raise out of ``connect_to_channel`` or
    ``send_message``: they return ``False`` and are reported through
    ``error_handler.on_error``.

    Attributes:
        on_chat_message: Every chat message, remote or sent by this client.
        on_connection_state_change: ``ConnectionState`` transitions.
        on_notification: Short informational texts for the user.
    """

    def __init__(
        self,
        config_provider: ConfigProvider,
        *,
        auth_manager: AuthManager | None = None,
        connection: IRCConnectionManager | None = None,
        error_handler: ErrorHandler | None = None,
        token_store: TokenStore | None = None,
    ) -> None:
        self.config_provider = config_provider
        self.auth = auth_manager or AuthManager(config_provider, token_store)
        self.connection = connection or IRCConnectionManager()
        self.error_handler = error_handler or ErrorHandler()

        self.on_chat_message: EventEmitter[ChatMessage] = EventEmitter("chat_message")
        self.on_connection_state_change: EventEmitter[ConnectionState] = EventEmitter(
            "connection_state"
        )
        self.on_notification: EventEmitter[str] = EventEmitter("notification")

        self._current_channel: str | None = None
        self._subscriptions: list[Subscription] = [
            self.connection.on_message.subscribe(self._handle_irc_message),
            self.connection.on_state_change.subscribe(self._handle_state_change),
            self.connection.on_state_change.subscribe(self._refresh_before_reconnect),
            self.connection.on_error.subscribe(self._handle_connection_error),
        ]

    # --- accessors ------------------------------------------------------

    @property
    def current_channel(self) -> str | None:
        return self._current_channel

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    def is_connected(self) -> bool:
        return self.connection.is_connected()

    async def is_authenticated(self) -> bool:
        return await self.auth.is_authenticated()

    # --- authentication ---------------------------------------------------

    async def authenticate(self) -> bool:
        validation = self.auth.validate_config()
        if not validation.is_valid:
            self.error_handler.handle_error(_configuration_error(validation), "authenticate")
            return False
        result = await self.auth.authenticate()
        if not result.success:
            self.error_handler.handle_error(
                AuthenticationError(result.error), "authenticate"
            )
            return False
        self._notify("Authenticated with Twitch.")
        return True

    async def logout(self) -> None:
        await self.disconnect()
        await self.auth.logout()
        self._notify("Logged out.")

    # --- channels ---------------------------------------------------------

    async def connect_to_channel(self, channel: str) -> bool:
        try:
            name = normalize_channel(channel)[1:]
        except ValueError:
            self.error_handler.handle_error(
                ChannelError(channel, "Please enter a channel name."), "connect"
            )
            return False

        if self.connection.is_connected() and self._current_channel == name:
            self._notify(f"Already connected to #{name}.")
            return True

        if self.connection.is_connected() and self._current_channel is not None:
            try:
                await self.connection.switch_to_channel(name)
            except ChatClientError as e:
                logger.log_event(
                    "chat", "switch_fallback", level=logging.WARNING,
                    user=self.connection.username, channel=name,
                    error=e.technical_message,
                )
                await self.connection.disconnect()
                self._current_channel = None
            else:
                self._current_channel = name
                self._notify(f"Switched to #{name}.")
                return True

        try:
            await self._open_and_join(name)
        except ChatClientError as e:
            self.error_handler.handle_error(e, f"connect to #{name}")
            return False
        self._current_channel = name
        self._notify(f"Connected to #{name}.")
        return True

    async def _open_and_join(self, name: str) -> None:
        if not self.connection.is_connected():
            validation = self.auth.validate_config(include_username=True)
            if not validation.is_valid:
                raise _configuration_error(validation)
            username = self.config_provider.get_username()
            if not username:
                raise ConfigurationError(["username"])

            token = await self._ensure_access_token()
            if not await self.auth.validate_current_token():
                logging.info("🔄 Stored token rejected by Twitch, refreshing once")
                token = await self._refresh_or_reauthenticate()

            try:
                await self.connection.connect(token, username)
            except AuthenticationError:
                logging.info("🔄 Chat login rejected, refreshing token and retrying once")
                token = await self._refresh_or_reauthenticate()
                await self.connection.connect(token, username)
        await self.connection.join_channel(name)

    async def _ensure_access_token(self) -> str:
        token = await self.auth.get_access_token()
        if token is not None:
            return token
        result = await self.auth.authenticate()
        if not result.success or result.token is None:
            raise AuthenticationError(result.error)
        return result.token.access_token

    async def _refresh_or_reauthenticate(self) -> str:
        try:
            token = (await self.auth.refresh_token()).access_token
        except ChatClientError as e:
            logging.warning(f"⚠️ Token refresh failed: {e.technical_message}")
            result = await self.auth.authenticate()
            if not result.success or result.token is None:
                raise AuthenticationError(result.error) from e
            token = result.token.access_token
        self.connection.update_token(token)
        return token

    async def send_message(self, text: str) -> bool:
        channel = self._current_channel
        if not self.connection.is_connected() or channel is None:
            self.error_handler.handle_error(
                ChatConnectionError(
                    "Not connected to a chat channel.",
                    f"send_message in state {self.connection.state.value}",
                    retryable=False,
                ),
                "send message",
            )
            return False
        try:
            await self.connection.send_message(channel, text)
        except ChatClientError as e:
            self.error_handler.handle_error(e, "send message")
            return False
        self.on_chat_message.emit(self._self_message(channel, text))
        return True

    def _self_message(self, channel: str, text: str) -> ChatMessage:
        username = self.connection.username or self.config_provider.get_username() or "unknown"
        logger.log_event("chat", "self_message", level=logging.DEBUG, user=username, channel=channel)
        return ChatMessage(
            id=f"self-{secrets.token_hex(8)}",
            channel=channel,
            username=username,
            display_name=username,
            message=text,
            timestamp=datetime.now(UTC),
            user_type=UserType.BROADCASTER if username == channel else UserType.VIEWER,
            is_self=True,
        )

    async def disconnect(self) -> None:
        was_active = self.connection.state is not ConnectionState.DISCONNECTED
        await self.connection.disconnect()
        self._current_channel = None
        if was_active:
            self._notify("Disconnected from chat.")

    async def close(self) -> None:
        await self.disconnect()
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions.clear()
        await self.auth.close()

    # --- connection events ----------------------------------------------------

    def _handle_irc_message(self, msg: IRCMessage) -> None:
        chat = parse_privmsg(msg)
        if chat is not None:
            logger.log_event(
                "chat", "message_received", level=logging.DEBUG,
                user=chat.username, channel=chat.channel,
            )
            self.on_chat_message.emit(chat)

    def _handle_state_change(self, state: ConnectionState) -> None:
        self.on_connection_state_change.emit(state)

    async def _refresh_before_reconnect(self, state: ConnectionState) -> None:
        # Reconnects reuse the session token; swap in a fresh one if it expired.
        if state is not ConnectionState.RECONNECTING:
            return
        if await self.auth.get_access_token() is not None:
            return
        try:
            token = await self.auth.refresh_token()
            self.connection.update_token(token.access_token)
        except ChatClientError as e:
            self.error_handler.handle_error(e, "refresh token for reconnect")

    def _handle_connection_error(self, error: ChatClientError) -> None:
        self.error_handler.handle_error(error, "chat connection")


def _configuration_error(validation: ConfigValidation) -> ConfigurationError:
    if validation.missing_fields:
        return ConfigurationError(
            validation.missing_fields,
            technical_message="; ".join(validation.errors) or None,
        )
    return ConfigurationError(
        [],
        f"Configuration invalid: {'; '.join(validation.errors)}",
    )


__all__ = ["TwitchChatClient"]

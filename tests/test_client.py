"""
Tests for the TwitchChatClient facade (real connection manager over fake transports).
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from twitchchat.auth.auth_manager import AuthManager
from twitchchat.auth.models import TokenData, TwitchConfig
from twitchchat.auth.token_store import TokenStore
from twitchchat.client import TwitchChatClient
from twitchchat.config import StaticConfigProvider
from twitchchat.errors.internal import ChatConnectionError, ConfigurationError, MessageError
from twitchchat.irc.connection_manager import IRCConnectionManager
from twitchchat.irc.models import ConnectionState, UserType
from tests.fixtures.fakes import AUTH_FAILED, FakeTransport, TransportFactory, settle, wait_until
from tests.fixtures.irc_lines import MOD_PRIVMSG

CONFIG = TwitchConfig(
    client_id="abcdefghijklmnop",
    client_secret="supersecretvalue",
    redirect_uri="http://localhost:7777/auth/callback",
)


def _token(access: str = "stored_access", age: timedelta = timedelta()) -> TokenData:
    return TokenData(
        access_token=access,
        refresh_token="refresh",
        expires_in=3600,
        issued_at=datetime.now(UTC) - age,
    )


class TestTwitchChatClient:
    def setup_method(self):
        self.flow = Mock()
        self.flow.start_flow = AsyncMock(return_value=_token("from_flow"))
        self.flow.refresh_access_token = AsyncMock(return_value=_token("refreshed"))
        self.flow.validate_token = AsyncMock(return_value=True)
        self.flow.close = AsyncMock()
        self.store = TokenStore()
        self.notifications: list[str] = []
        self.messages = []
        self.reports = []

    def _client(self, *transports, username: str | None = "testuser", config=CONFIG):
        self.factory = TransportFactory(*transports)
        provider = StaticConfigProvider(config, username)
        auth = AuthManager(provider, self.store, flow_factory=lambda _cfg: self.flow)
        client = TwitchChatClient(
            provider, auth_manager=auth, connection=IRCConnectionManager(self.factory)
        )
        client.on_notification.subscribe(self.notifications.append)
        client.on_chat_message.subscribe(self.messages.append)
        client.error_handler.subscribe(self.reports.append)
        return client

    @pytest.mark.asyncio
    async def test_connect_joins_channel(self):
        await self.store.store_tokens(_token())
        client = self._client()

        assert await client.connect_to_channel("#Chan") is True

        transport = self.factory.opened[0]
        assert "PASS oauth:stored_access\r\nNICK testuser\r\n" in transport.sent
        assert transport.sent[-1] == "JOIN #chan\r\n"
        assert client.current_channel == "chan"
        assert client.connection_state is ConnectionState.CONNECTED
        assert self.notifications[-1] == "Connected to #chan."
        await client.close()

    @pytest.mark.asyncio
    async def test_same_channel_only_notifies(self):
        await self.store.store_tokens(_token())
        client = self._client()
        await client.connect_to_channel("chan")

        assert await client.connect_to_channel("#CHAN") is True

        assert self.factory.calls == 1
        assert self.factory.opened[0].sent.count("JOIN #chan\r\n") == 1
        assert self.notifications[-1] == "Already connected to #chan."
        await client.close()

    @pytest.mark.asyncio
    async def test_other_channel_switches_on_same_transport(self):
        await self.store.store_tokens(_token())
        client = self._client()
        await client.connect_to_channel("chan")

        assert await client.connect_to_channel("other") is True

        transport = self.factory.opened[0]
        assert transport.sent[-2:] == ["PART #chan\r\n", "JOIN #other\r\n"]
        assert self.factory.calls == 1
        assert client.connection.joined_channels == ("other",)
        assert self.notifications[-1] == "Switched to #other."
        await client.close()

    @pytest.mark.asyncio
    async def test_failed_switch_falls_back_to_full_connect(self):
        await self.store.store_tokens(_token())
        client = self._client()
        await client.connect_to_channel("chan")
        first = self.factory.opened[0]
        first.fail_sends = True

        assert await client.connect_to_channel("other") is True

        assert first.closed
        assert self.factory.calls == 2
        second = self.factory.opened[1]
        assert second.sent[-1] == "JOIN #other\r\n"
        assert client.connection.joined_channels == ("other",)
        assert client.current_channel == "other"
        await client.close()

    @pytest.mark.asyncio
    async def test_rejected_login_refreshes_and_retries_once(self):
        await self.store.store_tokens(_token())
        rejecting = FakeTransport(auto_welcome=False)
        rejecting.feed(AUTH_FAILED)
        client = self._client(rejecting)

        assert await client.connect_to_channel("chan") is True

        self.flow.refresh_access_token.assert_awaited_once_with("refresh")
        assert self.factory.calls == 2
        assert "PASS oauth:refreshed\r\nNICK testuser\r\n" in self.factory.opened[1].sent
        await client.close()

    @pytest.mark.asyncio
    async def test_remotely_invalid_token_is_refreshed_before_connect(self):
        await self.store.store_tokens(_token())
        self.flow.validate_token = AsyncMock(return_value=False)
        client = self._client()

        assert await client.connect_to_channel("chan") is True

        self.flow.refresh_access_token.assert_awaited_once()
        assert "PASS oauth:refreshed\r\nNICK testuser\r\n" in self.factory.opened[0].sent
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_token_runs_authorization_flow(self):
        client = self._client()

        assert await client.connect_to_channel("chan") is True

        self.flow.start_flow.assert_awaited_once()
        assert "PASS oauth:from_flow\r\nNICK testuser\r\n" in self.factory.opened[0].sent
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_username_is_configuration_error(self):
        client = self._client(username=None)

        assert await client.connect_to_channel("chan") is False

        assert self.factory.calls == 0
        assert isinstance(self.reports[-1].error, ConfigurationError)
        assert "username" in self.reports[-1].error.missing_fields

    @pytest.mark.asyncio
    async def test_empty_channel_is_rejected(self):
        client = self._client()

        assert await client.connect_to_channel(" # ") is False
        assert self.factory.calls == 0
        assert self.reports

    @pytest.mark.asyncio
    async def test_transport_failure_returns_false(self):
        await self.store.store_tokens(_token())
        client = self._client(OSError("refused"))

        assert await client.connect_to_channel("chan") is False

        assert client.connection_state is ConnectionState.DISCONNECTED
        assert isinstance(self.reports[-1].error, ChatConnectionError)
        assert self.reports[-1].severity == "warning"

    @pytest.mark.asyncio
    async def test_incoming_privmsg_is_emitted(self):
        await self.store.store_tokens(_token())
        client = self._client()
        await client.connect_to_channel("chan")

        self.factory.opened[0].feed(MOD_PRIVMSG + "\r\n")
        await wait_until(lambda: self.messages)

        assert self.messages[0].username == "mod"
        assert self.messages[0].user_type is UserType.MODERATOR
        await client.close()

    @pytest.mark.asyncio
    async def test_send_message_emits_self_message(self):
        await self.store.store_tokens(_token())
        client = self._client()
        await client.connect_to_channel("chan")

        assert await client.send_message("hello there") is True

        assert self.factory.opened[0].sent[-1] == "PRIVMSG #chan :hello there\r\n"
        own = self.messages[-1]
        assert own.is_self
        assert own.username == "testuser"
        assert own.message == "hello there"
        assert own.user_type is UserType.VIEWER
        await client.close()

    @pytest.mark.asyncio
    async def test_self_message_in_own_channel_is_broadcaster(self):
        await self.store.store_tokens(_token())
        client = self._client()
        await client.connect_to_channel("testuser")

        await client.send_message("hi")

        assert self.messages[-1].user_type is UserType.BROADCASTER
        await client.close()

    @pytest.mark.asyncio
    async def test_send_while_disconnected_returns_false(self):
        client = self._client()

        assert await client.send_message("hi") is False

        assert self.messages == []
        assert isinstance(self.reports[-1].error, ChatConnectionError)

    @pytest.mark.asyncio
    async def test_invalid_text_is_reported(self):
        await self.store.store_tokens(_token())
        client = self._client()
        await client.connect_to_channel("chan")

        assert await client.send_message("two\nlines") is False

        assert isinstance(self.reports[-1].error, MessageError)
        await client.close()

    @pytest.mark.asyncio
    async def test_state_changes_are_forwarded(self):
        await self.store.store_tokens(_token())
        client = self._client()
        states = []
        client.on_connection_state_change.subscribe(states.append)

        await client.connect_to_channel("chan")
        await client.disconnect()

        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.AUTHENTICATING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        ]
        assert client.current_channel is None
        assert self.notifications[-1] == "Disconnected from chat."

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_when_reconnecting(self):
        await self.store.store_tokens(_token("old", age=timedelta(hours=2)))
        client = self._client()

        client.connection.on_state_change.emit(ConnectionState.RECONNECTING)
        await wait_until(lambda: self.flow.refresh_access_token.await_count == 1)
        await settle()

        assert client.connection._token == "refreshed"

    @pytest.mark.asyncio
    async def test_authenticate_reports_invalid_config(self):
        client = self._client(config=TwitchConfig(redirect_uri=""))

        assert await client.authenticate() is False

        assert isinstance(self.reports[-1].error, ConfigurationError)
        self.flow.start_flow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_logout_clears_tokens(self):
        await self.store.store_tokens(_token())
        client = self._client()
        await client.connect_to_channel("chan")

        await client.logout()

        assert not await client.is_authenticated()
        assert client.connection_state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close_releases_subscriptions(self):
        client = self._client()

        await client.close()

        assert len(client.connection.on_message) == 0
        assert len(client.connection.on_state_change) == 0
        self.flow.close.assert_awaited_once()

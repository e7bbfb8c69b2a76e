"""
Tests for the OAuth authorization-code flow and token endpoint calls.
"""

from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import aiohttp
import pytest
from tenacity import wait_none

from twitchchat.auth.models import TwitchConfig
from twitchchat.auth.oauth_flow import OAuthFlow
from twitchchat.errors.internal import APIError, AuthenticationError, ChatConnectionError
from tests.fixtures.api_responses import (
    INVALID_GRANT_BODY,
    TOKEN_RESPONSE,
    TOKEN_RESPONSE_NO_REFRESH,
    VALIDATE_RESPONSE,
    VALIDATE_RESPONSE_NO_CHAT,
)
from tests.fixtures.fakes import FakeAuthorizationTransport, FakeSession, _Resp

CONFIG = TwitchConfig(
    client_id="abcdefghijklmnop",
    client_secret="supersecretvalue",
    redirect_uri="http://localhost:7777/auth/callback",
)


def _flow(session: FakeSession, transport: FakeAuthorizationTransport | None = None) -> OAuthFlow:
    flow = OAuthFlow(
        CONFIG,
        http_session=session,
        transport_factory=lambda _cfg: transport or FakeAuthorizationTransport(),
    )
    flow.retry_wait = wait_none()
    return flow


class TestBuildAuthUrl:
    def test_contains_all_parameters(self):
        flow = _flow(FakeSession())
        url = flow.build_auth_url("xyz")
        parts = urlsplit(url)
        query = parse_qs(parts.query)

        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://id.twitch.tv/oauth2/authorize"
        assert query["client_id"] == ["abcdefghijklmnop"]
        assert query["redirect_uri"] == ["http://localhost:7777/auth/callback"]
        assert query["response_type"] == ["code"]
        assert query["scope"] == ["chat:read chat:edit"]
        assert query["state"] == ["xyz"]

    def test_scopes_are_percent_encoded(self):
        url = _flow(FakeSession()).build_auth_url("s")
        assert "scope=chat%3Aread%20chat%3Aedit" in url


class TestStartFlow:
    @pytest.mark.asyncio
    async def test_success_exchanges_code(self):
        session = FakeSession(posts=[_Resp(200, TOKEN_RESPONSE)])
        transport = FakeAuthorizationTransport(code="abc123")

        token = await _flow(session, transport).start_flow()

        assert token.access_token == TOKEN_RESPONSE["access_token"]
        assert transport.closed
        form = session.post_calls[0]["data"]
        assert form["code"] == "abc123"
        assert form["grant_type"] == "authorization_code"
        assert form["redirect_uri"] == CONFIG.redirect_uri
        assert form["client_secret"] == CONFIG.client_secret

    @pytest.mark.asyncio
    async def test_each_flow_uses_a_fresh_state(self):
        urls = []

        class _Recording(FakeAuthorizationTransport):
            async def open_authorization_url(self, url):
                urls.append(url)
                await super().open_authorization_url(url)

        session = FakeSession(posts=[_Resp(200, TOKEN_RESPONSE), _Resp(200, TOKEN_RESPONSE)])
        flow = OAuthFlow(CONFIG, http_session=session, transport_factory=lambda _c: _Recording())
        await flow.start_flow()
        await flow.start_flow()

        states = [parse_qs(urlsplit(u).query)["state"][0] for u in urls]
        assert states[0] != states[1]

    @pytest.mark.asyncio
    async def test_state_mismatch_is_rejected(self):
        session = FakeSession()
        transport = FakeAuthorizationTransport(state="forged")

        with pytest.raises(AuthenticationError) as exc_info:
            await _flow(session, transport).start_flow()

        assert "state mismatch" in exc_info.value.technical_message
        assert session.post_calls == []
        assert transport.closed

    @pytest.mark.asyncio
    async def test_non_ascii_state_is_rejected_as_mismatch(self):
        session = FakeSession()
        transport = FakeAuthorizationTransport(state="évil")

        with pytest.raises(AuthenticationError) as exc_info:
            await _flow(session, transport).start_flow()

        assert "state mismatch" in exc_info.value.technical_message
        assert session.post_calls == []

    @pytest.mark.asyncio
    async def test_callback_error_propagates_and_closes(self):
        transport = FakeAuthorizationTransport(
            error=AuthenticationError("Authorization was denied: access_denied")
        )

        with pytest.raises(AuthenticationError):
            await _flow(FakeSession(), transport).start_flow()

        assert transport.closed

    @pytest.mark.asyncio
    async def test_timeout_becomes_authentication_error(self):
        transport = FakeAuthorizationTransport(error=TimeoutError())

        with pytest.raises(AuthenticationError) as exc_info:
            await _flow(FakeSession(), transport).start_flow()

        assert "timed out" in exc_info.value.user_message
        assert transport.closed


class TestTokenEndpoint:
    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token_when_omitted(self):
        session = FakeSession(posts=[_Resp(200, TOKEN_RESPONSE_NO_REFRESH)])

        token = await _flow(session).refresh_access_token("old_refresh")

        assert token.access_token == "refreshed_access_token_1"
        assert token.refresh_token == "old_refresh"
        assert token.expires_at == token.issued_at + timedelta(seconds=14400)
        form = session.post_calls[0]["data"]
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "old_refresh"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_api_error_with_body(self):
        session = FakeSession(posts=[_Resp(400, text=INVALID_GRANT_BODY)])

        with pytest.raises(APIError) as exc_info:
            await _flow(session).exchange_code_for_tokens("bad")

        err = exc_info.value
        assert err.status_code == 400
        assert not err.rate_limited
        assert err.data["body"] == INVALID_GRANT_BODY
        assert len(session.post_calls) == 1

    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self):
        session = FakeSession(posts=[_Resp(429, text="slow down")])

        with pytest.raises(APIError) as exc_info:
            await _flow(session).refresh_access_token("r")

        assert exc_info.value.rate_limited
        assert "rate limit" in exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self):
        session = FakeSession(
            posts=[
                aiohttp.ClientConnectionError("reset"),
                _Resp(200, TOKEN_RESPONSE),
            ]
        )

        token = await _flow(session).exchange_code_for_tokens("code")

        assert token.refresh_token == TOKEN_RESPONSE["refresh_token"]
        assert len(session.post_calls) == 2

    @pytest.mark.asyncio
    async def test_network_errors_surface_after_max_attempts(self):
        session = FakeSession(posts=[aiohttp.ClientConnectionError("down")] * 3)

        with pytest.raises(ChatConnectionError) as exc_info:
            await _flow(session).exchange_code_for_tokens("code")

        assert exc_info.value.retryable
        assert len(session.post_calls) == 3

    @pytest.mark.asyncio
    async def test_missing_access_token_is_api_error(self):
        session = FakeSession(posts=[_Resp(200, {"expires_in": 10})])

        with pytest.raises(APIError):
            await _flow(session).exchange_code_for_tokens("code")


class TestValidateToken:
    @pytest.mark.asyncio
    async def test_valid_token(self):
        session = FakeSession(gets=[_Resp(200, VALIDATE_RESPONSE)])
        flow = _flow(session)

        assert await flow.validate_token("tok") is True
        assert session.get_calls[0]["headers"] == {"Authorization": "OAuth tok"}
        assert flow.last_validated_scopes == ["chat:read", "chat:edit"]

    @pytest.mark.asyncio
    async def test_missing_chat_scopes_is_still_valid(self):
        session = FakeSession(gets=[_Resp(200, VALIDATE_RESPONSE_NO_CHAT)])

        assert await _flow(session).validate_token("tok") is True

    @pytest.mark.asyncio
    async def test_invalid_token(self):
        session = FakeSession(gets=[_Resp(401, {"status": 401})])

        assert await _flow(session).validate_token("tok") is False

    @pytest.mark.asyncio
    async def test_network_error_is_false(self):
        session = FakeSession(gets=[aiohttp.ClientConnectionError("down")])

        assert await _flow(session).validate_token("tok") is False


@pytest.mark.asyncio
async def test_close_leaves_injected_session_open():
    session = FakeSession()
    flow = _flow(session)
    await flow.close()
    assert session.closed is False

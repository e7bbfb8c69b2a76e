from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from twitchchat.auth.models import ConfigValidation
from twitchchat.irc.models import ChatMessage
from twitchchat.main import build_parser, format_chat_line, main, run


def _client(connected: bool = True) -> MagicMock:
    client = MagicMock()
    client.auth.validate_config.return_value = ConfigValidation(is_valid=True)
    client.connect_to_channel = AsyncMock(return_value=connected)
    client.send_message = AsyncMock(return_value=True)
    client.close = AsyncMock()
    return client


def test_format_chat_line():
    message = ChatMessage(
        id="1",
        channel="chan",
        username="bob",
        display_name="Bob",
        message="hi",
        timestamp=datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC),
        is_self=True,
    )
    line = format_chat_line(message)
    assert line.endswith("*[#chan] Bob: hi")


def test_parser_requires_channel():
    assert build_parser().parse_args(["#chan"]).channel == "#chan"
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


@pytest.mark.asyncio
async def test_main_connect_failure_returns_1():
    client = _client(connected=False)

    assert await main("chan", client) == 1

    client.connect_to_channel.assert_awaited_once_with("chan")
    client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_main_sends_stdin_lines():
    client = _client()
    stdin = MagicMock()
    stdin.readline.side_effect = ["hello\n", "\n", "bye\n", ""]

    with patch("twitchchat.main.sys.stdin", stdin):
        assert await main("chan", client) == 0

    assert [c.args[0] for c in client.send_message.await_args_list] == ["hello", "bye"]
    client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_main_logs_invalid_config(caplog):
    client = _client(connected=False)
    client.auth.validate_config.return_value = ConfigValidation(
        is_valid=False, missing_fields=["client_id"]
    )

    await main("chan", client)

    assert "client_id" in caplog.text


def test_run_exit_code():
    with patch("twitchchat.main.LoggerConfigurator"), \
         patch("twitchchat.main.main", new=MagicMock(return_value="coro")), \
         patch("twitchchat.main.asyncio.run", return_value=1):
        with pytest.raises(SystemExit) as exc_info:
            run(["chan"])
    assert exc_info.value.code == 1


def test_run_keyboard_interrupt_exits_cleanly():
    with patch("twitchchat.main.LoggerConfigurator"), \
         patch("twitchchat.main.main", new=MagicMock(return_value="coro")), \
         patch("twitchchat.main.asyncio.run", side_effect=KeyboardInterrupt):
        with pytest.raises(SystemExit) as exc_info:
            run(["chan"])
    assert exc_info.value.code == 0


def test_run_unexpected_error_exits_1():
    with patch("twitchchat.main.LoggerConfigurator"), \
         patch("twitchchat.main.main", new=MagicMock(return_value="coro")), \
         patch("twitchchat.main.asyncio.run", side_effect=RuntimeError("boom")), \
         patch("twitchchat.main.log_error") as mock_log_error:
        with pytest.raises(SystemExit) as exc_info:
            run(["chan"])
    assert exc_info.value.code == 1
    mock_log_error.assert_called_once()

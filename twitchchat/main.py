#!/usr/bin/env python3
"""
Command line entry point: print a Twitch channel's chat to the terminal.

Usage: ``python -m twitchchat <channel>``. Lines typed on stdin are sent
to the channel.
"""

import argparse
import asyncio
import logging
import sys

from .client import TwitchChatClient
from .config import EnvConfigProvider
from .errors.handling import ErrorReport, log_error
from .irc.models import ChatMessage
from .logging_config import LoggerConfigurator
from .logs.logger import logger


def format_chat_line(message: ChatMessage) -> str:
    stamp = message.timestamp.astimezone().strftime("%H:%M:%S")
    marker = "*" if message.is_self else " "
    return f"{stamp}{marker}[#{message.channel}] {message.display_name}: {message.message}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="twitchchat", description="Read and write Twitch chat from the terminal."
    )
    parser.add_argument("channel", help="channel to join, with or without '#'")
    return parser


async def _pump_stdin(client: TwitchChatClient) -> None:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        text = line.rstrip("\n")
        if text:
            await client.send_message(text)


async def main(channel: str, client: TwitchChatClient | None = None) -> int:
    """Run the client until stdin closes or the process is interrupted.

    Returns:
        Process exit code.
    """
    logger.log_event("app", "start", channel=channel.lstrip("#").lower())
    client = client or TwitchChatClient(EnvConfigProvider())
    validation = client.auth.validate_config(include_username=True)
    if not validation.is_valid:
        logger.log_event(
            "app", "config_invalid", level=logging.ERROR,
            missing=", ".join(validation.missing_fields + validation.errors),
        )
    client.on_chat_message.subscribe(lambda m: print(format_chat_line(m), flush=True))
    client.on_notification.subscribe(lambda text: logging.info(f"ℹ️ {text}"))

    def _report(report: ErrorReport) -> None:
        print(f"! {report.user_message}", file=sys.stderr, flush=True)

    client.error_handler.subscribe(_report)
    try:
        if not await client.connect_to_channel(channel):
            return 1
        await _pump_stdin(client)
        return 0
    finally:
        logger.log_event("app", "shutdown")
        await client.close()
        logging.info("✅ Application shutdown complete")


def run(argv: list[str] | None = None) -> None:
    """Synchronous entry point used by ``python -m twitchchat``."""
    args = build_parser().parse_args(argv)
    LoggerConfigurator().configure()
    try:
        code = asyncio.run(main(args.channel))
    except KeyboardInterrupt:
        sys.exit(0)
    except asyncio.CancelledError:
        sys.exit(0)
    except Exception as e:
        log_error("Top-level error", e)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    run()

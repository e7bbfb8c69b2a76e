r"""
Logging configuration module for the Twitch chat client.

Provides a configurable logging setup using the colorlog library together
with a structured error logging helper shared by the error handler.
"""

import logging
import os
import sys
from typing import Any

import colorlog


class TokenRedactionFilter(logging.Filter):
    """Filter that masks OAuth secrets echoed back in raw IRC lines."""

    def filter(self, record):
        """Rewrite ``PASS oauth:...`` fragments; never drops the record."""
        message = record.getMessage()
        if "PASS oauth:" in message:
            record.msg = redact_secrets(message)
            record.args = None
        return True


def redact_secrets(text: str) -> str:
    """Replace the token part of ``PASS oauth:<token>`` with asterisks."""
    marker = "PASS oauth:"
    start = text.find(marker)
    while start != -1:
        token_start = start + len(marker)
        token_end = token_start
        while token_end < len(text) and not text[token_end].isspace():
            token_end += 1
        text = f"{text[:token_start]}***{text[token_end:]}"
        start = text.find(marker, token_start + 3)
    return text


def token_preview(token: str | None, visible: int = 8) -> str:
    """Short, log-safe representation of a secret."""
    if not token:
        return "NOT SET"
    return f"{token[:visible]}..."


def log_structured_error(
    error_type: str,
    message: str,
    exception: Exception | None = None,
    context: dict[str, Any] | None = None,
    level: int = logging.ERROR,
) -> None:
    """Log an error with structured context.

    Produces a single line of the form
    ``[TYPE] message | Exception: Name: text | Context: k=v | k=v``.

    Args:
        error_type: Category of the error (e.g., 'network', 'auth', 'config')
        message: Descriptive error message
        exception: The exception that occurred (optional)
        context: Additional context data for debugging
        level: Logging level (default: ERROR)
    """
    structured_message = f"[{error_type.upper()}] {message}"

    if exception:
        structured_message += f" | Exception: {type(exception).__name__}: {str(exception)}"

    if context:
        context_str = " | ".join(f"{k}={v}" for k, v in context.items())
        structured_message += f" | Context: {context_str}"

    logging.log(level, structured_message)


class LoggerConfigurator:
    """Handles logging configuration cleanly using colorlog.

    Supports environment variable configuration for log levels.
    """

    def __init__(self, config=None):
        """Initialize the configurator.

        Args:
            config: Optional config dict for future extensibility.
        """
        self.config = config or {}

    def configure(self):
        """Configure logging with colored output using colorlog.

        Uses environment variables:
        - DEBUG: Set to 'true', '1', or 'yes' for DEBUG level, otherwise INFO
        """
        debug_env = os.environ.get("DEBUG", "").lower()
        log_level = logging.DEBUG if debug_env in ("true", "1", "yes") else logging.INFO

        formatter = colorlog.ColoredFormatter(
            "%(asctime)s %(log_color)s%(levelname)-8s%(reset)s %(message_log_color)s%(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "magenta",
            },
            secondary_log_colors={
                "message": {
                    "ERROR": "red",
                    "CRITICAL": "magenta",
                }
            },
            reset=True,
        )

        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        handler.addFilter(TokenRedactionFilter())

        logging.basicConfig(
            level=log_level,
            handlers=[handler],
            format="%(message)s",
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)

        # Suppress websockets / aiohttp access debug chatter
        logging.getLogger("websockets").setLevel(logging.INFO)
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

        for h in root_logger.handlers:
            h.setFormatter(formatter)
            h.addFilter(TokenRedactionFilter())
        return root_logger

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from ..events import EventEmitter, Subscription
from ..logging_config import log_structured_error
from .internal import (
    APIError,
    AuthenticationError,
    ChannelError,
    ChatClientError,
    ChatConnectionError,
    ConfigurationError,
    MessageError,
)

T = TypeVar("T")

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


@dataclass(frozen=True)
class ErrorReport:
    """What observers of ``ErrorHandler.on_error`` receive."""

    user_message: str
    technical_message: str
    severity: str
    context: str
    error: Exception


def error_type_for(error: Exception) -> str:
    """Short category used as the structured log prefix."""
    if isinstance(error, AuthenticationError):
        return "auth"
    if isinstance(error, ChatConnectionError | OSError | ConnectionError):
        return "network"
    if isinstance(error, APIError):
        return "ratelimit" if error.rate_limited else "api"
    if isinstance(error, ChannelError):
        return "channel"
    if isinstance(error, ConfigurationError):
        return "config"
    if isinstance(error, MessageError):
        return "message"
    return "internal"


def severity_for(error: Exception) -> str:
    if isinstance(error, ChatConnectionError) and error.retryable:
        return SEVERITY_WARNING
    if isinstance(error, APIError) and error.rate_limited:
        return SEVERITY_WARNING
    return SEVERITY_ERROR


def log_error(message: str, error: Exception, context: dict | None = None) -> None:
    """Log an error message with the associated exception details.

    Args:
        message: A descriptive message about the error context.
        error: The exception instance to be logged.
        context: Optional additional context data for debugging.
    """
    severity = severity_for(error)
    log_structured_error(
        error_type=error_type_for(error),
        message=message,
        exception=error,
        context=context,
        level=logging.WARNING if severity == SEVERITY_WARNING else logging.ERROR,
    )


class ErrorHandler:
    """Turns exceptions into logged, user-presentable ``ErrorReport`` events.

    One instance is created by the application and injected wherever errors
    must reach the user (chat client facade).
    """

    def __init__(self) -> None:
        self.on_error: EventEmitter[ErrorReport] = EventEmitter("error")
        self.last_report: ErrorReport | None = None

    def subscribe(self, handler: Callable[[ErrorReport], Any]) -> Subscription:
        return self.on_error.subscribe(handler)

    def handle_error(
        self,
        error: Exception,
        context: str = "",
        extra: Mapping[str, object] | None = None,
    ) -> ErrorReport:
        if isinstance(error, ChatClientError):
            user_message = error.user_message
            technical_message = error.technical_message
            details: dict[str, object] = dict(error.data)
        else:
            user_message = ChatClientError.default_message
            technical_message = str(error) or type(error).__name__
            details = {}
        if extra:
            details.update(extra)
        if context:
            details.setdefault("operation", context)
        log_error(
            f"{context}: {technical_message}" if context else technical_message,
            error,
            context=details or None,
        )
        report = ErrorReport(
            user_message=user_message,
            technical_message=technical_message,
            severity=severity_for(error),
            context=context,
            error=error,
        )
        self.last_report = report
        self.on_error.emit(report)
        return report


async def with_error_handling(
    operation: Callable[[], Awaitable[T]],
    context: str,
    handler: ErrorHandler,
    fallback: T | None = None,
) -> T | None:
    """Run ``operation``; on failure report through ``handler`` and return ``fallback``."""
    try:
        return await operation()
    except Exception as e:  # noqa: BLE001
        handler.handle_error(e, context)
        return fallback


def is_retryable_error(error: BaseException) -> bool:
    """Check if an exception should trigger a retry."""
    return isinstance(error, ChatConnectionError) and error.retryable


async def retry_network_errors(
    operation: Callable[[], Awaitable[T]],
    context: str,
    max_attempts: int = 3,
    wait: wait_base | None = None,
) -> T:
    """Retry ``operation`` on retryable ``ChatConnectionError`` using tenacity.

    Other exceptions propagate immediately. After the last attempt the final
    exception is re-raised unchanged.
    """

    def before_retry(retry_state: RetryCallState) -> None:
        if retry_state.attempt_number > 1:
            logging.info(f"🔄 Retrying {context} (attempt {retry_state.attempt_number})")

    def after_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            exc = outcome.exception()
            if isinstance(exc, Exception):
                log_error(
                    f"Attempt {retry_state.attempt_number} failed for {context}",
                    exc,
                    context={"retry_attempt": retry_state.attempt_number},
                )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait if wait is not None else wait_exponential(multiplier=1, max=10),
        retry=retry_if_exception(is_retryable_error),
        before=before_retry,
        after=after_retry,
        reraise=True,
    )
    return await retrying(operation)


__all__ = [
    "ErrorHandler",
    "ErrorReport",
    "SEVERITY_ERROR",
    "SEVERITY_WARNING",
    "error_type_for",
    "is_retryable_error",
    "log_error",
    "retry_network_errors",
    "severity_for",
    "with_error_handling",
]

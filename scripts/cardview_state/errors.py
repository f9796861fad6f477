"""Error handling and retry policy for record persistence.

Failures are normalized into ErrorInfo objects, mapped to short user-facing
messages per category, logged, and optionally surfaced through a host notice
callback. ``with_retry`` retries transient failures with exponential backoff
and gives up immediately on permanent ones (permission denials, corruption).

There is no process-wide error log: each ErrorReporter owns its own bounded
ErrorLog so separate stores never share history.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
import traceback
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ERROR_LOG_SIZE: int = 100
MAX_DETAILS_LEN: int = 10_000
NOTICE_PREFIX: str = "Card View Explorer"
CIRCULAR_PLACEHOLDER: str = "[Object with circular reference]"
UNEXPECTED_ERROR_MESSAGE: str = "An unexpected error occurred"

Notifier = Callable[[str, int], None]


class ErrorCategory(str, enum.Enum):
    """Error categories used to pick user copy and notification behavior."""

    API = "api"  # host communication (storage, metadata)
    DATA = "data"  # validation and persistence
    UI = "ui"  # presentation; the view layer shows its own errors
    GENERAL = "general"


@dataclass
class ErrorInfo:
    """Normalized error report. Produced for logging, never persisted.

    Attributes:
        message: User-facing message.
        details: Technical details (traceback, serialized payload).
        category: Error category.
        timestamp: Milliseconds since the epoch.
        context: Extra debugging context supplied by the caller.
    """

    message: str
    details: Optional[str]
    category: ErrorCategory
    timestamp: int
    context: Optional[dict[str, Any]] = None


@dataclass
class ErrorConfig:
    """Per-call error handling behavior."""

    show_notifications: bool = True
    log_to_console: bool = True
    notification_duration_ms: int = 5000


@dataclass
class RetryOptions:
    """Exponential backoff settings for ``with_retry``.

    Attributes:
        max_retries: Retries after the first attempt.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for any single delay, in seconds.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0


class ErrorLog:
    """Bounded, newest-first history of handled errors."""

    def __init__(self, max_size: int = MAX_ERROR_LOG_SIZE) -> None:
        self._entries: deque[ErrorInfo] = deque(maxlen=max_size)

    def add(self, info: ErrorInfo) -> None:
        self._entries.appendleft(info)

    def recent(self, limit: int = 10) -> list[ErrorInfo]:
        return list(self._entries)[:limit]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _truncate(text: str) -> str:
    return text[:MAX_DETAILS_LEN]


def extract_error_info(error: Any) -> tuple[str, Optional[str]]:
    """Extract a technical message and details from any raised value.

    Handles exceptions, plain strings and arbitrary structured values. A value
    that cannot be serialized (circular references, foreign objects) gets a
    fixed placeholder as its details instead of raising.

    Args:
        error: The value to describe.

    Returns:
        A ``(message, details)`` tuple; details may be None.
    """
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        details = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
        if error.__cause__ is not None:
            details += f"\nCaused by: {error.__cause__!r}"
        return message, _truncate(details)

    if isinstance(error, str):
        return _truncate(error), None

    if error is None or isinstance(error, (bool, int, float)):
        return UNEXPECTED_ERROR_MESSAGE, None

    try:
        if isinstance(error, Mapping):
            raw_message = error.get("message")
        else:
            raw_message = getattr(error, "message", None)
    except Exception:
        raw_message = None
    message = str(raw_message) if raw_message else "Unknown error"

    try:
        details = json.dumps(error)
    except (TypeError, ValueError, RecursionError):
        details = CIRCULAR_PLACEHOLDER
    return message, _truncate(details)


def get_user_friendly_message(message: str, category: ErrorCategory) -> str:
    """Map a technical message to short user-facing copy for its category."""
    lower_message = message.lower()

    if category is ErrorCategory.API:
        if "vault" in lower_message or "storage" in lower_message:
            return "Failed to access storage. Please ensure the host application is running properly."
        if "metadata" in lower_message:
            return "Failed to read note metadata. Some notes may not display correctly."
        return "Failed to communicate with the host application. Please try refreshing."

    if category is ErrorCategory.DATA:
        if "corrupt" in lower_message:
            return "Data corruption detected. Attempting to recover from backup."
        if "invalid" in lower_message or "validation" in lower_message:
            return "Invalid data detected. Your previous settings were kept."
        return "Data processing failed. Please try refreshing your notes."

    if category is ErrorCategory.UI:
        return "Interface error occurred. Please try refreshing the view."

    return message


def is_retryable(message: str) -> bool:
    """Return False for permanent failures that retrying cannot fix."""
    lower_message = message.lower()
    if "permission" in lower_message and "denied" in lower_message:
        return False
    if "corrupt" in lower_message:
        return False
    return True


def _is_transient(error: BaseException) -> bool:
    # Cancellation and interpreter exits are never retried
    if not isinstance(error, Exception):
        return False
    message, _ = extract_error_info(error)
    return is_retryable(message)


def handle_error(
    error: Any,
    category: ErrorCategory = ErrorCategory.GENERAL,
    context: Optional[dict[str, Any]] = None,
    config: Optional[ErrorConfig] = None,
    *,
    error_log: Optional[ErrorLog] = None,
    notifier: Optional[Notifier] = None,
) -> ErrorInfo:
    """Normalize, log and optionally surface an error.

    Args:
        error: The raised value (exception, string or structured value).
        category: Category used for user copy and notification rules.
        context: Extra debugging context.
        config: Overrides for logging and notification behavior.
        error_log: History to record the error in, if any.
        notifier: Host callback ``(text, duration_ms)`` for transient notices.

    Returns:
        The normalized ErrorInfo.
    """
    final_config = config or ErrorConfig()
    message, details = extract_error_info(error)

    info = ErrorInfo(
        message=get_user_friendly_message(message, category),
        details=details,
        category=category,
        timestamp=_now_ms(),
        context=context,
    )

    if error_log is not None:
        error_log.add(info)

    if final_config.log_to_console:
        logger.error(
            "%s error [%s]: %s",
            NOTICE_PREFIX,
            category.value,
            info.message,
            extra={"error_context": context, "error_details": details},
        )

    # UI errors are rendered by the view layer itself
    if (
        final_config.show_notifications
        and notifier is not None
        and category is not ErrorCategory.UI
    ):
        notifier(f"{NOTICE_PREFIX}: {info.message}", final_config.notification_duration_ms)

    return info


@dataclass
class ErrorReporter:
    """Error handler bound to one error history and one notice callback."""

    error_log: ErrorLog = field(default_factory=ErrorLog)
    notifier: Optional[Notifier] = None
    config: ErrorConfig = field(default_factory=ErrorConfig)

    def handle_error(
        self,
        error: Any,
        category: ErrorCategory = ErrorCategory.GENERAL,
        context: Optional[dict[str, Any]] = None,
        config: Optional[ErrorConfig] = None,
    ) -> ErrorInfo:
        return handle_error(
            error,
            category,
            context,
            config or self.config,
            error_log=self.error_log,
            notifier=self.notifier,
        )

    def recent_errors(self, limit: int = 10) -> list[ErrorInfo]:
        return self.error_log.recent(limit)

    def clear_errors(self) -> None:
        self.error_log.clear()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run an async operation, retrying transient failures with backoff.

    The delay after failed attempt ``n`` (0-based) is
    ``min(base_delay * 2**n, max_delay)``. Permanent failures stop the loop
    at once. There is no cancellation hook; race the call against a deadline
    if one is needed.

    Args:
        operation: Zero-argument coroutine function to run.
        options: Retry limits, defaults to RetryOptions().
        sleep: Awaitable delay function, injectable for tests.

    Returns:
        The operation's result.

    Raises:
        Exception: The last failure, unchanged, once retries are exhausted or
            the failure is permanent.
    """
    opts = options or RetryOptions()
    max_retries = max(opts.max_retries, 0)

    def log_retry(state: RetryCallState) -> None:
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            "%s: Retry attempt %d/%d after %.0fms",
            NOTICE_PREFIX,
            state.attempt_number,
            max_retries,
            delay * 1000,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=opts.base_delay, max=opts.max_delay),
        retry=retry_if_exception(_is_transient),
        before_sleep=log_retry,
        sleep=sleep,
        reraise=True,
    )
    return await retrying(operation)


def safe_sync(
    operation: Callable[[], T],
    fallback: T,
    category: ErrorCategory = ErrorCategory.GENERAL,
    context: Optional[dict[str, Any]] = None,
    *,
    reporter: Optional[ErrorReporter] = None,
) -> T:
    """Run a synchronous callable, reporting failures and returning a fallback."""
    try:
        return operation()
    except Exception as e:
        (reporter or ErrorReporter()).handle_error(e, category, context)
        return fallback

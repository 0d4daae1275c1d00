"""Error taxonomy and retry logic for clip-gate.

Provides:
- The gate failure taxonomy (hard policy, correctable, uncorrectable, toolchain)
- Toolchain errors raised by the media toolkit and inference clients
- Async retry with exponential backoff for inference calls
- Display formatting for the CLI
"""

from __future__ import annotations

import asyncio
import functools
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from clip_gate.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ErrorCategory(str, Enum):
    """Categories of errors for handling decisions."""

    HARD_POLICY = "hard_policy"  # Gate 4/7 - terminal, alert operator
    CORRECTABLE = "correctable"  # Gate 1/3/6 with a remedy
    UNCORRECTABLE = "uncorrectable"  # No remedy, or remedy re-check failed
    TOOLCHAIN = "toolchain"  # Media toolkit or inference failure
    RATE_LIMIT = "rate_limit"  # API rate limit - wait and retry
    PROMPT_BLOCKED = "prompt_blocked"  # Stage A rejection before generation
    CANCELLED = "cancelled"  # Operator abort
    CONFIGURATION = "configuration"  # Bad config - don't retry
    INTERNAL = "internal"  # Bug in code - don't retry


class ClipGateError(Exception):
    """Base exception for clip-gate errors.

    Attributes:
        message: Human-readable error message
        category: Error category for handling
        context: Additional context information
        recoverable: Whether the error is recoverable
    """

    category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        context: dict | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} (context: {self.context})"
        return self.message


class HardPolicyViolation(ClipGateError):
    """A hard gate (content policy or disclosure) rejected the clip.

    The content should not be attempted again with a similar prompt.
    """

    category = ErrorCategory.HARD_POLICY

    def __init__(self, message: str, gate_index: int, context: dict | None = None):
        super().__init__(message, {"gate": gate_index, **(context or {})}, recoverable=False)
        self.gate_index = gate_index


class CorrectableQuality(ClipGateError):
    """A soft gate failed with a defined corrective action."""

    category = ErrorCategory.CORRECTABLE

    def __init__(self, message: str, gate_index: int, action: str, context: dict | None = None):
        super().__init__(
            message,
            {"gate": gate_index, "action": action, **(context or {})},
            recoverable=True,
        )
        self.gate_index = gate_index
        self.action = action


class UncorrectableQuality(ClipGateError):
    """A soft gate failed with no remedy, or the retry budget ran out.

    A human should inspect the scene; the content itself is not unsafe.
    """

    category = ErrorCategory.UNCORRECTABLE

    def __init__(self, message: str, gate_index: int | None = None, context: dict | None = None):
        ctx = dict(context or {})
        if gate_index is not None:
            ctx["gate"] = gate_index
        super().__init__(message, ctx, recoverable=False)
        self.gate_index = gate_index


class PromptBlockedError(ClipGateError):
    """Stage A rejected the prompt before any generation cost was incurred."""

    category = ErrorCategory.PROMPT_BLOCKED

    def __init__(self, message: str, blocked_terms: set[str] | frozenset[str]):
        super().__init__(message, {"blocked_terms": sorted(blocked_terms)}, recoverable=False)
        self.blocked_terms = frozenset(blocked_terms)


class ProductionCancelled(ClipGateError):
    """A production attempt was aborted between gates."""

    category = ErrorCategory.CANCELLED


class ConfigurationError(ClipGateError):
    """Configuration error.

    Examples: missing API key, missing overlay template, bad threshold file.
    """

    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message, context, recoverable=False)


class ToolchainError(ClipGateError):
    """Media toolkit or inference service failure."""

    category = ErrorCategory.TOOLCHAIN

    def __init__(self, message: str, context: dict | None = None, recoverable: bool = True):
        super().__init__(message, context, recoverable=recoverable)


class MediaToolkitError(ToolchainError):
    """A media toolkit operation failed.

    Attributes:
        command: The command that failed, when one was run
        stderr: Standard error output from the command
    """

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        stderr: str | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, context, recoverable=False)
        self.command = command
        self.stderr = stderr


class ToolkitTimeoutError(MediaToolkitError):
    """A media toolkit subprocess exceeded its timeout and was killed."""

    def __init__(self, message: str, timeout: float, command: list[str] | None = None):
        super().__init__(message, command=command, context={"timeout": timeout})
        self.timeout = timeout


class InferenceError(ToolchainError):
    """The vision inference service returned an error."""


class InferenceTimeoutError(InferenceError):
    """The vision inference call did not complete within its timeout."""

    def __init__(self, message: str, timeout: float):
        super().__init__(message, {"timeout": timeout}, recoverable=False)
        self.timeout = timeout


class RateLimitError(InferenceError):
    """API rate limit exceeded.

    Attributes:
        retry_after: Seconds to wait before retrying
    """

    category = ErrorCategory.RATE_LIMIT

    def __init__(
        self,
        message: str,
        retry_after: float = 60.0,
        context: dict | None = None,
    ):
        super().__init__(message, context, recoverable=True)
        self.retry_after = retry_after



# Substrings of SDK error text that indicate a transient upstream problem.
TRANSIENT_MARKERS = (
    "connection reset",
    "connection refused",
    "temporarily unavailable",
    "service unavailable",
    "overloaded",
    "502",
    "503",
    "504",
    "529",
)


@dataclass
class RetryConfig:
    """Backoff settings for inference calls.

    Attributes:
        max_attempts: Total tries including the first
        initial_delay: Wait before the second try, in seconds
        max_delay: Upper bound on any single wait, rate-limit waits included
        exponential_base: Growth factor between waits
        jitter: Spread waits by up to 25% either way
        retryable_errors: Error types retried when marked recoverable
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_errors: tuple = (RateLimitError, InferenceError)


def calculate_delay(
    attempt: int,
    config: RetryConfig,
    rate_limit_delay: float | None = None,
) -> float:
    """Seconds to wait after failed ``attempt`` (1-indexed).

    A server-provided rate-limit delay replaces the exponential schedule.
    """
    if rate_limit_delay is None:
        delay = config.initial_delay * config.exponential_base ** (attempt - 1)
    else:
        delay = rate_limit_delay
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay = max(0.1, delay * random.uniform(0.75, 1.25))
    return delay


def is_retryable(error: Exception, config: RetryConfig) -> bool:
    """Whether another attempt could succeed.

    Timeouts are never retried: the caller's time for this gate is spent.
    """
    if isinstance(error, (InferenceTimeoutError, asyncio.TimeoutError)):
        return False
    if isinstance(error, config.retryable_errors):
        return error.recoverable
    if isinstance(error, ClipGateError):
        return False

    text = str(error).lower()
    return any(marker in text for marker in TRANSIENT_MARKERS)


def retry_with_backoff(
    config: RetryConfig | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorate a coroutine function so transient failures are retried.

    Waits use ``asyncio.sleep`` so other scenes keep running. The last error
    is re-raised once attempts run out or a non-retryable error appears.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable(e, config):
                        raise
                    if attempt >= config.max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {attempt} attempts",
                            extra={"error": str(e), "attempts": attempt},
                        )
                        raise
                    retry_after = e.retry_after if isinstance(e, RateLimitError) else None
                    delay = calculate_delay(attempt, config, retry_after)
                    logger.info(
                        f"Retrying {func.__name__} in {delay:.1f}s ({attempt}/{config.max_attempts})",
                        extra={"error": str(e), "error_type": type(e).__name__, "delay": round(delay, 2)},
                    )
                await asyncio.sleep(delay)

        return wrapper

    return decorator


def _retry_after_seconds(error: Exception) -> float | None:
    """Read a Retry-After hint from an SDK error, if it carries one."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        value = headers.get("retry-after")
        if value is not None:
            try:
                return float(value)
            except ValueError:
                return None
    value = getattr(error, "retry_after", None)
    return float(value) if value is not None else None


def wrap_external_error(error: Exception, service: str, operation: str) -> InferenceError:
    """Convert an inference SDK exception into the toolchain taxonomy.

    Args:
        error: Exception raised by the SDK
        service: Provider name, for the message and context
        operation: What was being called

    Returns:
        RateLimitError for HTTP 429 or rate-limit text, otherwise InferenceError
    """
    context = {"service": service, "operation": operation}
    status = getattr(error, "status_code", None)
    text = str(error).lower()

    if status == 429 or "rate limit" in text or "rate_limit" in text or "429" in text:
        return RateLimitError(
            f"Rate limit exceeded for {service}: {operation}",
            retry_after=_retry_after_seconds(error) or 60.0,
            context=context,
        )
    if status is not None:
        context["status_code"] = status
    return InferenceError(f"Error from {service}: {operation} - {error}", context=context)


def format_error_for_display(error: Exception) -> str:
    """One-line rendering for the CLI: ``[category] message (key=value, ...)``."""
    if not isinstance(error, ClipGateError):
        return f"[error] {type(error).__name__}: {error}"

    line = f"[{error.category.value}] {error.message}"
    if error.context:
        line += " (" + ", ".join(f"{k}={v}" for k, v in error.context.items()) + ")"
    return line

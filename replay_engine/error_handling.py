"""
Error taxonomy and reliability utilities for the replay engine.
Includes custom exceptions, deadlines, retry mechanisms and error kind mapping.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable, Optional
from functools import wraps
from dataclasses import dataclass


# Custom exceptions, one per failure class the executor reports
class ReplayEngineError(Exception):
    """Base exception for replay engine errors."""
    error_kind = "error"

class NotFoundError(ReplayEngineError):
    """Something required for the operation does not exist."""
    error_kind = "not_found"

class ElementNotFoundError(NotFoundError):
    """No fallback strategy matched a live element."""
    pass

class NoActivePageError(NotFoundError):
    """The browser has no active page to operate on."""
    pass

class ResolutionTimeoutError(ReplayEngineError):
    """A wait or resolution step exceeded its deadline."""
    error_kind = "timeout"

class PreconditionFailedError(ReplayEngineError):
    """Element found but not visible or enabled in time."""
    error_kind = "precondition_failed"

class ExecutionFailedError(ReplayEngineError):
    """The underlying browser action call itself failed."""
    error_kind = "execution_failed"

class PartialExtractionError(ReplayEngineError):
    """One element of a multi-element extraction failed."""
    error_kind = "partial_extraction"

    def __init__(self, message: str, index: int = -1):
        super().__init__(message)
        self.index = index

class BrowserConnectionError(ReplayEngineError):
    """Browser connection or initialization failed."""
    error_kind = "browser_connection"

class NavigationError(ReplayEngineError):
    """Navigation to URL failed."""
    error_kind = "navigation_failed"

class PageLoadError(NavigationError):
    """Page failed to load within timeout."""
    error_kind = "page_load_timeout"

class RecordingStateError(ReplayEngineError):
    """Recorder was started twice or stopped while idle."""
    error_kind = "recording_state"

class ScriptPlaybackError(ReplayEngineError):
    """Script playback was aborted."""
    error_kind = "playback_failed"


@dataclass
class RetryConfig:
    """Exponential backoff settings; delays are in seconds."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True

    def get_delay(self, attempt: int) -> float:
        """Pause before retry number ``attempt + 1``, capped and jittered by up to 25%."""
        backoff = min(self.base_delay * self.exponential_base ** attempt, self.max_delay)
        if self.jitter:
            spread = backoff / 4
            backoff += random.uniform(-spread, spread)
        return max(0.0, backoff)


def with_async_retry(
    retry_config: Optional[RetryConfig] = None,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    logger: Optional[logging.Logger] = None
):
    """
    Retry a coroutine function on the given exception types.

    The last exception is re-raised once ``max_attempts`` calls have failed;
    exceptions outside ``exceptions`` propagate immediately.

    Args:
        retry_config: Backoff settings, defaults to RetryConfig()
        exceptions: Exception types that trigger another attempt
        logger: Where attempt failures are reported
    """
    config = retry_config or RetryConfig()
    log = logger or logging.getLogger(__name__)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    attempt += 1
                    if attempt >= config.max_attempts:
                        log.error(f"{func.__name__} gave up after {attempt} attempts: {e}")
                        raise
                    delay = config.get_delay(attempt - 1)
                    log.warning(f"{func.__name__} attempt {attempt}/{config.max_attempts} failed: {e} (retrying in {delay:.2f}s)")
                    await asyncio.sleep(delay)

        return wrapper
    return decorator


class Deadline:
    """
    Monotonic time budget shared by every nested step of one operation.

    A single Deadline is created per operation and handed down to resolution,
    precondition waits and the action call, so that no step can spend more
    than what is left of the caller's budget.
    """

    def __init__(self, timeout: float, operation_name: str = "operation"):
        self.timeout = timeout
        self.operation_name = operation_name
        self.start_time = time.monotonic()
        self.expires_at = self.start_time + timeout

    def remaining(self) -> float:
        """Seconds left before the deadline, never negative."""
        return max(0.0, self.expires_at - time.monotonic())

    def remaining_ms(self) -> float:
        """Milliseconds left, in the unit Playwright timeouts expect."""
        return self.remaining() * 1000

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    @property
    def elapsed(self) -> float:
        """Get elapsed time since the deadline was created."""
        return time.monotonic() - self.start_time

    def check(self) -> None:
        """Raise ResolutionTimeoutError if the budget is exhausted."""
        if self.expired:
            raise ResolutionTimeoutError(
                f"{self.operation_name} exceeded timeout of {self.timeout}s (took {self.elapsed:.2f}s)"
            )


def error_kind_of(error: BaseException) -> str:
    """Map any exception to the error_kind string used in results."""
    if isinstance(error, ReplayEngineError):
        return error.error_kind
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ResolutionTimeoutError.error_kind
    return ExecutionFailedError.error_kind

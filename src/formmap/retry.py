# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Retry with exponential backoff, for the connection boundary only.

Parsing and extraction failures are never retried; they either recover
locally or surface as a typed error.  ``is_retryable_error`` is the
default classification:

- never retried: cancellation, authentication, permission denial,
  validation, session expiry
- retried: timeout, connection, socket, network failures, and protocol
  errors whose message reads as transient
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from . import errors
from .abort import AbortSignal, error_from_signal, sleep
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Immutable backoff parameters (seconds)."""

    max_attempts: int = 1  # retries after the first attempt
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: bool = True  # adds up to 30% of the computed delay

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {self.max_attempts}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.max_delay < self.initial_delay:
            raise ValueError(f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})")
        if self.backoff_multiplier < 1:
            raise ValueError(f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}")

    def delay_for(self, retry_index: int, *, rng: Callable[[], float] = random.random) -> float:
        """Delay before retry number *retry_index* (0-based), capped, plus jitter."""
        base = min(self.initial_delay * (self.backoff_multiplier**retry_index), self.max_delay)
        if self.jitter:
            base += rng() * base * 0.3
        return base


# ── Retry error classification ───────────────────────────────────────

_NEVER_RETRY: tuple[type[errors.FormMapError], ...] = (
    errors.AbortedError,
    errors.AuthenticationError,
    errors.PermissionDeniedError,
    errors.ValidationError,
    errors.SessionExpiredError,
)

_ALWAYS_RETRY: tuple[type[errors.FormMapError], ...] = (
    errors.TimeoutError,
    errors.ConnectionError,
    errors.WebSocketConnectionError,
    errors.NetworkError,
)

_TRANSIENT_PROTOCOL_PATTERNS = ("connection", "timeout", "network", "refused", "reset", "closed")


def is_retryable_error(error: errors.FormMapError) -> bool:
    """Determine if *error* is transient and safe to retry."""
    if isinstance(error, _NEVER_RETRY):
        return False
    if isinstance(error, _ALWAYS_RETRY):
        return True
    if isinstance(error, errors.ProtocolError):
        msg = error.message.lower()
        return any(p in msg for p in _TRANSIENT_PROTOCOL_PATTERNS)
    return False


# ── Retry loop ───────────────────────────────────────────────────────


async def retry_with_backoff(
    fn: Callable[[], Awaitable[Result[T, errors.FormMapError]]],
    policy: RetryPolicy | None = None,
    *,
    is_retryable: Callable[[errors.FormMapError], bool] = is_retryable_error,
    signal: AbortSignal | None = None,
    on_retry: Callable[[errors.FormMapError, int, float], None] | None = None,
) -> Result[T, errors.FormMapError]:
    """Run *fn* until it succeeds, fails permanently, or attempts run out.

    Performs at most ``policy.max_attempts + 1`` calls.  The backoff wait
    observes *signal* and ends the loop as soon as it fires.  *on_retry*
    receives the error, the 1-based number of the retry about to happen and
    the chosen delay.
    """
    policy = policy or RetryPolicy()

    if signal is not None and signal.aborted:
        return Err(error_from_signal(signal, "operation (before start)"))

    last_error: errors.FormMapError | None = None
    for attempt in range(policy.max_attempts + 1):
        if signal is not None and signal.aborted:
            exc = error_from_signal(signal, "operation (during retry)")
            exc.context.update(attempt=attempt, last_error=last_error.message if last_error else None)
            return Err(exc)

        result = await fn()
        if isinstance(result, Ok):
            if attempt > 0:
                logger.info("Operation succeeded after %d retr%s", attempt, "y" if attempt == 1 else "ies")
            return result

        last_error = result.error
        if attempt == policy.max_attempts:
            logger.warning(
                "Operation failed after %d attempt(s): %s",
                attempt + 1,
                last_error.describe() if isinstance(last_error, errors.FormMapError) else last_error,
            )
            return result

        if not is_retryable(last_error):
            logger.debug("Not retryable (%s), giving up", type(last_error).__name__)
            return result

        delay = policy.delay_for(attempt)
        if on_retry is not None:
            on_retry(last_error, attempt + 1, delay)
        logger.debug("Retry %d/%d in %.3fs: %s", attempt + 1, policy.max_attempts, delay, last_error.message)

        waited = await sleep(delay, signal)
        if isinstance(waited, Err):
            return waited

    raise errors.UnreachableError("retry loop exited without a result", value=policy.max_attempts)

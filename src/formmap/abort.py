# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cancellation signals for asyncio: caller abort OR deadline.

An ``AbortSignal`` fires at most once and remembers *why* it fired.  A
deadline stores a ``DeadlineExceeded`` reason; anything else counts as an
external cancellation.  That distinction survives composition, so callers
can report "timed out" and "cancelled" differently::

    signal = compose_with_timeout(parent, 2.5)
    try:
        ...
    finally:
        signal.close()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from . import errors
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeadlineExceeded:
    """Abort reason recorded when a deadline fires."""

    timeout: float

    def __str__(self) -> str:
        return f"deadline of {self.timeout:g}s exceeded"


class AbortSignal:
    """One-shot cancellation flag with listeners."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Any = None
        self._listeners: list[Callable[[AbortSignal], None]] = []
        self._cleanups: list[Callable[[], None]] = []

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Any:
        return self._reason

    def _fire(self, reason: Any) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener(self)
            except Exception:
                logger.exception("Abort listener failed")
        self.close()

    def add_listener(self, listener: Callable[[AbortSignal], None]) -> Callable[[], None]:
        """Call *listener* once when the signal fires.  Returns a remover.

        Registering on an already-aborted signal calls *listener* immediately.
        """
        if self.aborted:
            listener(self)
            return lambda: None
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def wait(self) -> Any:
        await self._event.wait()
        return self._reason

    def close(self) -> None:
        """Release timers and parent subscriptions.  Idempotent."""
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            cleanup()

    # -- Factories --

    @classmethod
    def timeout(cls, delay: float) -> AbortSignal:
        """A signal that fires with ``DeadlineExceeded(delay)`` after *delay* seconds."""
        signal = cls()
        handle = asyncio.get_running_loop().call_later(delay, signal._fire, DeadlineExceeded(delay))
        signal._cleanups.append(handle.cancel)
        return signal

    @classmethod
    def any(cls, signals: Iterable[AbortSignal]) -> AbortSignal:
        """A signal that fires with the reason of whichever input fires first."""
        composed = cls()
        for source in signals:
            if source.aborted:
                composed._fire(source.reason)
                return composed
        for source in signals:
            remove = source.add_listener(lambda s: composed._fire(s.reason))
            composed._cleanups.append(remove)
        return composed


class AbortController:
    """Owner side of an AbortSignal."""

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: Any = "aborted") -> None:
        self.signal._fire(reason)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def compose_with_timeout(parent: AbortSignal | None, timeout: float) -> AbortSignal:
    """Abort when *parent* aborts OR *timeout* seconds elapse."""
    deadline = AbortSignal.timeout(timeout)
    if parent is None:
        return deadline
    composed = AbortSignal.any([parent, deadline])
    if composed.aborted:
        deadline.close()
    else:
        composed._cleanups.append(deadline.close)
    return composed


def is_timeout_reason(reason: Any) -> bool:
    return isinstance(reason, DeadlineExceeded)


def was_externally_aborted(signal: AbortSignal | None) -> bool:
    """True when *signal* fired for any reason other than a deadline."""
    if signal is None or not signal.aborted:
        return False
    return not is_timeout_reason(signal.reason)


def error_from_signal(signal: AbortSignal, operation: str = "operation") -> errors.FormMapError:
    """TimeoutError for a deadline, AbortedError for everything else."""
    reason = signal.reason
    if is_timeout_reason(reason):
        return errors.TimeoutError(
            f"{operation} timed out after {reason.timeout:g}s",
            context={"timeout": reason.timeout},
        )
    return errors.AbortedError(f"{operation} was cancelled", context={"reason": str(reason)})


async def sleep(delay: float, signal: AbortSignal | None = None) -> Result[None, errors.FormMapError]:
    """Interruptible sleep: ``Err`` as soon as *signal* fires."""
    if signal is None:
        await asyncio.sleep(delay)
        return Ok(None)
    if signal.aborted:
        return Err(error_from_signal(signal, "sleep"))
    try:
        await asyncio.wait_for(signal.wait(), timeout=delay)
    except TimeoutError:
        return Ok(None)
    return Err(error_from_signal(signal, "sleep"))

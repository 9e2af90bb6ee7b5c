# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Correlates synchronous and pushed handlers with outstanding requests.

A response can arrive in pieces: part of it with the RPC result, the rest as
later pushes.  Callers therefore register a wait *before* sending::

    wait = accumulator.wait_for_handlers(has_form_to_show)
    await transport.send(request)
    result = await wait          # Ok(data) | Err(TimeoutError | AbortedError)

Each wait owns an append-only list holding every handler delivered since it
was registered, in arrival order.  After each delivery the wait's predicate
sees the whole list and returns ``Match(matched, data)``.

Deliveries are synchronous and run on the session's event loop, so they are
processed strictly in call order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Generator, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from . import errors
from .abort import AbortSignal, compose_with_timeout, error_from_signal
from .decoder import DecodedEnvelope, decode_envelope
from .handlers import Handler, extract_session_info, parse_handler
from .result import Err, Ok, Result
from .timeouts import TimeoutsConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Match(Generic[T]):
    """Predicate outcome; *data* becomes the wait's ``Ok`` value."""

    matched: bool
    data: T | None = None


NO_MATCH: Match[Any] = Match(False)

Predicate = Callable[[Sequence[Any]], Match[T]]
Listener = Callable[[Handler], None]


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


@dataclass
class SessionState:
    """What the server has told us about the session.  Read-only for callers."""

    server_session_id: str | None = None
    session_key: str | None = None
    company_name: str | None = None
    role_center_form_id: str | None = None
    open_form_ids: tuple[str, ...] = ()
    sequence_number: int | None = None  # last server sequence number seen

    def apply_envelope(self, envelope: DecodedEnvelope) -> None:
        seq = envelope.sequence_number
        if seq is not None:
            if self.sequence_number is None or seq > self.sequence_number:
                self.sequence_number = seq
            else:
                logger.debug("Out-of-order sequence number %d (last %d)", seq, self.sequence_number)
        if envelope.open_form_ids is not None:
            self.open_form_ids = envelope.open_form_ids

    def apply_handlers(self, raw_handlers: Sequence[Any]) -> None:
        info = extract_session_info(raw_handlers)
        if info is None:
            return
        for attr in ("server_session_id", "session_key", "company_name", "role_center_form_id"):
            value = getattr(info, attr)
            if value is not None:
                setattr(self, attr, value)


# ---------------------------------------------------------------------------
# Wait handle
# ---------------------------------------------------------------------------


class HandlerWait(Generic[T]):
    """One registered wait.  Await it for the ``Result``."""

    def __init__(
        self,
        accumulator: HandlerAccumulator,
        predicate: Predicate[T],
        signal: AbortSignal,
        timeout: float,
    ) -> None:
        self._accumulator = accumulator
        self._predicate = predicate
        self._signal = signal
        self._timeout = timeout
        self._handlers: list[Any] = []
        self._future: asyncio.Future[Result[T, errors.FormMapError]] = asyncio.get_running_loop().create_future()
        self._remove_listener: Callable[[], None] | None = None

    def _arm(self) -> None:
        # May resolve immediately when the signal is already aborted.
        self._remove_listener = self._signal.add_listener(self._on_abort)

    def __await__(self) -> Generator[Any, None, Result[T, errors.FormMapError]]:
        return self._future.__await__()

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def handlers(self) -> tuple[Any, ...]:
        """Snapshot of everything accumulated so far."""
        return tuple(self._handlers)

    def cancel(self) -> None:
        """Stop waiting.  Idempotent, and a no-op once the wait has completed."""
        if self.done:
            return
        self._finish(
            Err(errors.AbortedError("Handler wait was cancelled", context={"handler_count": len(self._handlers)}))
        )

    # -- Internal --

    def _offer(self, handlers: Sequence[Any]) -> None:
        if self.done or not handlers:
            return
        self._handlers.extend(handlers)
        try:
            outcome = self._predicate(list(self._handlers))
        except Exception as exc:
            logger.exception("Handler predicate raised")
            self._finish(
                Err(
                    errors.InternalError(
                        f"Handler predicate raised {type(exc).__name__}: {exc}",
                        context={"handler_count": len(self._handlers)},
                    )
                )
            )
            return
        if outcome.matched:
            self._finish(Ok(outcome.data))

    def _on_abort(self, signal: AbortSignal) -> None:
        if self.done:
            return
        exc = error_from_signal(signal, "wait_for_handlers")
        exc.context["handler_count"] = len(self._handlers)
        if isinstance(exc, errors.TimeoutError):
            logger.debug("Handler wait timed out after %gs with %d handlers", self._timeout, len(self._handlers))
        self._finish(Err(exc))

    def _finish(self, result: Result[T, errors.FormMapError]) -> None:
        if not self._future.done():
            self._future.set_result(result)
        self._accumulator._discard(self)
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        self._signal.close()


# ---------------------------------------------------------------------------
# Accumulator
# ---------------------------------------------------------------------------


class HandlerAccumulator:
    """Fans inbound handlers out to registered waits and listeners."""

    def __init__(self, timeouts: TimeoutsConfig | None = None) -> None:
        self._timeouts = timeouts or TimeoutsConfig()
        self._waits: list[HandlerWait[Any]] = []
        self._listeners: list[Listener] = []
        self.session = SessionState()

    # -- Registration --

    def wait_for_handlers(
        self,
        predicate: Predicate[T],
        *,
        timeout: float | None = None,
        signal: AbortSignal | None = None,
    ) -> HandlerWait[T]:
        """Register a wait synchronously.  Must be called before the request is sent.

        *timeout* defaults to the configured handler-wait ceiling.  A deadline
        completes the wait with ``TimeoutError``; *signal* firing completes it
        with ``AbortedError``.
        """
        timeout = self._timeouts.handler_wait if timeout is None else timeout
        if timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {timeout}")
        composed = compose_with_timeout(signal, timeout)
        wait: HandlerWait[T] = HandlerWait(self, predicate, composed, timeout)
        self._waits.append(wait)
        wait._arm()
        return wait

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* with every typed handler delivered.  Returns an unsubscriber."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def pending(self) -> int:
        return len(self._waits)

    def _discard(self, wait: HandlerWait[Any]) -> None:
        if wait in self._waits:
            self._waits.remove(wait)

    # -- Delivery --

    def deliver(self, message: Any) -> Result[DecodedEnvelope, errors.FormMapError]:
        """Decode one inbound message and feed its handlers to every wait.

        Decoding failures are logged and returned, never raised.
        """
        decoded = decode_envelope(message)
        if isinstance(decoded, Err):
            logger.warning("Dropping undecodable message: %s", decoded.error.describe())
            return decoded
        envelope = decoded.value
        self.session.apply_envelope(envelope)
        self.deliver_handlers(envelope.handlers)
        return decoded

    def deliver_handlers(self, handlers: Sequence[Any]) -> None:
        """Feed already-decoded raw handlers."""
        if not handlers:
            return
        handlers = list(handlers)
        self.session.apply_handlers(handlers)

        if self._listeners:
            for raw in handlers:
                typed = parse_handler(raw)
                for listener in list(self._listeners):
                    try:
                        listener(typed)
                    except Exception:
                        logger.exception("Handler listener failed for %s", type(typed).__name__)

        for wait in list(self._waits):
            wait._offer(handlers)

    def close(self) -> None:
        """Cancel every outstanding wait."""
        for wait in list(self._waits):
            wait.cancel()

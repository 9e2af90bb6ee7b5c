# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Explicit success-or-error results.

Fallible operations in this package return ``Ok(value)`` or ``Err(error)``
instead of raising at the call boundary.  Both variants are frozen
dataclasses and support structural pattern matching::

    match extractor.extract(form, handlers):
        case Ok(value=page):
            ...
        case Err(error=exc):
            ...

Leaf module: no formmap imports.  ``Err.unwrap()`` re-raises the wrapped
error when it is an exception, so ``unwrap`` keeps the original type.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, NoReturn, TypeAlias, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E")
F = TypeVar("F")


class UnwrapError(Exception):
    """``unwrap()`` on an Err, or ``unwrap_err()`` on an Ok."""

    def __init__(self, message: str, payload: Any) -> None:
        super().__init__(message)
        self.payload = payload


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: Any) -> T:
        return self.value

    def unwrap_or_else(self, fn: Callable[[Any], Any]) -> T:
        return self.value

    def unwrap_err(self) -> NoReturn:
        raise UnwrapError(f"Called unwrap_err on Ok: {self.value!r}", self.value)

    def map_ok(self, fn: Callable[[T], U]) -> Ok[U]:
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[Any], Any]) -> Ok[T]:
        return self

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        return fn(self.value)

    def or_else(self, fn: Callable[[Any], Any]) -> Ok[T]:
        return self

    def inspect(self, fn: Callable[[T], Any]) -> Ok[T]:
        fn(self.value)
        return self

    def inspect_err(self, fn: Callable[[Any], Any]) -> Ok[T]:
        return self

    def match(self, on_ok: Callable[[T], U], on_err: Callable[[Any], U]) -> U:
        return on_ok(self.value)


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        if isinstance(self.error, BaseException):
            raise self.error
        raise UnwrapError(f"Called unwrap on Err: {self.error!r}", self.error)

    def unwrap_or(self, default: U) -> U:
        return default

    def unwrap_or_else(self, fn: Callable[[E], U]) -> U:
        return fn(self.error)

    def unwrap_err(self) -> E:
        return self.error

    def map_ok(self, fn: Callable[[Any], Any]) -> Err[E]:
        return self

    def map_err(self, fn: Callable[[E], F]) -> Err[F]:
        return Err(fn(self.error))

    def and_then(self, fn: Callable[[Any], Any]) -> Err[E]:
        return self

    def or_else(self, fn: Callable[[E], Result[T, F]]) -> Result[T, F]:
        return fn(self.error)

    def inspect(self, fn: Callable[[Any], Any]) -> Err[E]:
        return self

    def inspect_err(self, fn: Callable[[E], Any]) -> Err[E]:
        fn(self.error)
        return self

    def match(self, on_ok: Callable[[Any], U], on_err: Callable[[E], U]) -> U:
        return on_err(self.error)


Result: TypeAlias = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


def collect(results: Iterable[Result[T, E]]) -> Result[list[T], E]:
    """All-or-nothing: the list of values, or the first error encountered."""
    values: list[T] = []
    for result in results:
        if isinstance(result, Err):
            return result
        values.append(result.value)
    return Ok(values)


def first_ok(results: Iterable[Result[T, E]]) -> Result[T, list[E]]:
    """The first success, or every error when none succeeded."""
    failures: list[E] = []
    for result in results:
        if isinstance(result, Ok):
            return result
        failures.append(result.error)
    return Err(failures)


def combine(*results: Result[Any, E]) -> Result[tuple[Any, ...], E]:
    """Heterogeneous ``collect``: a tuple of values, first error wins."""
    collected = collect(results)
    if isinstance(collected, Err):
        return collected
    return Ok(tuple(collected.value))


def partition(results: Iterable[Result[T, E]]) -> tuple[list[T], list[E]]:
    oks: list[T] = []
    errs: list[E] = []
    for result in results:
        if isinstance(result, Ok):
            oks.append(result.value)
        else:
            errs.append(result.error)
    return oks, errs


def filter_ok(results: Iterable[Result[T, E]]) -> list[T]:
    return [r.value for r in results if isinstance(r, Ok)]


def filter_err(results: Iterable[Result[T, E]]) -> list[E]:
    return [r.error for r in results if isinstance(r, Err)]


# ---------------------------------------------------------------------------
# Bridges from raising code
# ---------------------------------------------------------------------------


def from_callable(
    fn: Callable[[], T],
    *,
    map_exception: Callable[[Exception], E] | None = None,
) -> Result[T, Any]:
    """Run *fn*; an exception becomes ``Err`` (optionally mapped)."""
    try:
        return Ok(fn())
    except Exception as exc:
        return Err(map_exception(exc) if map_exception else exc)


async def from_awaitable(
    awaitable: Awaitable[T],
    *,
    map_exception: Callable[[Exception], E] | None = None,
) -> Result[T, Any]:
    try:
        return Ok(await awaitable)
    except Exception as exc:
        return Err(map_exception(exc) if map_exception else exc)


async def map_async(result: Result[T, E], fn: Callable[[T], Awaitable[U]]) -> Result[U, E]:
    if isinstance(result, Err):
        return result
    return Ok(await fn(result.value))


async def and_then_async(
    result: Result[T, E],
    fn: Callable[[T], Awaitable[Result[U, E]]],
) -> Result[U, E]:
    if isinstance(result, Err):
        return result
    return await fn(result.value)

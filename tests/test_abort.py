# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for formmap.abort: signals, deadlines and interruptible sleep."""

from __future__ import annotations

import asyncio

import pytest

from formmap import errors
from formmap.abort import (
    AbortController,
    AbortSignal,
    DeadlineExceeded,
    compose_with_timeout,
    error_from_signal,
    is_timeout_reason,
    sleep,
    was_externally_aborted,
)
from formmap.result import Ok


class TestAbortSignal:
    @pytest.mark.asyncio
    async def test_fires_once(self):
        controller = AbortController()
        calls = []
        controller.signal.add_listener(lambda s: calls.append(s.reason))
        controller.abort("first")
        controller.abort("second")
        assert controller.signal.aborted
        assert controller.signal.reason == "first"
        assert calls == ["first"]

    @pytest.mark.asyncio
    async def test_listener_on_aborted_signal_runs_immediately(self):
        controller = AbortController()
        controller.abort()
        calls = []
        controller.signal.add_listener(calls.append)
        assert calls == [controller.signal]

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self):
        controller = AbortController()
        calls = []
        remove = controller.signal.add_listener(calls.append)
        remove()
        controller.abort()
        assert calls == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self):
        controller = AbortController()
        calls = []

        def bad(signal):
            raise RuntimeError("bug")

        controller.signal.add_listener(bad)
        controller.signal.add_listener(calls.append)
        controller.abort()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_signal(self):
        signal = AbortSignal.timeout(0.01)
        reason = await asyncio.wait_for(signal.wait(), timeout=1.0)
        assert isinstance(reason, DeadlineExceeded)
        assert is_timeout_reason(reason)
        assert str(reason) == "deadline of 0.01s exceeded"

    @pytest.mark.asyncio
    async def test_closed_timeout_never_fires(self):
        signal = AbortSignal.timeout(0.01)
        signal.close()
        await asyncio.sleep(0.03)
        assert not signal.aborted

    @pytest.mark.asyncio
    async def test_any_takes_first_reason(self):
        a, b = AbortController(), AbortController()
        combined = AbortSignal.any([a.signal, b.signal])
        b.abort("b wins")
        a.abort("a later")
        assert combined.reason == "b wins"

    @pytest.mark.asyncio
    async def test_any_with_already_aborted_source(self):
        a = AbortController()
        a.abort("early")
        combined = AbortSignal.any([AbortController().signal, a.signal])
        assert combined.aborted
        assert combined.reason == "early"


class TestComposeWithTimeout:
    @pytest.mark.asyncio
    async def test_deadline_without_parent(self):
        signal = compose_with_timeout(None, 0.01)
        await signal.wait()
        assert isinstance(error_from_signal(signal, "open page"), errors.TimeoutError)
        assert not was_externally_aborted(signal)

    @pytest.mark.asyncio
    async def test_parent_abort_is_external(self):
        parent = AbortController()
        signal = compose_with_timeout(parent.signal, 5.0)
        parent.abort("user cancel")
        assert signal.aborted
        assert was_externally_aborted(signal)
        err = error_from_signal(signal, "open page")
        assert isinstance(err, errors.AbortedError)
        assert err.message == "open page was cancelled"
        assert err.context["reason"] == "user cancel"

    @pytest.mark.asyncio
    async def test_deadline_with_parent(self):
        parent = AbortController()
        signal = compose_with_timeout(parent.signal, 0.01)
        await asyncio.wait_for(signal.wait(), timeout=1.0)
        err = error_from_signal(signal, "wait")
        assert isinstance(err, errors.TimeoutError)
        assert err.context["timeout"] == 0.01
        assert not parent.signal.aborted

    def test_was_externally_aborted_none(self):
        assert was_externally_aborted(None) is False


class TestSleep:
    @pytest.mark.asyncio
    async def test_completes(self):
        assert await sleep(0.001) == Ok(None)
        assert await sleep(0.001, AbortController().signal) == Ok(None)

    @pytest.mark.asyncio
    async def test_interrupted(self):
        controller = AbortController()
        asyncio.get_running_loop().call_later(0.01, controller.abort, "stop")
        result = await asyncio.wait_for(sleep(5.0, controller.signal), timeout=1.0)
        assert isinstance(result.error, errors.AbortedError)

    @pytest.mark.asyncio
    async def test_already_aborted(self):
        controller = AbortController()
        controller.abort()
        assert isinstance((await sleep(5.0, controller.signal)).error, errors.AbortedError)

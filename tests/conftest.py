# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import formmap  # noqa: F401
except ImportError:
    raise ImportError("formmap is not installed. Run: pip install -e '.[dev]'") from None

import logging

import pytest
import structlog

from formmap.accumulator import HandlerAccumulator
from formmap.timeouts import TimeoutsConfig


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo structlog/root-logger configuration done by a test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def fast_timeouts() -> TimeoutsConfig:
    """Handler-wait ceiling short enough for timeout tests."""
    return TimeoutsConfig(handler_wait=0.05)


@pytest.fixture
def accumulator(fast_timeouts: TimeoutsConfig) -> HandlerAccumulator:
    return HandlerAccumulator(fast_timeouts)

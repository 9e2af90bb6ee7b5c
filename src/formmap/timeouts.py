# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Layered timeout ceilings (seconds).

Outer operation ceilings must exceed the inner handler-wait ceiling they
poll against; ``TimeoutsConfig`` enforces that at construction.
Environment overrides are given in milliseconds (``FORMMAP_*_TIMEOUT_MS``).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace

from .errors import ConfigValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TimeoutsConfig:
    """Immutable timeout ceilings, all in seconds."""

    connect: float = 10.0
    rpc: float = 120.0
    handler_wait: float = 2.5  # quick event-driven confirmations
    read_op: float = 120.0
    write_op: float = 120.0
    search: float = 120.0

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if value <= 0:
                raise ConfigValidationError(f"{f.name} must be > 0, got {value}", field=f.name)
        for name in ("rpc", "read_op", "write_op", "search"):
            if getattr(self, name) <= self.handler_wait:
                raise ConfigValidationError(
                    f"{name} ({getattr(self, name)}) must exceed handler_wait ({self.handler_wait})", field=name
                )

    def with_overrides(self, **overrides: float) -> TimeoutsConfig:
        return replace(self, **overrides)


_ENV_VARS: dict[str, str] = {
    "connect": "FORMMAP_CONNECT_TIMEOUT_MS",
    "rpc": "FORMMAP_RPC_TIMEOUT_MS",
    "handler_wait": "FORMMAP_HANDLER_WAIT_TIMEOUT_MS",
    "read_op": "FORMMAP_READ_OP_TIMEOUT_MS",
    "write_op": "FORMMAP_WRITE_OP_TIMEOUT_MS",
    "search": "FORMMAP_SEARCH_TIMEOUT_MS",
}


def _parse_ms(name: str, raw: str | None) -> float | None:
    if not raw or not raw.strip():
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return None
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r", name, raw)
        return None
    return value / 1000.0


def timeouts_from_env(environ: dict[str, str] | None = None) -> TimeoutsConfig:
    """Defaults overridden by any valid ``FORMMAP_*_TIMEOUT_MS`` variable.

    Overrides that break the ordering between ceilings are dropped as a
    whole, with a warning, and the defaults apply.
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, float] = {}
    for attr, var in _ENV_VARS.items():
        parsed = _parse_ms(var, env.get(var))
        if parsed is not None:
            overrides[attr] = parsed
    try:
        return TimeoutsConfig(**overrides)
    except ConfigValidationError as exc:
        logger.warning("Ignoring timeout overrides %s: %s", sorted(_ENV_VARS[k] for k in overrides), exc.message)
        return TimeoutsConfig()

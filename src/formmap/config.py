# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Process-level configuration read from ``FORMMAP_*`` environment variables.

Invalid numeric values fall back to defaults with a warning; invalid
combinations raise ``ConfigValidationError`` at construction.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from .errors import ConfigValidationError
from .timeouts import TimeoutsConfig, timeouts_from_env

logger = logging.getLogger(__name__)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


@dataclass(frozen=True, slots=True)
class FormMapConfig:
    """Immutable runtime configuration."""

    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "INFO"
    log_json: bool = False
    cache_max_entries: int = 1000
    cache_ttl: float = 300.0  # seconds
    cache_cleanup_interval: float = 60.0
    cache_coalescing: bool = True
    retry_max_attempts: int = 1  # retries after the first attempt
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)

    def __post_init__(self) -> None:
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ConfigValidationError(f"log_level must be one of {sorted(_LOG_LEVELS)}", field="log_level")
        if self.cache_max_entries <= 0:
            raise ConfigValidationError(
                f"cache_max_entries must be > 0, got {self.cache_max_entries}", field="cache_max_entries"
            )
        if self.cache_ttl <= 0:
            raise ConfigValidationError(f"cache_ttl must be > 0, got {self.cache_ttl}", field="cache_ttl")
        if self.cache_cleanup_interval <= 0:
            raise ConfigValidationError(
                f"cache_cleanup_interval must be > 0, got {self.cache_cleanup_interval}",
                field="cache_cleanup_interval",
            )
        if self.retry_max_attempts < 0:
            raise ConfigValidationError(
                f"retry_max_attempts must be >= 0, got {self.retry_max_attempts}", field="retry_max_attempts"
            )

    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> FormMapConfig:
        env = os.environ if environ is None else environ

        raw_env = env.get("FORMMAP_ENV", "").strip().lower()
        try:
            environment = Environment(raw_env) if raw_env else Environment.DEVELOPMENT
        except ValueError:
            raise ConfigValidationError(f"Unknown FORMMAP_ENV={raw_env!r}", field="FORMMAP_ENV") from None

        log_json_raw = env.get("FORMMAP_LOG_JSON", "").strip().lower()
        log_json = log_json_raw in ("1", "true", "yes") if log_json_raw else environment is Environment.PRODUCTION

        return cls(
            environment=environment,
            log_level=env.get("FORMMAP_LOG_LEVEL", "").strip().upper() or "INFO",
            log_json=log_json,
            cache_max_entries=_env_int(env, "FORMMAP_CACHE_MAX_ENTRIES", 1000),
            cache_ttl=_env_float(env, "FORMMAP_CACHE_TTL", 300.0),
            cache_cleanup_interval=_env_float(env, "FORMMAP_CACHE_CLEANUP_INTERVAL", 60.0),
            cache_coalescing=env.get("FORMMAP_CACHE_COALESCING", "").strip().lower() not in ("0", "false", "no"),
            retry_max_attempts=_env_int(env, "FORMMAP_RETRY_MAX_ATTEMPTS", 1, minimum=0),
            timeouts=timeouts_from_env(dict(env)),
        )


def _env_int(env: Mapping[str, str], name: str, default: int, *, minimum: int = 1) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %d", name, raw, default)
        return default
    if value < minimum:
        logger.warning("Out-of-range %s=%r, using default %d", name, raw, default)
        return default
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Out-of-range %s=%r, using default %s", name, raw, default)
        return default
    return value

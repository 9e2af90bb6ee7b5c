# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for formmap.config and formmap.timeouts."""

from __future__ import annotations

import pytest

from formmap.config import Environment, FormMapConfig
from formmap.errors import ConfigValidationError
from formmap.timeouts import TimeoutsConfig, timeouts_from_env


# =========================================================================
# Timeouts
# =========================================================================


class TestTimeoutsConfig:
    def test_defaults(self):
        t = TimeoutsConfig()
        assert t.handler_wait == 2.5
        assert t.rpc > t.handler_wait

    def test_outer_must_exceed_handler_wait(self):
        with pytest.raises(ConfigValidationError, match="must exceed handler_wait") as info:
            TimeoutsConfig(handler_wait=200.0)
        assert info.value.field == "rpc"

    def test_non_positive(self):
        with pytest.raises(ConfigValidationError) as info:
            TimeoutsConfig(connect=0)
        assert info.value.field == "connect"

    def test_with_overrides(self):
        t = TimeoutsConfig().with_overrides(handler_wait=1.0)
        assert t.handler_wait == 1.0
        assert t.rpc == 120.0

    def test_env_in_milliseconds(self):
        t = timeouts_from_env({"FORMMAP_HANDLER_WAIT_TIMEOUT_MS": "500", "FORMMAP_RPC_TIMEOUT_MS": "30000"})
        assert t.handler_wait == 0.5
        assert t.rpc == 30.0

    @pytest.mark.parametrize("raw", ["abc", "-5", "0", "  "])
    def test_bad_env_values_are_ignored(self, raw):
        assert timeouts_from_env({"FORMMAP_CONNECT_TIMEOUT_MS": raw}).connect == 10.0

    def test_inconsistent_env_falls_back_to_defaults(self, caplog):
        with caplog.at_level("WARNING", logger="formmap.timeouts"):
            t = timeouts_from_env({"FORMMAP_HANDLER_WAIT_TIMEOUT_MS": "500000", "FORMMAP_CONNECT_TIMEOUT_MS": "3000"})
        assert t == TimeoutsConfig()
        assert "FORMMAP_HANDLER_WAIT_TIMEOUT_MS" in caplog.text

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("FORMMAP_SEARCH_TIMEOUT_MS", "60000")
        assert timeouts_from_env().search == 60.0


# =========================================================================
# FormMapConfig
# =========================================================================


class TestFormMapConfig:
    def test_defaults(self):
        config = FormMapConfig()
        assert config.environment is Environment.DEVELOPMENT
        assert config.log_level == "INFO"
        assert not config.is_production
        assert config.cache_coalescing is True

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"log_level": "LOUD"}, "log_level"),
            ({"cache_max_entries": 0}, "cache_max_entries"),
            ({"cache_ttl": -1.0}, "cache_ttl"),
            ({"cache_cleanup_interval": 0}, "cache_cleanup_interval"),
            ({"retry_max_attempts": -1}, "retry_max_attempts"),
        ],
    )
    def test_invalid_values(self, kwargs, field):
        with pytest.raises(ConfigValidationError) as info:
            FormMapConfig(**kwargs)
        assert info.value.field == field

    def test_from_env(self):
        config = FormMapConfig.from_env(
            {
                "FORMMAP_ENV": "production",
                "FORMMAP_LOG_LEVEL": "debug",
                "FORMMAP_CACHE_MAX_ENTRIES": "50",
                "FORMMAP_CACHE_TTL": "12.5",
                "FORMMAP_CACHE_COALESCING": "false",
                "FORMMAP_RETRY_MAX_ATTEMPTS": "0",
                "FORMMAP_HANDLER_WAIT_TIMEOUT_MS": "1000",
            }
        )
        assert config.is_production
        assert config.log_level == "DEBUG"
        assert config.log_json is True
        assert config.cache_max_entries == 50
        assert config.cache_ttl == 12.5
        assert config.cache_coalescing is False
        assert config.retry_max_attempts == 0
        assert config.timeouts.handler_wait == 1.0

    def test_json_logging_override(self):
        assert FormMapConfig.from_env({"FORMMAP_ENV": "production", "FORMMAP_LOG_JSON": "0"}).log_json is False
        assert FormMapConfig.from_env({"FORMMAP_LOG_JSON": "yes"}).log_json is True

    def test_invalid_numbers_fall_back(self, caplog):
        with caplog.at_level("WARNING", logger="formmap.config"):
            config = FormMapConfig.from_env({"FORMMAP_CACHE_MAX_ENTRIES": "lots", "FORMMAP_CACHE_TTL": "-3"})
        assert config.cache_max_entries == 1000
        assert config.cache_ttl == 300.0
        assert "FORMMAP_CACHE_MAX_ENTRIES" in caplog.text

    def test_inconsistent_timeouts_fall_back(self):
        config = FormMapConfig.from_env({"FORMMAP_HANDLER_WAIT_TIMEOUT_MS": "500000"})
        assert config.timeouts == TimeoutsConfig()

    def test_unknown_environment(self):
        with pytest.raises(ConfigValidationError):
            FormMapConfig.from_env({"FORMMAP_ENV": "staging"})

    def test_empty_environment(self):
        assert FormMapConfig.from_env({}) == FormMapConfig()

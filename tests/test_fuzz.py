# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Property-based fuzz tests using Hypothesis.

Verifies invariants hold for arbitrary inputs across the control tree,
envelope decoder, handler parser and page data extractor.
"""

from __future__ import annotations

try:
    from hypothesis import HealthCheck, example, given, settings
    from hypothesis import strategies as st
except ImportError:
    import pytest

    pytest.skip("hypothesis not installed", allow_module_level=True)

import pytest

from formmap.control_tree import LogicalForm, resolve_control_by_path, walk
from formmap.decoder import decode_envelope, decompress_handlers, encode_handlers
from formmap.handlers import UnknownHandler, decode_cell_value, parse_handler
from formmap.page_data_extractor import extract
from formmap.result import Err, Ok

# ---------------------------------------------------------------------------
# Module-level strategies
# ---------------------------------------------------------------------------

CONTROL_TYPES = st.sampled_from(["gc", "sc", "dc", "bc", "ac", "rc", "fhc", "lf", "i32c", "sec"])

JSON_SCALAR = st.none() | st.booleans() | st.integers() | st.floats(allow_nan=False) | st.text(max_size=20)

JSON_VALUE = st.recursive(
    JSON_SCALAR,
    lambda inner: st.lists(inner, max_size=4) | st.dictionaries(st.text(max_size=10), inner, max_size=4),
    max_leaves=20,
)


def _control_tree(max_leaves: int = 25):
    leaf = st.builds(lambda t, caption: {"t": t, "Caption": caption}, CONTROL_TYPES, st.text(max_size=8))
    return st.recursive(
        leaf,
        lambda inner: st.builds(
            lambda t, children, actions, header: {
                "t": t,
                "Children": children,
                "Actions": actions,
                "HeaderActions": header,
            },
            CONTROL_TYPES,
            st.lists(inner, max_size=4),
            st.lists(inner, max_size=2),
            st.lists(inner, max_size=2),
        ),
        max_leaves=max_leaves,
    )


FORM = _control_tree().map(lambda root: {**root, "t": "lf", "ServerId": "f1", "Caption": "Form", "CacheKey": "1"})

PATH_LIKE = st.from_regex(r"server(:((ha|a|c|gc|sc)\[[0-9]{1,3}\]/?){0,5})?", fullmatch=True)

# ---------------------------------------------------------------------------
# Shared settings
# ---------------------------------------------------------------------------

_fuzz_settings = settings(
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)


# ---------------------------------------------------------------------------
# TestFuzzControlTree
# ---------------------------------------------------------------------------


@pytest.mark.fuzz
class TestFuzzControlTree:
    """Walker and resolver are inverses; the resolver never raises."""

    @_fuzz_settings
    @given(raw=FORM)
    def test_walked_paths_resolve_to_same_control(self, raw: dict) -> None:
        form = LogicalForm.from_dict(raw)
        for walked in walk(form):
            assert resolve_control_by_path(form, walked.path) is walked.control

    @_fuzz_settings
    @given(raw=FORM)
    def test_paths_are_unique(self, raw: dict) -> None:
        paths = [w.path for w in walk(LogicalForm.from_dict(raw))]
        assert len(paths) == len(set(paths))

    @_fuzz_settings
    @given(raw=FORM, path=st.text(max_size=60) | PATH_LIKE)
    @example({"t": "lf"}, "server:c[0]\n")
    @example({"t": "lf"}, "server:c[" + "9" * 50 + "]")
    def test_resolve_never_raises(self, raw: dict, path: str) -> None:
        resolve_control_by_path(LogicalForm.from_dict(raw), path)


# ---------------------------------------------------------------------------
# TestFuzzDecoder
# ---------------------------------------------------------------------------


@pytest.mark.fuzz
class TestFuzzDecoder:
    """Decoding returns a Result for any input; it never raises."""

    @_fuzz_settings
    @given(payload=st.text(max_size=200))
    @example("")
    @example("H4sI")
    def test_decompress_never_raises(self, payload: str) -> None:
        assert isinstance(decompress_handlers(payload), (Ok, Err))

    @_fuzz_settings
    @given(message=JSON_VALUE)
    def test_decode_envelope_never_raises(self, message) -> None:
        result = decode_envelope(message)
        if isinstance(result, Ok):
            assert isinstance(result.value.handlers, list)

    @_fuzz_settings
    @given(handlers=st.lists(JSON_VALUE, max_size=5))
    def test_compressed_handlers_survive_decoding(self, handlers: list) -> None:
        assert decompress_handlers(encode_handlers(handlers)) == Ok(handlers)


# ---------------------------------------------------------------------------
# TestFuzzHandlers
# ---------------------------------------------------------------------------


@pytest.mark.fuzz
class TestFuzzHandlers:
    @_fuzz_settings
    @given(raw=JSON_VALUE)
    @example({"handlerType": "DN.LogicalClientEventRaisingHandler", "parameters": ["FormToShow", 3]})
    @example({"handlerType": "DN.LogicalClientChangeHandler", "parameters": ["f1", [{"t": "drch", "RowChanges": [1]}]]})
    def test_parse_handler_never_raises(self, raw) -> None:
        handler = parse_handler(raw)
        if not isinstance(raw, dict):
            assert isinstance(handler, UnknownHandler)

    @_fuzz_settings
    @given(cell=JSON_VALUE)
    def test_decode_cell_value_never_raises(self, cell) -> None:
        value = decode_cell_value(cell)
        if value is not None:
            assert value.type in ("string", "number", "boolean", "date")


# ---------------------------------------------------------------------------
# TestFuzzExtractor
# ---------------------------------------------------------------------------


@pytest.mark.fuzz
class TestFuzzExtractor:
    @_fuzz_settings
    @given(raw=FORM, cells=st.dictionaries(st.text(max_size=10), JSON_VALUE, max_size=5))
    def test_extract_returns_result(self, raw: dict, cells: dict) -> None:
        handlers = [
            {
                "handlerType": "DN.LogicalClientChangeHandler",
                "parameters": [
                    "f1",
                    [{"t": "drch", "RowChanges": [{"t": "drich", "drich": [0, {"bookmark": "b", "cells": cells}]}]}],
                ],
            }
        ]
        result = extract(LogicalForm.from_dict(raw), handlers)
        assert isinstance(result, (Ok, Err))
        if isinstance(result, Ok):
            assert result.value.total_count >= 0

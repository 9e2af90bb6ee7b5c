# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Handlers of an open-page response -> ``PageMetadata``."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

from . import PageMetadata, errors
from .control_parser import ControlParser
from .control_tree import LogicalForm
from .handlers import extract_form_id, extract_logical_form
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)

_PAGE_ID_RE = re.compile(r"^(\d+)")


def page_id_from_cache_key(cache_key: str) -> str:
    """Leading digits of the cache key ("21:embedded(False)" -> "21"), else the key itself."""
    m = _PAGE_ID_RE.match(cache_key)
    return m.group(1) if m else cache_key


class PageMetadataParser:
    def __init__(self, control_parser: ControlParser | None = None) -> None:
        self._controls = control_parser or ControlParser()

    def parse(self, handlers: Sequence[Any]) -> Result[PageMetadata, errors.FormMapError]:
        form_id = extract_form_id(handlers)
        logger.debug("Parsing page metadata from %d handlers (form_id=%s)", len(handlers), form_id)
        return extract_logical_form(handlers, form_id).and_then(lambda form: self.parse_form(form, form_id))

    def parse_form(self, form: LogicalForm, form_id: str | None = None) -> Result[PageMetadata, errors.FormMapError]:
        missing = [
            name
            for name, value in (("ServerId", form.server_id), ("Caption", form.caption), ("CacheKey", form.cache_key))
            if not isinstance(value, str) or not value
        ]
        if missing:
            return Err(
                errors.LogicalFormParseError(
                    f"Form is missing required properties: {', '.join(missing)}",
                    context={"missing": missing, "form_id": form_id},
                )
            )

        controls = self._controls.walk_controls(form)
        return Ok(
            PageMetadata(
                page_id=page_id_from_cache_key(form.cache_key),
                caption=form.caption,
                cache_key=form.cache_key,
                form_id=form_id or form.server_id,
                view_mode=form.view_mode,
                app_name=form.app_name,
                app_publisher=form.app_publisher,
                app_version=form.app_version,
                fields=tuple(self._controls.extract_fields(controls)),
                actions=tuple(self._controls.extract_actions(controls)),
                repeaters=tuple(self._controls.extract_repeaters(controls)),
                control_count=len(controls),
            )
        )

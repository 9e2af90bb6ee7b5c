# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""FormMap: client core for a compressed form-tree protocol.

Turns server envelopes into typed page data:
- metadata: fields, actions and repeaters of an opened page
- records: card, list and document page data with semantic field names
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal

FieldType = Literal["string", "number", "boolean", "date"]


class PageType(StrEnum):
    CARD = "card"
    LIST = "list"
    DOCUMENT = "document"


@dataclass
class FieldValue:
    """One decoded field value."""

    value: str | int | float | bool | None
    type: FieldType = "string"
    display_value: str | None = None  # formatted text when it differs from value

    def is_empty(self) -> bool:
        return self.value is None or self.value == ""


@dataclass
class PageRecord:
    """One card or row: semantic field name -> value."""

    fields: dict[str, FieldValue] = field(default_factory=dict)
    bookmark: str | None = None  # row identity for list pages


@dataclass(frozen=True)
class ColumnMapping:
    """Runtime cell key of a repeater column and the name shown to users."""

    runtime_id: str  # e.g. "1295001522_c1" or "140"
    semantic_name: str  # caption, then design name, then name
    caption: str | None = None
    design_name: str | None = None
    control_id: int | None = None
    table_field_no: int | None = None
    column_index: int | None = None


@dataclass
class PageDataExtractionResult:
    page_type: PageType
    records: list[PageRecord]
    total_count: int
    warnings: list[str] = field(default_factory=list)  # duplicate names, skipped handlers


@dataclass
class DocumentLinesBlock:
    """Line items of one repeater on a document page."""

    repeater_path: str  # e.g. "server:c[2]/c[0]/c[1]"
    caption: str
    lines: list[PageRecord]
    total_count: int


@dataclass
class DocumentPageDataExtractionResult(PageDataExtractionResult):
    """Header plus lines; ``records`` holds only the header."""

    header: PageRecord = field(default_factory=PageRecord)
    lines_blocks: list[DocumentLinesBlock] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Page metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldMetadata:
    type: str  # control type tag: sc, dc, bc, i32c, sec, dtc, pc
    caption: str | None = None
    name: str | None = None  # design name, then internal name
    control_id: str | None = None  # ControlIdentifier
    control_path: str | None = None
    enabled: bool = True
    visible: bool = True


@dataclass(frozen=True)
class ActionMetadata:
    caption: str
    system_action: int | None = None
    enabled: bool = True
    control_id: str | None = None
    icon: str | None = None
    synopsis: str | None = None
    control_path: str | None = None  # invocation target, e.g. "server:c[3]/ha[1]"


@dataclass(frozen=True)
class ColumnMetadata:
    caption: str | None = None
    design_name: str | None = None
    control_path: str | None = None  # TemplateControlPath; never synthesized
    column_binder_path: str | None = None


@dataclass(frozen=True)
class RepeaterMetadata:
    control_path: str
    caption: str | None = None
    name: str | None = None
    form_id: str | None = None
    columns: tuple[ColumnMetadata, ...] = ()


@dataclass(frozen=True)
class PageMetadata:
    """Static description of an opened page."""

    page_id: str
    caption: str
    cache_key: str
    form_id: str | None = None
    view_mode: int | None = None
    app_name: str | None = None
    app_publisher: str | None = None
    app_version: str | None = None
    fields: tuple[FieldMetadata, ...] = ()
    actions: tuple[ActionMetadata, ...] = ()
    repeaters: tuple[RepeaterMetadata, ...] = ()
    control_count: int = 0

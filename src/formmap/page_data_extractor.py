# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page records from a form tree plus its change handlers.

Three page shapes:

- card: one record read from the field controls of the form, after
  PropertyChanges deltas are overlaid on a clone of the form
- list: one record per inserted row of every DataRefreshChange
- document: a card header plus one block of list-style lines

Field names are resolved through ordered strategy tuples; the first strategy
that yields a name wins.

Card controls:
    1. column mapping keyed by the control's numeric id
    2. design name
    3. internal name
    4. caption

List cells:
    1. column mapping keyed by the runtime cell key
    2. field metadata keyed by ControlIdentifier
    3. the raw cell key

Row filters, in order: a GUID in the first cell position, blocklisted
system names, and hidden or caption-less fields known to field metadata
(whichever strategy named the cell).

A value that cannot be read is skipped with an entry in ``warnings``; only
a failure outside the per-control and per-cell steps fails the page.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from . import (
    ColumnMapping,
    DocumentLinesBlock,
    DocumentPageDataExtractionResult,
    FieldValue,
    PageDataExtractionResult,
    PageRecord,
    PageType,
    errors,
)
from .control_parser import FIELD_CONTROL_TYPES, REPEATER_CONTROL_TYPES
from .control_tree import Control, LogicalForm, clone_form, resolve_control_by_path, walk
from .handlers import (
    DataRefreshChange,
    DataRowUpdated,
    PropertyChanges,
    Row,
    decode_cell_value,
    iter_changes,
)
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)

SYSTEM_FIELD_BLOCKLIST = frozenset(
    {
        "SystemId",
        "SystemCreatedAt",
        "SystemModifiedAt",
        "SystemCreatedBy",
        "SystemModifiedBy",
        "Entity State",
    }
)

_GUID_RE = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")
_FLOAT_PREFIX_RE = re.compile(r"\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_INT_PREFIX_RE = re.compile(r"\s*[+-]?\d+")

LIST_VIEW_MODE = 0
CARD_VIEW_MODE = 2


def looks_like_system_guid(value: Any) -> bool:
    return isinstance(value, str) and _GUID_RE.fullmatch(value) is not None


# ---------------------------------------------------------------------------
# Page type
# ---------------------------------------------------------------------------


def is_list_page(form: LogicalForm) -> bool:
    """ViewMode 0 is a list, 2 a card; otherwise a top-level repeater means list."""
    if form.view_mode == LIST_VIEW_MODE:
        return True
    if form.view_mode == CARD_VIEW_MODE:
        return False
    return any(child.t in REPEATER_CONTROL_TYPES for child in form.children)


def detect_page_type(form: LogicalForm) -> PageType:
    if is_list_page(form):
        return PageType.LIST
    if any(wc.control.t in REPEATER_CONTROL_TYPES for wc in walk(form)):
        return PageType.DOCUMENT
    return PageType.CARD


# ---------------------------------------------------------------------------
# Mappings
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FieldInfo:
    """Visibility facts about one named control, used to filter list cells."""

    name: str
    visible: bool
    has_caption: bool
    control_identifier: str | None = None


def _semantic_name(control: Control, runtime_id: str) -> str:
    for candidate in (control.caption, control.design_name, control.name):
        if candidate and candidate.strip():
            return candidate
    return runtime_id


def _mapping(control: Control, runtime_id: str, index: int) -> ColumnMapping:
    return ColumnMapping(
        runtime_id=runtime_id,
        semantic_name=_semantic_name(control, runtime_id),
        caption=control.caption,
        design_name=control.design_name,
        control_id=control.control_id,
        table_field_no=control.table_field_no,
        column_index=index,
    )


def build_column_mappings(form: Control) -> dict[str, ColumnMapping]:
    """Runtime cell key -> mapping, from the Columns of every repeater in the tree.

    The key is ``ColumnBinder.Name`` ("1295001522_c1") or else the column
    ``Name`` ("140").  The first mapping seen for a key wins.
    """
    mappings: dict[str, ColumnMapping] = {}
    for wc in walk(form):
        for index, column in enumerate(wc.control.columns):
            runtime_id = column.column_binder_name or column.name
            if not runtime_id:
                continue
            if runtime_id in mappings:
                logger.debug("Duplicate column mapping for %r; keeping %r", runtime_id, mappings[runtime_id].semantic_name)
                continue
            mappings[runtime_id] = _mapping(column, runtime_id, index)
    return mappings


def build_card_column_mappings(form: Control) -> dict[str, ColumnMapping]:
    """Mappings from per-control ``ColumnBinder.Name`` hints, for forms without repeater columns."""
    mappings: dict[str, ColumnMapping] = {}
    index = 0
    for wc in walk(form):
        runtime_id = wc.control.column_binder_name
        if not runtime_id:
            continue
        if runtime_id not in mappings:
            mappings[runtime_id] = _mapping(wc.control, runtime_id, index)
        index += 1
    return mappings


def build_field_metadata_map(form: Control) -> dict[str, FieldInfo]:
    """Field name -> visibility facts.  A later control with the same name replaces an earlier one."""
    infos: dict[str, FieldInfo] = {}
    for wc in walk(form):
        c = wc.control
        name = c.design_name or c.name or c.caption
        if not name:
            continue
        infos[name] = FieldInfo(
            name=name,
            visible=c.visible,
            has_caption=bool(c.caption and c.caption.strip()),
            control_identifier=c.control_identifier,
        )
    return infos


# ---------------------------------------------------------------------------
# Overlay
# ---------------------------------------------------------------------------


def apply_property_changes(form: LogicalForm, handlers: Iterable[Any]) -> tuple[LogicalForm, int]:
    """Clone *form* and merge every PropertyChanges delta into its target's ``properties``.

    Returns the clone and the number of deltas applied.  *form* is never
    mutated.  Deltas whose path does not resolve are skipped.
    """
    clone = clone_form(form)
    applied = 0
    for change in iter_changes(handlers):
        if not isinstance(change, PropertyChanges):
            continue
        if not change.control_path:
            logger.debug("PropertyChanges without a control path")
            continue
        target = resolve_control_by_path(clone, change.control_path)
        if target is None:
            logger.debug("PropertyChanges target %s not found", change.control_path)
            continue
        if not change.changes:
            continue
        target.properties.update(change.changes)
        applied += 1
    return clone, applied


# ---------------------------------------------------------------------------
# Control values
# ---------------------------------------------------------------------------


def _coalesce(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _parse_number(raw: Any, *, integer: bool) -> int | float | None:
    # Leading numeric prefix of the formatted text; grouping commas are dropped
    if isinstance(raw, bool):
        return None
    try:
        if isinstance(raw, (int, float)):
            return int(raw) if integer else float(raw)
        m = (_INT_PREFIX_RE if integer else _FLOAT_PREFIX_RE).match(str(raw).replace(",", ""))
        if m is None:
            return None
        return int(m.group()) if integer else float(m.group())
    except (ValueError, OverflowError):
        # inf, nan, or digit strings past the int conversion limit
        return None


def _select_value(control: Control) -> FieldValue:
    index = control.properties.get("CurrentIndex", control.current_index)
    items = control.items
    if not isinstance(index, int) or isinstance(index, bool) or items is None:
        return FieldValue(value=control.string_value or None, type="string")
    if not 0 <= index < len(items) or not items[index]:
        return FieldValue(value=None, type="string")
    item = items[index]
    if isinstance(item, dict):
        caption = item.get("Caption")
        return FieldValue(
            value=_coalesce(item.get("Value"), caption),
            type="string",
            display_value=None if caption is None else str(caption),
        )
    return FieldValue(value=item, type="string", display_value=str(item))


def control_value(control: Control) -> FieldValue:
    """Typed value of a field control: overlay ``properties`` first, then inline values."""
    props = control.properties
    match control.t:
        case "bc":
            return FieldValue(value=_coalesce(props.get("ObjectValue"), control.object_value, False), type="boolean")
        case "dc" | "pc" | "i32c":
            text = _coalesce(props.get("StringValue"), control.string_value, "0")
            return FieldValue(
                value=_parse_number(text, integer=control.t == "i32c"),
                type="number",
                display_value=str(text),
            )
        case "sec":
            return _select_value(control)
        case "dtc":
            return FieldValue(value=_coalesce(props.get("StringValue"), control.string_value), type="date")
        case _:
            return FieldValue(
                value=_coalesce(
                    props.get("StringValue"),
                    props.get("ObjectValue"),
                    control.string_value,
                    control.object_value,
                ),
                type="string",
            )


# ---------------------------------------------------------------------------
# Name resolution
# ---------------------------------------------------------------------------


class NameSource(StrEnum):
    COLUMN_MAPPING = "column_mapping"
    FIELD_METADATA = "field_metadata"
    DESIGN_NAME = "design_name"
    INTERNAL_NAME = "internal_name"
    CAPTION = "caption"
    RAW_KEY = "raw_key"


@dataclass(frozen=True, slots=True)
class ResolvedName:
    name: str
    source: NameSource
    info: FieldInfo | None = None


@dataclass
class ResolutionContext:
    """Lookup tables for one form, built once per extraction."""

    column_mappings: dict[str, ColumnMapping] = field(default_factory=dict)
    mappings_by_control_id: dict[int, ColumnMapping] = field(default_factory=dict)
    fields_by_control_identifier: dict[str, FieldInfo] = field(default_factory=dict)

    @classmethod
    def for_form(cls, form: Control | None, *, card: bool = False) -> ResolutionContext:
        if form is None:
            return cls()
        mappings = build_column_mappings(form)
        if not mappings and card:
            mappings = build_card_column_mappings(form)
        by_control_id: dict[int, ColumnMapping] = {}
        for mapping in mappings.values():
            if mapping.control_id is not None:
                by_control_id.setdefault(mapping.control_id, mapping)
        by_identifier = {
            info.control_identifier: info
            for info in build_field_metadata_map(form).values()
            if info.control_identifier
        }
        return cls(mappings, by_control_id, by_identifier)


ControlNameResolver = Callable[[Control, ResolutionContext], ResolvedName | None]
CellNameResolver = Callable[[str, ResolutionContext], ResolvedName | None]


def _control_by_mapping(control: Control, ctx: ResolutionContext) -> ResolvedName | None:
    if control.control_id is None:
        return None
    mapping = ctx.mappings_by_control_id.get(control.control_id)
    return ResolvedName(mapping.semantic_name, NameSource.COLUMN_MAPPING) if mapping else None


def _control_by_design_name(control: Control, ctx: ResolutionContext) -> ResolvedName | None:
    return ResolvedName(control.design_name, NameSource.DESIGN_NAME) if control.design_name else None


def _control_by_internal_name(control: Control, ctx: ResolutionContext) -> ResolvedName | None:
    return ResolvedName(control.name, NameSource.INTERNAL_NAME) if control.name else None


def _control_by_caption(control: Control, ctx: ResolutionContext) -> ResolvedName | None:
    return ResolvedName(control.caption, NameSource.CAPTION) if control.caption else None


def _cell_by_mapping(key: str, ctx: ResolutionContext) -> ResolvedName | None:
    mapping = ctx.column_mappings.get(key)
    return ResolvedName(mapping.semantic_name or key, NameSource.COLUMN_MAPPING) if mapping else None


def _cell_by_field_metadata(key: str, ctx: ResolutionContext) -> ResolvedName | None:
    info = ctx.fields_by_control_identifier.get(key)
    return ResolvedName(info.name, NameSource.FIELD_METADATA, info) if info else None


def _cell_by_raw_key(key: str, ctx: ResolutionContext) -> ResolvedName | None:
    return ResolvedName(key, NameSource.RAW_KEY)


CARD_NAME_RESOLVERS: tuple[ControlNameResolver, ...] = (
    _control_by_mapping,
    _control_by_design_name,
    _control_by_internal_name,
    _control_by_caption,
)

CELL_NAME_RESOLVERS: tuple[CellNameResolver, ...] = (
    _cell_by_mapping,
    _cell_by_field_metadata,
    _cell_by_raw_key,
)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class PageDataExtractor:
    """Card, list and document extraction with pluggable name resolvers."""

    def __init__(
        self,
        *,
        card_resolvers: Sequence[ControlNameResolver] = CARD_NAME_RESOLVERS,
        cell_resolvers: Sequence[CellNameResolver] = CELL_NAME_RESOLVERS,
    ) -> None:
        self._card_resolvers = tuple(card_resolvers)
        self._cell_resolvers = tuple(cell_resolvers)

    def _control_name(self, control: Control, ctx: ResolutionContext) -> ResolvedName | None:
        for resolver in self._card_resolvers:
            resolved = resolver(control, ctx)
            if resolved is not None:
                return resolved
        return None

    def _cell_name(self, key: str, ctx: ResolutionContext) -> ResolvedName:
        for resolver in self._cell_resolvers:
            resolved = resolver(key, ctx)
            if resolved is not None:
                return resolved
        return ResolvedName(key, NameSource.RAW_KEY)

    # ── Card ─────────────────────────────────────────────────────────

    def extract_card_page_data(
        self, form: LogicalForm, handlers: Sequence[Any] | None = None
    ) -> Result[PageDataExtractionResult, errors.FormMapError]:
        try:
            ctx = ResolutionContext.for_form(form, card=True)
            effective = form
            if handlers:
                effective, applied = apply_property_changes(form, handlers)
                logger.debug("Applied %d PropertyChanges to card %s", applied, form.server_id)

            fields: dict[str, FieldValue] = {}
            warnings: list[str] = []
            for wc in walk(effective):
                control = wc.control
                if control.t not in FIELD_CONTROL_TYPES:
                    continue
                try:
                    resolved = self._control_name(control, ctx)
                    if resolved is None or resolved.name in SYSTEM_FIELD_BLOCKLIST:
                        continue
                    value = control_value(control)
                except Exception as exc:
                    logger.warning("Skipping control at %s: %s", wc.path, exc, exc_info=True)
                    warnings.append(f"Control at {wc.path} skipped: {exc}")
                    continue
                self._put(fields, resolved.name, value, warnings, wc.path)

            return Ok(PageDataExtractionResult(PageType.CARD, [PageRecord(fields=fields)], 1, warnings))
        except Exception as exc:
            logger.warning("Card extraction failed: %s", exc, exc_info=True)
            return Err(
                errors.LogicalFormParseError(
                    f"Failed to extract card page data: {exc}",
                    context={"form_id": form.server_id, "exception": type(exc).__name__},
                )
            )

    @staticmethod
    def _put(fields: dict[str, FieldValue], name: str, value: FieldValue, warnings: list[str], path: str) -> None:
        existing = fields.get(name)
        if existing is not None:
            if not existing.is_empty() and value.is_empty():
                logger.debug("Field %r at %s is empty; keeping earlier value", name, path)
                return
            warnings.append(f'Field "{name}" appears more than once; value at {path} replaces {existing.value!r}')
            logger.warning("Duplicate field %r at %s overwrites %r", name, path, existing.value)
        fields[name] = value

    def extract_card_from_row_update(
        self, change: DataRowUpdated, form: LogicalForm | None = None
    ) -> Result[PageDataExtractionResult, errors.FormMapError]:
        """Single card record from a DataRowUpdated change (drill-down responses)."""
        try:
            if change.row is None:
                logger.debug("DataRowUpdated without row data")
                return Ok(PageDataExtractionResult(PageType.CARD, [], 0))
            ctx = ResolutionContext.for_form(form, card=True)
            warnings: list[str] = []
            record = self._record_from_row(change.row, ctx, warnings, skip_leading_guid=False)
            return Ok(PageDataExtractionResult(PageType.CARD, [record], 1, warnings))
        except Exception as exc:
            logger.warning("Row-update card extraction failed: %s", exc, exc_info=True)
            return Err(
                errors.LogicalFormParseError(
                    f"Failed to extract card data from DataRowUpdated: {exc}",
                    context={"control_path": change.control_path, "exception": type(exc).__name__},
                )
            )

    # ── List ─────────────────────────────────────────────────────────

    def extract_list_page_data(
        self, handlers: Sequence[Any], form: LogicalForm | None = None
    ) -> Result[PageDataExtractionResult, errors.FormMapError]:
        try:
            ctx = ResolutionContext.for_form(form)
            records: list[PageRecord] = []
            warnings: list[str] = []
            for change in iter_changes(handlers):
                if not isinstance(change, DataRefreshChange):
                    continue
                for row in change.inserted_rows:
                    records.append(self._record_from_row(row, ctx, warnings, skip_leading_guid=True))
            return Ok(PageDataExtractionResult(PageType.LIST, records, len(records), warnings))
        except Exception as exc:
            logger.warning("List extraction failed: %s", exc, exc_info=True)
            return Err(
                errors.LogicalFormParseError(
                    f"Failed to extract list page data: {exc}",
                    context={"handler_count": len(handlers), "exception": type(exc).__name__},
                )
            )

    def _record_from_row(
        self, row: Row, ctx: ResolutionContext, warnings: list[str], *, skip_leading_guid: bool
    ) -> PageRecord:
        fields: dict[str, FieldValue] = {}
        for position, (key, cell) in enumerate(row.cells.items()):
            try:
                value = decode_cell_value(cell)
                if skip_leading_guid and position == 0 and value is not None and looks_like_system_guid(value.value):
                    logger.debug("Dropping SystemId GUID in first cell %s", key)
                    continue
                resolved = self._cell_name(str(key), ctx)
            except Exception as exc:
                logger.warning("Skipping cell %r: %s", key, exc, exc_info=True)
                warnings.append(f"Cell {key!r} skipped: {exc}")
                continue
            if resolved.name in SYSTEM_FIELD_BLOCKLIST:
                continue
            info = resolved.info or ctx.fields_by_control_identifier.get(str(key))
            if info is not None and (not info.visible or not info.has_caption):
                logger.debug("Dropping %s field %s", "hidden" if not info.visible else "caption-less", resolved.name)
                continue
            if value is not None:
                fields[resolved.name] = value
        return PageRecord(fields=fields, bookmark=row.bookmark)

    # ── Document ─────────────────────────────────────────────────────

    def extract_document_page_data(
        self, form: LogicalForm, handlers: Sequence[Any]
    ) -> Result[DocumentPageDataExtractionResult, errors.FormMapError]:
        header_result = self.extract_card_page_data(form, handlers)
        if isinstance(header_result, Err):
            return header_result
        header = header_result.value.records[0]
        warnings = list(header_result.value.warnings)

        try:
            repeaters = [wc for wc in walk(form) if wc.control.t in REPEATER_CONTROL_TYPES]
        except Exception as exc:
            return Err(
                errors.LogicalFormParseError(
                    f"Failed to extract document page data: {exc}",
                    context={"form_id": form.server_id, "exception": type(exc).__name__},
                )
            )

        blocks: list[DocumentLinesBlock] = []
        # Every DataRefreshChange feeds the single lines block; refresh paths are not
        # matched against repeater paths.
        lines = self.extract_list_page_data(handlers, form)
        if isinstance(lines, Err):
            warnings.append(f"Lines not extracted: {lines.error.message}")
        else:
            warnings.extend(lines.value.warnings)
            if lines.value.total_count > 0:
                if repeaters:
                    first = repeaters[0]
                    caption = first.control.caption or first.control.design_name or "Unnamed"
                    path = first.path
                else:
                    caption, path = "Lines", "unknown"
                blocks.append(DocumentLinesBlock(path, caption, lines.value.records, lines.value.total_count))
        logger.debug("Document %s: %d header fields, %d line blocks", form.server_id, len(header.fields), len(blocks))

        return Ok(
            DocumentPageDataExtractionResult(
                page_type=PageType.DOCUMENT,
                records=[header],
                total_count=1,
                warnings=warnings,
                header=header,
                lines_blocks=blocks,
            )
        )

    # ── Dispatch ─────────────────────────────────────────────────────

    def extract(
        self,
        form: LogicalForm,
        handlers: Sequence[Any],
        page_type: PageType | str | None = None,
    ) -> Result[PageDataExtractionResult, errors.FormMapError]:
        if page_type is None:
            kind = detect_page_type(form)
        else:
            try:
                kind = PageType(page_type)
            except ValueError:
                return Err(
                    errors.InputValidationError(
                        f"Unknown page type {page_type!r}",
                        field="page_type",
                        validation_errors=[f"expected one of {', '.join(t.value for t in PageType)}"],
                    )
                )
        if kind is PageType.LIST:
            return self.extract_list_page_data(handlers, form)
        if kind is PageType.DOCUMENT:
            return self.extract_document_page_data(form, handlers)
        return self.extract_card_page_data(form, handlers)


_default = PageDataExtractor()

extract = _default.extract
extract_card_page_data = _default.extract_card_page_data
extract_card_from_row_update = _default.extract_card_from_row_update
extract_list_page_data = _default.extract_list_page_data
extract_document_page_data = _default.extract_document_page_data


def find_row_update(handlers: Iterable[Any]) -> DataRowUpdated | None:
    """First DataRowUpdated change among *handlers*."""
    for change in iter_changes(handlers):
        if isinstance(change, DataRowUpdated):
            return change
    return None

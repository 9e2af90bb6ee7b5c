# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Recursive control tree and its path algebra.

Path grammar::

    path    := "server" [ ":" segment ( "/" segment )* ]
    segment := "ha[" n "]" | "a[" n "]" | "c[" n "]"

``ha`` indexes HeaderActions, ``a`` indexes Actions, ``c`` indexes Children.
The walker visits a node, then its HeaderActions, then Actions, then
Children.  Action controls duplicated inside Children for layout are not
valid interaction targets, so the canonical action arrays come first.

``resolve_control_by_path`` is the inverse of the walker and never raises:
stale or malformed paths resolve to None.
"""

from __future__ import annotations

import copy
import logging
import re
from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

logger = logging.getLogger(__name__)

ROOT_PATH = "server"

C = TypeVar("C", bound="Control")

# Keys mapped onto Control attributes; everything else lands in ``extras``.
_MODELED_KEYS = frozenset(
    {
        "t",
        "Caption",
        "DesignName",
        "Name",
        "ControlIdentifier",
        "ControlId",
        "ControlID",
        "TableFieldNo",
        "FieldNo",
        "ColumnBinder",
        "Visible",
        "Enabled",
        "StringValue",
        "ObjectValue",
        "CurrentIndex",
        "Items",
        "Properties",
        "Children",
        "HeaderActions",
        "Actions",
        "Columns",
    }
)

_FORM_KEYS = frozenset({"ViewMode", "ServerId", "CacheKey", "AppName", "AppPublisher", "AppVersion"})


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _opt_int(value: Any) -> int | None:
    # bool is an int subclass; never treat flags as ids
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


# Wire key -> Control attribute for every nested control array
_CHILD_ARRAYS: tuple[tuple[str, str], ...] = (
    ("Children", "children"),
    ("HeaderActions", "header_actions"),
    ("Actions", "actions"),
    ("Columns", "columns"),
)


def _attach_children(root: Control, raw: dict[str, Any]) -> None:
    # Explicit stack; server trees can nest deeper than the recursion limit.
    stack: list[tuple[Control, dict[str, Any]]] = [(root, raw)]
    while stack:
        node, node_raw = stack.pop()
        for key, attr in _CHILD_ARRAYS:
            items = node_raw.get(key)
            if not isinstance(items, list):
                continue
            built: list[Control] = getattr(node, attr)
            for item in items:
                if isinstance(item, dict):
                    child = Control._flat(item)
                    stack.append((child, item))
                else:
                    # Placeholder keeps indexes aligned with the wire
                    child = Control(extras={"raw": item})
                built.append(child)


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Control:
    """One node of the UI-description tree."""

    t: str | None = None
    caption: str | None = None
    design_name: str | None = None
    name: str | None = None
    control_identifier: str | None = None
    control_id: int | None = None
    table_field_no: int | None = None
    column_binder_name: str | None = None
    visible: bool = True
    enabled: bool = True
    string_value: Any = None
    object_value: Any = None
    current_index: int | None = None
    items: list[Any] | None = None
    properties: dict[str, Any] = field(default_factory=dict)
    children: list[Control] = field(default_factory=list)
    header_actions: list[Control] = field(default_factory=list)
    actions: list[Control] = field(default_factory=list)
    columns: list[Control] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def _kwargs(cls, raw: dict[str, Any]) -> dict[str, Any]:
        binder = raw.get("ColumnBinder")
        props = raw.get("Properties")
        items = raw.get("Items")
        control_id = raw.get("ControlId", raw.get("ControlID"))
        field_no = raw.get("TableFieldNo", raw.get("FieldNo"))
        return {
            "t": _opt_str(raw.get("t")),
            "caption": _opt_str(raw.get("Caption")),
            "design_name": _opt_str(raw.get("DesignName")),
            "name": _opt_str(raw.get("Name")),
            "control_identifier": _opt_str(raw.get("ControlIdentifier")),
            "control_id": _opt_int(control_id),
            "table_field_no": _opt_int(field_no),
            "column_binder_name": _opt_str(binder.get("Name")) if isinstance(binder, dict) else None,
            "visible": raw.get("Visible") is not False,
            "enabled": raw.get("Enabled") is not False,
            "string_value": raw.get("StringValue"),
            "object_value": raw.get("ObjectValue"),
            "current_index": _opt_int(raw.get("CurrentIndex")),
            "items": list(items) if isinstance(items, list) else None,
            "properties": dict(props) if isinstance(props, dict) else {},
        }

    @classmethod
    def _flat(cls, raw: dict[str, Any]) -> Control:
        extras = {k: v for k, v in raw.items() if k not in _MODELED_KEYS}
        return cls(**cls._kwargs(raw), extras=extras)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Control:
        control = cls._flat(raw)
        _attach_children(control, raw)
        return control

    @property
    def display_name(self) -> str | None:
        """Design name, then internal name, then caption."""
        return self.design_name or self.name or self.caption


@dataclass(slots=True)
class LogicalForm(Control):
    """Root control of one open form."""

    server_id: str | None = None
    cache_key: str | None = None
    view_mode: int | None = None
    app_name: str | None = None
    app_publisher: str | None = None
    app_version: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LogicalForm:
        extras = {k: v for k, v in raw.items() if k not in _MODELED_KEYS and k not in _FORM_KEYS}
        form = cls(
            **cls._kwargs(raw),
            extras=extras,
            server_id=_opt_str(raw.get("ServerId")),
            cache_key=_opt_str(raw.get("CacheKey")),
            view_mode=_opt_int(raw.get("ViewMode")),
            app_name=_opt_str(raw.get("AppName")),
            app_publisher=_opt_str(raw.get("AppPublisher")),
            app_version=_opt_str(raw.get("AppVersion")),
        )
        _attach_children(form, raw)
        return form


def _copy_node(control: C) -> C:
    node = copy.copy(control)
    node.properties = copy.deepcopy(control.properties)
    node.items = copy.deepcopy(control.items)
    node.extras = copy.deepcopy(control.extras)
    return node


def clone_form(form: C) -> C:
    """Deep copy; overlays mutate the copy, never the cached template."""
    root = _copy_node(form)
    stack: list[Control] = [root]
    while stack:
        node = stack.pop()
        for _, attr in _CHILD_ARRAYS:
            copies = [_copy_node(child) for child in getattr(node, attr)]
            setattr(node, attr, copies)
            stack.extend(copies)
    return root


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_SEGMENT_RE = re.compile(r"(\w+)\[(\d{1,9})\]", re.ASCII)


def child_path(parent_path: str, kind: str, index: int) -> str:
    """Path of entry *index* in the *kind* array (``ha``, ``a`` or ``c``) of *parent_path*."""
    separator = ":" if parent_path == ROOT_PATH else "/"
    return f"{parent_path}{separator}{kind}[{index}]"


def _array_for(control: Control, kind: str) -> list[Control]:
    if kind == "ha":
        return control.header_actions
    if kind == "a":
        return control.actions
    # c[...] and any type-prefixed form (gc[...], sc[...]) address Children
    return control.children


def resolve_control_by_path(form: Control, path: str) -> Control | None:
    """The control addressed by *path*, or None.  Never raises."""
    if not isinstance(path, str):
        return None
    if path in (ROOT_PATH, f"{ROOT_PATH}:"):
        return form
    remainder = path.removeprefix(f"{ROOT_PATH}:")
    if not remainder:
        return form

    current = form
    for segment in remainder.split("/"):
        if not segment:
            continue
        m = _SEGMENT_RE.fullmatch(segment)
        if m is None:
            logger.debug("Unparsable path segment %r in %r", segment, path)
            return None
        array = _array_for(current, m.group(1))
        index = int(m.group(2))
        if index >= len(array):
            logger.debug("Index %d out of range at %r in %r", index, segment, path)
            return None
        current = array[index]
    return current


# ---------------------------------------------------------------------------
# Walking
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WalkedControl:
    control: Control
    path: str
    depth: int


def walk(root: Control, path: str = ROOT_PATH) -> Iterator[WalkedControl]:
    """Depth-first pre-order: node, HeaderActions, Actions, Children."""
    stack: list[WalkedControl] = [WalkedControl(root, path, 0)]
    while stack:
        item = stack.pop()
        yield item
        pending: list[WalkedControl] = []
        for kind, array in (("ha", item.control.header_actions), ("a", item.control.actions), ("c", item.control.children)):
            for i, child in enumerate(array):
                pending.append(WalkedControl(child, child_path(item.path, kind, i), item.depth + 1))
        stack.extend(reversed(pending))


class ControlVisitor(Protocol):
    """Return False from ``visit`` to skip the node's subtree."""

    finished: bool

    def visit(self, control: Control, depth: int, path: str) -> bool: ...


class ControlWalker:
    """Visitor-driven walk with subtree pruning and early stop."""

    def walk(self, root: Control, visitor: ControlVisitor) -> None:
        stack = [WalkedControl(root, ROOT_PATH, 0)]
        while stack and not visitor.finished:
            item = stack.pop()
            if not visitor.visit(item.control, item.depth, item.path):
                continue
            pending = [
                WalkedControl(child, child_path(item.path, kind, i), item.depth + 1)
                for kind, array in (("ha", item.control.header_actions), ("a", item.control.actions), ("c", item.control.children))
                for i, child in enumerate(array)
            ]
            stack.extend(reversed(pending))


class TypeFilterVisitor:
    """Collects controls whose type tag is in *types*."""

    def __init__(self, types: frozenset[str] | set[str] | tuple[str, ...]) -> None:
        self.types = frozenset(types)
        self.finished = False
        self.matches: list[WalkedControl] = []

    def visit(self, control: Control, depth: int, path: str) -> bool:
        if control.t in self.types:
            self.matches.append(WalkedControl(control, path, depth))
        return True


class FindByIdVisitor:
    """Stops at the first control whose ControlIdentifier equals *control_identifier*."""

    def __init__(self, control_identifier: str) -> None:
        self.control_identifier = control_identifier
        self.finished = False
        self.found: WalkedControl | None = None

    def visit(self, control: Control, depth: int, path: str) -> bool:
        if control.control_identifier == self.control_identifier:
            self.found = WalkedControl(control, path, depth)
            self.finished = True
            return False
        return True


class StatisticsVisitor:
    def __init__(self) -> None:
        self.finished = False
        self.total_controls = 0
        self.max_depth = 0
        self.type_counts: Counter[str] = Counter()

    def visit(self, control: Control, depth: int, path: str) -> bool:
        self.total_controls += 1
        self.max_depth = max(self.max_depth, depth)
        self.type_counts[control.t or "?"] += 1
        return True

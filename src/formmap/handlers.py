# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Typed view over raw handler records.

A raw handler is ``{"handlerType": "DN.<Name>", "parameters": [...]}``.
``parse_handler`` maps it onto a closed set of frozen dataclasses; anything
unrecognised or malformed becomes ``UnknownHandler`` so one bad record never
aborts a batch.  Every typed handler keeps its ``raw`` record.

Change records inside a change batch use a ``t`` discriminator that the
server sends either as a full name or as a short alias::

    PropertyChanges    PropertyChanges, lcpchs, prc
    DataRefreshChange  DataRefreshChange, drch
    DataRowInserted    DataRowInserted, drich
    DataRowUpdated     DataRowUpdated, druch
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from . import FieldValue, errors
from .control_tree import LogicalForm
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)

EVENT_RAISING_HANDLER = "DN.LogicalClientEventRaisingHandler"
CHANGE_HANDLER = "DN.LogicalClientChangeHandler"
CALLBACK_RESPONSE = "DN.CallbackResponseProperties"
ERROR_MESSAGE = "DN.ErrorMessageProperties"
ERROR_DIALOG = "DN.ErrorDialogProperties"
VALIDATION_MESSAGE = "DN.ValidationMessageProperties"
CONFIRM_DIALOG = "DN.ConfirmDialogProperties"
YES_NO_DIALOG = "DN.YesNoDialogProperties"
SESSION_INIT = "DN.SessionInitHandler"

# canonical name -> every discriminator the server uses for it
CHANGE_ALIASES: dict[str, tuple[str, ...]] = {
    "PropertyChanges": ("PropertyChanges", "lcpchs", "prc"),
    "PropertyChange": ("PropertyChange", "lcpch", "prch"),
    "DataRefreshChange": ("DataRefreshChange", "drch"),
    "DataRowInserted": ("DataRowInserted", "drich"),
    "DataRowUpdated": ("DataRowUpdated", "druch"),
    "DataRowRemoved": ("DataRowRemoved", "drrch"),
}

_CANONICAL_CHANGE: dict[str, str] = {alias: name for name, aliases in CHANGE_ALIASES.items() for alias in aliases}


def canonical_change_type(t: Any) -> str | None:
    """Full change type name for *t*, or None when it is not a known alias."""
    return _CANONICAL_CHANGE.get(t) if isinstance(t, str) else None


# ---------------------------------------------------------------------------
# Changes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RowInserted:
    index: int | None
    bookmark: str | None
    cells: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RowUpdated:
    index: int | None
    bookmark: str | None
    cells: dict[str, Any] = field(default_factory=dict)


Row: TypeAlias = RowInserted | RowUpdated


@dataclass(frozen=True, slots=True)
class PropertyChanges:
    """Property deltas for one control, merged into its ``properties`` bag."""

    control_path: str | None
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DataRefreshChange:
    control_path: str | None
    rows: tuple[Row, ...] = ()

    @property
    def inserted_rows(self) -> tuple[RowInserted, ...]:
        return tuple(r for r in self.rows if isinstance(r, RowInserted))


@dataclass(frozen=True, slots=True)
class DataRowUpdated:
    control_path: str | None
    row: RowUpdated | None = None


@dataclass(frozen=True, slots=True)
class UnknownChange:
    t: str | None
    raw: Any = field(default=None, repr=False, compare=False)


Change: TypeAlias = PropertyChanges | DataRefreshChange | DataRowUpdated | UnknownChange


def _control_path(raw: dict[str, Any]) -> str | None:
    ref = raw.get("ControlReference")
    if isinstance(ref, dict):
        path = ref.get("controlPath", ref.get("ControlPath"))
        return path if isinstance(path, str) else None
    return None


def _property_deltas(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return dict(raw)
    # Typed batches send [{PropertyName, PropertyValue}, ...]
    deltas: dict[str, Any] = {}
    if isinstance(raw, list):
        for item in raw:
            if isinstance(item, dict) and isinstance(item.get("PropertyName"), str):
                deltas[item["PropertyName"]] = item.get("PropertyValue")
    return deltas


def _row_payload(raw: dict[str, Any], canonical: str) -> tuple[int | None, dict[str, Any]] | None:
    # [index, {bookmark, cells}] under the discriminator or its full name
    for key in (raw.get("t"), canonical):
        payload = raw.get(key) if isinstance(key, str) else None
        if isinstance(payload, list) and len(payload) >= 2 and isinstance(payload[1], dict):
            index = payload[0] if isinstance(payload[0], int) and not isinstance(payload[0], bool) else None
            return index, payload[1]
    # {Index, Row: {...}}
    row = raw.get("Row")
    if isinstance(row, dict):
        index = raw.get("Index")
        return (index if isinstance(index, int) else None), row
    return None


def _bookmark(row: dict[str, Any]) -> str | None:
    value = row.get("bookmark", row.get("Bookmark"))
    return None if value is None else str(value)


def _cells(row: dict[str, Any]) -> dict[str, Any]:
    cells = row.get("cells", row.get("Cells"))
    return dict(cells) if isinstance(cells, dict) else {}


def parse_row(raw: Any) -> Row | None:
    """Row insert or update record, or None for any other row change."""
    if not isinstance(raw, dict):
        return None
    canonical = canonical_change_type(raw.get("t"))
    if canonical not in ("DataRowInserted", "DataRowUpdated"):
        return None
    payload = _row_payload(raw, canonical)
    if payload is None:
        logger.debug("Row change %r without row data", raw.get("t"))
        return None
    index, row = payload
    cls = RowInserted if canonical == "DataRowInserted" else RowUpdated
    return cls(index=index, bookmark=_bookmark(row), cells=_cells(row))


def parse_change(raw: Any) -> Change:
    if not isinstance(raw, dict):
        return UnknownChange(None, raw)
    t = raw.get("t")
    canonical = canonical_change_type(t)

    if canonical == "PropertyChanges":
        return PropertyChanges(_control_path(raw), _property_deltas(raw.get("Changes")))
    if canonical == "PropertyChange" and isinstance(raw.get("PropertyName"), str):
        return PropertyChanges(_control_path(raw), {raw["PropertyName"]: raw.get("PropertyValue")})
    if canonical == "DataRefreshChange":
        row_changes = raw.get("RowChanges")
        rows = [parse_row(r) for r in row_changes] if isinstance(row_changes, list) else []
        return DataRefreshChange(_control_path(raw), tuple(r for r in rows if r is not None))
    if canonical == "DataRowUpdated":
        row = parse_row(raw)
        return DataRowUpdated(_control_path(raw), row if isinstance(row, RowUpdated) else None)

    return UnknownChange(t if isinstance(t, str) else None, raw)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FormToShow:
    form: LogicalForm
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def server_id(self) -> str | None:
        return self.form.server_id


@dataclass(frozen=True, slots=True)
class DialogToShow:
    server_id: str | None
    caption: str | None
    message: str | None
    form: LogicalForm | None = None
    originating_form_id: str | None = None
    originating_control_path: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class ChangeBatch:
    form_id: str | None
    changes: tuple[Change, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class CallbackResponse:
    form_id: str | None  # CompletedInteractions[0].Result.value
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    kind: str  # "ErrorMessage" or "ErrorDialog"
    message: str | None
    caption: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class ValidationMessage:
    message: str | None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class ConfirmDialog:
    kind: str  # "Confirm" or "YesNo"
    message: str | None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class SessionInit:
    parameters: tuple[Any, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class UnknownHandler:
    handler_type: str | None
    raw: Any = field(default=None, repr=False, compare=False)


Handler: TypeAlias = (
    FormToShow
    | DialogToShow
    | ChangeBatch
    | CallbackResponse
    | ErrorEvent
    | ValidationMessage
    | ConfirmDialog
    | SessionInit
    | UnknownHandler
)


def _first_dict(params: list[Any]) -> dict[str, Any]:
    return params[0] if params and isinstance(params[0], dict) else {}


def _message(payload: dict[str, Any]) -> str | None:
    value = payload.get("Message", payload.get("message", payload.get("ErrorMessage")))
    return None if value is None else str(value)


def _callback_form_id(params: list[Any]) -> str | None:
    interactions = _first_dict(params).get("CompletedInteractions")
    if not isinstance(interactions, list) or not interactions or not isinstance(interactions[0], dict):
        return None
    result = interactions[0].get("Result")
    if not isinstance(result, dict) or result.get("value") is None:
        return None
    return str(result["value"])


def _parse_event(raw: dict[str, Any], params: list[Any]) -> Handler:
    event = params[0] if params else None
    payload = params[1] if len(params) > 1 else None
    if event == "FormToShow":
        if not isinstance(payload, dict):
            raise errors.HandlerParseError("FormToShow without a form", handler_type=EVENT_RAISING_HANDLER)
        return FormToShow(LogicalForm.from_dict(payload), raw)
    if event == "DialogToShow":
        if not isinstance(payload, dict):
            raise errors.HandlerParseError("DialogToShow without a dialog", handler_type=EVENT_RAISING_HANDLER)
        origin = payload.get("OriginatingControl")
        origin = origin if isinstance(origin, dict) else {}
        caption = payload.get("Caption", payload.get("caption"))
        return DialogToShow(
            server_id=None if payload.get("ServerId") is None else str(payload["ServerId"]),
            caption=None if caption is None else str(caption),
            message=_message(payload),
            form=LogicalForm.from_dict(payload),
            originating_form_id=None if origin.get("formId") is None else str(origin["formId"]),
            originating_control_path=origin.get("controlPath") if isinstance(origin.get("controlPath"), str) else None,
            raw=raw,
        )
    return UnknownHandler(EVENT_RAISING_HANDLER, raw)


def try_parse_handler(raw: Any) -> Result[Handler, errors.HandlerParseError]:
    """Typed handler for *raw*; ``Err`` when a known handler type is malformed."""
    if not isinstance(raw, dict):
        return Err(errors.HandlerParseError("Handler record is not an object", context={"actual_type": type(raw).__name__}))
    handler_type = raw.get("handlerType")
    params = raw.get("parameters")
    params = params if isinstance(params, list) else []

    try:
        match handler_type:
            case "DN.LogicalClientEventRaisingHandler":
                return Ok(_parse_event(raw, params))
            case "DN.LogicalClientChangeHandler":
                form_id = params[0] if params else None
                changes = params[1] if len(params) > 1 and isinstance(params[1], list) else []
                return Ok(
                    ChangeBatch(
                        form_id=None if form_id is None else str(form_id),
                        changes=tuple(parse_change(c) for c in changes),
                        raw=raw,
                    )
                )
            case "DN.CallbackResponseProperties":
                return Ok(CallbackResponse(_callback_form_id(params), raw))
            case "DN.ErrorMessageProperties" | "DN.ErrorDialogProperties":
                payload = _first_dict(params)
                kind = "ErrorMessage" if handler_type == ERROR_MESSAGE else "ErrorDialog"
                caption = payload.get("Caption")
                return Ok(ErrorEvent(kind, _message(payload), None if caption is None else str(caption), raw))
            case "DN.ValidationMessageProperties":
                return Ok(ValidationMessage(_message(_first_dict(params)), raw))
            case "DN.ConfirmDialogProperties" | "DN.YesNoDialogProperties":
                kind = "Confirm" if handler_type == CONFIRM_DIALOG else "YesNo"
                return Ok(ConfirmDialog(kind, _message(_first_dict(params)), raw))
            case "DN.SessionInitHandler":
                return Ok(SessionInit(tuple(params), raw))
            case _:
                return Ok(UnknownHandler(handler_type if isinstance(handler_type, str) else None, raw))
    except errors.HandlerParseError as exc:
        return Err(exc)


def parse_handler(raw: Any) -> Handler:
    """Never raises; malformed records are logged and become ``UnknownHandler``."""
    result = try_parse_handler(raw)
    if isinstance(result, Err):
        logger.warning("Skipping malformed handler: %s", result.error.message)
        handler_type = raw.get("handlerType") if isinstance(raw, dict) else None
        return UnknownHandler(handler_type if isinstance(handler_type, str) else None, raw)
    return result.value


def parse_handlers(raw_handlers: Iterable[Any]) -> list[Handler]:
    return [parse_handler(h) for h in raw_handlers]


_HANDLER_CLASSES = (
    FormToShow,
    DialogToShow,
    ChangeBatch,
    CallbackResponse,
    ErrorEvent,
    ValidationMessage,
    ConfirmDialog,
    SessionInit,
    UnknownHandler,
)


def _typed(handlers: Iterable[Any]) -> Iterator[Handler]:
    # Accepts raw records and already-parsed handlers alike
    for h in handlers:
        yield h if isinstance(h, _HANDLER_CLASSES) else parse_handler(h)


def iter_changes(handlers: Iterable[Any]) -> Iterator[Change]:
    """Every change of every change batch, in arrival order."""
    for h in _typed(handlers):
        if isinstance(h, ChangeBatch):
            yield from h.changes


# ---------------------------------------------------------------------------
# Cell values
# ---------------------------------------------------------------------------

_CELL_KEYS: tuple[tuple[str, str], ...] = (
    ("sv", "string"),
    ("i32v", "number"),
    ("dcv", "number"),
    ("bv", "boolean"),
    ("dtv", "date"),
    ("stringValue", "string"),
    ("decimalValue", "number"),
    ("intValue", "number"),
    ("boolValue", "boolean"),
    ("dateTimeValue", "date"),
)


def decode_cell_value(cell: Any) -> FieldValue | None:
    """Typed value of one row cell, or None when the cell carries no value.

    Short keys win over long keys, and any typed key wins over
    ``objectValue``, which comes last and infers its type from the JSON value.
    """
    if not isinstance(cell, dict):
        return None
    for key, kind in _CELL_KEYS:
        if key in cell:
            return FieldValue(value=cell[key], type=kind)
    if "objectValue" in cell:
        value = cell["objectValue"]
        if isinstance(value, bool):
            return FieldValue(value=value, type="boolean")
        if isinstance(value, (int, float)):
            return FieldValue(value=value, type="number")
        return FieldValue(value=value, type="string")
    return None


# ---------------------------------------------------------------------------
# Session and form lookup
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SessionInfo:
    server_session_id: str | None = None
    session_key: str | None = None
    company_name: str | None = None
    role_center_form_id: str | None = None


_SESSION_KEYS = {
    "ServerSessionId": "server_session_id",
    "SessionKey": "session_key",
    "CompanyName": "company_name",
}


def _search_session_fields(node: Any, found: dict[str, str]) -> None:
    # Iterative walk; handler parameter trees can be deep
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, list):
            stack.extend(reversed(current))
        elif isinstance(current, dict):
            for wire_key, attr in _SESSION_KEYS.items():
                value = current.get(wire_key)
                if value and attr not in found:
                    found[attr] = str(value)
            stack.extend(reversed(list(current.values())))


def extract_session_info(raw_handlers: Iterable[Any]) -> SessionInfo | None:
    """Session id, key and company found anywhere in the parameters; first value wins."""
    raw_handlers = list(raw_handlers)
    found: dict[str, str] = {}
    for h in raw_handlers:
        if isinstance(h, dict) and "parameters" in h:
            _search_session_fields(h["parameters"], found)
    if not found:
        return None

    for h in _typed(raw_handlers):
        if isinstance(h, FormToShow) and h.server_id:
            found["role_center_form_id"] = h.server_id
            break
    return SessionInfo(**found)


def extract_form_id(handlers: Iterable[Any]) -> str | None:
    """Form id reported by the first callback response."""
    for h in _typed(handlers):
        if isinstance(h, CallbackResponse):
            if h.form_id is None:
                logger.debug("Callback response without completed interactions")
            return h.form_id
    logger.debug("No callback response among handlers")
    return None


def extract_logical_form(
    handlers: Iterable[Any], form_id: str | None = None
) -> Result[LogicalForm, errors.LogicalFormParseError]:
    """The form shown by the handlers, matched on *form_id* when given.

    Falls back to the first FormToShow when no ServerId matches.  A dialog
    with no form means the page could not be opened.
    """
    typed = list(_typed(handlers))
    forms = [h for h in typed if isinstance(h, FormToShow)]
    type_names = [type(h).__name__ for h in typed]

    if not forms:
        dialog = next((h for h in typed if isinstance(h, DialogToShow)), None)
        if dialog is not None:
            caption = dialog.caption or "Dialog"
            message = dialog.message or "Unknown dialog"
            return Err(
                errors.LogicalFormParseError(
                    f"Page cannot be opened: {caption} - {message}",
                    context={
                        "handler_count": len(typed),
                        "handler_types": type_names,
                        "dialog_caption": caption,
                        "dialog_message": message,
                    },
                )
            )
        return Err(
            errors.LogicalFormParseError(
                "No FormToShow event found in handlers",
                context={"handler_count": len(typed), "handler_types": type_names},
            )
        )

    selected = forms[0]
    if form_id is not None:
        match = next((f for f in forms if f.server_id == form_id), None)
        if match is None:
            logger.debug("No form with ServerId %s among %d, using the first", form_id, len(forms))
        else:
            selected = match
    return Ok(selected.form)


# ---------------------------------------------------------------------------
# Error events
# ---------------------------------------------------------------------------


def error_from_event(event: ErrorEvent | ValidationMessage) -> errors.FormMapError:
    """Typed error for a server error or validation handler."""
    if isinstance(event, ValidationMessage):
        message = event.message or "Validation failed"
        return errors.InputValidationError(
            f"Server validation error: {message}",
            context={"server_message": event.message},
        )
    message = event.message or "Unknown error"
    return errors.BusinessLogicError(
        f"Server returned error: {message}",
        context={"error_type": event.kind, "caption": event.caption, "server_message": event.message},
    )


def find_error(handlers: Iterable[Any]) -> errors.FormMapError | None:
    """First error or validation handler as a typed error, or None."""
    for h in _typed(handlers):
        if isinstance(h, (ErrorEvent, ValidationMessage)):
            return error_from_event(h)
    return None

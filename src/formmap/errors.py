# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""FormMap exception hierarchy.

All FormMap-specific errors inherit from FormMapError, allowing callers
to catch the base class for any FormMap failure or specific subclasses
for targeted handling.

Every error carries a stable string ``code``, a UTC ``timestamp`` and a
free-form ``context`` dict.  Families:

- connection / transport
- protocol / decoding
- parsing
- validation
- business logic / not found
- tool surface
- internal

Note: ``ConnectionError`` and ``TimeoutError`` deliberately shadow the
builtins inside this module.  Import the module (``from . import errors``)
and qualify them at call sites.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any


class FormMapError(Exception):
    """Base exception for all FormMap errors."""

    code = "FORMMAP_ERROR"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.timestamp = datetime.now(UTC)
        self.context: dict[str, Any] = dict(context) if context else {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }

    def describe(self) -> str:
        """One-line ``[CODE] Name: message | context`` rendering for logs."""
        ctx = f" | context: {self.context}" if self.context else ""
        return f"[{self.code}] {type(self).__name__}: {self.message}{ctx}"


def _with(context: dict[str, Any] | None, **extra: Any) -> dict[str, Any]:
    merged = dict(context) if context else {}
    merged.update({k: v for k, v in extra.items() if v is not None})
    return merged


# ---------------------------------------------------------------------------
# Connection / transport
# ---------------------------------------------------------------------------


class ConnectionError(FormMapError):  # noqa: A001
    """Generic connection failure."""

    code = "CONNECTION_ERROR"


class AuthenticationError(FormMapError):
    """Credentials rejected by the server."""

    code = "AUTH_ERROR"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context=_with(context, subtype="authentication"))


class WebSocketConnectionError(FormMapError):
    """Socket-level failure (handshake, unexpected close)."""

    code = "WS_CONNECTION_ERROR"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context=_with(context, subtype="websocket"))


class SessionExpiredError(FormMapError):
    code = "SESSION_EXPIRED"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context=_with(context, subtype="session_expired"))


class TimeoutError(FormMapError):  # noqa: A001
    """A deadline elapsed before the operation completed."""

    code = "TIMEOUT_ERROR"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context=_with(context, subtype="timeout"))


class AbortedError(FormMapError):
    """The operation was cancelled by its caller."""

    code = "ABORTED_ERROR"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context=_with(context, subtype="aborted"))


class NetworkError(FormMapError):
    code = "NETWORK_ERROR"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context=_with(context, subtype="network"))


# ---------------------------------------------------------------------------
# Protocol / decoding
# ---------------------------------------------------------------------------


class ProtocolError(FormMapError):
    """Server response violated the expected protocol."""

    code = "PROTOCOL_ERROR"


class JsonRpcError(FormMapError):
    """JSON-RPC ``error`` member returned by the server."""

    code = "JSONRPC_ERROR"

    def __init__(
        self,
        message: str,
        *,
        rpc_error_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=_with(context, rpc_error_code=rpc_error_code))
        self.rpc_error_code = rpc_error_code


class DecompressionError(FormMapError):
    """Base64 or gzip decoding of a compressed payload failed."""

    code = "DECOMPRESSION_ERROR"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context=_with(context, subtype="decompression"))


class InvalidResponseError(FormMapError):
    code = "INVALID_RESPONSE"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context=_with(context, subtype="invalid_response"))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class ParseError(FormMapError):
    code = "PARSE_ERROR"


class HandlerParseError(FormMapError):
    code = "HANDLER_PARSE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        handler_type: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=_with(context, handler_type=handler_type))
        self.handler_type = handler_type


class ControlParseError(FormMapError):
    code = "CONTROL_PARSE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        control_type: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=_with(context, control_type=control_type))
        self.control_type = control_type


class LogicalFormParseError(FormMapError):
    """A form could not be parsed or extracted as a whole."""

    code = "LOGICAL_FORM_PARSE_ERROR"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context=_with(context, subtype="logical_form"))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(FormMapError):
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        validation_errors: Sequence[str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        errors = tuple(validation_errors) if validation_errors is not None else None
        super().__init__(message, context=_with(context, field=field, validation_errors=errors))
        self.field = field
        self.validation_errors = errors


class ConfigValidationError(ValidationError):
    """Invalid configuration value (env var or constructor argument)."""

    code = "CONFIG_VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, field=field, context=_with(context, subtype="config"))


class InputValidationError(ValidationError):
    code = "INPUT_VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        validation_errors: Sequence[str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            field=field,
            validation_errors=validation_errors,
            context=_with(context, subtype="input"),
        )


class SchemaValidationError(ValidationError):
    code = "SCHEMA_VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        validation_errors: Sequence[str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, validation_errors=validation_errors, context=_with(context, subtype="schema"))


# ---------------------------------------------------------------------------
# Business logic / not found
# ---------------------------------------------------------------------------


class BusinessLogicError(FormMapError):
    code = "BUSINESS_LOGIC_ERROR"


class PageNotFoundError(FormMapError):
    code = "PAGE_NOT_FOUND"

    def __init__(self, page_id: str, message: str | None = None, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message or f"Page {page_id} not found", context=_with(context, page_id=page_id))
        self.page_id = page_id


class ActionNotFoundError(FormMapError):
    code = "ACTION_NOT_FOUND"

    def __init__(self, action_name: str, message: str | None = None, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message or f"Action {action_name} not found", context=_with(context, action_name=action_name))
        self.action_name = action_name


class FieldNotFoundError(FormMapError):
    code = "FIELD_NOT_FOUND"

    def __init__(self, field_name: str, message: str | None = None, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message or f"Field {field_name} not found", context=_with(context, field_name=field_name))
        self.field_name = field_name


class RecordNotFoundError(FormMapError):
    code = "RECORD_NOT_FOUND"

    def __init__(self, record_id: str, message: str | None = None, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message or f"Record {record_id} not found", context=_with(context, record_id=record_id))
        self.record_id = record_id


class PermissionDeniedError(FormMapError):
    code = "PERMISSION_DENIED"

    def __init__(
        self,
        message: str,
        *,
        resource: str | None = None,
        action: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=_with(context, resource=resource, action=action))
        self.resource = resource
        self.action = action


class ActionDisabledError(FormMapError):
    code = "ACTION_DISABLED"

    def __init__(self, action_name: str, message: str | None = None, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message or f"Action {action_name} is disabled", context=_with(context, action_name=action_name))
        self.action_name = action_name


class FieldReadOnlyError(FormMapError):
    code = "FIELD_READONLY"

    def __init__(self, field_name: str, message: str | None = None, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message or f"Field {field_name} is read-only", context=_with(context, field_name=field_name))
        self.field_name = field_name


# ---------------------------------------------------------------------------
# Tool surface
# ---------------------------------------------------------------------------


class ToolError(FormMapError):
    """Failure raised at the tool boundary that consumes this package."""

    code = "TOOL_ERROR"


class ToolNotFoundError(FormMapError):
    code = "TOOL_NOT_FOUND"

    def __init__(self, tool_name: str, message: str | None = None, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message or f"Tool {tool_name} not found", context=_with(context, tool_name=tool_name))
        self.tool_name = tool_name


class ResourceNotFoundError(FormMapError):
    code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource_uri: str, message: str | None = None, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(
            message or f"Resource {resource_uri} not found",
            context=_with(context, resource_uri=resource_uri),
        )
        self.resource_uri = resource_uri


class InvalidArgumentsError(FormMapError):
    code = "INVALID_ARGUMENTS"

    def __init__(self, message: str, *, tool_name: str | None = None, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context=_with(context, tool_name=tool_name))
        self.tool_name = tool_name


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------


class InternalError(FormMapError):
    code = "INTERNAL_ERROR"


class NotImplementedFeatureError(FormMapError):
    code = "NOT_IMPLEMENTED"

    def __init__(self, feature: str, message: str | None = None, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message or f"Feature {feature} is not implemented", context=_with(context, feature=feature))
        self.feature = feature


class UnreachableError(FormMapError):
    """An invariant was violated.  Raised, never returned."""

    code = "UNREACHABLE"

    def __init__(self, message: str | None = None, *, value: Any = None, context: dict[str, Any] | None = None) -> None:
        super().__init__(message or "Unreachable code path executed", context=_with(context, value=value))

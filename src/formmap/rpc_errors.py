# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Outward error mapping: FormMap exceptions → JSON-RPC error objects.

The calling protocol layer only understands a small fixed set of numeric
codes.  Each exception class maps to one of them by *class name* through a
dict lookup, so adding a class never requires touching an isinstance chain.

Key public API:

- ``RpcCode``: IntEnum of the numeric codes.
- ``RpcErrorResponse``: frozen dataclass (→ JSON dict).
- ``to_rpc_error()``: build a response from any exception.
- ``sanitize_detail()``: scrub secrets & paths from error messages.
- ``error_from_status()``: normalize a server HTTP status into the taxonomy.
"""

from __future__ import annotations

import os
import re
import traceback
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from . import errors

# ── Constants ────────────────────────────────────────────────────────

MAX_DETAIL_LENGTH = 500

# ── Numeric codes ────────────────────────────────────────────────────


class RpcCode(IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    TIMEOUT = -32000
    AUTHENTICATION = -32001
    PERMISSION_DENIED = -32002
    NETWORK = -32003
    BUSINESS_LOGIC = -32040
    VALIDATION = -32041
    PROTOCOL = -32042
    CONNECTION = -32043
    NOT_FOUND = -32044
    READ_ONLY = -32046


# ── Class name → code ────────────────────────────────────────────────

_CODE_BY_NAME: dict[str, RpcCode] = {
    "InputValidationError": RpcCode.INVALID_PARAMS,
    "InvalidArgumentsError": RpcCode.INVALID_PARAMS,
    "ToolNotFoundError": RpcCode.METHOD_NOT_FOUND,
    "NotImplementedFeatureError": RpcCode.METHOD_NOT_FOUND,
    "AuthenticationError": RpcCode.AUTHENTICATION,
    "SessionExpiredError": RpcCode.AUTHENTICATION,
    "PermissionDeniedError": RpcCode.PERMISSION_DENIED,
    "NetworkError": RpcCode.NETWORK,
    "TimeoutError": RpcCode.TIMEOUT,
    "ConnectionError": RpcCode.CONNECTION,
    "WebSocketConnectionError": RpcCode.CONNECTION,
    "ProtocolError": RpcCode.PROTOCOL,
    "JsonRpcError": RpcCode.PROTOCOL,
    "DecompressionError": RpcCode.PROTOCOL,
    "InvalidResponseError": RpcCode.PROTOCOL,
    "ParseError": RpcCode.PARSE_ERROR,
    "HandlerParseError": RpcCode.PARSE_ERROR,
    "ControlParseError": RpcCode.PARSE_ERROR,
    "LogicalFormParseError": RpcCode.PARSE_ERROR,
    "PageNotFoundError": RpcCode.NOT_FOUND,
    "ActionNotFoundError": RpcCode.NOT_FOUND,
    "FieldNotFoundError": RpcCode.NOT_FOUND,
    "RecordNotFoundError": RpcCode.NOT_FOUND,
    "ResourceNotFoundError": RpcCode.NOT_FOUND,
    "ActionDisabledError": RpcCode.READ_ONLY,
    "FieldReadOnlyError": RpcCode.READ_ONLY,
    "BusinessLogicError": RpcCode.BUSINESS_LOGIC,
    "ValidationError": RpcCode.VALIDATION,
    "SchemaValidationError": RpcCode.VALIDATION,
    "ConfigValidationError": RpcCode.VALIDATION,
    "ToolError": RpcCode.INTERNAL_ERROR,
    "InternalError": RpcCode.INTERNAL_ERROR,
    "UnreachableError": RpcCode.INTERNAL_ERROR,
}


def rpc_code_for(exc: BaseException) -> RpcCode:
    """Numeric code for *exc*; unknown classes map to INTERNAL_ERROR."""
    if not isinstance(exc, errors.FormMapError):
        return RpcCode.INTERNAL_ERROR
    return _CODE_BY_NAME.get(type(exc).__name__, RpcCode.INTERNAL_ERROR)


# ── Secret sanitization patterns ─────────────────────────────────────

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"Bearer\s+\S+"), "Bearer <redacted>"),
    (re.compile(r"Basic\s+[A-Za-z0-9+/=]{8,}"), "Basic <redacted>"),
    (
        re.compile(
            r"(?:API_KEY|SECRET|TOKEN|PASSWORD|CREDENTIAL|SESSIONKEY|SESSION_KEY)\s*[=:]\s*\S+",
            re.IGNORECASE,
        ),
        "<redacted>",
    ),
    (re.compile(r"://[^@\s]+@"), "://<redacted>@"),
    (
        re.compile(r"eyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}"),
        "<redacted>",
    ),
    (re.compile(r"(?i)csrftoken=[^&\s]+"), "csrftoken=<redacted>"),
]

_PATH_PATTERN = re.compile(
    r"(/(?:Users|home|tmp|var|etc|opt|root|srv|usr|Library|private|mnt)/[\w./-]+"
    r"|[A-Z]:\\[\w.\\-]+)"
)


def sanitize_detail(text: str) -> str:
    """Scrub secrets and filesystem paths from *text*.

    Applies ``_SECRET_PATTERNS`` and ``_PATH_PATTERN``, then truncates
    to ``MAX_DETAIL_LENGTH`` characters.
    """
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    text = _PATH_PATTERN.sub("<path>", text)
    if len(text) > MAX_DETAIL_LENGTH:
        text = text[:MAX_DETAIL_LENGTH] + "..."
    return text


def _sanitize_context(context: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in context.items():
        result[key] = sanitize_detail(value) if isinstance(value, str) else value
    return result


# ── Response dataclass ───────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class RpcErrorResponse:
    """JSON-RPC ``error`` member: ``{code, message, data}``."""

    code: int
    message: str
    error_type: str = "Unknown"
    error_code: str = "UNKNOWN_ERROR"
    context: dict[str, Any] = field(default_factory=dict)
    stack: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"errorType": self.error_type, "errorCode": self.error_code}
        if self.context:
            data["context"] = self.context
        if self.stack:
            data["stack"] = self.stack
        return {"code": self.code, "message": self.message, "data": data}


def _is_production() -> bool:
    return os.environ.get("FORMMAP_ENV", "development").strip().lower() == "production"


def to_rpc_error(exc: BaseException, *, include_stack: bool | None = None) -> RpcErrorResponse:
    """Build an RpcErrorResponse from *exc*.

    Stack traces are attached only outside production unless
    *include_stack* says otherwise.
    """
    if include_stack is None:
        include_stack = not _is_production()
    stack = None
    if include_stack and exc.__traceback__ is not None:
        stack = "".join(traceback.format_exception(exc))

    if isinstance(exc, errors.FormMapError):
        return RpcErrorResponse(
            code=int(rpc_code_for(exc)),
            message=sanitize_detail(exc.message),
            error_type=type(exc).__name__,
            error_code=exc.code,
            context=_sanitize_context(exc.context),
            stack=stack,
        )

    return RpcErrorResponse(
        code=int(RpcCode.INTERNAL_ERROR),
        message=sanitize_detail(str(exc)),
        error_type=type(exc).__name__,
        stack=stack,
    )


# ── HTTP status normalization ────────────────────────────────────────


def _body_message(body: dict[str, Any] | None) -> str | None:
    if not body:
        return None
    inner = body.get("error")
    if isinstance(inner, dict) and inner.get("message"):
        return str(inner["message"])
    for key in ("message", "Message", "ExceptionMessage"):
        if body.get(key):
            return str(body[key])
    return None


def error_from_status(
    status: int,
    body: dict[str, Any] | None = None,
    context: dict[str, Any] | None = None,
) -> errors.FormMapError:
    """Map a server HTTP status (plus optional error body) to a typed error.

    Returned, not raised; the transport decides.
    """
    message = _body_message(body)
    ctx: dict[str, Any] = {**(context or {}), "http_status": status}
    if body:
        ctx["error_body"] = body

    match status:
        case 401:
            return errors.AuthenticationError(message or "Authentication failed", context=ctx)
        case 403:
            return errors.PermissionDeniedError(message or "Permission denied", context=ctx)
        case 404:
            text = message or "Resource not found"
            if context and context.get("page_id"):
                return errors.PageNotFoundError(str(context["page_id"]), text, context=ctx)
            record_id = str(context["record_id"]) if context and context.get("record_id") else "unknown"
            return errors.RecordNotFoundError(record_id, text, context=ctx)
        case 408:
            return errors.TimeoutError(message or "Request timeout", context=ctx)
        case 409:
            return errors.BusinessLogicError(message or "Conflict - resource state conflict", context=ctx)
        case 412:
            return errors.BusinessLogicError(message or "Precondition failed", context=ctx)
        case 429:
            return errors.NetworkError(message or "Too many requests - rate limited", context={**ctx, "rate_limited": True})
        case 500:
            return errors.InternalError(message or "Server internal error", context=ctx)
        case 502:
            return errors.ConnectionError(
                message or "Bad gateway - server unreachable", context={**ctx, "gateway_error": True}
            )
        case 503:
            return errors.ConnectionError(
                message or "Service unavailable", context={**ctx, "service_unavailable": True}
            )
        case 504:
            return errors.TimeoutError(
                message or "Gateway timeout - server did not respond in time",
                context={**ctx, "gateway_timeout": True},
            )
        case 400 | 405 | 415:
            return errors.ProtocolError(message or f"Bad request ({status})", context=ctx)

    if 400 <= status < 500:
        return errors.ProtocolError(message or f"Client error: {status}", context=ctx)
    if status >= 500:
        return errors.InternalError(message or f"Server error: {status}", context=ctx)
    return errors.InternalError(message or f"Unexpected HTTP status: {status}", context=ctx)

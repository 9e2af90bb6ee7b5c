# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Inbound envelope classification and payload decompression.

The server wraps handler batches in several envelope shapes.  They are
recognised in this order:

1. ``PUSH``: ``{"method": "Message", "params": [{"sequenceNumber", "compressedResult"|"compressedData", ...}]}``
2. ``COMPRESSED_RESULT``: ``{"compressedResult": "<b64>"}``
3. ``RPC_RESULT``: ``{"jsonrpc", "id", "result": {"compressedResult": "<b64>"}}``
4. ``DECODED``: a bare handler list, or an RPC ``result`` that is already a list
5. ``KEEPALIVE``: anything else; decodes to an empty list

Payloads are base64 → gzip → UTF-8 → JSON array.  Unknown shapes never
fail: keep-alives and unrecognised control messages must not abort a session.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import json
import logging
import zlib
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from . import errors
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)


class EnvelopeShape(StrEnum):
    PUSH = "push"
    COMPRESSED_RESULT = "compressed_result"
    RPC_RESULT = "rpc_result"
    RPC_ERROR = "rpc_error"
    DECODED = "decoded"
    KEEPALIVE = "keepalive"


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class _Wire(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class PushParams(_Wire):
    sequence_number: int | None = Field(None, alias="sequenceNumber")
    compressed_result: str | None = Field(None, alias="compressedResult")
    compressed_data: str | None = Field(None, alias="compressedData")
    open_form_ids: list[str | int] | None = Field(None, alias="openFormIds")

    @property
    def payload(self) -> str | None:
        return self.compressed_result or self.compressed_data


class PushEnvelope(_Wire):
    method: Literal["Message"]
    params: list[PushParams] = Field(min_length=1)


class CompressedResultEnvelope(_Wire):
    compressed_result: str = Field(alias="compressedResult")


class RpcResultBody(_Wire):
    compressed_result: str = Field(alias="compressedResult")


class RpcResultEnvelope(_Wire):
    id: Any = None
    result: RpcResultBody


class RpcErrorBody(_Wire):
    code: int | None = None
    message: str = "JSON-RPC error"
    data: Any = None


class RpcErrorEnvelope(_Wire):
    id: Any = None
    error: RpcErrorBody


# ---------------------------------------------------------------------------
# Decoded output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DecodedEnvelope:
    """Handlers from one inbound message plus the envelope bookkeeping."""

    shape: EnvelopeShape
    handlers: list[Any] = field(default_factory=list)
    sequence_number: int | None = None
    open_form_ids: tuple[str, ...] | None = None


@dataclass(frozen=True, slots=True)
class _Classified:
    shape: EnvelopeShape
    payload: str | None = None
    decoded: list[Any] | None = None
    sequence_number: int | None = None
    open_form_ids: tuple[str, ...] | None = None
    rpc_error: RpcErrorBody | None = None


def _try(model: type[BaseModel], message: Any) -> Any:
    try:
        return model.model_validate(message)
    except PydanticValidationError:
        return None


def _classify(message: Any) -> _Classified:
    if isinstance(message, list):
        return _Classified(EnvelopeShape.DECODED, decoded=message)
    if not isinstance(message, dict):
        return _Classified(EnvelopeShape.KEEPALIVE)

    if message.get("method") == "Message":
        push = _try(PushEnvelope, message)
        if push is not None:
            first = push.params[0]
            open_ids = tuple(str(i) for i in first.open_form_ids) if first.open_form_ids is not None else None
            shape = EnvelopeShape.PUSH if first.payload else EnvelopeShape.KEEPALIVE
            return _Classified(
                shape,
                payload=first.payload,
                sequence_number=first.sequence_number,
                open_form_ids=open_ids,
            )

    top = _try(CompressedResultEnvelope, message) if "compressedResult" in message else None
    if top is not None:
        return _Classified(EnvelopeShape.COMPRESSED_RESULT, payload=top.compressed_result)

    result = message.get("result")
    if isinstance(result, dict):
        rpc = _try(RpcResultEnvelope, message)
        if rpc is not None:
            return _Classified(EnvelopeShape.RPC_RESULT, payload=rpc.result.compressed_result)
    elif isinstance(result, list):
        return _Classified(EnvelopeShape.DECODED, decoded=result)

    if isinstance(message.get("error"), dict):
        rpc_err = _try(RpcErrorEnvelope, message)
        if rpc_err is not None:
            return _Classified(EnvelopeShape.RPC_ERROR, rpc_error=rpc_err.error)

    return _Classified(EnvelopeShape.KEEPALIVE)


def classify_envelope(message: Any) -> EnvelopeShape:
    """Which of the known envelope shapes *message* is."""
    return _classify(message).shape


# ---------------------------------------------------------------------------
# Payload codec
# ---------------------------------------------------------------------------


def decompress_handlers(payload: str) -> Result[list[Any], errors.FormMapError]:
    """base64 → gzip → UTF-8 → JSON array."""
    try:
        raw = base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        return Err(errors.DecompressionError(f"Invalid base64 payload: {exc}", context={"length": len(payload)}))

    try:
        inflated = gzip.decompress(raw)
    except (OSError, EOFError, zlib.error) as exc:
        return Err(errors.DecompressionError(f"gzip inflate failed: {exc}", context={"compressed_bytes": len(raw)}))

    try:
        text = inflated.decode("utf-8")
    except UnicodeDecodeError as exc:
        return Err(errors.ParseError(f"Payload is not valid UTF-8: {exc}"))

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        return Err(errors.ParseError(f"Payload is not valid JSON: {exc.msg}", context={"position": exc.pos}))

    if not isinstance(data, list):
        return Err(
            errors.InvalidResponseError(
                "Decompressed payload is not a handler array",
                context={"actual_type": type(data).__name__},
            )
        )
    return Ok(data)


def encode_handlers(handlers: list[Any]) -> str:
    """Inverse of ``decompress_handlers`` (fixtures and replay tooling)."""
    raw = json.dumps(handlers, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(gzip.compress(raw)).decode("ascii")


# ---------------------------------------------------------------------------
# Envelope → handlers
# ---------------------------------------------------------------------------


def decode_envelope(message: Any) -> Result[DecodedEnvelope, errors.FormMapError]:
    """Decode one inbound message into its handler list.

    *message* may be already-parsed JSON or raw text/bytes.
    """
    if isinstance(message, (str, bytes, bytearray)):
        try:
            message = json.loads(message)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            return Err(errors.ParseError(f"Inbound message is not valid JSON: {exc}"))

    classified = _classify(message)

    if classified.shape is EnvelopeShape.RPC_ERROR:
        body = classified.rpc_error
        return Err(
            errors.JsonRpcError(
                body.message,
                rpc_error_code=body.code,
                context={"data": body.data} if body.data is not None else None,
            )
        )

    handlers: list[Any] = []
    if classified.payload is not None:
        decoded = decompress_handlers(classified.payload)
        if isinstance(decoded, Err):
            decoded.error.context.setdefault("shape", classified.shape.value)
            return decoded
        handlers = decoded.value
    elif classified.decoded is not None:
        handlers = list(classified.decoded)

    if classified.shape is EnvelopeShape.KEEPALIVE:
        logger.debug("Keep-alive or unknown envelope (seq=%s)", classified.sequence_number)

    return Ok(
        DecodedEnvelope(
            shape=classified.shape,
            handlers=handlers,
            sequence_number=classified.sequence_number,
            open_form_ids=classified.open_form_ids,
        )
    )


def decode_handlers(message: Any) -> Result[list[Any], errors.FormMapError]:
    """Just the handler list of ``decode_envelope``."""
    return decode_envelope(message).map_ok(lambda env: env.handlers)

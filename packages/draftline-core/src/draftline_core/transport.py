"""Decoding of raw stream payloads into typed session events."""

from __future__ import annotations

import json
from collections.abc import Mapping

from pydantic import ValidationError

from draftline_core.ports.session import MalformedEventError, RawEvent
from draftline_schemas.events import STREAM_EVENT_ADAPTER, StreamEvent

_PREVIEW_LIMIT = 200


def decode_event(raw: RawEvent) -> StreamEvent:
    """Decode one raw stream payload.

    Args:
        raw: JSON text, UTF-8 bytes, or an already-parsed JSON object.

    Returns:
        StreamEvent: The typed event.

    Raises:
        MalformedEventError: If the payload is not JSON, has an unknown
            ``type`` tag, or is missing required fields.
    """
    preview = _preview(raw)
    if isinstance(raw, Mapping):
        payload: object = dict(raw)
    else:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedEventError(f"invalid JSON: {exc}", preview) from exc
    if not isinstance(payload, dict):
        raise MalformedEventError("event payload must be a JSON object", preview)
    try:
        return STREAM_EVENT_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise MalformedEventError(_summarize(exc), preview) from exc


def _summarize(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "event failed validation"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "event"
    return f"{location}: {first.get('msg', 'invalid value')}"


def _preview(raw: RawEvent) -> str:
    if isinstance(raw, bytes):
        text = raw.decode("utf-8", errors="replace")
    elif isinstance(raw, str):
        text = raw
    else:
        text = repr(dict(raw))
    return text[:_PREVIEW_LIMIT]

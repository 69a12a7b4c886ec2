"""Structured log events for tool runs, temp files and batch variants.

Each event is a single log record on ``media_service.events`` whose message
reads ``[TYPE] message (key=value, ...)`` and whose ``extra`` carries the same
fields for handlers that want them unformatted.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional


EVENT_LOGGER = logging.getLogger("media_service.events")


def _event_fields(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for key, value in (payload or {}).items():
        if value is None:
            continue
        fields[key] = str(value) if isinstance(value, Path) else value
    return fields


def _emit(
    event_type: str,
    message: str,
    payload: Optional[Dict[str, Any]],
    duration_ms: Optional[float],
    level: int,
) -> None:
    fields = _event_fields(payload)
    shown = dict(fields)
    extra: Dict[str, Any] = {"event": message, "event_type": event_type, "event_payload": fields}
    if duration_ms is not None:
        shown["duration_ms"] = round(duration_ms, 1)
        extra["event_duration_ms"] = duration_ms
    text = f"[{event_type}] {message}"
    if shown:
        text += " (" + ", ".join(f"{key}={value}" for key, value in shown.items()) + ")"
    EVENT_LOGGER.log(level, text, extra=extra)


def emit_tool_event(
    tool: str,
    outcome: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
) -> None:
    _emit("TOOL_RUN", f"{tool} {outcome}", payload, duration_ms, level)


def emit_file_event(
    operation: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.DEBUG,
) -> None:
    _emit("FILE_OP", operation, payload, duration_ms, level)


def emit_variant_event(
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
) -> None:
    _emit("VARIANT", message, payload, duration_ms, level)


__all__ = ["EVENT_LOGGER", "emit_file_event", "emit_tool_event", "emit_variant_event"]

"""Optional per-request debug traces surfaced in headers or archive entries."""

from __future__ import annotations

import base64
import contextlib
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple


DEBUG_LEVELS: Tuple[str, ...] = ("debug", "info", "warn", "error", "crit")


def parse_debug_level(value: Optional[str]) -> Optional[str]:
    """Return the normalised level for *value* or ``None`` when unrecognised."""

    if not value:
        return None
    normalized = value.strip().lower()
    return normalized if normalized in DEBUG_LEVELS else None


@dataclass
class DebugStep:
    name: str
    duration_ms: float


@dataclass
class DebugTrace:
    """Timings, summaries and errors accumulated while handling one request."""

    level: str
    request_id: str
    started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    )
    duration_ms: Optional[float] = None
    input: Dict[str, Any] = field(default_factory=dict)
    output: Dict[str, Any] = field(default_factory=dict)
    steps: List[DebugStep] = field(default_factory=list)
    variants: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    _clock_start: float = field(default_factory=time.perf_counter, repr=False)

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._clock_start) * 1000, 1)

    def record_step(self, name: str, started: float) -> None:
        """Append a step that began at ``started`` (a ``perf_counter`` value)."""

        self.steps.append(DebugStep(name, round((time.perf_counter() - started) * 1000, 1)))

    @contextlib.contextmanager
    def step(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_step(name, started)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def finish(self) -> None:
        self.duration_ms = self.elapsed_ms()

    def fail(self, message: str) -> None:
        self.error = message
        self.duration_ms = self.elapsed_ms()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "level": self.level,
            "requestId": self.request_id,
            "startedAt": self.started_at,
        }
        if self.duration_ms is not None:
            payload["durationMs"] = self.duration_ms
        if self.input:
            payload["input"] = self.input
        if self.output:
            payload["output"] = self.output
        payload["steps"] = [{"name": step.name, "durationMs": step.duration_ms} for step in self.steps]
        if self.variants:
            payload["variants"] = self.variants
        if self.warnings:
            payload["warnings"] = self.warnings
        if self.error is not None:
            payload["error"] = self.error
        return payload

    def to_json(self, *, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def encode_header(self) -> str:
        """Return the trace as base64 JSON, safe for an HTTP header value."""

        return base64.b64encode(self.to_json().encode("utf-8")).decode("ascii")


@contextlib.contextmanager
def maybe_step(trace: Optional[DebugTrace], name: str) -> Iterator[None]:
    """Time the block as *name* when a trace is active."""

    if trace is None:
        yield
        return
    with trace.step(name):
        yield


def create_trace(level: Optional[str], request_id: str) -> Optional[DebugTrace]:
    return DebugTrace(level=level, request_id=request_id) if level else None


__all__ = [
    "DEBUG_LEVELS",
    "DebugStep",
    "DebugTrace",
    "create_trace",
    "maybe_step",
    "parse_debug_level",
]

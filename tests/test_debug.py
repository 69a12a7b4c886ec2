import base64
import json

import pytest

from media_service.services.debug import DebugTrace, create_trace, maybe_step, parse_debug_level


@pytest.mark.parametrize(
    "value, expected",
    [
        ("debug", "debug"),
        ("INFO", "info"),
        (" warn ", "warn"),
        ("crit", "crit"),
        ("verbose", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_debug_level(value, expected) -> None:
    assert parse_debug_level(value) == expected


def test_create_trace_only_when_level_requested() -> None:
    assert create_trace(None, "req") is None
    trace = create_trace("info", "req")
    assert isinstance(trace, DebugTrace)
    assert trace.request_id == "req"


def test_trace_records_steps_and_serialises_camel_case() -> None:
    trace = DebugTrace(level="debug", request_id="abc")
    with trace.step("decode"):
        pass
    with maybe_step(trace, "encode"):
        pass
    with maybe_step(None, "ignored"):
        pass
    trace.input["name"] = "photo.png"
    trace.warn("Duplicate upload ignored: photo.png")
    trace.finish()

    payload = trace.to_dict()

    assert payload["requestId"] == "abc"
    assert payload["level"] == "debug"
    assert "startedAt" in payload
    assert payload["durationMs"] >= 0
    assert [step["name"] for step in payload["steps"]] == ["decode", "encode"]
    assert payload["input"] == {"name": "photo.png"}
    assert payload["warnings"] == ["Duplicate upload ignored: photo.png"]
    assert "error" not in payload


def test_failed_trace_carries_error_and_duration() -> None:
    trace = DebugTrace(level="error", request_id="abc")

    trace.fail("ffprobe timed out after 5000ms")

    payload = trace.to_dict()
    assert payload["error"] == "ffprobe timed out after 5000ms"
    assert payload["durationMs"] is not None


def test_encode_header_is_base64_json() -> None:
    trace = DebugTrace(level="info", request_id="xyz")
    trace.finish()

    decoded = json.loads(base64.b64decode(trace.encode_header()))

    assert decoded["requestId"] == "xyz"
    assert decoded["level"] == "info"

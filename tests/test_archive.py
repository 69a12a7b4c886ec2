import io
import zipfile

import pytest

from media_service.services.archive import ZipEntrySink


def test_entries_can_be_drained_incrementally() -> None:
    sink = ZipEntrySink()

    sink.add("manifest.json", b"{}")
    first = sink.drain()
    sink.add("images/cat/cat.jpg", b"\xff\xd8" + b"x" * 2048)
    second = sink.drain()
    sink.finalize()
    trailer = sink.drain()

    assert first and second and trailer
    assert sink.drain() == b""
    with zipfile.ZipFile(io.BytesIO(first + second + trailer)) as archive:
        assert archive.namelist() == ["manifest.json", "images/cat/cat.jpg"]
        assert archive.read("manifest.json") == b"{}"
        assert archive.getinfo("images/cat/cat.jpg").compress_type == zipfile.ZIP_DEFLATED
        assert archive.testzip() is None


def test_sink_forwards_to_target_stream() -> None:
    target = io.BytesIO()
    sink = ZipEntrySink(target)

    sink.add("a.txt", b"alpha")
    sink.add("b.txt", b"beta")
    sink.finalize()

    assert sink.drain() == b""
    with zipfile.ZipFile(io.BytesIO(target.getvalue())) as archive:
        assert archive.read("b.txt") == b"beta"
    assert sink.names == ["a.txt", "b.txt"]


def test_finalize_is_idempotent_and_blocks_further_entries() -> None:
    sink = ZipEntrySink()
    sink.finalize()
    sink.finalize()

    assert sink.finalized
    with pytest.raises(RuntimeError):
        sink.add("late.txt", b"")

import asyncio
import errno
from pathlib import Path

import pytest

import media_service.services.temp_files as temp_files_module
from media_service.services.temp_files import TempFileManager, temporary_upload


def test_materialize_and_release(tmp_path: Path) -> None:
    async def scenario():
        manager = TempFileManager(tmp_path)
        path = await manager.materialize(b"payload", "mp3")
        assert path.read_bytes() == b"payload"
        assert path.name.startswith("audio_") and path.suffix == ".mp3"
        assert manager.active == [path]
        await manager.release(path)
        return manager, path

    manager, path = asyncio.run(scenario())

    assert not path.exists()
    assert manager.active == []


def test_context_manager_releases_on_error(tmp_path: Path) -> None:
    created = []

    async def scenario():
        async with TempFileManager(tmp_path) as manager:
            created.append(await manager.materialize(b"a"))
            created.append(await manager.materialize(b"b", "wav"))
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())

    assert len(created) == 2
    assert not any(path.exists() for path in created)


def test_temporary_upload_removes_file_after_block(tmp_path: Path) -> None:
    async def scenario():
        async with temporary_upload(tmp_path, b"data", "ogg") as path:
            assert path.exists()
            return path

    path = asyncio.run(scenario())

    assert not path.exists()


def test_release_never_raises(tmp_path: Path, monkeypatch, caplog) -> None:
    def failing_unlink(target: Path) -> None:
        raise PermissionError("locked")

    monkeypatch.setattr(temp_files_module, "_unlink", failing_unlink)

    async def scenario():
        manager = TempFileManager(tmp_path)
        path = await manager.materialize(b"data")
        await manager.release(path)
        return manager

    with caplog.at_level("WARNING"):
        manager = asyncio.run(scenario())

    assert manager.active == []
    assert "Could not remove temp file" in caplog.text


class _FailingHandle:
    def __init__(self, handle) -> None:
        self._handle = handle

    def __enter__(self) -> "_FailingHandle":
        return self

    def __exit__(self, *exc_info) -> None:
        self._handle.close()

    def write(self, data: bytes) -> int:
        raise OSError(errno.ENOSPC, "No space left on device")

    def close(self) -> None:
        self._handle.close()


def test_failed_write_leaves_no_partial_file(tmp_path: Path, monkeypatch) -> None:
    real_open = Path.open

    def failing_open(self, *args, **kwargs):
        return _FailingHandle(real_open(self, *args, **kwargs))

    monkeypatch.setattr(Path, "open", failing_open)
    manager = TempFileManager(tmp_path)

    with pytest.raises(OSError):
        asyncio.run(manager.materialize(b"payload", "mp3"))

    assert list(tmp_path.iterdir()) == []
    assert manager.active == []

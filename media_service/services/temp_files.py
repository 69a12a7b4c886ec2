"""Scoped on-disk copies of uploads for tools that need a file path."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import time
from pathlib import Path
from typing import AsyncIterator, List, Optional

from .events import emit_file_event
from .naming import build_temp_name


LOGGER = logging.getLogger(__name__)

TEMP_PREFIX = "audio"


def _write_bytes(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("xb") as handle:
        try:
            handle.write(data)
        except BaseException:
            handle.close()
            target.unlink(missing_ok=True)
            raise


def _unlink(target: Path) -> None:
    target.unlink(missing_ok=True)


class TempFileManager:
    """Track temp files created for one request and delete them on exit.

    Files are named ``audio_<millis>_<random>.<ext>`` inside *directory* so
    concurrent requests never collide. :meth:`release` and
    :meth:`release_all` never raise; failures are logged.
    """

    def __init__(self, directory: Path, *, prefix: str = TEMP_PREFIX) -> None:
        self._directory = directory
        self._prefix = prefix
        self._paths: List[Path] = []

    @property
    def active(self) -> List[Path]:
        return list(self._paths)

    async def materialize(self, data: bytes, extension: str = "") -> Path:
        target = self._directory / build_temp_name(self._prefix, extension)
        started = time.perf_counter()
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, functools.partial(_write_bytes, target, data))
        self._paths.append(target)
        emit_file_event(
            "temp file created",
            payload={"path": target, "size_bytes": len(data)},
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return target

    async def release(self, target: Optional[Path]) -> None:
        if target is None:
            return
        with contextlib.suppress(ValueError):
            self._paths.remove(target)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, functools.partial(_unlink, target))
        except OSError as error:
            LOGGER.warning("Could not remove temp file %s: %s", target, error)
            return
        emit_file_event("temp file removed", payload={"path": target})

    async def release_all(self) -> None:
        for target in list(self._paths):
            await self.release(target)

    async def __aenter__(self) -> "TempFileManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release_all()


@contextlib.asynccontextmanager
async def temporary_upload(directory: Path, data: bytes, extension: str = "") -> AsyncIterator[Path]:
    """Materialise *data* for the duration of the ``async with`` block."""

    manager = TempFileManager(directory)
    path = await manager.materialize(data, extension)
    try:
        yield path
    finally:
        await manager.release(path)


def sweep_stale_files(directory: Path, *, max_age_seconds: float, prefix: str = TEMP_PREFIX) -> int:
    """Remove leftover temp files older than *max_age_seconds*; return the count."""

    if not directory.exists():
        return 0
    cutoff = time.time() - max_age_seconds
    removed = 0
    for child in directory.glob(f"{prefix}_*"):
        try:
            if child.is_file() and child.stat().st_mtime < cutoff:
                child.unlink()
                removed += 1
        except OSError as error:  # pragma: no cover - best effort cleanup
            LOGGER.warning("Could not remove stale temp file %s: %s", child, error)
    return removed


__all__ = ["TEMP_PREFIX", "TempFileManager", "sweep_stale_files", "temporary_upload"]

"""Incremental zip assembly for batch responses."""

from __future__ import annotations

import logging
import time
import zipfile
from typing import BinaryIO, List, Protocol


LOGGER = logging.getLogger(__name__)


class EntrySink(Protocol):
    """Sequential archive writer: entries are appended in call order."""

    def add(self, name: str, data: bytes) -> None: ...

    def finalize(self) -> None: ...

    def drain(self) -> bytes: ...


class _ChunkBuffer:
    """Write-only, non-seekable target that hands out what was written so far."""

    def __init__(self) -> None:
        self._chunks: List[bytes] = []

    def write(self, data: bytes) -> int:
        if data:
            self._chunks.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


class ZipEntrySink:
    """Append entries to a deflated zip written to a non-seekable stream.

    ``zipfile`` falls back to data descriptors when the target cannot seek,
    so every entry is complete once :meth:`add` returns and its bytes can be
    drained to the client before the next entry is produced. Nothing is
    readable as an archive until :meth:`finalize` writes the central directory.
    """

    def __init__(self, target: BinaryIO | None = None, *, compresslevel: int | None = None) -> None:
        self._buffer = _ChunkBuffer()
        self._target = target
        self._zip = zipfile.ZipFile(
            self._buffer,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=compresslevel,
        )
        self._names: List[str] = []
        self._finalized = False

    @property
    def names(self) -> List[str]:
        return list(self._names)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def add(self, name: str, data: bytes) -> None:
        if self._finalized:
            raise RuntimeError("Archive already finalized")
        info = zipfile.ZipInfo(name, date_time=time.localtime(time.time())[:6])
        info.compress_type = zipfile.ZIP_DEFLATED
        self._zip.writestr(info, data)
        self._names.append(name)
        self._forward()

    def finalize(self) -> None:
        if self._finalized:
            return
        self._zip.close()
        self._finalized = True
        self._forward()
        LOGGER.debug("Archive finalized with %s entries", len(self._names))

    def drain(self) -> bytes:
        """Return bytes produced since the previous call."""

        return self._buffer.drain()

    def _forward(self) -> None:
        if self._target is not None:
            self._target.write(self._buffer.drain())


__all__ = ["EntrySink", "ZipEntrySink"]

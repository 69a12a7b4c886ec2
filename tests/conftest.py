from __future__ import annotations

import io
import stat
import sys
from pathlib import Path
from typing import Callable

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from PIL import Image

from media_service.bootstrap import Bootstrapper
from media_service.config import AppConfig


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "temp_root": "tmp",
            "waveform_binary": str(tmp_path / "bin" / "audiowaveform"),
            "probe_binary": str(tmp_path / "bin" / "ffprobe"),
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def fake_tool(tmp_path: Path) -> Callable[[str, str], Path]:
    """Return a factory writing an executable shell script into ``tmp_path/bin``."""

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _write(name: str, body: str) -> Path:
        script = bin_dir / name
        script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _write


@pytest.fixture()
def image_bytes() -> Callable[..., bytes]:
    def _build(size=(40, 20), color=(200, 30, 30), image_format: str = "PNG", mode: str = "RGB") -> bytes:
        buffer = io.BytesIO()
        Image.new(mode, size, color).save(buffer, format=image_format)
        return buffer.getvalue()

    return _build


@pytest.fixture()
def png_bytes(image_bytes) -> bytes:
    return image_bytes()

"""Utility helpers for consistent archive and temp-file naming."""

from __future__ import annotations

import os
import re
import secrets
import time
from typing import Optional

__all__ = [
    "sanitize_filename",
    "base_name",
    "default_image_name",
    "default_peaks_name",
    "peaks_entry_name",
    "build_temp_name",
]


_UNSAFE_CHARACTERS = re.compile(r'[/\\?%*:|"<>]')


def sanitize_filename(value: str) -> str:
    """Replace path and shell-hostile characters in *value* with ``_``."""

    return _UNSAFE_CHARACTERS.sub("_", value)


def base_name(filename: str) -> str:
    """Return *filename* without its final extension, sanitised."""

    stem, _ = os.path.splitext(filename)
    return sanitize_filename(stem or filename)


def default_image_name(base: str, width: Optional[int], height: Optional[int], output_format: str) -> str:
    width_label = str(width) if width is not None else "auto"
    height_label = str(height) if height is not None else "auto"
    return f"{base}_{width_label}x{height_label}_{output_format}.{output_format}"


def default_peaks_name(base: str, samples: int) -> str:
    return f"{base}_{samples}.json"


def peaks_entry_name(name: str) -> str:
    """Return *name* with a ``.json`` suffix unless it already carries one."""

    return name if name.lower().endswith(".json") else f"{name}.json"


def build_temp_name(prefix: str, extension: str = "") -> str:
    """Return a collision-resistant name made of a timestamp and a random suffix."""

    stamp = int(time.time() * 1000)
    suffix = ""
    if extension:
        suffix = extension if extension.startswith(".") else f".{extension}"
    return f"{prefix}_{stamp}_{secrets.token_hex(6)}{suffix.lower()}"

"""Configuration loading utilities for the media processing service."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".media_service_write_check"
_ENV_PREFIX = "MEDIA_SERVICE_"


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The helper attempts to create ``preferred`` and returns it when writable. If
    the preferred location is unavailable, each candidate in ``fallbacks`` is
    tried in order. The first writable fallback is returned along with a flag
    indicating that a fallback was used. When no candidate can be prepared the
    original ``preferred`` path is returned.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _coerce_int(key: str, value: Any, *, minimum: int = 1, maximum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key}: expected an integer, got {value!r}")
    try:
        number = int(str(value).strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError) as error:
        raise ConfigError(f"{key}: expected an integer, got {value!r}") from error
    if number < minimum:
        raise ConfigError(f"{key}: must be >= {minimum}, got {number}")
    if maximum is not None and number > maximum:
        raise ConfigError(f"{key}: must be <= {maximum}, got {number}")
    return number


def _coerce_text(key: str, value: Any) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ConfigError(f"{key}: must not be empty")
    return text


@dataclass(frozen=True)
class AppConfig:
    """Runtime limits, timeouts and tool locations for the service.

    A single instance is built at start-up and handed to every component that
    needs it; nothing below the web layer reads the environment directly.
    """

    temp_root: Path
    max_batch_files: int = 20
    max_variants_per_file: int = 10
    max_image_upload_bytes: int = 20 * 1024 * 1024
    max_audio_upload_bytes: int = 50 * 1024 * 1024
    image_max_input_pixels: int = 50 * 1024 * 1024
    waveform_binary: str = "audiowaveform"
    probe_binary: str = "ffprobe"
    waveform_timeout_ms: int = 15_000
    duration_timeout_ms: int = 5_000
    waveform_pixels_per_second: int = 10
    waveform_bits: int = 8
    default_samples_per_minute: int = 120
    service_api_key: Optional[str] = None
    log_level: str = "INFO"

    @property
    def waveform_timeout_seconds(self) -> float:
        return self.waveform_timeout_ms / 1000.0

    @property
    def duration_timeout_seconds(self) -> float:
        return self.duration_timeout_ms / 1000.0

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], *, base_path: Path) -> "AppConfig":
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        raw_temp = mapping.get("temp_root") or "tmp"
        preferred_temp = (base_path / str(raw_temp)).expanduser().resolve()
        temp_root, _ = _select_writable_directory(
            preferred_temp,
            label="temp",
            fallbacks=(Path(tempfile.gettempdir()) / "media_service",),
        )

        values: Dict[str, Any] = {"temp_root": temp_root}
        for key in (
            "max_batch_files",
            "max_variants_per_file",
            "max_image_upload_bytes",
            "max_audio_upload_bytes",
            "image_max_input_pixels",
            "waveform_timeout_ms",
            "duration_timeout_ms",
            "waveform_pixels_per_second",
        ):
            if key in mapping:
                values[key] = _coerce_int(key, mapping[key])

        if "default_samples_per_minute" in mapping:
            values["default_samples_per_minute"] = _coerce_int(
                "default_samples_per_minute",
                mapping["default_samples_per_minute"],
                maximum=10_000,
            )
        if "waveform_bits" in mapping:
            bits = _coerce_int("waveform_bits", mapping["waveform_bits"], minimum=8, maximum=16)
            if bits not in (8, 16):
                raise ConfigError(f"waveform_bits: must be 8 or 16, got {bits}")
            values["waveform_bits"] = bits

        for key in ("waveform_binary", "probe_binary"):
            if key in mapping:
                values[key] = _coerce_text(key, mapping[key])

        api_key = mapping.get("service_api_key")
        if api_key is not None and str(api_key).strip():
            values["service_api_key"] = str(api_key).strip()

        if "log_level" in mapping:
            level = _coerce_text("log_level", mapping["log_level"]).upper()
            if not isinstance(logging.getLevelName(level), int):
                raise ConfigError(f"log_level: unknown level {mapping['log_level']!r}")
            values["log_level"] = level

        return cls(**values)


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for item in fields(AppConfig):
        env_name = f"{_ENV_PREFIX}{item.name.upper()}"
        value = environ.get(env_name)
        if value is not None and value.strip():
            overrides[item.name] = value.strip()
    return overrides


def load_config(
    config_path: Path | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load configuration from ``config/default.json`` plus environment overrides.

    Every field may be overridden with a ``MEDIA_SERVICE_<FIELD>`` variable,
    e.g. ``MEDIA_SERVICE_WAVEFORM_TIMEOUT_MS=30000``.
    """

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    raw_config: Dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as config_file:
            raw_config = json.load(config_file)
    else:
        LOGGER.debug("Configuration file %s not found; using defaults", config_path)

    raw_config.update(_environment_overrides(os.environ if environ is None else environ))
    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "ConfigError", "load_config"]

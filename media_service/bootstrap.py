"""Bootstrap logic that prepares the temp directory and checks external tools."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict

from . import config as config_module
from .config import AppConfig, load_config
from .processing.images import imaging_available
from .processing.tools import tool_available
from .services.temp_files import sweep_stale_files

LOGGER = logging.getLogger(__name__)

STALE_TEMP_FILE_SECONDS = 60 * 60


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


def check_dependencies(config: AppConfig) -> Dict[str, bool]:
    """Return availability of the waveform tool, the probe tool and Pillow."""

    return {
        "audiowaveform": tool_available(config.waveform_binary, "--version"),
        "ffprobe": tool_available(config.probe_binary, "-version"),
        "imaging": imaging_available(),
    }


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_temp_root()
        self._report_dependencies()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_temp_root(self) -> None:
        temp_root = self._config.temp_root
        if not config_module._ensure_writable_directory(temp_root):
            raise BootstrapError(f"Temp directory '{temp_root}' is not writable")
        removed = sweep_stale_files(temp_root, max_age_seconds=STALE_TEMP_FILE_SECONDS)
        if removed:
            LOGGER.info("Removed %s stale temp file(s) from %s", removed, temp_root)
        LOGGER.debug("Ensured temp directory exists: %s", temp_root)

    def _report_dependencies(self) -> None:
        for name, available in check_dependencies(self._config).items():
            if available:
                LOGGER.debug("Dependency available: %s", name)
            else:
                LOGGER.warning("Dependency unavailable: %s; related endpoints will fail", name)


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "check_dependencies", "initialize_app"]

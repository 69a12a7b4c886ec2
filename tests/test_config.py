import json
from pathlib import Path

import pytest

import media_service.config as config_module
from media_service.config import AppConfig, ConfigError, load_config


def test_temp_root_falls_back_when_preferred_is_unusable(tmp_path: Path, monkeypatch) -> None:
    preferred = tmp_path / "tmp"
    preferred.write_text("not a directory", encoding="utf-8")
    system_temp = tmp_path / "system-temp"
    monkeypatch.setattr(config_module.tempfile, "gettempdir", lambda: str(system_temp))

    config = AppConfig.from_mapping({"temp_root": "tmp"}, base_path=tmp_path)

    expected = (system_temp / "media_service").resolve()
    assert config.temp_root == expected
    assert expected.is_dir()


def test_defaults_apply_when_mapping_is_empty(tmp_path: Path) -> None:
    config = AppConfig.from_mapping({}, base_path=tmp_path)

    assert config.temp_root == (tmp_path / "tmp").resolve()
    assert config.max_batch_files == 20
    assert config.max_variants_per_file == 10
    assert config.waveform_bits == 8
    assert config.default_samples_per_minute == 120
    assert config.service_api_key is None
    assert config.waveform_timeout_seconds == 15.0
    assert config.duration_timeout_seconds == 5.0


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError) as excinfo:
        AppConfig.from_mapping({"storage_root": "storage"}, base_path=tmp_path)

    assert "storage_root" in str(excinfo.value)


@pytest.mark.parametrize(
    "mapping, key",
    [
        ({"max_batch_files": "many"}, "max_batch_files"),
        ({"max_variants_per_file": 0}, "max_variants_per_file"),
        ({"waveform_bits": 12}, "waveform_bits"),
        ({"default_samples_per_minute": 20000}, "default_samples_per_minute"),
        ({"log_level": "chatty"}, "log_level"),
        ({"probe_binary": "  "}, "probe_binary"),
    ],
)
def test_invalid_values_name_the_offending_key(tmp_path: Path, mapping, key) -> None:
    with pytest.raises(ConfigError) as excinfo:
        AppConfig.from_mapping(mapping, base_path=tmp_path)

    assert key in str(excinfo.value)


def test_load_config_applies_environment_overrides(tmp_path: Path) -> None:
    config_file = tmp_path / "settings.json"
    config_file.write_text(
        json.dumps({"temp_root": str(tmp_path / "scratch"), "max_batch_files": 5}),
        encoding="utf-8",
    )

    config = load_config(
        config_file,
        environ={
            "MEDIA_SERVICE_MAX_BATCH_FILES": "3",
            "MEDIA_SERVICE_SERVICE_API_KEY": "secret",
            "MEDIA_SERVICE_WAVEFORM_TIMEOUT_MS": "30000",
            "UNRELATED": "ignored",
        },
    )

    assert config.temp_root == (tmp_path / "scratch").resolve()
    assert config.max_batch_files == 3
    assert config.service_api_key == "secret"
    assert config.waveform_timeout_seconds == 30.0


def test_load_config_uses_defaults_when_file_is_missing(tmp_path: Path) -> None:
    config = load_config(
        tmp_path / "absent.json",
        environ={"MEDIA_SERVICE_TEMP_ROOT": str(tmp_path / "scratch")},
    )

    assert config.temp_root == (tmp_path / "scratch").resolve()
    assert config.max_variants_per_file == 10

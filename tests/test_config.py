"""Tests for xcodeflow.config."""

import pytest

from xcodeflow.config import Settings, load_settings
from xcodeflow.errors import ConfigurationError, ToolSystemError


def test_defaults() -> None:
    settings = Settings()
    assert settings.xcodebuild_path == "xcodebuild"
    assert settings.xcrun_path == "xcrun"
    assert settings.log_retention_days == 3.0
    assert settings.progress_interval == 1.0
    assert settings.temp_dir
    assert settings.log_dir.endswith("xcodeflow-logs")


def test_from_env() -> None:
    settings = Settings.from_env(
        {
            "XCODEFLOW_XCODEBUILD": "/opt/xcode/xcodebuild",
            "XCODEFLOW_LOG_RETENTION_DAYS": "7",
            "XCODEFLOW_PROGRESS_INTERVAL": "0.25",
            "XCODEFLOW_USE_LATEST_OS": "no",
            "XCODEFLOW_REQUIRE_TOKEN": "yes",
            "XCODEFLOW_API_TOKEN": "  secret  ",
            "XCODEFLOW_XCRUN": "   ",
        }
    )
    assert settings.xcodebuild_path == "/opt/xcode/xcodebuild"
    assert settings.xcrun_path == "xcrun"
    assert settings.log_retention_days == 7.0
    assert settings.progress_interval == 0.25
    assert settings.use_latest_os is False
    assert settings.require_token is True
    assert settings.api_token == "secret"


def test_from_env_rejects_bad_numbers() -> None:
    with pytest.raises(ConfigurationError):
        Settings.from_env({"XCODEFLOW_LOG_RETENTION_DAYS": "three"})


def test_validation() -> None:
    with pytest.raises(ConfigurationError):
        Settings(log_retention_days=0)
    with pytest.raises(ConfigurationError):
        Settings(progress_interval=-1)


def test_from_yaml_overlays_base(tmp_path) -> None:
    path = tmp_path / "xcodeflow.yaml"
    path.write_text("default_configuration: Release\nlog_level: DEBUG\n")
    base = Settings(xcrun_path="/usr/bin/xcrun")
    settings = Settings.from_yaml(path, base=base)
    assert settings.default_configuration == "Release"
    assert settings.log_level == "DEBUG"
    assert settings.xcrun_path == "/usr/bin/xcrun"


def test_from_yaml_rejects_unknown_keys(tmp_path) -> None:
    path = tmp_path / "xcodeflow.yaml"
    path.write_text("colour: blue\n")
    with pytest.raises(ConfigurationError, match="colour"):
        Settings.from_yaml(path)


def test_from_yaml_rejects_non_mapping(tmp_path) -> None:
    path = tmp_path / "xcodeflow.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigurationError):
        Settings.from_yaml(path)


def test_to_dict_hides_token() -> None:
    data = Settings(api_token="secret").to_dict()
    assert "api_token" not in data
    assert data["xcodebuild_path"] == "xcodebuild"


def test_load_settings(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("XCODEFLOW_XCRUN", "/env/xcrun")
    path = tmp_path / "s.yaml"
    path.write_text("xcodebuild_path: /yaml/xcodebuild\n")
    settings = load_settings(path)
    assert settings.xcrun_path == "/env/xcrun"
    assert settings.xcodebuild_path == "/yaml/xcodebuild"

    with pytest.raises(ToolSystemError, match="not found"):
        load_settings(tmp_path / "missing.yaml")


def test_from_yaml_unreadable_file(tmp_path) -> None:
    with pytest.raises(ToolSystemError) as exc_info:
        Settings.from_yaml(tmp_path)
    assert isinstance(exc_info.value.original_error, OSError)


def test_from_yaml_invalid_yaml(tmp_path) -> None:
    path = tmp_path / "xcodeflow.yaml"
    path.write_text("log_level: [unclosed\n")
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        Settings.from_yaml(path)

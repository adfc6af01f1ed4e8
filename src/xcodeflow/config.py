"""Runtime settings for xcodeflow."""

import os
import tempfile
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigurationError, ToolSystemError


def _default_temp_dir() -> str:
    return tempfile.gettempdir()


def _default_log_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "xcodeflow-logs")


_TRUE = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Tool paths, directories and tunables, from env and/or YAML."""
    xcodebuild_path: str = "xcodebuild"
    xcrun_path: str = "xcrun"
    temp_dir: str = ""
    log_dir: str = ""
    log_level: str = "INFO"
    log_retention_days: float = 3.0
    progress_interval: float = 1.0
    default_configuration: str = "Debug"
    use_latest_os: bool = True
    api_token: Optional[str] = None
    require_token: bool = False

    def __post_init__(self) -> None:
        self.temp_dir = self.temp_dir or _default_temp_dir()
        self.log_dir = self.log_dir or _default_log_dir()
        if self.log_retention_days <= 0:
            raise ConfigurationError("log_retention_days must be positive")
        if self.progress_interval < 0:
            raise ConfigurationError("progress_interval must not be negative")

    @classmethod
    def from_env(cls, env: Optional[dict[str, str]] = None) -> "Settings":
        src = os.environ if env is None else env

        def clean(name: str) -> Optional[str]:
            value = src.get(name)
            if value is None:
                return None
            v = str(value).strip()
            return v or None

        kwargs: dict = {}
        for key, name in (
            ("xcodebuild_path", "XCODEFLOW_XCODEBUILD"),
            ("xcrun_path", "XCODEFLOW_XCRUN"),
            ("temp_dir", "XCODEFLOW_TEMP_DIR"),
            ("log_dir", "XCODEFLOW_LOG_DIR"),
            ("log_level", "XCODEFLOW_LOG_LEVEL"),
            ("default_configuration", "XCODEFLOW_CONFIGURATION"),
            ("api_token", "XCODEFLOW_API_TOKEN"),
        ):
            value = clean(name)
            if value is not None:
                kwargs[key] = value

        for key, name in (
            ("log_retention_days", "XCODEFLOW_LOG_RETENTION_DAYS"),
            ("progress_interval", "XCODEFLOW_PROGRESS_INTERVAL"),
        ):
            value = clean(name)
            if value is not None:
                try:
                    kwargs[key] = float(value)
                except ValueError as e:
                    raise ConfigurationError(f"{name} must be a number, got {value!r}") from e

        for key, name in (
            ("use_latest_os", "XCODEFLOW_USE_LATEST_OS"),
            ("require_token", "XCODEFLOW_REQUIRE_TOKEN"),
        ):
            value = clean(name)
            if value is not None:
                kwargs[key] = value.lower() in _TRUE

        return cls(**kwargs)

    @classmethod
    def from_dict(cls, data: dict, base: Optional["Settings"] = None) -> "Settings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(unknown)}")
        merged = {f.name: getattr(base, f.name) for f in fields(cls)} if base else {}
        merged.update(data)
        return cls(**merged)

    @classmethod
    def from_yaml(cls, path: Path, base: Optional["Settings"] = None) -> "Settings":
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ToolSystemError(f"Could not read settings file {path}: {e}", original_error=e) from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in settings file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file must contain a mapping: {path}")
        return cls.from_dict(data, base=base)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "api_token"}


def load_settings(path: Optional[str | Path] = None) -> Settings:
    """Environment settings, overlaid with *path* when given."""
    settings = Settings.from_env()
    if path is None:
        return settings
    path = Path(path)
    if not path.exists():
        raise ToolSystemError(f"Config file not found: {path}")
    return Settings.from_yaml(path, base=settings)

"""Engine settings and configuration file reading."""
from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Mapping, Tuple

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".yaml", ".yml", ".json")

# Home directories that never belong to a person
DEFAULT_ACCOUNT_DENYLIST: Tuple[str, ...] = ("Shared", "Guest", "Deleted Users")


def default_config_path() -> Path:
    """Bundled indicator set for CVE-2024-44133."""
    return Path(str(resources.files("iocsentry") / "data" / "cve_2024_44133.yaml"))


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for one run, read from the ``settings`` section."""

    provider_timeout: float = 30.0
    parallel: bool = False
    max_workers: int = 4
    circuit_failure_threshold: int = 3
    users_root: Path = Path("/Users")
    account_denylist: Tuple[str, ...] = DEFAULT_ACCOUNT_DENYLIST
    protected_paths: Tuple[str, ...] = ()
    enforce_sip: bool = True

    def with_overrides(self, **overrides: Any) -> "EngineSettings":
        """Copy with the non-None overrides applied (CLI flags)."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)


_SETTING_TYPES = {
    "provider_timeout": (int, float),
    "parallel": (bool,),
    "max_workers": (int,),
    "circuit_failure_threshold": (int,),
    "users_root": (str,),
    "account_denylist": (list,),
    "protected_paths": (list,),
    "enforce_sip": (bool,),
}


def parse_settings(raw: Mapping[str, Any] | None) -> EngineSettings:
    """Build EngineSettings from a mapping, rejecting unknown keys."""
    if raw is None:
        return EngineSettings()
    if not isinstance(raw, Mapping):
        raise ConfigError("'settings' must be a mapping")

    unknown = sorted(set(raw) - set(_SETTING_TYPES))
    if unknown:
        raise ConfigError(f"unknown setting(s): {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for key, value in raw.items():
        expected = _SETTING_TYPES[key]
        # bool is an int subclass; only accept it where a bool is expected
        if not isinstance(value, expected) or (isinstance(value, bool) and bool not in expected):
            names = "/".join(t.__name__ for t in expected)
            raise ConfigError(f"setting '{key}' must be {names}, got {type(value).__name__}")
        values[key] = value

    if "users_root" in values:
        values["users_root"] = Path(values["users_root"])
    for key in ("account_denylist", "protected_paths"):
        if key in values:
            values[key] = tuple(str(item) for item in values[key])
    for key in ("provider_timeout", "max_workers", "circuit_failure_threshold"):
        if key in values and values[key] <= 0:
            raise ConfigError(f"setting '{key}' must be positive")
    return EngineSettings(**values)


def read_config_file(path: Path) -> Any:
    """Parse a YAML or JSON configuration file.

    Raises:
        ConfigError: if the file is missing, unreadable or malformed
    """
    path = Path(path).expanduser()
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ConfigError(
            f"unsupported config format '{suffix or path.name}'; use {', '.join(SUPPORTED_SUFFIXES)}"
        )
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc

    logger.debug("Loading configuration from %s", path)
    try:
        if suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot parse config {path}: {exc}") from exc

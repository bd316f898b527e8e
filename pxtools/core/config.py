"""Configuration loading with layered overrides."""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml


class ConfigError(Exception):
    """Error loading or validating configuration."""

    pass


SYSTEM_CONFIG = Path("/etc/pxtools/config.yaml")


def user_config_path() -> Path:
    return Path.home() / ".config" / "pxtools" / "config.yaml"


@dataclass(frozen=True)
class RecoveryConfig:
    """Settings for a thin pool recovery run."""

    state_dir: str = "/var/cores"
    scratch_dir: str = "/dev/shm/thinmeta_recovery"
    pool_name: str = "pxpool"
    reserve_name: str = "pxreserve"
    lvm_timeout: int = 30
    memory_factor: int = 3
    pxctl_path: str = "/opt/pwx/bin/pxctl"
    lvm_backup_dir: str = "/etc/lvm/backup"
    log_dir: str = field(default_factory=lambda: str(Path.home() / "var" / "log" / "pxtools"))

    @property
    def tmeta_name(self) -> str:
        return f"{self.pool_name}_tmeta"

    @property
    def tdata_name(self) -> str:
        return f"{self.pool_name}_tdata"

    def state_file(self, vg_name: str) -> str:
        return str(Path(self.state_dir) / f"recovery_{vg_name}_state")


def load_config_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML config file if it exists.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed mapping, or an empty dict when the file does not exist

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping
    """
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a YAML mapping: {path}")
    return data


def apply_overrides(config: RecoveryConfig, data: dict[str, Any], source: str) -> RecoveryConfig:
    """Return config with values from data applied, validating keys and types."""
    known = {f.name: f for f in fields(RecoveryConfig)}
    updates: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            raise ConfigError(f"Unknown config key '{key}' in {source}")
        expected = type(getattr(config, key))
        if expected is int and (isinstance(value, bool) or not isinstance(value, int)):
            raise ConfigError(f"Config key '{key}' in {source} must be an integer")
        if expected is str and not isinstance(value, str):
            raise ConfigError(f"Config key '{key}' in {source} must be a string")
        updates[key] = value
    return replace(config, **updates)


def load_config(explicit: Path | None = None) -> RecoveryConfig:
    """
    Build the effective configuration.

    Precedence (later wins): defaults, system config, user config, explicit file.

    Args:
        explicit: Config file given on the command line, must exist

    Returns:
        Effective RecoveryConfig

    Raises:
        ConfigError: If any layer is invalid or the explicit file is missing
    """
    config = RecoveryConfig()
    layers = [SYSTEM_CONFIG, user_config_path()]
    for path in layers:
        config = apply_overrides(config, load_config_file(path), str(path))

    if explicit is not None:
        if not explicit.exists():
            raise ConfigError(f"Config file not found: {explicit}")
        config = apply_overrides(config, load_config_file(explicit), str(explicit))

    if config.lvm_timeout <= 0:
        raise ConfigError("lvm_timeout must be positive")
    if config.memory_factor < 1:
        raise ConfigError("memory_factor must be at least 1")
    return config

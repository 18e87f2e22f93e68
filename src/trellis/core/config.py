"""Configuration utilities for Trellis.

Provides XDG-compliant config path handling and configuration loading.
Configuration lives in ~/.config/trellis/config.toml by default, respecting
the XDG_CONFIG_HOME environment variable when set. Every setting is optional;
a missing file yields DEFAULT_CONFIG.
"""

import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Literal

from trellis.core.exceptions import ConfigError

__all__ = [
    "TrellisConfig",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_TOML",
    "ConfigError",
    "get_xdg_config_home",
    "get_config_path",
    "load_config",
    "write_default_config",
]

VALID_GRANULARITIES: frozenset[str] = frozenset({"hour", "day", "week", "month", "year"})

# Fields that must lie in [0, 1]
_UNIT_INTERVAL_FIELDS: frozenset[str] = frozenset(
    {
        "similarity_threshold",
        "feature_similarity_threshold",
        "periodic_threshold",
        "trend_min_r2",
        "seasonal_threshold",
        "decay_min_r2",
        "smoothing_alpha",
    }
)

# Fields that must be positive integers
_POSITIVE_INT_FIELDS: frozenset[str] = frozenset(
    {
        "similar_project_limit",
        "max_enumerated_paths",
        "default_max_depth",
        "backup_keep_count",
        "forecast_window",
        "stale_node_days",
        "history_retention_days",
        "smoothing_window",
    }
)


def get_xdg_config_home() -> Path:
    """Get XDG config home directory for Trellis.

    Returns ~/.config/trellis/ by default.
    Respects XDG_CONFIG_HOME environment variable when set.

    Returns:
        Path to Trellis's config directory.
    """
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        base = Path(xdg_config_home)
    else:
        base = Path.home() / ".config"
    return base / "trellis"


def get_config_path() -> Path:
    """Get path to config file.

    Returns:
        Path to config.toml file within Trellis's config directory.
    """
    return get_xdg_config_home() / "config.toml"


@dataclass(frozen=True)
class TrellisConfig:
    """Trellis configuration settings.

    All fields have defaults matching the historical behaviour of the
    knowledge graph. Config file can be partial.
    """

    # Graph similarity and recommendation
    similarity_threshold: float = 0.7
    feature_similarity_threshold: float = 0.6
    similar_project_limit: int = 5
    confidence_decay_days: float = 30.0

    # Path search
    default_max_depth: int = 5
    max_enumerated_paths: int = 1000

    # Persistence
    backup_on_write: bool = True
    backup_keep_count: int = 10
    validate_on_read: bool = True

    # Temporal analysis
    default_granularity: Literal["hour", "day", "week", "month", "year"] = "day"
    smoothing_window: int = 7
    smoothing_alpha: float = 0.3
    periodic_threshold: float = 0.6
    trend_min_r2: float = 0.5
    trend_min_slope: float = 0.01
    seasonal_threshold: float = 0.6
    burst_sigma: float = 2.0
    decay_max_slope: float = -0.05
    decay_min_r2: float = 0.7
    spike_sigma: float = 3.0
    drought_sigma: float = 2.0
    regime_shift_threshold: float = 0.5
    forecast_window: int = 7

    # Health monitoring
    stale_node_days: int = 30
    history_retention_days: int = 90


DEFAULT_CONFIG = TrellisConfig()


def _validate_config_values(data: dict[str, object]) -> None:
    """Validate config values against their allowed ranges.

    Args:
        data: Raw config data from TOML file.

    Raises:
        ConfigError: If any value is out of range.
    """
    if "default_granularity" in data:
        value = data["default_granularity"]
        if value not in VALID_GRANULARITIES:
            raise ConfigError(
                f"Invalid default_granularity '{value}'. "
                f"Must be one of: {', '.join(sorted(VALID_GRANULARITIES))}"
            )

    for key in _UNIT_INTERVAL_FIELDS & data.keys():
        value = data[key]
        if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
            raise ConfigError(f"Invalid {key} '{value}'. Must be a number between 0 and 1")

    for key in _POSITIVE_INT_FIELDS & data.keys():
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigError(f"Invalid {key} '{value}'. Must be a positive integer")

    for key in ("backup_on_write", "validate_on_read"):
        if key in data and not isinstance(data[key], bool):
            raise ConfigError(f"Invalid {key} '{data[key]}'. Must be true or false")


# Default config TOML template with documentation comments
DEFAULT_CONFIG_TOML = """\
# Trellis Configuration
# Location: ~/.config/trellis/config.toml

# Projects sharing more than this fraction of technologies get a similar_to edge
similarity_threshold = 0.7
# Minimum feature similarity for a project to seed a recommendation
feature_similarity_threshold = 0.6
similar_project_limit = 5

# Path enumeration stops after this many paths
max_enumerated_paths = 1000
default_max_depth = 5

# Persistence
backup_on_write = true
backup_keep_count = 10
validate_on_read = true

# Temporal analysis: "hour", "day", "week", "month" or "year"
default_granularity = "day"
smoothing_window = 7
forecast_window = 7

# Health monitoring
stale_node_days = 30
history_retention_days = 90
"""


def load_config(config_path: Path | None = None) -> TrellisConfig:
    """Load configuration from TOML file.

    Args:
        config_path: Optional path override. Defaults to XDG config path.

    Returns:
        TrellisConfig with loaded values merged with defaults.

    Raises:
        ConfigError: If TOML parsing fails or a value is invalid.
    """
    if config_path is None:
        config_path = get_config_path()

    if not config_path.exists():
        return DEFAULT_CONFIG

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Configuration file is invalid: {e}") from e

    _validate_config_values(data)

    # Merge with defaults - only use keys that are valid TrellisConfig fields
    valid_fields = {f.name for f in fields(TrellisConfig)}
    filtered_data = {k: v for k, v in data.items() if k in valid_fields}

    return TrellisConfig(**{**DEFAULT_CONFIG.__dict__, **filtered_data})


def write_default_config(config_path: Path | None = None) -> Path:
    """Write default configuration file with documented settings.

    Creates the parent directory if needed (mode 700). Uses atomic write
    pattern (temp file + rename) to prevent corruption. The file is
    readable by its owner only.

    Args:
        config_path: Optional path override. Defaults to XDG config path.

    Returns:
        Path of the written file.
    """
    if config_path is None:
        config_path = get_config_path()

    parent = config_path.parent
    if not parent.exists():
        old_umask = os.umask(0o077)
        try:
            parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        finally:
            os.umask(old_umask)
    parent.chmod(0o700)

    temp_path = config_path.with_suffix(".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(DEFAULT_CONFIG_TOML)
        temp_path.chmod(0o600)
        temp_path.replace(config_path)
    finally:
        # Clean up temp file if it still exists
        try:
            if temp_path.exists():
                temp_path.unlink()
        except OSError:
            pass
    return config_path

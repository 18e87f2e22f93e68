"""Unit tests for configuration utilities.

Tests XDG config path handling, config loading, and error handling.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from trellis.core.config import (
    DEFAULT_CONFIG,
    TrellisConfig,
    get_config_path,
    get_xdg_config_home,
    load_config,
    write_default_config,
)
from trellis.core.exceptions import ConfigError


class TestGetXdgConfigHome:
    """Tests for get_xdg_config_home() function."""

    def test_default_path_without_xdg_env(self) -> None:
        """Returns ~/.config/trellis/ when XDG_CONFIG_HOME not set."""
        with patch.dict(os.environ, {}, clear=True):
            result = get_xdg_config_home()
            expected = Path.home() / ".config" / "trellis"

        assert result == expected, f"Expected {expected}, got {result}"

    def test_respects_xdg_config_home_env(self, tmp_path: Path) -> None:
        with patch.dict(os.environ, {"XDG_CONFIG_HOME": str(tmp_path)}):
            result = get_config_path()

        assert result == tmp_path / "trellis" / "config.toml"


class TestLoadConfig:
    """Tests for load_config()."""

    def test_missing_file_returns_defaults(self, tmp_path: Path) -> None:
        assert load_config(tmp_path / "absent.toml") is DEFAULT_CONFIG

    def test_partial_file_merges_with_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text('default_granularity = "week"\nbackup_keep_count = 3\n')

        config = load_config(path)

        assert config.default_granularity == "week"
        assert config.backup_keep_count == 3
        assert config.similarity_threshold == DEFAULT_CONFIG.similarity_threshold

    def test_unknown_keys_are_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text("colour = 'green'\n")

        assert load_config(path) == DEFAULT_CONFIG

    def test_invalid_toml_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text("this is = not [toml\n")

        with pytest.raises(ConfigError, match="invalid"):
            load_config(path)

    @pytest.mark.parametrize(
        ("content", "key"),
        [
            ('default_granularity = "fortnight"', "default_granularity"),
            ("similarity_threshold = 1.5", "similarity_threshold"),
            ("backup_keep_count = 0", "backup_keep_count"),
            ("forecast_window = true", "forecast_window"),
            ('validate_on_read = "yes"', "validate_on_read"),
        ],
    )
    def test_out_of_range_values_raise(self, tmp_path: Path, content: str, key: str) -> None:
        path = tmp_path / "config.toml"
        path.write_text(content + "\n")

        with pytest.raises(ConfigError, match=key):
            load_config(path)


class TestWriteDefaultConfig:
    """Tests for write_default_config()."""

    def test_written_file_loads_as_defaults(self, tmp_path: Path) -> None:
        path = write_default_config(tmp_path / "nested" / "config.toml")

        assert path.exists()
        assert load_config(path) == DEFAULT_CONFIG

    def test_file_and_directory_are_owner_only(self, tmp_path: Path) -> None:
        with patch.dict(os.environ, {"XDG_CONFIG_HOME": str(tmp_path)}):
            path = write_default_config()

        assert (path.stat().st_mode & 0o777) == 0o600
        assert (path.parent.stat().st_mode & 0o777) == 0o700

    def test_config_is_frozen(self) -> None:
        config = TrellisConfig()

        with pytest.raises(AttributeError):
            config.backup_keep_count = 1  # type: ignore[misc]

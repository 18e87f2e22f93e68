"""Integration tests for help text and verbose mode."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from tests.conftest import FIXED_NOW, make_entry, write_event_log
from trellis.cli.commands import main

COMMANDS = (
    "init",
    "stats",
    "verify",
    "restore",
    "build",
    "path",
    "graph",
    "patterns",
    "predict",
    "recommend",
    "health",
)


@pytest.fixture
def runner() -> CliRunner:
    """Create CLI runner for tests."""
    return CliRunner()


class TestMainHelpText:
    """Tests for trellis --help output."""

    def test_main_help_lists_all_commands(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0, f"Expected exit 0, got {result.exit_code}: {result.output}"

        for command in COMMANDS:
            assert command in result.output, f"Expected '{command}' command in help"

    def test_main_help_lists_global_options(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--help"])

        for option in ("--debug", "--verbose", "--storage-dir", "--config", "--version"):
            assert option in result.output, f"Expected '{option}' in help"

    @pytest.mark.parametrize("command", COMMANDS)
    def test_every_command_has_help(self, runner: CliRunner, command: str) -> None:
        result = runner.invoke(main, [command, "--help"])

        assert result.exit_code == 0, f"{command} --help failed: {result.output}"
        assert "Usage:" in result.output

    def test_graph_help_shows_examples(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["graph", "--help"])

        assert "trellis graph react" in result.output


class TestVerboseFlag:
    """Tests for the global --verbose flag."""

    def test_build_reports_timing_when_verbose(
        self, runner: CliRunner, tmp_path: Path
    ) -> None:
        events = tmp_path / "events"
        write_event_log(events, [make_entry(FIXED_NOW, data={"language": {"primary": "go"}})])

        result = runner.invoke(
            main,
            [
                "--verbose",
                "--storage-dir",
                str(tmp_path / "kg"),
                "--config",
                str(tmp_path / "absent.toml"),
                "build",
                str(events),
            ],
        )

        assert result.exit_code == 0, f"Output: {result.output}"
        assert "Starting: build graph" in result.output
        assert "Completed: build graph" in result.output

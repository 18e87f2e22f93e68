"""Tests for verbose logging utilities."""

from io import StringIO

import click
import pytest
from rich.console import Console

from trellis.cli.verbose import VerboseLogger, get_verbose_logger


def _logger(enabled: bool) -> tuple[VerboseLogger, StringIO]:
    output = StringIO()
    console = Console(file=output, highlight=False, width=200)
    return VerboseLogger(enabled=enabled, console=console), output


class TestVerboseLoggerDisabled:
    """Tests for VerboseLogger when disabled."""

    def test_disabled_produces_no_output(self, capsys: pytest.CaptureFixture) -> None:
        """VerboseLogger(enabled=False) produces no output."""
        vlog = VerboseLogger(enabled=False)
        vlog.log("test message")
        vlog.start_operation("op")
        vlog.end_operation("op", "done")

        captured = capsys.readouterr()
        assert captured.err == "", f"Expected no stderr output, got: {captured.err}"
        assert captured.out == "", f"Expected no stdout output, got: {captured.out}"


class TestVerboseLoggerEnabled:
    """Tests for VerboseLogger when enabled."""

    def test_log_includes_timestamp(self) -> None:
        vlog, output = _logger(enabled=True)

        vlog.log("loading graph")

        text = output.getvalue()
        assert "loading graph" in text
        assert text.startswith("[")

    def test_operation_logs_start_and_completion(self) -> None:
        vlog, output = _logger(enabled=True)

        with vlog.operation("build"):
            pass

        text = output.getvalue()
        assert "Starting: build" in text
        assert "Completed: build (" in text

    def test_end_operation_with_result(self) -> None:
        vlog, output = _logger(enabled=True)
        vlog.start_operation("save")

        vlog.end_operation("save", "2 nodes")

        assert "- 2 nodes" in output.getvalue()

    def test_end_without_start_has_no_duration(self) -> None:
        vlog, output = _logger(enabled=True)

        vlog.end_operation("never-started")

        assert "Completed: never-started" in output.getvalue()
        assert "s)" not in output.getvalue()


class TestGetVerboseLogger:
    """Tests for get_verbose_logger()."""

    def test_reads_flag_from_context(self) -> None:
        ctx = click.Context(click.Command("stats"), obj={"verbose": True})

        assert get_verbose_logger(ctx).enabled is True

    def test_missing_obj_disables(self) -> None:
        ctx = click.Context(click.Command("stats"))

        assert get_verbose_logger(ctx).enabled is False

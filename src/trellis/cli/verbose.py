"""Verbose progress output for CLI commands.

Messages go to stderr with a timestamp so stdout stays clean for the
command's own output.
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import click
from rich.console import Console

_verbose_console = Console(stderr=True, highlight=False)


class VerboseLogger:
    """Timestamped progress messages with operation timing.

    Args:
        enabled: Whether anything is printed.
        console: Output console, stderr by default.
    """

    def __init__(self, enabled: bool = False, console: Console | None = None) -> None:
        self.enabled = enabled
        self._start_times: dict[str, float] = {}
        self._console = console or _verbose_console

    def log(self, message: str) -> None:
        if not self.enabled:
            return
        timestamp = datetime.now(UTC).strftime("%H:%M:%S")
        self._console.print(f"[dim][{timestamp}][/dim] {message}")

    def start_operation(self, name: str) -> None:
        self._start_times[name] = time.perf_counter()
        self.log(f"Starting: {name}")

    def end_operation(self, name: str, result: str | None = None) -> None:
        """Log completion with the elapsed time since start_operation."""
        started = self._start_times.pop(name, None)
        duration = f"({time.perf_counter() - started:.2f}s)" if started is not None else ""
        if result:
            self.log(f"Completed: {name} {duration} - {result}")
        else:
            self.log(f"Completed: {name} {duration}")

    @contextmanager
    def operation(self, name: str) -> Iterator["VerboseLogger"]:
        """Time the enclosed block; completion is logged only on success."""
        self.start_operation(name)
        yield self
        self.end_operation(name)


def get_verbose_logger(ctx: click.Context) -> VerboseLogger:
    """Build a VerboseLogger from the ``verbose`` flag on the click context."""
    if ctx.obj is None:
        return VerboseLogger(enabled=False)
    return VerboseLogger(enabled=ctx.obj.get("verbose", False))

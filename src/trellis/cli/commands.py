"""CLI commands for Trellis."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from trellis import __version__
from trellis.cli.verbose import get_verbose_logger
from trellis.core.config import TrellisConfig, load_config, write_default_config
from trellis.core.constants import (
    DEFAULT_EXPLORATION_DEPTH,
    EXIT_CONFIG_ERROR,
    EXIT_INTERNAL_ERROR,
    EXIT_SUCCESS,
    EXIT_USER_ERROR,
    MAX_EXPLORATION_DEPTH,
)
from trellis.core.context import TrellisContext
from trellis.core.eventlog import JsonlEventLog
from trellis.core.exceptions import (
    AnalysisError,
    BackupNotFoundError,
    ConfigError,
    MarkerMismatchError,
    PersistenceError,
)
from trellis.core.graph_ops import extract_neighborhood, get_graph_based_recommendation
from trellis.core.health import HealthReport, remove_orphaned_edges
from trellis.core.matching import format_node_suggestions, fuzzy_find_node
from trellis.core.temporal import TemporalQuery
from trellis.core.timeseries import GRANULARITIES, TimeWindow
from trellis.core.types import GraphQuery, Node
from trellis.viz import render_ascii, render_path

logger = logging.getLogger(__name__)
console = Console()
error_console = Console(stderr=True)

SEVERITY_STYLES = {"critical": "bold red", "high": "red", "medium": "yellow", "low": "dim"}


def _configure_logging(debug: bool) -> None:
    """Configure logging levels based on debug flag."""
    if debug:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@contextmanager
def _command_errors(name: str) -> Iterator[None]:
    """Map library exceptions to messages and exit codes."""
    try:
        yield
    except (MarkerMismatchError, BackupNotFoundError) as e:
        error_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(EXIT_USER_ERROR)
    except AnalysisError as e:
        error_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(EXIT_USER_ERROR)
    except PersistenceError as e:
        logger.exception("Storage operation failed in %s command", name)
        error_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(EXIT_INTERNAL_ERROR)
    except ConfigError as e:
        logger.exception("Configuration error in %s command", name)
        error_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(EXIT_CONFIG_ERROR)
    except SystemExit:
        raise
    except Exception:
        logger.exception("Unhandled exception in %s command", name)
        error_console.print("[red]Unexpected error[/red]")
        raise SystemExit(EXIT_INTERNAL_ERROR)


def _new_context(ctx: click.Context, events_dir: Path | None = None) -> TrellisContext:
    """Unopened context for the command; use it in a with block."""
    event_log = JsonlEventLog(events_dir) if events_dir is not None else None
    return TrellisContext(
        storage_dir=ctx.obj.get("storage_dir"),
        config=ctx.obj["config"],
        event_log=event_log,
    )


def _resolve_node(trellis_ctx: TrellisContext, query: str) -> Node:
    """Find a node by fuzzy match or exit with suggestions."""
    result = fuzzy_find_node(trellis_ctx.graph, query)
    if result.match is None:
        error_console.print(f"[red]Error:[/red] Node '{escape(query)}' not found in graph.")
        if result.suggestions:
            error_console.print()
            error_console.print(format_node_suggestions(result.suggestions), markup=False)
        raise SystemExit(EXIT_USER_ERROR)

    if not result.is_exact:
        console.print(
            f"[dim]Matched: {escape(result.match.id)} (score: {result.score:.0f}%)[/dim]"
        )
    return result.match


def _temporal_query(granularity: str, days: int) -> TemporalQuery:
    end = datetime.now(UTC)
    return TemporalQuery(
        granularity=granularity,
        time_range=TimeWindow(end - timedelta(days=days), end, f"Last {days} days"),
    )


granularity_option = click.option(
    "--granularity",
    type=click.Choice(GRANULARITIES),
    default=None,
    help="Bucket width (default: from config).",
)
days_option = click.option(
    "--days",
    type=click.IntRange(min=1),
    default=30,
    show_default=True,
    help="Analyze the last N days.",
)


@click.group()
@click.option("--debug", "-d", is_flag=True, help="Enable debug logging output")
@click.option("--verbose", "-v", is_flag=True, help="Show progress and timings on stderr")
@click.option(
    "--storage-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Knowledge graph directory (default: $TRELLIS_STORAGE_DIR or XDG data dir).",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: ~/.config/trellis/config.toml).",
)
@click.version_option(version=__version__, prog_name="trellis")
@click.pass_context
def main(
    ctx: click.Context,
    debug: bool,
    verbose: bool,
    storage_dir: Path | None,
    config_path: Path | None,
) -> None:
    """Trellis - local knowledge graph and activity analytics.

    Builds a knowledge graph of projects, technologies and outcomes from an
    event log, stores it as JSONL, and analyzes activity over time.

    Example: trellis --help
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["verbose"] = verbose
    ctx.obj["storage_dir"] = storage_dir
    ctx.obj["config_path"] = config_path
    _configure_logging(debug)

    try:
        ctx.obj["config"] = load_config(config_path)
    except ConfigError as e:
        error_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(EXIT_CONFIG_ERROR)


@main.command()
@click.option("--write-config", is_flag=True, help="Also write a default config file.")
@click.pass_context
def init(ctx: click.Context, write_config: bool) -> None:
    """Create the storage directory and empty graph files."""
    with _command_errors("init"), _new_context(ctx) as trellis_ctx:
        console.print(f"[green]✓[/green] Knowledge graph ready at {trellis_ctx.storage_dir}")
        if write_config:
            path = write_default_config(ctx.obj.get("config_path"))
            console.print(f"[green]✓[/green] Wrote default config to {path}")
        raise SystemExit(EXIT_SUCCESS)


@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show graph and storage statistics."""
    with _command_errors("stats"), _new_context(ctx) as trellis_ctx:
        graph_stats = trellis_ctx.graph.get_statistics()
        storage_stats = trellis_ctx.storage.get_statistics()

        table = Table(title="Knowledge graph", show_header=False)
        table.add_row("Nodes", str(graph_stats.node_count))
        table.add_row("Edges", str(graph_stats.edge_count))
        table.add_row("Average connectivity", f"{graph_stats.average_connectivity:.2f}")
        table.add_row("Storage size", f"{storage_stats.total_size} bytes")
        table.add_row("Last modified", storage_stats.last_modified or "never")
        table.add_row("Schema version", storage_stats.schema_version)
        console.print(table)

        if graph_stats.nodes_by_type:
            console.print()
            console.print("[bold]Nodes by type[/bold]")
            for node_type, count in sorted(graph_stats.nodes_by_type.items()):
                console.print(f"  {node_type}: {count}")
        if graph_stats.most_connected_nodes:
            console.print()
            console.print("[bold]Most connected[/bold]")
            for node_id, degree in graph_stats.most_connected_nodes[:5]:
                console.print(f"  {escape(node_id)} ({degree})")
        raise SystemExit(EXIT_SUCCESS)


@main.command()
@click.pass_context
def verify(ctx: click.Context) -> None:
    """Check the stored graph for orphans and duplicates.

    Exits 1 when errors were found.
    """
    with _command_errors("verify"), _new_context(ctx) as trellis_ctx:
        report = trellis_ctx.storage.verify_integrity()

        for error in report.errors:
            console.print(f"[red]✗[/red] {escape(error)}")
        for warning in report.warnings:
            console.print(f"[yellow]![/yellow] {escape(warning)}")

        if report.valid:
            console.print(
                f"[green]✓[/green] Graph is valid ({len(report.warnings)} warnings)"
            )
            raise SystemExit(EXIT_SUCCESS)
        console.print(f"[red]Graph has {len(report.errors)} errors[/red]")
        raise SystemExit(EXIT_USER_ERROR)


@main.command()
@click.argument("kind", type=click.Choice(["entities", "relationships"]))
@click.option("--timestamp", default=None, help="Restore the backup whose name contains this.")
@click.option("--list", "list_only", is_flag=True, help="List available backups instead.")
@click.pass_context
def restore(ctx: click.Context, kind: str, timestamp: str | None, list_only: bool) -> None:
    """Restore entities or relationships from a backup."""
    with _command_errors("restore"), _new_context(ctx) as trellis_ctx:
        if list_only:
            backups = trellis_ctx.storage.list_backups(kind)
            if not backups:
                console.print(f"No {kind} backups.")
            for backup in backups:
                console.print(backup.name)
            raise SystemExit(EXIT_SUCCESS)

        source = trellis_ctx.storage.restore_from_backup(kind, timestamp)
        console.print(f"[green]✓[/green] Restored {kind} from {source.name}")
        raise SystemExit(EXIT_SUCCESS)


@main.command()
@click.argument("events_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def build(ctx: click.Context, events_dir: Path) -> None:
    """Rebuild the knowledge graph from an event log directory."""
    verbose = get_verbose_logger(ctx)
    with _command_errors("build"), _new_context(ctx, events_dir) as trellis_ctx:
        verbose.start_operation("build graph")
        summary = trellis_ctx.rebuild()
        verbose.end_operation("build graph", f"{summary.entries_processed} entries")

        console.print(
            f"[green]✓[/green] Built graph from {summary.entries_processed} events: "
            f"{summary.node_count} nodes, {summary.edge_count} edges"
        )
        console.print(
            f"[dim]{summary.similarity_edges} similarity and "
            f"{summary.dependency_edges} dependency relationships derived[/dim]"
        )
        raise SystemExit(EXIT_SUCCESS)


@main.command()
@click.argument("source")
@click.argument("target")
@click.option(
    "--depth",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum path length (default: from config).",
)
@click.option("--all", "all_paths", is_flag=True, help="List every path instead of the shortest.")
@click.pass_context
def path(
    ctx: click.Context, source: str, target: str, depth: int | None, all_paths: bool
) -> None:
    """Find how SOURCE connects to TARGET."""
    with _command_errors("path"), _new_context(ctx) as trellis_ctx:
        config: TrellisConfig = ctx.obj["config"]
        start = _resolve_node(trellis_ctx, source)
        end = _resolve_node(trellis_ctx, target)

        if all_paths:
            result = trellis_ctx.graph.find_paths(
                start.id,
                end.id,
                max_depth=depth or config.default_max_depth,
                max_paths=config.max_enumerated_paths,
            )
            if not result.paths:
                console.print(f"No path from {escape(start.id)} to {escape(end.id)}.")
                raise SystemExit(EXIT_USER_ERROR)
            for found in result.paths:
                console.print(render_path(found), markup=False)
            if result.truncated:
                console.print(
                    f"[yellow]Warning:[/yellow] stopped after {len(result.paths)} paths."
                )
            raise SystemExit(EXIT_SUCCESS)

        found = trellis_ctx.graph.find_path(
            start.id, end.id, max_depth=depth or config.default_max_depth
        )
        if found is None:
            console.print(f"No path from {escape(start.id)} to {escape(end.id)}.")
            raise SystemExit(EXIT_USER_ERROR)
        console.print(render_path(found), markup=False)
        console.print(
            f"[dim]{len(found.edges)} hops, weight {found.total_weight:.2f}, "
            f"confidence {found.confidence:.2f}[/dim]"
        )
        raise SystemExit(EXIT_SUCCESS)


@main.command(name="graph")
@click.argument("node", required=False)
@click.option(
    "--depth",
    "-d",
    type=int,
    default=DEFAULT_EXPLORATION_DEPTH,
    help=(
        f"Relationship hops to display "
        f"(default: {DEFAULT_EXPLORATION_DEPTH}, max: {MAX_EXPLORATION_DEPTH})."
    ),
)
@click.pass_context
def graph_cmd(ctx: click.Context, node: str | None, depth: int) -> None:
    """Draw the knowledge graph, or the neighborhood of NODE.

    NODE can be an id or a label and may be misspelled.

    Examples:
        trellis graph                     # Whole graph
        trellis graph react               # Two hops around tech:react
        trellis graph p1 --depth 1        # Direct neighbors only
    """
    with _command_errors("graph"), _new_context(ctx) as trellis_ctx:
        if depth < 0:
            error_console.print("[red]Error:[/red] Depth must be non-negative.")
            raise SystemExit(EXIT_USER_ERROR)
        if depth > MAX_EXPLORATION_DEPTH:
            console.print(
                f"[yellow]Warning:[/yellow] Maximum depth is {MAX_EXPLORATION_DEPTH}. "
                f"Using --depth {MAX_EXPLORATION_DEPTH}."
            )
            depth = MAX_EXPLORATION_DEPTH

        graph = trellis_ctx.graph
        if len(graph) == 0:
            error_console.print("[red]Error:[/red] Graph is empty. Run `trellis build` first.")
            raise SystemExit(EXIT_USER_ERROR)

        if node is None:
            whole = graph.query(GraphQuery())
            console.print(render_ascii(whole), markup=False)
            raise SystemExit(EXIT_SUCCESS)

        focal = _resolve_node(trellis_ctx, node)
        neighborhood = extract_neighborhood(graph, focal.id, depth=depth)
        console.print(render_ascii(neighborhood, highlight_ids={focal.id}), markup=False)
        console.print()
        console.print(
            f"[dim]Showing {len(neighborhood.nodes)} nodes, "
            f"{len(neighborhood.edges)} relationships "
            f"(depth {depth} from {escape(focal.id)})[/dim]"
        )
        raise SystemExit(EXIT_SUCCESS)


@main.command()
@click.argument("events_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@granularity_option
@days_option
@click.pass_context
def patterns(ctx: click.Context, events_dir: Path, granularity: str | None, days: int) -> None:
    """Detect activity patterns in an event log."""
    with _command_errors("patterns"), _new_context(ctx, events_dir) as trellis_ctx:
        config: TrellisConfig = ctx.obj["config"]
        query = _temporal_query(granularity or config.default_granularity, days)

        found = trellis_ctx.temporal.analyze_temporal_patterns(query)
        metrics = trellis_ctx.temporal.get_temporal_metrics(query)

        if not found:
            console.print("No patterns detected.")
        for pattern in found:
            console.print(
                f"[bold]{pattern.type}[/bold] ({pattern.confidence:.0%}) "
                f"{escape(pattern.description)}"
            )

        console.print()
        console.print(
            f"[dim]Activity level {metrics.activity_level:.2f}, "
            f"growth {metrics.growth_rate:+.1f}%, "
            f"consistency {metrics.consistency:.2f}[/dim]"
        )
        raise SystemExit(EXIT_SUCCESS)


@main.command()
@click.argument("events_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@granularity_option
@days_option
@click.pass_context
def predict(ctx: click.Context, events_dir: Path, granularity: str | None, days: int) -> None:
    """Forecast the next bucket of activity and list anomalies."""
    with _command_errors("predict"), _new_context(ctx, events_dir) as trellis_ctx:
        config: TrellisConfig = ctx.obj["config"]
        query = _temporal_query(granularity or config.default_granularity, days)

        prediction = trellis_ctx.temporal.predict_future_activity(query)
        nxt = prediction.next_activity
        console.print(
            f"[bold]Next {query.granularity}[/bold] "
            f"({nxt.time_range.start:%Y-%m-%d %H:%M} to {nxt.time_range.end:%Y-%m-%d %H:%M}): "
            f"~{nxt.expected_count} events, probability {nxt.probability:.0%}, "
            f"confidence {nxt.confidence:.0%}"
        )

        if prediction.anomalies:
            console.print()
            console.print("[bold]Anomalies[/bold]")
            for anomaly in prediction.anomalies:
                console.print(
                    f"  {anomaly.timestamp:%Y-%m-%d %H:%M} {anomaly.type} "
                    f"(severity {anomaly.severity:.2f}) {escape(anomaly.description)}"
                )
        if prediction.recommendations:
            console.print()
            console.print("[bold]Recommendations[/bold]")
            for recommendation in prediction.recommendations:
                console.print(f"  - {escape(recommendation)}")
        raise SystemExit(EXIT_SUCCESS)


@main.command()
@click.argument("candidates", nargs=-1, required=True)
@click.option("--language", default=None, help="Primary language of the project.")
@click.option("--framework", default=None, help="Framework of the project.")
@click.option("--size", default=None, help="Project size, e.g. small, medium, large.")
@click.pass_context
def recommend(
    ctx: click.Context,
    candidates: tuple[str, ...],
    language: str | None,
    framework: str | None,
    size: str | None,
) -> None:
    """Rank CANDIDATES by how well similar projects fared with them."""
    with _command_errors("recommend"), _new_context(ctx) as trellis_ctx:
        config: TrellisConfig = ctx.obj["config"]
        features = {
            key: value
            for key, value in (("language", language), ("framework", framework), ("size", size))
            if value is not None
        }
        if not features:
            error_console.print(
                "[red]Error:[/red] Give at least one of --language, --framework or --size."
            )
            raise SystemExit(EXIT_USER_ERROR)

        recommendations = get_graph_based_recommendation(
            trellis_ctx.graph,
            features,
            candidates,
            similarity_threshold=config.feature_similarity_threshold,
            similar_limit=config.similar_project_limit,
            decay_days=config.confidence_decay_days,
            max_depth=config.default_max_depth,
        )
        if not recommendations:
            console.print("No recommendation: no similar project reaches these candidates.")
            raise SystemExit(EXIT_SUCCESS)

        for rec in recommendations:
            console.print(
                f"[bold]{escape(rec.technology.label)}[/bold] ({rec.confidence:.0%})"
            )
            console.print(f"  {render_path(rec.path)}", markup=False)
            for reason in rec.reasoning:
                console.print(f"  [dim]{escape(reason)}[/dim]")
        raise SystemExit(EXIT_SUCCESS)


def _print_health(report: HealthReport) -> None:
    console.print(f"[bold]Overall health: {report.overall_health}/100[/bold]")
    console.print(
        f"  Data quality {report.data_quality.score}, "
        f"structure {report.structure_health.score}, "
        f"performance {report.performance.score}"
    )
    console.print(
        f"  Trend: {report.trends.health_trend}, "
        f"{report.trends.node_growth_rate:+.1f} nodes/day, "
        f"{report.trends.edge_growth_rate:+.1f} edges/day"
    )

    if report.issues:
        console.print()
        console.print("[bold]Issues[/bold]")
        for issue in report.issues:
            style = SEVERITY_STYLES[issue.severity]
            console.print(
                f"  [{style}]{issue.severity.upper()}[/{style}] {escape(issue.description)}"
            )
            console.print(f"    [dim]{escape(issue.remediation)}[/dim]")

    if report.recommendations:
        console.print()
        console.print("[bold]Recommendations[/bold]")
        for rec in report.recommendations:
            console.print(f"  - {escape(rec.action)} [dim](+{rec.expected_impact})[/dim]")


@main.command()
@click.option("--fix", is_flag=True, help="Remove orphaned relationships before scoring.")
@click.pass_context
def health(ctx: click.Context, fix: bool) -> None:
    """Score the health of the knowledge graph."""
    with _command_errors("health"), _new_context(ctx) as trellis_ctx:
        if fix:
            removed = remove_orphaned_edges(trellis_ctx.graph)
            if removed:
                trellis_ctx.save()
            console.print(f"[green]✓[/green] Removed {removed} orphaned relationships")
            console.print()

        report = trellis_ctx.health.calculate_health(trellis_ctx.graph, trellis_ctx.storage)
        _print_health(report)
        raise SystemExit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()

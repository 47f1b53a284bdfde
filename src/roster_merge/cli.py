"""CLI for RosterMerge.

Commands:
    analyze <manifest>   - Match, merge and link; print what needs review
    import <manifest>    - Analyze, then write importable records to a directory
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from roster_merge.config import settings
from roster_merge.errors import OracleUnavailableError, RosterMergeError
from roster_merge.inference.conflict_agent import LLMConflictOracle
from roster_merge.manifest import load_existing, load_manifest
from roster_merge.models.enums import ResolutionStrategy
from roster_merge.pipeline.orchestrator import ImportPipeline
from roster_merge.pipeline.progress import ProgressEvent
from roster_merge.pipeline.result import AnalysisResult
from roster_merge.pipeline.sink import JsonLinesSink
from roster_merge.pipeline.store import InMemoryAnalysisStore

app = typer.Typer(
    name="roster-merge",
    help="RosterMerge: merge HR exports into one deduplicated, linked dataset",
    no_args_is_help=True,
)
console = Console()


class StrategyOption(str, Enum):
    oracle = "oracle"
    hybrid = "hybrid"
    rules = "rules"


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def build_pipeline(strategy: StrategyOption, country: str | None) -> ImportPipeline:
    resolution = ResolutionStrategy(strategy.value)
    oracle = None if resolution == ResolutionStrategy.RULES else LLMConflictOracle()
    return ImportPipeline(
        oracle,
        strategy=resolution,
        store=InMemoryAnalysisStore(),
        country_code=country,
    )


async def run_analysis(
    manifest_path: Path,
    existing_path: Path | None,
    strategy: StrategyOption,
    country: str | None,
) -> tuple[ImportPipeline, AnalysisResult]:
    loaded = load_manifest(manifest_path)
    existing = load_existing(existing_path) if existing_path else []
    pipeline = build_pipeline(strategy, country or loaded.country_code)

    def on_progress(event: ProgressEvent) -> None:
        console.print(f"[dim][{event.percent:3d}%] {event.message}[/dim]")

    result = await pipeline.analyze(
        loaded.groups, loaded.records_by_type, existing, on_progress=on_progress
    )
    return pipeline, result


def print_result(result: AnalysisResult) -> None:
    summary = result.summary
    if summary is None:
        return

    dup = summary.duplicates
    console.print(Panel(
        f"[bold]Entity types:[/bold] {summary.entity_types}\n"
        f"[bold]Records:[/bold] {summary.total_records}\n"
        f"[bold]Entities:[/bold] {summary.total_entities}\n"
        f"[bold]Linked:[/bold] {summary.linked}   [bold]Rejected:[/bold] {summary.rejected}\n"
        f"[bold]Conflicts:[/bold] {summary.auto_resolved_conflicts} auto-resolved, "
        f"{summary.review_conflicts} for review ({summary.oracle_failures} oracle failure(s))\n"
        f"[bold]Duplicates:[/bold] {dup.total_duplicates} "
        f"(update {dup.will_update}, skip {dup.will_skip}, ask {dup.requires_user_decision}), "
        f"{dup.new_entities} new\n"
        f"[bold]Estimated import time:[/bold] {summary.estimated_import_time}",
        title=f"Run {result.run_id}",
    ))

    table = Table(title="Entity Types")
    table.add_column("Type", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Completeness", justify="right")
    table.add_column("High/Med/Low", justify="right")
    table.add_column("Open conflicts", justify="right")
    table.add_column("Linked", justify="right")
    table.add_column("Rejected", justify="right")
    for preview in result.previews:
        dist = preview.completeness_distribution
        table.add_row(
            preview.display_name,
            str(preview.count),
            f"{preview.average_completeness}%",
            f"{dist['high']}/{dist['medium']}/{dist['low']}",
            str(preview.entities_with_conflicts),
            str(preview.linked),
            str(preview.rejected),
        )
    console.print(table)

    if result.requires_review:
        table = Table(title="Conflicts Requiring Review")
        table.add_column("Type")
        table.add_column("Field", style="cyan")
        table.add_column("Severity")
        table.add_column("Values")
        table.add_column("Proposed")
        for conflict in result.requires_review:
            severity_style = {
                "critical": "red",
                "medium": "yellow",
                "low": "green",
            }.get(conflict.severity.value, "white")
            values = "\n".join(f"{s.source_key}: {s.value}" for s in conflict.sources)
            proposed = (
                f"{conflict.resolution.chosen_value} ({conflict.resolution.confidence}%)"
                if conflict.resolution
                else "[red]unresolved[/red]"
            )
            table.add_row(
                conflict.entity_type,
                conflict.field,
                f"[{severity_style}]{conflict.severity.value}[/{severity_style}]",
                values,
                proposed,
            )
        console.print(table)

    if result.rejected:
        table = Table(title="Rejected Records")
        table.add_column("Type")
        table.add_column("Source")
        table.add_column("Reason")
        for rejected in result.rejected:
            table.add_row(
                rejected.entity_type,
                f"{rejected.source_file}::{rejected.source_sheet}",
                rejected.reason,
            )
        console.print(table)

    for recommendation in summary.recommendations:
        console.print(f"[yellow]![/yellow] {recommendation}")


@app.command()
def analyze(
    manifest: Annotated[Path, typer.Argument(help="JSON manifest of classified sources")],
    existing: Annotated[
        Path | None, typer.Option("--existing", "-e", help="JSON list of existing employees")
    ] = None,
    strategy: Annotated[
        StrategyOption, typer.Option(help="How conflicts are arbitrated")
    ] = StrategyOption.oracle,
    country: Annotated[
        str | None, typer.Option(help="Country code for business rules (CI, SN)")
    ] = None,
    json_out: Annotated[
        Path | None, typer.Option("--json-out", help="Write the analysis payload here")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """Analyze a manifest: match, detect conflicts, merge and link."""
    configure_logging(verbose)
    try:
        _, result = run_async(run_analysis(manifest, existing, strategy, country))
    except OracleUnavailableError as e:
        console.print(f"[red]Error:[/red] {e}")
        console.print("[dim]Use --strategy rules to run without the oracle.[/dim]")
        raise typer.Exit(1) from None
    except RosterMergeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    print_result(result)
    if json_out:
        json_out.write_text(
            json.dumps(result.to_payload(), ensure_ascii=False, indent=2), encoding="utf-8"
        )
        console.print(f"[green]Analysis written to {json_out}[/green]")


@app.command("import")
def import_(
    manifest: Annotated[Path, typer.Argument(help="JSON manifest of classified sources")],
    out: Annotated[Path, typer.Option("--out", "-o", help="Directory for JSON-lines output")],
    existing: Annotated[
        Path | None, typer.Option("--existing", "-e", help="JSON list of existing employees")
    ] = None,
    strategy: Annotated[
        StrategyOption, typer.Option(help="How conflicts are arbitrated")
    ] = StrategyOption.oracle,
    country: Annotated[
        str | None, typer.Option(help="Country code for business rules (CI, SN)")
    ] = None,
    include_pending_review: Annotated[
        bool,
        typer.Option(
            "--include-pending-review", help="Also import records still awaiting review"
        ),
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """Analyze a manifest, then write importable records to OUT."""
    configure_logging(verbose)

    async def _import():
        pipeline, result = await run_analysis(manifest, existing, strategy, country)
        print_result(result)
        outcome = await pipeline.execute(
            result.run_id, JsonLinesSink(out), include_pending_review=include_pending_review
        )
        return outcome

    try:
        outcome = run_async(_import())
    except RosterMergeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    table = Table(title="Imported")
    table.add_column("Type", style="cyan")
    table.add_column("Records", justify="right")
    for entity_type, count in outcome.by_entity_type.items():
        table.add_row(entity_type, str(count))
    console.print(table)
    if outcome.held_for_review:
        console.print(
            f"[yellow]{outcome.held_for_review} record(s) held for review[/yellow] "
            "(rerun with --include-pending-review once reviewed)"
        )
    for error in outcome.errors:
        console.print(f"[red]Error:[/red] {error}")
    if not outcome.success:
        raise typer.Exit(1)
    console.print(f"[green]Imported {outcome.records_imported} record(s) into {out}[/green]")

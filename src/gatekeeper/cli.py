"""CLI entry point for gatekeeper."""

from __future__ import annotations

import asyncio
import json
import shlex
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

import click
from rich.console import Console
from rich.table import Table

from gatekeeper import __version__
from gatekeeper.errors import ConfigurationError
from gatekeeper.logging_config import setup_logging

if TYPE_CHECKING:
    from gatekeeper.config import Settings
    from gatekeeper.engine.pipeline import PipelineResult
    from gatekeeper.routing.models import TaskCategory
    from gatekeeper.validation.models import ValidationResult

console = Console()

CATEGORY_CHOICES = ["research", "code-generation", "debugging", "reporting", "generic"]

VERDICT_COLORS = {
    "pass": "green",
    "enhance": "yellow",
    "failed": "red",
    "direct": "cyan",
    "regenerate": "red",
}


@click.group()
@click.version_option(version=__version__, prog_name="gate")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Settings document (TOML or JSON)",
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for the ledger and criteria overrides",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, data_dir: Path | None, verbose: bool) -> None:
    """Gatekeeper — delegation routing and quality gating for worker output."""
    setup_logging("DEBUG" if verbose else None)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["data_dir"] = data_dir


def _settings(ctx: click.Context) -> Settings:
    from gatekeeper.config import load_config

    if "settings" not in ctx.obj:
        try:
            ctx.obj["settings"] = load_config(ctx.obj["config_path"], ctx.obj["data_dir"])
        except ConfigurationError as exc:
            raise click.ClickException(f"Invalid configuration: {exc}") from exc
    return ctx.obj["settings"]


def _category(value: str) -> TaskCategory:
    from gatekeeper.routing.models import parse_category

    return parse_category(value)


def _read_context(files: tuple[Path, ...]) -> dict[str, str]:
    return {path.name: path.read_text(errors="replace") for path in files}


@main.command()
@click.option("--force", is_flag=True, help="Overwrite an existing config.toml")
@click.pass_context
def init(ctx: click.Context, force: bool) -> None:
    """Initialize the data directory, default config and ledger."""
    from gatekeeper.config import write_default_config
    from gatekeeper.feedback.ledger import FeedbackLedger

    settings = _settings(ctx)
    settings.ensure_dirs()
    config_file = write_default_config(settings.data_dir, overwrite=force)

    async def _create() -> None:
        async with FeedbackLedger(str(settings.ledger_path)):
            pass

    asyncio.run(_create())
    console.print(f"[green]Gatekeeper initialized at {settings.data_dir}[/green]")
    console.print(f"  Config:    {config_file}")
    console.print(f"  Ledger:    {settings.ledger_path}")
    console.print(f"  Overrides: {settings.overrides_path}")


@main.command()
@click.argument("text")
@click.option(
    "--context-file",
    "context_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Attach a file as request context (repeatable)",
)
@click.option("--json", "as_json", is_flag=True, help="Print the decision as JSON")
@click.pass_context
def classify(ctx: click.Context, text: str, context_files: tuple[Path, ...], as_json: bool) -> None:
    """Classify a request and show the delegation decision."""
    from gatekeeper.routing.policy import DelegationPolicy

    settings = _settings(ctx)
    decision = DelegationPolicy(settings.token_thresholds).decide(
        text, _read_context(context_files)
    )

    if as_json:
        click.echo(json.dumps(decision.to_dict(), indent=2))
        return

    color = "green" if decision.should_delegate else "cyan"
    console.print(f"[bold]Category:[/bold] {decision.category.value}")
    console.print(f"[bold]Estimated cost:[/bold] {decision.estimated_cost} tokens")
    console.print(
        f"[bold]Delegate:[/bold] [{color}]{'yes' if decision.should_delegate else 'no'}[/{color}]"
    )
    console.print(
        f"[bold]Factors:[/bold] {', '.join(sorted(decision.triggered_factors)) or 'none'}"
    )
    console.print(f"[bold]Reasoning:[/bold] {decision.reasoning}", markup=False)


def _print_validation(result: ValidationResult, disposition: str) -> None:
    table = Table(title="Validation")
    table.add_column("Phase", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Failing criteria")
    for score in result.phase_scores:
        table.add_row(
            score.phase.value,
            f"{score.score:.3f}",
            ", ".join(sorted(score.failing_criteria)) or "-",
        )
    console.print(table)

    color = VERDICT_COLORS.get(disposition, "dim")
    console.print(f"[bold]Aggregate:[/bold] {result.aggregate:.3f}")
    console.print(f"[bold]Disposition:[/bold] [{color}]{disposition.upper()}[/{color}]")
    if result.critical_failures:
        console.print(f"[red]Critical:[/red] {', '.join(sorted(result.critical_failures))}")


@main.command()
@click.argument("artifact", type=click.File("r"))
@click.option("--category", "-c", type=click.Choice(CATEGORY_CHOICES), required=True)
@click.option("--request", "request_text", default="", help="Original request text")
@click.option("--as-of-year", type=int, default=None, help="Reference year for citations")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def validate(
    ctx: click.Context,
    artifact: TextIO,
    category: str,
    request_text: str,
    as_of_year: int | None,
    as_json: bool,
) -> None:
    """Score an artifact file ('-' for stdin) against a category's criteria."""
    from gatekeeper.routing.models import Request
    from gatekeeper.validation.engine import ValidationEngine
    from gatekeeper.validation.gate import QualityGate

    settings = _settings(ctx)
    cat = _category(category)
    request = (
        Request(text=request_text, as_of_year=as_of_year)
        if as_of_year
        else Request(text=request_text)
    )

    result = ValidationEngine(settings.registry).validate(
        artifact.read(), cat, request.validation_context()
    )
    disposition = QualityGate(settings.registry).decide(result, cat)

    if as_json:
        click.echo(json.dumps({"disposition": disposition.value, **result.to_dict()}, indent=2))
        return
    _print_validation(result, disposition.value)


@main.command()
@click.argument("artifact", type=click.File("r"))
@click.option("--category", "-c", type=click.Choice(CATEGORY_CHOICES), required=True)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the repaired artifact here instead of stdout",
)
@click.pass_context
def enhance(ctx: click.Context, artifact: TextIO, category: str, output: Path | None) -> None:
    """Apply local repairs for the artifact's failing criteria."""
    from gatekeeper.validation.engine import ValidationEngine
    from gatekeeper.validation.enhancer import EnhancementEngine

    settings = _settings(ctx)
    cat = _category(category)
    text = artifact.read()
    engine = ValidationEngine(settings.registry)
    before = engine.validate(text, cat)
    repaired = EnhancementEngine().enhance(text, before.failing_criteria)
    after = engine.validate(repaired.artifact, cat)

    if output is not None:
        output.write_text(repaired.artifact)
        console.print(f"[green]Wrote {output}[/green]")
    else:
        click.echo(repaired.artifact)

    err = Console(stderr=True)
    err.print(f"[bold]Score:[/bold] {before.aggregate:.3f} -> {after.aggregate:.3f}")
    err.print(f"[bold]Applied:[/bold] {', '.join(repaired.applied) or 'none'}")
    err.print(f"[bold]Residual:[/bold] {', '.join(repaired.residual) or 'none'}")


@main.command()
@click.argument("task")
@click.option(
    "--context-file",
    "context_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Attach a file as request context (repeatable)",
)
@click.option("--command", "worker_command", default=None, help="Worker command line")
@click.option("--category", "-c", type=click.Choice(CATEGORY_CHOICES), default=None)
@click.option("--force", is_flag=True, help="Delegate even if the policy would not")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.pass_context
def run(
    ctx: click.Context,
    task: str,
    context_files: tuple[Path, ...],
    worker_command: str | None,
    category: str | None,
    force: bool,
    as_json: bool,
) -> None:
    """Route TASK to the worker and gate its output."""
    from gatekeeper.engine.pipeline import GatePipeline, Verdict
    from gatekeeper.engine.worker import CommandWorker
    from gatekeeper.feedback.ledger import FeedbackLedger
    from gatekeeper.routing.models import Request
    from gatekeeper.routing.policy import DelegationPolicy

    settings = _settings(ctx)
    command = shlex.split(worker_command) if worker_command else settings.worker_command
    if not command:
        raise click.ClickException(
            "No worker command configured; pass --command or set worker_command"
        )
    settings.ensure_dirs()
    request = Request(text=task, context=_read_context(context_files))

    async def _run() -> PipelineResult:
        async with FeedbackLedger(str(settings.ledger_path)) as ledger:
            pipeline = GatePipeline(
                CommandWorker(command),
                registry=settings.registry,
                ledger=ledger,
                policy=DelegationPolicy(settings.token_thresholds),
                max_retries=settings.max_retries,
                timeout=settings.worker_timeout,
                auto_enhance=settings.auto_enhance,
                output_mode=settings.output_mode,
            )
            return await pipeline.process(
                request, force=force, category=_category(category) if category else None
            )

    result = asyncio.run(_run())

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result)
    if result.verdict is Verdict.FAILED:
        ctx.exit(1)


def _print_result(result: PipelineResult) -> None:
    color = VERDICT_COLORS.get(result.verdict.value, "dim")
    console.print(f"\n[{color}]Verdict: {result.verdict.value.upper()}[/{color}]")
    console.print(f"Category: {result.decision.category.value}")
    console.print(f"Attempts: {result.attempt_count}")
    console.print(f"Score: {result.aggregate_score:.3f}")

    if result.issues:
        console.print("\n[yellow]Issues:[/yellow]")
        for issue in result.issues:
            console.print(f"  - {issue}", markup=False)

    if result.final_artifact is not None:
        console.rule()
        click.echo(result.final_artifact)
    elif result.verdict.value == "direct":
        console.print(f"\n[dim]{result.decision.reasoning}[/dim]", markup=False)


@main.command()
@click.option("--limit", default=20, help="Number of entries to show")
@click.option("--category", "-c", type=click.Choice(CATEGORY_CHOICES), default=None)
@click.pass_context
def history(ctx: click.Context, limit: int, category: str | None) -> None:
    """Show recent ledger entries."""
    from gatekeeper.feedback.ledger import FeedbackLedger

    settings = _settings(ctx)
    settings.ensure_dirs()

    async def _load() -> list[Any]:
        async with FeedbackLedger(str(settings.ledger_path)) as ledger:
            cat = _category(category).value if category else None
            return await ledger.entries(cat, limit=limit)

    entries = asyncio.run(_load())
    if not entries:
        console.print("[dim]No ledger entries yet. Run a request first.[/dim]")
        return

    table = Table(title="Ledger History")
    table.add_column("#", justify="right")
    table.add_column("Request", style="cyan")
    table.add_column("Category")
    table.add_column("Kind")
    table.add_column("Attempt", justify="right")
    table.add_column("Disposition", style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Issues", max_width=40)
    table.add_column("Date")

    for entry in entries:
        table.add_row(
            str(entry.id),
            entry.request_id or "-",
            entry.category,
            entry.kind,
            str(entry.attempt_index),
            entry.disposition,
            f"{entry.aggregate_score:.3f}",
            ", ".join(entry.issues) or "-",
            entry.timestamp[:16],
        )
    console.print(table)


@main.command()
@click.option("--category", "-c", type=click.Choice(CATEGORY_CHOICES), required=True)
@click.option("--window", default=50, help="Number of recent entries to examine")
@click.pass_context
def issues(ctx: click.Context, category: str, window: int) -> None:
    """Show the most frequent issues for a category."""
    from gatekeeper.feedback.ledger import FeedbackLedger

    settings = _settings(ctx)
    settings.ensure_dirs()
    cat = _category(category)

    async def _load() -> list[tuple[str, int]]:
        async with FeedbackLedger(str(settings.ledger_path)) as ledger:
            return await ledger.recurring_issues(cat.value, window)

    ranked = asyncio.run(_load())
    if not ranked:
        console.print(f"[dim]No recorded issues for {cat.value}.[/dim]")
        return

    table = Table(title=f"Recurring Issues: {cat.value} (last {window})")
    table.add_column("Issue", style="cyan")
    table.add_column("Count", justify="right")
    for issue, count in ranked:
        table.add_row(issue, str(count))
    console.print(table)


@main.command()
@click.option("--dry-run", is_flag=True, help="Show proposed changes without applying")
@click.option("--apply", "apply_changes", is_flag=True, help="Apply and persist the proposals")
@click.option("--window", default=50, help="Number of recent entries to examine")
@click.pass_context
def tune(ctx: click.Context, dry_run: bool, apply_changes: bool, window: int) -> None:
    """Propose or apply criterion weight adjustments from the ledger."""
    from gatekeeper.config import save_overrides
    from gatekeeper.feedback.ledger import FeedbackLedger
    from gatekeeper.feedback.tuner import WeightTuner

    if not (dry_run or apply_changes):
        console.print(
            "Use [bold]--dry-run[/bold] to see proposals or [bold]--apply[/bold] to apply them."
        )
        return

    settings = _settings(ctx)
    settings.ensure_dirs()

    async def _tune() -> tuple[list[Any], Any]:
        async with FeedbackLedger(str(settings.ledger_path)) as ledger:
            tuner = WeightTuner(ledger, window_size=window)
            proposals = await tuner.propose(settings.registry)
            if apply_changes and proposals:
                return proposals, await tuner.apply(settings.registry, proposals)
            return proposals, None

    proposals, updated = asyncio.run(_tune())
    if not proposals:
        console.print("[dim]No weight proposals. Issues must recur 3+ times in the window.[/dim]")
        return

    table = Table(title="Proposed Weight Adjustments")
    table.add_column("Category", style="cyan")
    table.add_column("Criterion")
    table.add_column("Current", justify="right")
    table.add_column("Proposed", style="green", justify="right")
    table.add_column("Occurrences", justify="right")
    for p in proposals:
        table.add_row(
            p.category.value,
            p.criterion,
            f"{p.current_weight:.4f}",
            f"{p.proposed_weight:.4f}",
            str(p.occurrences),
        )
    console.print(table)

    if updated is not None:
        path = save_overrides(updated, settings.overrides_path)
        console.print(f"[green]Applied {len(proposals)} adjustment(s); saved to {path}[/green]")


@main.command()
@click.option("--category", "-c", type=click.Choice(CATEGORY_CHOICES), default=None)
@click.pass_context
def criteria(ctx: click.Context, category: str | None) -> None:
    """Print the criteria registry."""
    from gatekeeper.routing.models import TaskCategory

    settings = _settings(ctx)
    registry = settings.registry
    categories = [_category(category)] if category else list(TaskCategory)

    for cat in categories:
        thresholds = registry.thresholds(cat)
        phase_weights = registry.phase_weights(cat)
        table = Table(
            title=(
                f"{cat.value} (pass >= {thresholds.pass_:.2f}, "
                f"enhance >= {thresholds.enhance:.2f}, v{registry.version})"
            )
        )
        table.add_column("Phase", style="cyan")
        table.add_column("Criterion")
        table.add_column("Weight", justify="right")
        table.add_column("Critical")
        for phase, members in registry.criteria_for(cat).items():
            for index, crit in enumerate(members):
                label = f"{phase.value} ({phase_weights[phase]:.2f})" if index == 0 else ""
                table.add_row(
                    label,
                    crit.name,
                    f"{crit.weight:.4f}",
                    "[red]yes[/red]" if crit.critical else "",
                )
        console.print(table)

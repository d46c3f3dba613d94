"""
GradeGate CLI Application.

Provides a command-line interface for checking extraction readiness,
validating grading model answers and running a full assessment from a
JSON bundle.
"""

import json
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from gradegate import GradeGateError
from gradegate.config import get_settings
from gradegate.criteria import authoritative_codes
from gradegate.gating import choose_for_report, evaluate_extraction_readiness
from gradegate.grading import AssessmentBundle, DecisionValidator, GradingPipeline
from gradegate.grading.pipeline import assessment_to_record
from gradegate.logging_setup import configure_logging
from gradegate.models import (
    AssessmentOutcome,
    AssessmentStatus,
    ExtractionMetrics,
    ReadinessReport,
)

# Create Typer app
app = typer.Typer(
    name="gradegate",
    help="Quality assurance around an untrusted grading model",
    add_completion=False,
)

console = Console()


class BundleError(GradeGateError):
    """Raised when an input file cannot be read as the expected JSON."""


def _load_json(path: Path) -> Any:
    """Read a JSON file, raising BundleError with a readable message."""
    if not path.exists():
        raise BundleError(f"File not found: {path}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise BundleError(f"{path} is not valid JSON: {e}") from e


def _split_codes(codes: str) -> list[str]:
    return [c for c in (part.strip() for part in codes.split(",")) if c]


def _write_output(output: Path, payload: Any) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    console.print(f"\n[green]Saved to:[/green] {output}")


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Print pipeline log records"),
    ] = False,
) -> None:
    """Configure logging for every command."""
    configure_logging(enable_console=verbose, verbose=verbose)


@app.command()
def readiness(
    metrics_file: Annotated[Path, typer.Argument(help="JSON file with extraction metrics")],
    submission_status: Annotated[
        Optional[str],
        typer.Option("--status", "-s", help="Submission lifecycle status"),
    ] = None,
    mode: Annotated[
        Optional[str],
        typer.Option("--mode", "-m", help="Requested input mode (AUTO, EXTRACTED, RAW)"),
    ] = None,
    no_images: Annotated[
        bool,
        typer.Option("--no-images", help="Submission cannot be rendered to page images"),
    ] = False,
) -> None:
    """
    Check whether an extraction is fit to grade.

    Prints blockers and warnings, and the input mode the model would receive.
    """
    try:
        settings = get_settings()
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    try:
        data = _load_json(metrics_file)
        metrics = ExtractionMetrics.model_validate(data) if data is not None else None

        report = evaluate_extraction_readiness(
            metrics, submission_status, settings.readiness_thresholds()
        )
        decision = choose_for_report(
            report,
            mode or settings.default_input_mode,
            not no_images,
            settings.input_strategy_thresholds(),
        )

        _display_readiness(report)
        console.print(
            Panel(
                f"[bold]{decision.mode.value}[/bold]\n{escape(decision.reason)}",
                title="Input Strategy",
            )
        )

        if not report.ok:
            raise typer.Exit(2)

    except BundleError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    except ValidationError as e:
        console.print(f"[red]Invalid metrics:[/red] {escape(str(e))}")
        raise typer.Exit(1)


@app.command()
def validate(
    answer_file: Annotated[Path, typer.Argument(help="File with the grading model's answer")],
    codes: Annotated[
        str,
        typer.Option("--codes", "-c", help="Comma-separated authoritative criteria codes"),
    ],
) -> None:
    """
    Validate a grading model answer against the decision schema.

    The answer may be raw model text; a fenced or embedded JSON object is found.
    """
    if not answer_file.exists():
        console.print(f"[red]Error:[/red] File not found: {answer_file}")
        raise typer.Exit(1)

    criteria = authoritative_codes(_split_codes(codes))
    result = DecisionValidator().validate(answer_file.read_bytes(), criteria)

    if result.ok and result.data is not None:
        decision = result.data
        console.print(
            Panel(
                f"[green][bold]{decision.overall_grade.value}[/bold][/green] "
                f"(model confidence {decision.confidence:.2f})\n{escape(decision.feedback_summary)}",
                title="Valid Decision",
            )
        )
        table = Table(title="Criterion Checks")
        table.add_column("Code", style="cyan")
        table.add_column("Decision")
        table.add_column("Evidence", justify="right")
        table.add_column("Confidence", justify="right")
        for check in decision.criterion_checks:
            table.add_row(
                check.code,
                check.decision.value,
                str(len(check.evidence)),
                f"{check.confidence:.2f}",
            )
        console.print(table)
        return

    console.print("[red]✗ Answer rejected[/red]")
    for error in result.errors:
        console.print(f"  • {escape(error)}")
    raise typer.Exit(2)


@app.command()
def assess(
    bundle_file: Annotated[Path, typer.Argument(help="JSON assessment bundle")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the outcome and audit record as JSON"),
    ] = None,
) -> None:
    """
    Run the full pipeline on an assessment bundle.

    The bundle holds the extraction metrics (or run record), the criteria
    codes and the model's answer.
    """
    try:
        bundle = AssessmentBundle.model_validate(_load_json(bundle_file))
        outcome = GradingPipeline(get_settings()).run(bundle)
    except BundleError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    except ValidationError as e:
        console.print(f"[red]Invalid bundle:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    _display_outcome(outcome)

    if output:
        _write_output(output, assessment_to_record(outcome))

    if outcome.status is not AssessmentStatus.ASSESSED:
        raise typer.Exit(2)


@app.command()
def config() -> None:
    """Show the effective configuration."""
    try:
        settings = get_settings()
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    table = Table(title="GradeGate Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in settings.model_dump(mode="json").items():
        table.add_row(name, str(value))
    console.print(table)


def _display_readiness(report: ReadinessReport) -> None:
    """Display readiness blockers and warnings."""
    if report.ok:
        console.print("[green]✓ Extraction is ready for grading[/green]")
    else:
        console.print("[red]✗ Grading is blocked[/red]")
        for blocker in report.blockers:
            console.print(f"  • {escape(blocker)}")

    if report.warnings:
        console.print("\n[yellow]⚠ Warnings:[/yellow]")
        for warning in report.warnings:
            console.print(f"  • {escape(warning)}")


def _display_outcome(outcome: AssessmentOutcome) -> None:
    """Display an assessment outcome."""
    _display_readiness(outcome.prepared.readiness)
    console.print(f"\n[dim]Input mode: {outcome.prepared.input_decision.mode.value}[/dim]")

    if outcome.status is AssessmentStatus.BLOCKED:
        console.print(Panel(escape("\n".join(outcome.prepared.blockers)), title="Blocked"))
        return

    if outcome.status is AssessmentStatus.REJECTED:
        console.print(Panel(escape("\n".join(outcome.errors)), title="Answer Rejected"))
        return

    if outcome.decision is None or outcome.confidence is None:
        return

    final = outcome.confidence.final_confidence
    color = "green" if final >= 0.75 else "yellow" if final >= 0.5 else "red"
    console.print(
        Panel(
            f"[bold]{outcome.decision.overall_grade.value}[/bold]\n"
            f"[{color}]Confidence {final:.3f}[/{color}] "
            f"(raw {outcome.confidence.raw_confidence_before_caps:.3f})",
            title="Assessment",
        )
    )

    if outcome.confidence.caps_applied:
        table = Table(title="Confidence Caps")
        table.add_column("Cap", style="cyan")
        table.add_column("Value", justify="right")
        table.add_column("Reason")
        for cap in outcome.confidence.caps_applied:
            table.add_row(cap.name, f"{cap.value:.3f}", escape(cap.reason))
        console.print(table)


if __name__ == "__main__":
    app()

"""Command-line interface for NutriSafe using Typer.

Usage:
    nutrisafe check query.json
    nutrisafe evaluate --enforce
    nutrisafe regress --baseline-kb kb_2026_09.yaml --candidate-kb kb_2026_10.yaml
    nutrisafe normalize "Coumadin 5mg" --kind drug
    nutrisafe kb-info
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from nutrisafe.clinical_types import NameKind
from nutrisafe.exceptions import NutriSafeError

app = typer.Typer(
    name="nutrisafe",
    help="NutriSafe: clinical safety checks for food against medications, allergies and conditions",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        from nutrisafe import __version__

        console.print(f"[bold blue]NutriSafe[/] version [green]{__version__}[/]")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-V",
            help="Enable verbose output",
        ),
    ] = False,
) -> None:
    """NutriSafe: a clinical safety rule engine for food and nutrition."""
    from nutrisafe.logging import configure_logging
    from nutrisafe.settings import get_settings

    app_settings = get_settings().app
    configure_logging(
        level="DEBUG" if verbose else "WARNING",
        json_output=app_settings.json_logs,
        log_file=app_settings.log_file,
    )


def _fail(message: str, error: Exception | None = None) -> None:
    console.print(f"[bold red]Error:[/] {message}")
    if isinstance(error, NutriSafeError) and error.suggestion:
        console.print(f"  [dim]{error.suggestion}[/]")
    raise typer.Exit(code=1)


def _engine(kb: Path | None):
    from nutrisafe.engine import SafetyEngine

    try:
        return SafetyEngine.from_settings(snapshot_path=kb)
    except NutriSafeError as e:
        _fail(e.message, e)


KbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--kb",
        help="Knowledge base snapshot (YAML/JSON); defaults to configuration or the packaged snapshot",
    ),
]


@app.command()
def check(
    query_file: Annotated[
        Path,
        typer.Argument(help="JSON file containing a SafetyQuery"),
    ],
    kb: KbOption = None,
    kb_version: Annotated[
        Optional[str],
        typer.Option("--kb-version", help="Pin a specific published KB version"),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the verdict as JSON"),
    ] = False,
) -> None:
    """Check proposed foods against a clinical profile.

    Examples:
        nutrisafe check query.json
        nutrisafe check query.json --json
    """
    from nutrisafe.evaluation.report import render_verdict
    from nutrisafe.profile import SafetyQuery

    if not query_file.exists():
        _fail(f"Query file not found: {query_file}")

    try:
        query = SafetyQuery.model_validate_json(query_file.read_text(encoding="utf-8"))
    except ValidationError as e:
        console.print("[bold red]✗ Invalid query:[/]")
        for error in e.errors():
            loc = " → ".join(str(part) for part in error["loc"])
            console.print(f"  • {loc}: {error['msg']}")
        raise typer.Exit(code=1)

    verdict = _engine(kb).evaluate(query, kb_version=kb_version)
    if as_json:
        typer.echo(verdict.to_json())
    else:
        render_verdict(verdict, console)


@app.command()
def evaluate(
    scenarios: Annotated[
        Optional[Path],
        typer.Option("--scenarios", "-s", help="Scenario corpus YAML (defaults to the packaged corpus)"),
    ] = None,
    kb: KbOption = None,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the JSON report to this file"),
    ] = None,
    enforce: Annotated[
        bool,
        typer.Option("--enforce", help="Exit non-zero when the configured threshold policy is not met"),
    ] = False,
) -> None:
    """Run the regression corpus and report accuracy metrics.

    Examples:
        nutrisafe evaluate
        nutrisafe evaluate --scenarios corpus.yaml --enforce
    """
    from nutrisafe.evaluation.harness import EvaluationHarness
    from nutrisafe.evaluation.report import render_report, save_json
    from nutrisafe.evaluation.scenarios import load_default_scenarios, load_scenarios
    from nutrisafe.settings import get_settings

    settings = get_settings()
    path = scenarios or settings.evaluation.scenarios_path
    try:
        corpus = load_scenarios(path) if path else load_default_scenarios()
    except NutriSafeError as e:
        _fail(e.message, e)

    report = EvaluationHarness(_engine(kb)).run(corpus)
    outcome = report.check(settings.evaluation.policy)
    render_report(report, outcome, console)

    if output:
        data = report.to_dict()
        data["policy"] = outcome.to_dict()
        save_json(data, output)
        console.print(f"Report saved to [cyan]{output}[/]")

    if enforce and not outcome.passed:
        raise typer.Exit(code=1)


@app.command()
def regress(
    baseline_kb: Annotated[
        Path,
        typer.Option("--baseline-kb", help="Snapshot the corpus was certified against"),
    ],
    candidate_kb: Annotated[
        Path,
        typer.Option("--candidate-kb", help="Snapshot proposed for publication"),
    ],
    scenarios: Annotated[
        Optional[Path],
        typer.Option("--scenarios", "-s", help="Scenario corpus YAML (defaults to the packaged corpus)"),
    ] = None,
) -> None:
    """Detect verdict changes between two knowledge base snapshots.

    Exits with code 1 when any certified scenario changes.
    """
    from nutrisafe.evaluation.regression import compare_versions
    from nutrisafe.evaluation.report import render_regression
    from nutrisafe.evaluation.scenarios import load_default_scenarios, load_scenarios

    try:
        corpus = load_scenarios(scenarios) if scenarios else load_default_scenarios()
    except NutriSafeError as e:
        _fail(e.message, e)

    report = compare_versions(corpus, _engine(baseline_kb), _engine(candidate_kb))
    render_regression(report, console)
    if not report.passed:
        raise typer.Exit(code=1)


@app.command()
def normalize(
    name: Annotated[str, typer.Argument(help="Free-text name to resolve")],
    kind: Annotated[
        NameKind,
        typer.Option("--kind", "-k", help="Vocabulary namespace"),
    ] = NameKind.DRUG,
    kb: KbOption = None,
) -> None:
    """Resolve a name to its canonical id.

    Exits with code 1 when the name is not in the vocabulary.
    """
    from nutrisafe.normalizer import NotFound

    engine = _engine(kb)
    try:
        with engine.store.acquire() as current:
            result = engine.normalizer(current).normalize(name, kind)
    except NutriSafeError as e:
        _fail(e.message, e)
    except ValueError as e:
        _fail(str(e), e)

    if isinstance(result, NotFound):
        console.print(f"[bold yellow]Not found:[/] '{name}' ({kind.value}); tried {', '.join(result.attempted)}")
        raise typer.Exit(code=1)
    console.print(f"[green]{result.value}[/] ({kind.value}, rule: {result.rule})")


@app.command("kb-info")
def kb_info(kb: KbOption = None) -> None:
    """Show the published knowledge base version and contents."""
    engine = _engine(kb)
    current = engine.store.current()
    stats = current.stats()

    table = Table(title="Knowledge Base")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Version", stats["version"])
    table.add_row("Published", stats["published_at"])
    table.add_row("Expires", stats["expires_at"] or "never")
    table.add_row("Records (total)", str(stats["records_total"]))
    table.add_row("Records (served)", str(stats["records_served"]))
    for kind, count in sorted(stats["by_kind"].items()):
        table.add_row(f"  {kind}", str(count))
    for namespace, count in stats["vocabulary"].items():
        table.add_row(f"Vocabulary: {namespace}", str(count))
    console.print(table)


if __name__ == "__main__":
    app()

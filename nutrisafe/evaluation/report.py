"""Rendering and export of verdicts and evaluation reports."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from nutrisafe.evaluation.harness import EvaluationReport, PolicyOutcome
from nutrisafe.evaluation.regression import RegressionReport
from nutrisafe.logging import get_logger
from nutrisafe.verdict import SafetyVerdict, VerdictAction

logger = get_logger(__name__)

SEVERITY_STYLES = {
    "none": "green",
    "mild": "cyan",
    "moderate": "yellow",
    "severe": "bold red",
    "critical": "bold white on red",
}

ACTION_STYLES = {
    VerdictAction.PROCEED: "green",
    VerdictAction.WARN: "yellow",
    VerdictAction.BLOCK: "bold red",
}


def _styled(severity: str) -> str:
    style = SEVERITY_STYLES.get(severity, "white")
    return f"[{style}]{severity}[/]"


def render_verdict(verdict: SafetyVerdict, console: Console | None = None) -> None:
    console = console or Console()
    action_style = ACTION_STYLES[verdict.action_required]
    console.print(
        Panel.fit(
            f"Overall risk: {_styled(verdict.overall_risk.value)}\n"
            f"Action: [{action_style}]{verdict.action_required.value}[/]\n"
            f"Status: {verdict.status.value}{' (incomplete)' if verdict.incomplete else ''}\n"
            f"KB version: [cyan]{verdict.kb_version}[/]\n"
            f"{verdict.message}",
            title="Safety Verdict",
        )
    )

    if verdict.findings:
        table = Table(title="Findings")
        table.add_column("Item", style="cyan")
        table.add_column("Severity")
        table.add_column("Action")
        table.add_column("Rules")
        table.add_column("Notes")
        for finding in verdict.findings:
            notes = []
            if finding.cross_contamination:
                notes.append("cross-contamination")
            if finding.low_confidence:
                notes.append("low confidence")
            table.add_row(
                finding.item_name or finding.item_id,
                _styled(finding.severity.value),
                finding.action.value if finding.action else "-",
                ", ".join(finding.rule_ids) or "-",
                ", ".join(notes),
            )
        console.print(table)

    for issue in verdict.issues:
        marker = "[bold red]![/]" if issue.blocking else "[yellow]?[/]"
        console.print(f"{marker} {issue.code.value}: {issue.message}")


def render_report(report: EvaluationReport, outcome: PolicyOutcome | None = None, console: Console | None = None) -> None:
    console = console or Console()

    table = Table(title=f"Evaluation (KB {report.kb_version}, corpus {report.corpus_version})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Expected findings", str(report.expected_total))
    table.add_row("True positives", str(report.true_positives))
    table.add_row("False negatives", f"[{'red' if report.false_negatives else 'green'}]{report.false_negatives}[/]")
    table.add_row("False-negative rate", f"{report.false_negative_rate:.4%}")
    table.add_row("False positives", str(report.false_positives))
    table.add_row("False-positive rate", f"{report.false_positive_rate:.4%}")
    table.add_row("Accuracy", f"{report.accuracy:.2%}")
    table.add_row("Allergen sensitivity", f"{report.allergen_sensitivity:.2%}")
    table.add_row("Unverified scenarios", f"[{'red' if report.unverified else 'green'}]{report.unverified}[/]")
    table.add_row("Unexpected blocking issues", str(report.unexpected_issues))
    console.print(table)

    if not report.certified:
        console.print(
            f"[yellow]Corpus was certified against KB {report.certified_kb_version}, "
            f"run used {report.kb_version}[/]"
        )
    for missed in report.missed:
        console.print(f"[red]missed[/] {missed}")

    if outcome is not None:
        if outcome.passed:
            console.print("[bold green]✓ Policy thresholds met[/]")
        else:
            console.print("[bold red]✗ Policy thresholds not met[/]")
            for failure in outcome.failures:
                console.print(f"  - {failure}")


def render_regression(report: RegressionReport, console: Console | None = None) -> None:
    console = console or Console()
    if report.passed:
        console.print(
            f"[bold green]✓ No verdict changes[/] between {report.baseline_version} and "
            f"{report.candidate_version} ({report.scenarios} scenarios)"
        )
        return

    table = Table(title=f"Verdict changes {report.baseline_version} → {report.candidate_version}")
    table.add_column("Scenario", style="cyan")
    table.add_column("Risk")
    table.add_column("Status")
    table.add_column("Added rules")
    table.add_column("Removed rules")
    for change in report.changes:
        table.add_row(
            change.scenario_id,
            f"{change.baseline_risk} → {change.candidate_risk}",
            f"{change.baseline_status} → {change.candidate_status}",
            "\n".join(change.added_rules),
            "\n".join(change.removed_rules),
        )
    console.print(table)


def save_json(data: dict[str, Any], path: str | Path) -> Path:
    """Write a report dictionary to a JSON file, creating parent directories."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    logger.info("Saved report", path=str(output_path))
    return output_path


__all__ = ["render_verdict", "render_report", "render_regression", "save_json"]

"""Renderers for formulas and evaluation results using Rich."""

from typing import Iterable

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from formulary.core.models import (
    EvaluationResult,
    EvaluationStatus,
    Formula,
    Release,
)

console = Console()

STATUS_LABELS = {
    EvaluationStatus.HEAD: "[cyan]HEAD[/cyan]",
    EvaluationStatus.FETCHED: "[blue]Fetched[/blue]",
    EvaluationStatus.INSTALLED: "[yellow]Installed[/yellow]",
    EvaluationStatus.VERIFIED: "[green]Verified[/green]",
}


def status_to_str(status: EvaluationStatus) -> str:
    """Convert EvaluationStatus to a human-readable string with color coding.

    Args:
        status: The EvaluationStatus to convert.

    Returns:
        A human-readable string representation of the status.
    """
    if status == EvaluationStatus.NONE:
        return "[red]Not started[/red]"
    bits = [label for flag, label in STATUS_LABELS.items() if flag in status]
    return ", ".join(bits)


def options_to_str(release: Release) -> str:
    parts = []
    for name, value in sorted(release.build.options.items()):
        if value is None:
            parts.append(f"{name}=[magenta]unset[/magenta]")
        else:
            parts.append(f"{name}={'ON' if value else 'OFF'}")
    return "\n".join(parts)


def platforms_to_str(release: Release) -> str:
    lines = []
    for b in release.branches:
        if b.note:
            lines.append(f"{b.platform.value} [dim]({escape(b.note)})[/dim]")
        else:
            lines.append(b.platform.value)
    return "\n".join(lines)


def digest_to_str(release: Release) -> str:
    return "[green]pinned[/green]" if release.pinned else "[red]unpinned[/red]"


def formula_table(formulas: Iterable[Formula]) -> Table:
    """Create a Rich Table listing formulas.

    Args:
        formulas: The formulas to display.

    Returns:
        A Rich Table with one row per formula.
    """
    table = Table(box=box.MINIMAL_HEAVY_HEAD)
    table.add_column("Name", style="bold")
    table.add_column("Latest")
    table.add_column("Releases", justify="right")
    table.add_column("Platforms")
    table.add_column("Description", style="dim")

    for f in formulas:
        table.add_row(
            f.name,
            f.latest.version,
            str(len(f.releases)),
            ", ".join(p.value for p in f.latest.platforms),
            f.desc,
        )

    return table


def formula_details(formula: Formula) -> Table:
    """Display every release of a formula.

    Args:
        formula: The formula to display.

    Returns:
        A Rich Table with one row per release.
    """
    t = Table(title=f"{formula.name} ({formula.license})", box=box.MINIMAL_HEAVY_HEAD)
    t.add_column("Version", style="bold")
    t.add_column("Platforms")
    t.add_column("Options")
    t.add_column("API")
    t.add_column("CLI")
    t.add_column("Digest")

    for r in formula.releases:
        t.add_row(
            r.version,
            platforms_to_str(r),
            options_to_str(r),
            r.api.key,
            r.cli.binary if r.cli else "",
            digest_to_str(r),
        )

    return t


def result_table(result: EvaluationResult) -> Table:
    """Summarise one evaluation.

    Args:
        result: The evaluation result.

    Returns:
        A Rich Table with one row per external step.
    """
    t = Table(
        title=f"{result.formula} {result.version} on {result.platform.value}: "
        f"{status_to_str(result.status)}",
        box=box.MINIMAL_HEAVY_HEAD,
    )
    t.add_column("Step", style="bold")
    t.add_column("Exit", justify="right")
    t.add_column("Duration (ms)", justify="right")
    t.add_column("Command", style="dim")

    for s in result.steps:
        t.add_row(s.step, str(s.returncode), str(s.duration_ms), " ".join(s.command))
    for args, out in result.cli_output.items():
        first = out.splitlines()[0] if out else ""
        t.add_row(f"cli {args}", "0", "", first)

    return t

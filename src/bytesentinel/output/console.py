"""Rich console output for analysis results."""

from pathlib import Path

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bytesentinel.formats.magic import IdentificationResult
from bytesentinel.scanner.recommendations import DEFAULT_BY_LEVEL, recommend
from bytesentinel.scanner.results import ComprehensiveAnalysis, ThreatLevel

console = Console()

LEVEL_COLORS = {
    ThreatLevel.CRITICAL: "red bold",
    ThreatLevel.HIGH: "red",
    ThreatLevel.MEDIUM: "yellow",
    ThreatLevel.LOW: "blue",
    ThreatLevel.SAFE: "green",
    ThreatLevel.UNKNOWN: "dim",
}

LEVEL_ICONS = {
    ThreatLevel.CRITICAL: "[red]!![/red]",
    ThreatLevel.HIGH: "[red]![/red]",
    ThreatLevel.MEDIUM: "[yellow]*[/yellow]",
    ThreatLevel.LOW: "[blue]-[/blue]",
    ThreatLevel.SAFE: "[green]ok[/green]",
    ThreatLevel.UNKNOWN: "[dim]?[/dim]",
}

LEVEL_ORDER = [
    ThreatLevel.CRITICAL,
    ThreatLevel.HIGH,
    ThreatLevel.MEDIUM,
    ThreatLevel.LOW,
    ThreatLevel.SAFE,
    ThreatLevel.UNKNOWN,
]


def _severity_level(severity: int) -> ThreatLevel:
    """Bucket an indicator severity for coloring."""
    if severity >= 85:
        return ThreatLevel.CRITICAL
    if severity >= 65:
        return ThreatLevel.HIGH
    if severity >= 40:
        return ThreatLevel.MEDIUM
    return ThreatLevel.LOW


def print_results(
    results: list[tuple[Path, ComprehensiveAnalysis]], verbose: bool = False
) -> None:
    """Print analysis results to console.

    Args:
        results: (path, analysis) pairs
        verbose: Show component details, caveats and clean files' reports
    """
    if not results:
        console.print("[dim]No files analyzed[/dim]")
        return

    for path, analysis in results:
        _print_single_result(path, analysis, verbose)

    console.print()
    _print_summary([analysis for _, analysis in results])


def _print_single_result(path: Path, analysis: ComprehensiveAnalysis, verbose: bool) -> None:
    """Print a single analysis."""
    threat = analysis.threat
    style = LEVEL_COLORS[threat.level]
    status = f"[{style}]{threat.level.value.upper()}[/{style}]"

    console.print()
    console.print(
        f"[bold]{path}[/bold] [dim]({analysis.identification.format})[/dim] - "
        f"{status} [dim]confidence {threat.confidence}%[/dim]"
    )

    if verbose:
        console.print(f"  [dim]Size: {_format_size(analysis.size)}[/dim]")
        console.print(f"  [dim]SHA-256: {analysis.sha256[:16]}...[/dim]")
        if analysis.entropy is not None:
            low, high = analysis.entropy.baseline
            console.print(
                f"  [dim]Entropy: {analysis.entropy.entropy:.3f} "
                f"(expected {low:.2f}-{high:.2f})[/dim]"
            )
        for caveat in analysis.caveats:
            console.print(f"  [yellow]Note:[/yellow] [dim]{caveat}[/dim]")

    for note in analysis.unavailable:
        console.print(
            f"  [yellow]{note.component.value} {note.status.value}[/yellow] [dim]{note.detail}[/dim]"
        )

    if not threat.indicators:
        if verbose:
            console.print(f"  [dim]{DEFAULT_BY_LEVEL[threat.level]}[/dim]")
        return

    table = Table(
        box=box.SIMPLE,
        show_header=True,
        header_style="bold",
        padding=(0, 1),
    )
    table.add_column("", width=3)
    table.add_column("Severity", width=9)
    table.add_column("Indicator", no_wrap=False)
    table.add_column("Action", no_wrap=False, style="cyan")

    for indicator in threat.indicators:
        bucket = _severity_level(indicator.severity)
        color = LEVEL_COLORS[bucket]
        message = indicator.evidence
        if verbose:
            message = f"{message} [dim]({indicator.source.value})[/dim]"
        table.add_row(
            LEVEL_ICONS[bucket],
            f"[{color}]{indicator.severity}[/{color}]",
            message,
            recommend(indicator, threat.level),
        )

    console.print(table)


def _print_summary(analyses: list[ComprehensiveAnalysis]) -> None:
    """Print summary of all analyses."""
    total = len(analyses)
    safe = sum(1 for a in analyses if a.is_safe)
    unsafe = total - safe

    level_counts = {level: 0 for level in ThreatLevel}
    for analysis in analyses:
        level_counts[analysis.threat.level] += 1

    if unsafe == 0:
        console.print(f"[green]Analyzed {total} file(s): none HIGH or CRITICAL[/green]")
    else:
        console.print(
            f"[bold]Analyzed {total} file(s):[/bold] "
            f"[green]{safe} below high[/green], "
            f"[red]{unsafe} HIGH or CRITICAL[/red]"
        )

    parts = []
    for level in LEVEL_ORDER:
        count = level_counts[level]
        if count > 0:
            style = LEVEL_COLORS[level]
            parts.append(f"[{style}]{count} {level.value}[/{style}]")
    if parts:
        console.print("  " + ", ".join(parts))


def _format_size(size_bytes: int) -> str:
    """Format file size in human-readable form."""
    size: float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def print_identification(path: Path, size: int, identification: IdentificationResult) -> None:
    """Print the identified format of a file without running the detectors.

    Args:
        path: File that was identified
        size: File size in bytes
        identification: Result from the magic identifier
    """
    console.print()
    console.print(Panel(f"[bold]{path}[/bold]", expand=False))

    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("Format", identification.format)
    table.add_row("Category", identification.category.value)
    table.add_row("MIME type", identification.mime_type)
    table.add_row("Confidence", f"{identification.confidence}%")
    if identification.description:
        table.add_row("Signature", identification.description)
    if identification.offset:
        table.add_row("Offset", str(identification.offset))
    if len(identification.candidates) > 1:
        table.add_row("Also matched", ", ".join(identification.candidates[1:]))
    table.add_row("Size", _format_size(size))

    console.print(table)

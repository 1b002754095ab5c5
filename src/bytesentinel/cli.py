"""Command-line interface for ByteSentinel."""

import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from bytesentinel import __version__
from bytesentinel.config import AnalysisConfig, ConfigurationError, load_config
from bytesentinel.formats.magic import identify as identify_bytes
from bytesentinel.output.console import print_identification, print_results
from bytesentinel.output.json_output import output_json
from bytesentinel.scanner.engine import Pipeline, analyze_files_with_progress, collect_files

app = typer.Typer(
    name="bytesentinel",
    help="Static threat analysis for untrusted files",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )


def _build_config(
    config_path: Path | None,
    max_bytes: int | None,
    timeout: float | None,
) -> AnalysisConfig:
    """Load the configuration and apply command-line overrides.

    Exits with code 2 when the configuration is invalid.
    """
    try:
        config = load_config(config_path) if config_path else AnalysisConfig()
        return config.with_overrides(max_buffer_bytes=max_bytes, component_timeout=timeout)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(2)


@app.command()
def scan(
    path: Path = typer.Argument(
        ...,
        help="File or directory to analyze",
        exists=True,
    ),
    recursive: bool = typer.Option(
        True,
        "--recursive/--no-recursive",
        "-r/-R",
        help="Analyze directories recursively",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output results as JSON to console",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show component details and debug logging",
    ),
    claimed_type: str | None = typer.Option(
        None,
        "--claimed-type",
        "-t",
        help="Declared content type or extension (default: taken from the filename)",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="JSON file overriding analysis settings",
        exists=True,
        dir_okay=False,
    ),
    max_bytes: int | None = typer.Option(
        None,
        "--max-bytes",
        help="Bytes of each file to analyze (default: 64 MiB)",
        min=1,
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each detector (default: 10)",
        min=0.001,
    ),
) -> None:
    """Analyze files for disguised, hidden or embedded threats.

    Identifies the real format from content, checks it against the declared
    type, measures entropy against the format's baseline and looks for
    steganography, polyglots and embedded payloads. Nothing is executed.

    Exits with code 1 when any file is rated HIGH or CRITICAL.

    Examples:
        bytesentinel scan upload.png
        bytesentinel scan ./uploads/ --no-recursive
        bytesentinel scan blob.bin --claimed-type image/jpeg --json
        bytesentinel scan ./uploads/ --config strict.json --timeout 30
    """
    _setup_logging(verbose)
    pipeline = Pipeline(_build_config(config_path, max_bytes, timeout))

    results = []
    if path.is_file():
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
        ) as progress:
            progress.add_task(f"Analyzing {path.name}...", total=None)
            try:
                results.append((path, pipeline.analyze_file(path, claimed_type)))
            except OSError as e:
                console.print(f"[red]Error: cannot read {path}: {e}[/red]")
                raise typer.Exit(1)
    elif path.is_dir():
        if not json_output:
            console.print(f"[bold]Collecting files from {path}...[/bold]")
        files = collect_files(path, recursive=recursive)

        if not files:
            console.print("[yellow]No files found to analyze[/yellow]")
            raise typer.Exit(0)

        if not json_output:
            console.print(f"[green]Found {len(files)} file(s)[/green]")
            console.print()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=json_output,
        ) as progress:
            task = progress.add_task("Analyzing files...", total=len(files))

            for filepath, analysis, error in analyze_files_with_progress(
                files, pipeline, claimed_type
            ):
                if analysis is not None:
                    results.append((filepath, analysis))
                else:
                    progress.console.print(f"[yellow]Skipped {filepath}: {error}[/yellow]")
                filename = filepath.name
                if len(filename) > 40:
                    filename = filename[:37] + "..."
                progress.update(task, advance=1, description=f"Analyzing: {filename}")

            progress.update(task, description="[green]Analysis complete![/green]")
    else:
        console.print(f"[red]Error: {path} is not a file or directory[/red]")
        raise typer.Exit(1)

    if json_output:
        output_json(results)
    else:
        print_results(results, verbose=verbose)

    if any(not analysis.is_safe for _, analysis in results):
        raise typer.Exit(1)


@app.command()
def identify(
    file: Path = typer.Argument(
        ...,
        help="File to identify",
        exists=True,
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output the identification as JSON",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="JSON file overriding analysis settings",
        exists=True,
        dir_okay=False,
    ),
) -> None:
    """Show the format detected from a file's content, without a full analysis.

    Examples:
        bytesentinel identify upload.png
        bytesentinel identify blob.bin --json
        bytesentinel identify blob.bin --config signatures.json
    """
    if not file.is_file():
        console.print(f"[red]Error: {file} is not a file[/red]")
        raise typer.Exit(1)

    config = _build_config(config_path, None, None)
    try:
        with open(file, "rb") as f:
            data = f.read(config.max_buffer_bytes)
    except OSError as e:
        console.print(f"[red]Error: cannot read {file}: {e}[/red]")
        raise typer.Exit(1)
    identification = identify_bytes(data, config.signatures)

    if json_output:
        typer.echo(json.dumps(identification.to_dict(), indent=2))
    else:
        print_identification(file, file.stat().st_size, identification)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"ByteSentinel v{__version__}")


@app.callback()
def main() -> None:
    """ByteSentinel - Static threat analysis for untrusted files.

    Finds executables posing as media, hidden payloads and polyglot files
    without ever running their content.
    """
    pass


if __name__ == "__main__":
    app()

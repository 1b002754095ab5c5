"""JSON output for analysis results."""

import json
import sys
from pathlib import Path
from typing import TextIO

from bytesentinel.scanner.recommendations import recommendations_for
from bytesentinel.scanner.results import ComprehensiveAnalysis


def _result_entry(path: Path, analysis: ComprehensiveAnalysis) -> dict:
    entry = {"path": str(path)}
    entry.update(analysis.to_dict())
    entry["recommendations"] = recommendations_for(analysis)
    return entry


def output_json(
    results: list[tuple[Path, ComprehensiveAnalysis]],
    file: TextIO | None = None,
    indent: int = 2,
) -> None:
    """Output analysis results as JSON.

    Args:
        results: (path, analysis) pairs
        file: Output file (default: stdout)
        indent: JSON indentation level
    """
    file = file or sys.stdout
    file.write(results_to_json(results, indent=indent))
    file.write("\n")


def _generate_summary(analyses: list[ComprehensiveAnalysis]) -> dict:
    """Generate summary statistics for results.

    Args:
        analyses: Completed analyses

    Returns:
        Summary dictionary
    """
    total = len(analyses)
    safe = sum(1 for a in analyses if a.is_safe)

    level_counts: dict[str, int] = {}
    for analysis in analyses:
        level = analysis.threat.level.value
        level_counts[level] = level_counts.get(level, 0) + 1

    format_counts: dict[str, int] = {}
    for analysis in analyses:
        fmt = analysis.identification.format
        format_counts[fmt] = format_counts.get(fmt, 0) + 1

    return {
        "total_files": total,
        "safe_files": safe,
        "unsafe_files": total - safe,
        "files_by_level": level_counts,
        "files_by_format": format_counts,
    }


def results_to_json(results: list[tuple[Path, ComprehensiveAnalysis]], indent: int = 2) -> str:
    """Convert analysis results to JSON string.

    Args:
        results: (path, analysis) pairs
        indent: JSON indentation level

    Returns:
        JSON string
    """
    output = {
        "results": [_result_entry(path, analysis) for path, analysis in results],
        "summary": _generate_summary([analysis for _, analysis in results]),
    }
    return json.dumps(output, indent=indent)

"""Analysis pipeline that orchestrates identification, detectors and scoring.

The magic identifier runs first because every other component needs its
result. Entropy, header validation and the three pattern detectors are
independent of each other and run concurrently over the same read-only
buffer; the scorer waits for all of them. A component that fails or
misses its timeout contributes nothing and is recorded as unavailable,
so one bad detector never costs the whole analysis.
"""

import hashlib
import logging
import time
from collections.abc import Callable, Generator
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from functools import partial
from pathlib import Path
from typing import Any

from bytesentinel.config import AnalysisConfig
from bytesentinel.formats.magic import identify
from bytesentinel.scanner.cancellation import AnalysisCancelled, CancellationToken
from bytesentinel.scanner.entropy import analyze_entropy
from bytesentinel.scanner.header_validator import validate_header
from bytesentinel.scanner.payload_hunter import hunt_payloads
from bytesentinel.scanner.polyglot_scanner import detect_polyglot
from bytesentinel.scanner.results import (
    ComponentNote,
    ComponentStatus,
    ComprehensiveAnalysis,
    IndicatorSource,
)
from bytesentinel.scanner.scorer import score_threat
from bytesentinel.scanner.steganography import detect_steganography

logger = logging.getLogger(__name__)

__all__ = [
    "AnalysisCancelled",
    "CancellationToken",
    "Pipeline",
    "analyze_bytes",
    "analyze_file",
    "collect_files",
    "analyze_files_with_progress",
]

# Fixed order in which concurrent results are collected
COMPONENT_ORDER = (
    IndicatorSource.ENTROPY_BASELINE,
    IndicatorSource.HEADER_VALIDATOR,
    IndicatorSource.STEGANOGRAPHY_DETECTOR,
    IndicatorSource.POLYGLOT_DETECTOR,
    IndicatorSource.PAYLOAD_HUNTER,
)


def _compute_sha256(filepath: Path) -> str:
    """Compute SHA-256 hash of a file."""
    sha256 = hashlib.sha256()
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


class Pipeline:
    """Runs the full analysis over byte buffers.

    The configuration is validated once, here; per-file problems never
    raise. Only a caller-requested cancellation interrupts a run.

    Example:
        pipeline = Pipeline(AnalysisConfig(component_timeout=5.0))
        analysis = pipeline.analyze(data, claimed_type="image/png", filename="cat.png")
    """

    def __init__(self, config: AnalysisConfig | None = None):
        self.config = config or AnalysisConfig()

    def analyze(
        self,
        data: bytes,
        claimed_type: str | None = None,
        filename: str | None = None,
        cancel: CancellationToken | None = None,
        *,
        size: int | None = None,
        sha256: str | None = None,
    ) -> ComprehensiveAnalysis:
        """Analyze a byte buffer.

        Args:
            data: Raw file content
            claimed_type: Declared content type or extension
            filename: Original filename
            cancel: Token the caller may use to abort the run
            size: Full input size when ``data`` is already a prefix of it
            sha256: Hash of the full input when ``data`` is a prefix of it

        Returns:
            ComprehensiveAnalysis

        Raises:
            AnalysisCancelled: If ``cancel`` was triggered
        """
        config = self.config
        if cancel is not None:
            cancel.check()

        data = bytes(data)
        total_size = len(data) if size is None else size
        digest = sha256 or hashlib.sha256(data).hexdigest()

        caveats = []
        truncated = total_size > config.max_buffer_bytes
        buffer = data[: config.max_buffer_bytes]
        if truncated:
            caveats.append(
                f"Input of {total_size} bytes analyzed up to the {config.max_buffer_bytes}-byte limit"
            )
        if len(buffer) > config.max_scan_bytes:
            caveats.append(f"Pattern detectors scanned the first {config.max_scan_bytes} bytes")

        identification = identify(buffer, config.signatures)
        logger.debug("Identified %s (confidence %d)", identification.format, identification.confidence)

        run_token = CancellationToken(parent=cancel)
        tasks: dict[IndicatorSource, Callable[[], Any]] = {
            IndicatorSource.ENTROPY_BASELINE: partial(
                analyze_entropy, buffer, identification, config
            ),
            IndicatorSource.HEADER_VALIDATOR: partial(
                validate_header, identification, claimed_type, filename, len(buffer)
            ),
            IndicatorSource.STEGANOGRAPHY_DETECTOR: partial(
                detect_steganography, buffer, identification, config, run_token
            ),
            IndicatorSource.POLYGLOT_DETECTOR: partial(
                detect_polyglot, buffer, identification, config, run_token
            ),
            IndicatorSource.PAYLOAD_HUNTER: partial(
                hunt_payloads, buffer, identification, config, run_token
            ),
        }
        reports, notes = self._run_components(tasks, run_token, cancel)

        if cancel is not None:
            cancel.check()

        entropy = reports.get(IndicatorSource.ENTROPY_BASELINE)
        if entropy is not None and entropy.sampled:
            caveats.append(f"Entropy measured on the leading {entropy.sample_size} bytes")

        threat = score_threat(
            identification,
            entropy,
            reports.get(IndicatorSource.HEADER_VALIDATOR),
            reports.get(IndicatorSource.STEGANOGRAPHY_DETECTOR),
            reports.get(IndicatorSource.POLYGLOT_DETECTOR),
            reports.get(IndicatorSource.PAYLOAD_HUNTER),
            config.policy,
            degraded=len(notes),
            truncated=truncated,
        )

        return ComprehensiveAnalysis(
            size=total_size,
            sha256=digest,
            identification=identification,
            entropy=entropy,
            header=reports.get(IndicatorSource.HEADER_VALIDATOR),
            steganography=reports.get(IndicatorSource.STEGANOGRAPHY_DETECTOR),
            polyglot=reports.get(IndicatorSource.POLYGLOT_DETECTOR),
            payloads=reports.get(IndicatorSource.PAYLOAD_HUNTER),
            threat=threat,
            caveats=tuple(caveats),
            unavailable=tuple(notes),
        )

    def _run_components(
        self,
        tasks: dict[IndicatorSource, Callable[[], Any]],
        run_token: CancellationToken,
        cancel: CancellationToken | None,
    ) -> tuple[dict[IndicatorSource, Any], list[ComponentNote]]:
        """Run components concurrently and join them in a fixed order.

        The timeout is measured from submission, so a component waiting for
        a worker thread spends part of its budget in the queue.
        """
        timeout = self.config.component_timeout
        reports: dict[IndicatorSource, Any] = {}
        notes: list[ComponentNote] = []

        executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="bytesentinel"
        )
        try:
            deadline = time.monotonic() + timeout
            futures: dict[IndicatorSource, Future] = {
                source: executor.submit(task) for source, task in tasks.items()
            }
            for source in COMPONENT_ORDER:
                future = futures[source]
                try:
                    reports[source] = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeout:
                    future.cancel()
                    logger.warning("%s timed out after %.1fs", source.value, timeout)
                    notes.append(
                        ComponentNote(
                            source, ComponentStatus.TIMED_OUT, f"No result within {timeout:g}s"
                        )
                    )
                except AnalysisCancelled:
                    if cancel is not None and cancel.cancelled:
                        raise
                    notes.append(ComponentNote(source, ComponentStatus.FAILED, "Cancelled"))
                except Exception as e:
                    logger.warning("%s failed: %s", source.value, e, exc_info=True)
                    notes.append(
                        ComponentNote(source, ComponentStatus.FAILED, f"{type(e).__name__}: {e}")
                    )
        finally:
            # Stop stragglers at their next checkpoint
            run_token.cancel()
            executor.shutdown(wait=False, cancel_futures=True)

        return reports, notes

    def analyze_file(
        self,
        filepath: Path | str,
        claimed_type: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> ComprehensiveAnalysis:
        """Analyze a file, reading at most ``max_buffer_bytes`` of it.

        The filename is taken from the path; the hash covers the whole file.

        Raises:
            OSError: If the file cannot be read
        """
        filepath = Path(filepath)
        size = filepath.stat().st_size
        with open(filepath, "rb") as f:
            data = f.read(self.config.max_buffer_bytes)
        sha256 = _compute_sha256(filepath) if size > len(data) else None
        return self.analyze(
            data,
            claimed_type=claimed_type,
            filename=filepath.name,
            cancel=cancel,
            size=size,
            sha256=sha256,
        )


def analyze_bytes(
    data: bytes,
    claimed_type: str | None = None,
    filename: str | None = None,
    config: AnalysisConfig | None = None,
    cancel: CancellationToken | None = None,
) -> ComprehensiveAnalysis:
    """Analyze a byte buffer with a one-off pipeline."""
    return Pipeline(config).analyze(data, claimed_type, filename, cancel)


def analyze_file(
    filepath: Path | str,
    claimed_type: str | None = None,
    config: AnalysisConfig | None = None,
) -> ComprehensiveAnalysis:
    """Analyze a single file with a one-off pipeline."""
    return Pipeline(config).analyze_file(filepath, claimed_type)


def collect_files(dirpath: Path, recursive: bool = True) -> list[Path]:
    """Collect regular files in a directory, sorted by path.

    Args:
        dirpath: Directory to search
        recursive: Whether to search subdirectories

    Returns:
        List of file paths
    """
    dirpath = Path(dirpath)
    if not dirpath.is_dir():
        return []
    pattern = "**/*" if recursive else "*"
    return sorted(p for p in dirpath.glob(pattern) if p.is_file())


def analyze_files_with_progress(
    files: list[Path],
    pipeline: Pipeline,
    claimed_type: str | None = None,
) -> Generator[tuple[Path, ComprehensiveAnalysis | None, str | None], None, None]:
    """Analyze files one at a time, yielding results for progress tracking.

    Yields:
        (path, analysis, error) where exactly one of analysis and error is None
    """
    for filepath in files:
        try:
            yield filepath, pipeline.analyze_file(filepath, claimed_type), None
        except OSError as e:
            logger.warning("Cannot read %s: %s", filepath, e)
            yield filepath, None, str(e)

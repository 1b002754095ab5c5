"""Analysis configuration and scoring policy.

All limits, thresholds and weights the pipeline uses live here. Tables and
values are validated when the configuration is built, so a bad
configuration fails once at pipeline construction and never per file.
"""

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from bytesentinel.formats.baselines import DEFAULT_BASELINES
from bytesentinel.formats.magic import DEFAULT_SIGNATURES, FormatSignature
from bytesentinel.formats.registry import FORMATS

MIB = 1024 * 1024


class ConfigurationError(ValueError):
    """Raised when a configuration value or table is invalid."""


# Component names as used in indicator sources and weights
SOURCE_NAMES = (
    "magic_identifier",
    "entropy_baseline",
    "header_validator",
    "steganography_detector",
    "polyglot_detector",
    "payload_hunter",
)

DEFAULT_WEIGHTS: dict[str, float] = {
    "magic_identifier": 1.0,
    "header_validator": 1.0,
    "payload_hunter": 1.0,
    "polyglot_detector": 0.9,
    "steganography_detector": 0.7,
    "entropy_baseline": 0.35,
}


@dataclass(frozen=True)
class ScoringPolicy:
    """Weights, severities and cut-points used by the threat scorer."""

    weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))

    # Level thresholds on aggregate severity
    critical_threshold: float = 85
    high_threshold: float = 65
    medium_threshold: float = 40
    low_threshold: float = 15

    # Indicator severities
    minor_mismatch_severity: int = 15
    cross_category_mismatch_severity: int = 45
    masquerade_severity: int = 90
    double_extension_severity: int = 70
    executable_content_severity: int = 30
    polyglot_base_severity: int = 50
    polyglot_active_bonus: int = 30
    payload_kind_bonus: int = 5

    # Confidence model
    confidence_base: float = 40
    confidence_per_source: float = 15
    confidence_severity_factor: float = 0.3
    confidence_cap: int = 95
    weak_indicator_severity: int = 50
    weak_indicator_confidence_cap: int = 35
    disagreement_spread: int = 60
    disagreement_penalty: int = 10
    degraded_penalty: int = 10
    truncation_penalty: int = 10
    clean_confidence_base: float = 50
    clean_confidence_factor: float = 0.4
    unknown_confidence: int = 10

    def __post_init__(self) -> None:
        unknown = set(self.weights) - set(SOURCE_NAMES)
        if unknown:
            raise ConfigurationError(f"Unknown weight source(s): {', '.join(sorted(unknown))}")
        for name, weight in self.weights.items():
            if weight < 0:
                raise ConfigurationError(f"Weight for {name} must be non-negative")

        cut_points = (
            self.critical_threshold,
            self.high_threshold,
            self.medium_threshold,
            self.low_threshold,
        )
        if list(cut_points) != sorted(cut_points, reverse=True) or self.low_threshold <= 0:
            raise ConfigurationError(
                "Level thresholds must satisfy critical >= high >= medium >= low > 0"
            )
        if not 0 <= self.confidence_cap <= 100:
            raise ConfigurationError("confidence_cap must be within 0-100")

    def weight(self, source: str) -> float:
        """Weight for an indicator source (its default when not listed)."""
        return self.weights.get(source, DEFAULT_WEIGHTS.get(source, 1.0))


@dataclass(frozen=True)
class AnalysisConfig:
    """Configuration for one pipeline.

    Attributes:
        max_buffer_bytes: Bytes of input analyzed; the rest is dropped with a caveat
        max_scan_bytes: Bytes each pattern detector scans
        component_timeout: Seconds to wait for each concurrent component
        max_workers: Threads used for the concurrent components
        signatures: Magic byte table
        baselines: Entropy range table, format -> (min, max)
    """

    max_buffer_bytes: int = 64 * MIB
    max_scan_bytes: int = 16 * MIB
    component_timeout: float = 10.0
    max_workers: int = 5

    signatures: tuple[FormatSignature, ...] = DEFAULT_SIGNATURES
    baselines: dict[str, tuple[float, float]] = field(
        default_factory=lambda: dict(DEFAULT_BASELINES)
    )

    # Entropy
    entropy_sample_bytes: int = 8 * MIB
    entropy_block_size: int = 4096
    max_entropy_blocks: int = 256
    entropy_deviation_scale: float = 50.0
    min_entropy_sample: int = 1024

    # Steganography
    trailing_data_min: int = 16
    min_printable_run: int = 32
    stego_detection_threshold: int = 50
    lsb_min_samples: int = 4096
    lsb_max_pixels: int = 4 * 1024 * 1024
    max_artifacts: int = 8
    max_artifact_bytes: int = 256

    # Payloads
    nop_sled_min: int = 16
    min_base64_length: int = 100
    max_hits_per_kind: int = 16
    max_pattern_matches: int = 4096

    policy: ScoringPolicy = field(default_factory=ScoringPolicy)

    def __post_init__(self) -> None:
        positive = (
            "max_buffer_bytes",
            "max_scan_bytes",
            "max_workers",
            "entropy_sample_bytes",
            "entropy_block_size",
            "max_entropy_blocks",
            "trailing_data_min",
            "min_printable_run",
            "lsb_min_samples",
            "lsb_max_pixels",
            "max_artifacts",
            "max_artifact_bytes",
            "nop_sled_min",
            "min_base64_length",
            "max_hits_per_kind",
            "max_pattern_matches",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        if self.component_timeout <= 0:
            raise ConfigurationError("component_timeout must be positive")
        if self.min_entropy_sample < 0 or self.entropy_deviation_scale <= 0:
            raise ConfigurationError("Entropy settings out of range")
        if not 0 <= self.stego_detection_threshold <= 100:
            raise ConfigurationError("stego_detection_threshold must be within 0-100")

        _validate_signatures(self.signatures)
        _validate_baselines(self.baselines)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisConfig":
        """Build a configuration from a JSON-style mapping.

        Keys not given keep their defaults. ``policy`` is a nested mapping,
        ``baselines`` maps formats to ``[min, max]`` and ``signatures`` is a
        list of ``{"format", "pattern", ...}`` objects with hex patterns.

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration key(s): {', '.join(sorted(unknown))}")

        values = dict(data)
        try:
            if "policy" in values:
                policy = dict(values["policy"])
                if "weights" in policy:
                    policy["weights"] = {**DEFAULT_WEIGHTS, **policy["weights"]}
                values["policy"] = ScoringPolicy(**policy)
            if "baselines" in values:
                values["baselines"] = {
                    fmt: (float(lo), float(hi)) for fmt, (lo, hi) in values["baselines"].items()
                }
            if "signatures" in values:
                values["signatures"] = tuple(
                    FormatSignature.from_hex(
                        entry["format"],
                        entry["pattern"],
                        offset=entry.get("offset", 0),
                        search_window=entry.get("search_window", 0),
                        priority=entry.get("priority", 0),
                        confidence=entry.get("confidence", 90),
                        description=entry.get("description", ""),
                    )
                    for entry in values["signatures"]
                )
            return cls(**values)
        except ConfigurationError:
            raise
        except (TypeError, ValueError, KeyError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def with_overrides(self, **overrides: Any) -> "AnalysisConfig":
        """Copy of this configuration with some values replaced (and re-validated)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _validate_signatures(signatures: tuple[FormatSignature, ...]) -> None:
    if not signatures:
        raise ConfigurationError("Signature table is empty")
    for sig in signatures:
        if sig.format not in FORMATS:
            raise ConfigurationError(f"Signature for unregistered format: {sig.format!r}")
        if sig.specificity == 0:
            raise ConfigurationError(f"Signature for {sig.format} has no concrete bytes")
        if sig.offset < 0 or sig.search_window < 0:
            raise ConfigurationError(f"Signature for {sig.format} has a negative offset")
        if not 0 <= sig.confidence <= 100:
            raise ConfigurationError(f"Signature for {sig.format} has confidence out of range")
        if any(b is not None and not 0 <= b <= 255 for b in sig.pattern):
            raise ConfigurationError(f"Signature for {sig.format} has an invalid byte")


def _validate_baselines(baselines: dict[str, tuple[float, float]]) -> None:
    if not baselines:
        raise ConfigurationError("Entropy baseline table is empty")
    for fmt, bounds in baselines.items():
        if len(bounds) != 2:
            raise ConfigurationError(f"Baseline for {fmt} must be (min, max)")
        low, high = bounds
        if not 0.0 <= low <= high <= 8.0:
            raise ConfigurationError(f"Baseline for {fmt} must satisfy 0 <= min <= max <= 8")


def load_config(path: Path | str) -> AnalysisConfig:
    """Load a configuration from a JSON file.

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration {path} must be a JSON object")
    return AnalysisConfig.from_dict(data)

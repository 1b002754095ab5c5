"""Result data structures for analysis reports.

Every report is a frozen dataclass holding tuples, so a report can be
shared between threads and handed to collaborators without copying.
"""

import json
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from types import MappingProxyType
from typing import Any

from bytesentinel.formats.magic import IdentificationResult
from bytesentinel.formats.registry import FormatCategory


class ThreatLevel(Enum):
    """Final verdict levels."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    SAFE = "safe"
    UNKNOWN = "unknown"


class IndicatorSource(Enum):
    """Component that produced an indicator."""

    MAGIC_IDENTIFIER = "magic_identifier"
    ENTROPY_BASELINE = "entropy_baseline"
    HEADER_VALIDATOR = "header_validator"
    STEGANOGRAPHY_DETECTOR = "steganography_detector"
    POLYGLOT_DETECTOR = "polyglot_detector"
    PAYLOAD_HUNTER = "payload_hunter"


class IndicatorKind(Enum):
    EXECUTABLE_CONTENT = "executable_content"
    ENTROPY_ANOMALY = "entropy_anomaly"
    TYPE_MISMATCH = "type_mismatch"
    MASQUERADE = "masquerade"
    DOUBLE_EXTENSION = "double_extension"
    STEGANOGRAPHY = "steganography"
    POLYGLOT = "polyglot"
    EMBEDDED_PAYLOAD = "embedded_payload"


class EntropyStatus(Enum):
    NORMAL = "normal"
    HIGH = "high"
    LOW = "low"
    INSUFFICIENT_SAMPLE = "insufficient-sample"
    EMPTY = "empty"


class MismatchClass(Enum):
    """How far apart a claimed type and the actual type are."""

    NONE = "none"
    MINOR = "minor"  # Same category, or nothing known about the content
    CROSS_CATEGORY = "cross-category"  # Different passive categories
    MASQUERADE = "masquerade"  # Active content claimed as passive


class StegoTechnique(Enum):
    TRAILING_DATA = "trailing_data"
    LSB_ANOMALY = "lsb_anomaly"
    PRINTABLE_RUNS = "printable_runs"
    PNG_TEXT_CHUNKS = "png_text_chunks"


class PayloadKind(Enum):
    EXECUTABLE = "executable"
    KNOWN_TEST_PATTERN = "known_test_pattern"
    SHELLCODE = "shellcode"
    SCRIPT = "script"
    SHELL_COMMAND = "shell_command"
    BASE64_BLOB = "base64_blob"
    URL = "url"


class ComponentStatus(Enum):
    FAILED = "failed"
    TIMED_OUT = "timed-out"


@dataclass(frozen=True)
class EntropyReport:
    """Entropy of a buffer compared to its format's expected range."""

    entropy: float
    baseline: tuple[float, float]
    has_baseline: bool
    status: EntropyStatus
    deviation: float = 0.0
    block_entropies: tuple[float, ...] = ()
    sampled: bool = False
    sample_size: int = 0

    def to_dict(self) -> dict:
        return {
            "entropy": round(self.entropy, 4),
            "baseline": list(self.baseline),
            "has_baseline": self.has_baseline,
            "status": self.status.value,
            "deviation": round(self.deviation, 2),
            "block_entropies": [round(e, 4) for e in self.block_entropies],
            "sampled": self.sampled,
            "sample_size": self.sample_size,
        }


@dataclass(frozen=True)
class HeaderValidation:
    """Claimed type compared to the identified type."""

    claimed_type: str | None
    actual_type: str
    match: bool
    suspicious: bool
    mismatch: MismatchClass = MismatchClass.NONE
    double_extension: str | None = None  # Hidden inner extension, e.g. "exe"

    def to_dict(self) -> dict:
        return {
            "claimed_type": self.claimed_type,
            "actual_type": self.actual_type,
            "match": self.match,
            "suspicious": self.suspicious,
            "mismatch": self.mismatch.value,
            "double_extension": self.double_extension,
        }


@dataclass(frozen=True)
class TechniqueFinding:
    """One steganography technique that produced evidence."""

    technique: StegoTechnique
    confidence: int
    evidence: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "technique": self.technique.value,
            "confidence": self.confidence,
            "evidence": list(self.evidence),
        }


@dataclass(frozen=True)
class ExtractedArtifacts:
    """Bounded samples of hidden content."""

    messages: tuple[str, ...] = ()
    samples: tuple[str, ...] = ()  # Hex-encoded raw bytes
    hidden_bytes: int = 0
    offsets: tuple[int, ...] = ()

    def to_dict(self) -> dict:
        return {
            "messages": list(self.messages),
            "samples": list(self.samples),
            "hidden_bytes": self.hidden_bytes,
            "offsets": list(self.offsets),
        }


@dataclass(frozen=True)
class SteganographyAnalysis:
    detected: bool
    confidence: int
    techniques: tuple[TechniqueFinding, ...] = ()
    artifacts: ExtractedArtifacts | None = None

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "confidence": self.confidence,
            "techniques": [t.to_dict() for t in self.techniques],
            "artifacts": self.artifacts.to_dict() if self.artifacts else None,
        }


@dataclass(frozen=True)
class PolyglotComponent:
    """A format that validly parses, and the bytes it occupies."""

    format: str
    category: FormatCategory
    start: int
    end: int

    def to_dict(self) -> dict:
        return {
            "format": self.format,
            "category": self.category.value,
            "start": self.start,
            "end": self.end,
        }


@dataclass(frozen=True)
class PolyglotAnalysis:
    detected: bool
    components: tuple[PolyglotComponent, ...] = ()
    overlapping: bool = False

    @property
    def formats(self) -> tuple[str, ...]:
        return tuple(c.format for c in self.components)

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "components": [c.to_dict() for c in self.components],
            "overlapping": self.overlapping,
        }


@dataclass(frozen=True)
class EmbeddedPayload:
    kind: PayloadKind
    offset: int
    length: int
    confidence: int
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "offset": self.offset,
            "length": self.length,
            "confidence": self.confidence,
            "description": self.description,
        }


@dataclass(frozen=True)
class PayloadAnalysis:
    payloads: tuple[EmbeddedPayload, ...] = ()
    overall_risk: int = 0

    @property
    def kinds(self) -> frozenset[PayloadKind]:
        return frozenset(p.kind for p in self.payloads)

    def to_dict(self) -> dict:
        return {
            "payloads": [p.to_dict() for p in self.payloads],
            "overall_risk": self.overall_risk,
        }


@dataclass(frozen=True)
class ThreatIndicator:
    """One attributable piece of evidence."""

    kind: IndicatorKind
    severity: int
    evidence: str
    source: IndicatorSource

    def sort_key(self) -> tuple:
        return (-self.severity, self.source.value, self.kind.value, self.evidence)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "severity": self.severity,
            "evidence": self.evidence,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class ThreatScore:
    level: ThreatLevel
    confidence: int
    aggregate_severity: float = 0.0
    indicators: tuple[ThreatIndicator, ...] = ()

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "confidence": self.confidence,
            "aggregate_severity": round(self.aggregate_severity, 2),
            "indicators": [i.to_dict() for i in self.indicators],
        }


@dataclass(frozen=True)
class ComponentNote:
    """A component that contributed nothing to this run."""

    component: IndicatorSource
    status: ComponentStatus
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "component": self.component.value,
            "status": self.status.value,
            "detail": self.detail,
        }


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


@dataclass(frozen=True)
class ComprehensiveAnalysis:
    """Complete, immutable result of analyzing one buffer.

    Component reports are None when that component failed or timed out;
    the matching entry in ``unavailable`` says why.
    """

    size: int
    sha256: str
    identification: IdentificationResult
    entropy: EntropyReport | None
    header: HeaderValidation | None
    steganography: SteganographyAnalysis | None
    polyglot: PolyglotAnalysis | None
    payloads: PayloadAnalysis | None
    threat: ThreatScore
    caveats: tuple[str, ...] = ()
    unavailable: tuple[ComponentNote, ...] = ()
    extensions: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    @property
    def is_safe(self) -> bool:
        """Check if the verdict is below HIGH."""
        return self.threat.level not in (ThreatLevel.CRITICAL, ThreatLevel.HIGH)

    def with_extension(self, name: str, value: Any) -> "ComprehensiveAnalysis":
        """Return a copy with a collaborator's sub-result attached.

        Raises:
            ValueError: If ``name`` is already attached or names a core field
        """
        core = {f.name for f in fields(self)}
        if name in core or name in self.extensions:
            raise ValueError(f"Cannot overwrite existing analysis field: {name}")
        extended = dict(self.extensions)
        extended[name] = value
        return replace(self, extensions=MappingProxyType(extended))

    def to_dict(self) -> dict:
        """Convert analysis to dictionary."""
        return {
            "size": self.size,
            "sha256": self.sha256,
            "identification": self.identification.to_dict(),
            "entropy": _serialize(self.entropy),
            "header": _serialize(self.header),
            "steganography": _serialize(self.steganography),
            "polyglot": _serialize(self.polyglot),
            "payloads": _serialize(self.payloads),
            "threat": self.threat.to_dict(),
            "caveats": list(self.caveats),
            "unavailable": [n.to_dict() for n in self.unavailable],
            "extensions": {k: _serialize(v) for k, v in self.extensions.items()},
        }

    def to_json(self) -> str:
        """Convert analysis to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

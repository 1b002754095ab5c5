"""Threat scoring.

Turns the component reports into indicators, combines them into a weighted
aggregate severity and maps that onto a level. Scoring is a pure function
of its inputs: indicators are de-duplicated and sorted before anything is
summed, so the verdict never depends on which component finished first.
"""

from bytesentinel.config import ScoringPolicy
from bytesentinel.formats.magic import IdentificationResult
from bytesentinel.formats.registry import FormatCategory
from bytesentinel.scanner.payload_hunter import payload_risk
from bytesentinel.scanner.polyglot_scanner import has_dangerous_component
from bytesentinel.scanner.results import (
    EntropyReport,
    HeaderValidation,
    IndicatorKind,
    IndicatorSource,
    MismatchClass,
    PayloadAnalysis,
    PolyglotAnalysis,
    SteganographyAnalysis,
    ThreatIndicator,
    ThreatLevel,
    ThreatScore,
)


def _clamp(value: float) -> int:
    return max(0, min(100, int(round(value))))


def _identification_indicators(
    identification: IdentificationResult, policy: ScoringPolicy
) -> list[ThreatIndicator]:
    if identification.category != FormatCategory.EXECUTABLE:
        return []
    return [
        ThreatIndicator(
            IndicatorKind.EXECUTABLE_CONTENT,
            _clamp(policy.executable_content_severity),
            f"Content is a {identification.format} executable",
            IndicatorSource.MAGIC_IDENTIFIER,
        )
    ]


def _entropy_indicators(entropy: EntropyReport | None) -> list[ThreatIndicator]:
    if entropy is None:
        return []
    severity = _clamp(entropy.deviation)
    if severity == 0:
        return []
    low, high = entropy.baseline
    return [
        ThreatIndicator(
            IndicatorKind.ENTROPY_ANOMALY,
            severity,
            f"Entropy {entropy.entropy:.2f} is {entropy.status.value} "
            f"against expected {low:.2f}-{high:.2f}",
            IndicatorSource.ENTROPY_BASELINE,
        )
    ]


def _header_indicators(
    header: HeaderValidation | None, policy: ScoringPolicy
) -> list[ThreatIndicator]:
    if header is None:
        return []

    indicators = []
    claim = f"claimed {header.claimed_type}, content is {header.actual_type}"
    if header.mismatch is MismatchClass.MASQUERADE:
        indicators.append(
            ThreatIndicator(
                IndicatorKind.MASQUERADE,
                _clamp(policy.masquerade_severity),
                f"Active content disguised as passive media: {claim}",
                IndicatorSource.HEADER_VALIDATOR,
            )
        )
    elif header.mismatch is MismatchClass.CROSS_CATEGORY:
        indicators.append(
            ThreatIndicator(
                IndicatorKind.TYPE_MISMATCH,
                _clamp(policy.cross_category_mismatch_severity),
                f"Type mismatch across categories: {claim}",
                IndicatorSource.HEADER_VALIDATOR,
            )
        )
    elif header.mismatch is MismatchClass.MINOR:
        indicators.append(
            ThreatIndicator(
                IndicatorKind.TYPE_MISMATCH,
                _clamp(policy.minor_mismatch_severity),
                f"Type mismatch: {claim}",
                IndicatorSource.HEADER_VALIDATOR,
            )
        )

    if header.double_extension:
        indicators.append(
            ThreatIndicator(
                IndicatorKind.DOUBLE_EXTENSION,
                _clamp(policy.double_extension_severity),
                f"Filename hides a .{header.double_extension} extension",
                IndicatorSource.HEADER_VALIDATOR,
            )
        )
    return indicators


def _steganography_indicators(stego: SteganographyAnalysis | None) -> list[ThreatIndicator]:
    if stego is None or not stego.detected:
        return []
    techniques = ", ".join(t.technique.value for t in stego.techniques)
    return [
        ThreatIndicator(
            IndicatorKind.STEGANOGRAPHY,
            _clamp(stego.confidence),
            f"Hidden content indicators: {techniques}",
            IndicatorSource.STEGANOGRAPHY_DETECTOR,
        )
    ]


def _polyglot_indicators(
    polyglot: PolyglotAnalysis | None, policy: ScoringPolicy
) -> list[ThreatIndicator]:
    if polyglot is None or not polyglot.detected:
        return []
    severity = policy.polyglot_base_severity
    if has_dangerous_component(polyglot):
        severity += policy.polyglot_active_bonus
    return [
        ThreatIndicator(
            IndicatorKind.POLYGLOT,
            _clamp(severity),
            f"Valid as multiple formats: {', '.join(polyglot.formats)}",
            IndicatorSource.POLYGLOT_DETECTOR,
        )
    ]


def _payload_indicators(
    payloads: PayloadAnalysis | None, policy: ScoringPolicy
) -> list[ThreatIndicator]:
    if payloads is None or not payloads.payloads:
        return []
    kinds = ", ".join(sorted(k.value for k in payloads.kinds))
    return [
        ThreatIndicator(
            IndicatorKind.EMBEDDED_PAYLOAD,
            _clamp(payload_risk(payloads.payloads, policy.payload_kind_bonus)),
            f"{len(payloads.payloads)} embedded payload hit(s): {kinds}",
            IndicatorSource.PAYLOAD_HUNTER,
        )
    ]


def build_indicators(
    identification: IdentificationResult,
    entropy: EntropyReport | None,
    header: HeaderValidation | None,
    steganography: SteganographyAnalysis | None,
    polyglot: PolyglotAnalysis | None,
    payloads: PayloadAnalysis | None,
    policy: ScoringPolicy,
) -> tuple[ThreatIndicator, ...]:
    """Convert component reports into a de-duplicated, sorted indicator tuple."""
    found = set(_identification_indicators(identification, policy))
    found.update(_entropy_indicators(entropy))
    found.update(_header_indicators(header, policy))
    found.update(_steganography_indicators(steganography))
    found.update(_polyglot_indicators(polyglot, policy))
    found.update(_payload_indicators(payloads, policy))
    return tuple(sorted(found, key=ThreatIndicator.sort_key))


def level_for(aggregate: float, policy: ScoringPolicy) -> ThreatLevel:
    """Map an aggregate severity onto a threat level."""
    if aggregate >= policy.critical_threshold:
        return ThreatLevel.CRITICAL
    if aggregate >= policy.high_threshold:
        return ThreatLevel.HIGH
    if aggregate >= policy.medium_threshold:
        return ThreatLevel.MEDIUM
    if aggregate >= policy.low_threshold:
        return ThreatLevel.LOW
    return ThreatLevel.SAFE


def _indicator_confidence(
    indicators: tuple[ThreatIndicator, ...], policy: ScoringPolicy
) -> float:
    """Confidence grows with corroborating sources and the strongest severity."""
    per_source: dict[IndicatorSource, int] = {}
    for indicator in indicators:
        per_source[indicator.source] = max(per_source.get(indicator.source, 0), indicator.severity)

    strongest = max(per_source.values())
    confidence = (
        policy.confidence_base
        + policy.confidence_per_source * (len(per_source) - 1)
        + policy.confidence_severity_factor * strongest
    )

    if len(indicators) == 1 and strongest < policy.weak_indicator_severity:
        confidence = min(confidence, policy.weak_indicator_confidence_cap)

    if len(per_source) > 1 and strongest - min(per_source.values()) >= policy.disagreement_spread:
        confidence -= policy.disagreement_penalty

    return min(confidence, policy.confidence_cap)


def score_threat(
    identification: IdentificationResult,
    entropy: EntropyReport | None,
    header: HeaderValidation | None,
    steganography: SteganographyAnalysis | None,
    polyglot: PolyglotAnalysis | None,
    payloads: PayloadAnalysis | None,
    policy: ScoringPolicy | None = None,
    degraded: int = 0,
    truncated: bool = False,
) -> ThreatScore:
    """Combine all component reports into one verdict.

    Args:
        identification: Result from the magic identifier
        entropy, header, steganography, polyglot, payloads: Component
            reports, None when that component was unavailable
        policy: Weights, severities and thresholds
        degraded: Number of components that failed or timed out
        truncated: Whether the input was cut at the buffer limit

    Returns:
        ThreatScore; UNKNOWN when nothing was identified and nothing fired
    """
    policy = policy or ScoringPolicy()
    indicators = build_indicators(
        identification, entropy, header, steganography, polyglot, payloads, policy
    )

    aggregate = min(
        100.0, sum(i.severity * policy.weight(i.source.value) for i in indicators)
    )

    reports = (entropy, header, steganography, polyglot, payloads)
    nothing_known = identification.is_unknown or all(r is None for r in reports)

    if not indicators and nothing_known:
        level = ThreatLevel.UNKNOWN
        confidence = float(policy.unknown_confidence)
    elif not indicators:
        level = ThreatLevel.SAFE
        confidence = min(
            policy.confidence_cap,
            policy.clean_confidence_base + policy.clean_confidence_factor * identification.confidence,
        )
    else:
        level = level_for(aggregate, policy)
        confidence = _indicator_confidence(indicators, policy)

    confidence -= policy.degraded_penalty * degraded
    if truncated:
        confidence -= policy.truncation_penalty

    return ThreatScore(
        level=level,
        confidence=_clamp(confidence),
        aggregate_severity=round(aggregate, 2),
        indicators=indicators,
    )

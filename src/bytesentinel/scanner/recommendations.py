"""Handling recommendations for analysis verdicts.

Provides short, actionable advice based on indicator evidence and threat level.
"""

from bytesentinel.scanner.results import ComprehensiveAnalysis, ThreatIndicator, ThreatLevel

# Recommendations by evidence keyword, checked in order
RECOMMENDATIONS = {
    # Do not open
    "known_test_pattern": "Antivirus test pattern found. Handle as malware per your scanning policy.",
    "disguised as passive media": "DO NOT OPEN. Executable content is posing as a media file.",
    "filename hides": "DO NOT OPEN. The filename conceals an executable extension.",
    "shellcode": "DO NOT OPEN. Machine code patterns found in a data file.",
    "shell_command": "DO NOT OPEN. File carries shell commands that may be run by a loader.",
    # Quarantine and inspect
    "executable": "Quarantine. Extract and scan the embedded executable before any use.",
    "valid as multiple formats": "Quarantine. Re-encode the file to its claimed format to strip extra content.",
    "base64_blob": "Decode and scan the embedded base64 data before trusting this file.",
    "script": "Review the embedded script before rendering this file.",
    "across categories": "Reject or re-label. Content does not match the declared type.",
    # Caution
    "hidden content": "Re-encode or strip metadata before redistributing this file.",
    "entropy": "Unusual byte distribution. Verify the file source.",
    "url": "Check the referenced hosts before following links in this file.",
    "type mismatch": "Declared type is close to the content. Correct the label if possible.",
}

# Default recommendations by threat level
DEFAULT_BY_LEVEL = {
    ThreatLevel.CRITICAL: "DO NOT OPEN this file. It carries active or known-malicious content.",
    ThreatLevel.HIGH: "Quarantine this file and inspect it before use.",
    ThreatLevel.MEDIUM: "Treat with caution and verify the file source.",
    ThreatLevel.LOW: "Low risk. Verify the source if it came from an untrusted origin.",
    ThreatLevel.SAFE: "No action needed.",
    ThreatLevel.UNKNOWN: "Content could not be identified. Handle as untrusted.",
}


def get_recommendation(message: str, level: ThreatLevel) -> str:
    """Get a recommendation for an indicator.

    Args:
        message: Indicator evidence text
        level: Overall threat level, used when no keyword matches

    Returns:
        Recommendation string
    """
    message_lower = message.lower()

    for pattern, recommendation in RECOMMENDATIONS.items():
        if pattern in message_lower:
            return recommendation

    return DEFAULT_BY_LEVEL.get(level, "Handle as untrusted.")


def recommend(indicator: ThreatIndicator, level: ThreatLevel) -> str:
    return get_recommendation(f"{indicator.kind.value} {indicator.evidence}", level)


def recommendations_for(analysis: ComprehensiveAnalysis) -> list[str]:
    """Collect distinct recommendations for an analysis, strongest indicator first.

    Args:
        analysis: Completed analysis

    Returns:
        List of recommendation strings; the level default when nothing fired
    """
    level = analysis.threat.level
    if not analysis.threat.indicators:
        return [DEFAULT_BY_LEVEL[level]]

    advice: list[str] = []
    for indicator in analysis.threat.indicators:
        text = recommend(indicator, level)
        if text not in advice:
            advice.append(text)
    return advice

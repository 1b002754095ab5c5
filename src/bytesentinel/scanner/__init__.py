"""Analysis components and the pipeline that runs them.

Architecture:
    MagicIdentifier runs first (formats.magic)
    Concurrent components, each fed the identification:
        - EntropyBaseline (entropy.py)
        - HeaderValidator (header_validator.py)
        - SteganographyDetector (steganography.py)
        - PolyglotDetector (polyglot_scanner.py)
        - PayloadHunter (payload_hunter.py)
    ThreatScorer combines their reports (scorer.py)
"""

from bytesentinel.scanner.cancellation import AnalysisCancelled, CancellationToken
from bytesentinel.scanner.engine import Pipeline, analyze_bytes, analyze_file
from bytesentinel.scanner.results import ComprehensiveAnalysis, ThreatLevel, ThreatScore

__all__ = [
    "Pipeline",
    "analyze_bytes",
    "analyze_file",
    "AnalysisCancelled",
    "CancellationToken",
    "ComprehensiveAnalysis",
    "ThreatLevel",
    "ThreatScore",
]

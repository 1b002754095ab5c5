"""Shannon entropy compared against per-format baselines."""

import logging
import math
from collections import Counter

from bytesentinel.config import AnalysisConfig
from bytesentinel.formats.baselines import baseline_for
from bytesentinel.formats.magic import IdentificationResult
from bytesentinel.scanner.results import EntropyReport, EntropyStatus

logger = logging.getLogger(__name__)


def shannon_entropy(data: bytes) -> float:
    """Calculate Shannon entropy of a byte sequence.

    Args:
        data: Byte sequence to analyze

    Returns:
        Entropy in bits per byte (0.0 to 8.0)
    """
    if not data:
        return 0.0

    data_len = len(data)
    entropy = 0.0
    for count in Counter(data).values():
        probability = count / data_len
        entropy -= probability * math.log2(probability)

    # Float error can push a uniform histogram a hair past the bounds
    return min(8.0, max(0.0, entropy))


def block_entropies(data: bytes, block_size: int, max_blocks: int) -> tuple[float, ...]:
    """Entropy of fixed-size blocks, evenly subsampled to at most ``max_blocks``."""
    total = len(data) // block_size
    if total == 0:
        return ()
    if total <= max_blocks:
        indices = range(total)
    else:
        indices = (i * total // max_blocks for i in range(max_blocks))
    return tuple(
        shannon_entropy(data[i * block_size : (i + 1) * block_size]) for i in indices
    )


def analyze_entropy(
    data: bytes,
    identification: IdentificationResult,
    config: AnalysisConfig | None = None,
) -> EntropyReport:
    """Compare a buffer's entropy to the expected range for its format.

    Buffers larger than ``entropy_sample_bytes`` are measured on their
    leading window and the report says so (``sampled``).

    Args:
        data: Raw file content
        identification: Result from the magic identifier
        config: Analysis configuration

    Returns:
        EntropyReport with deviation 0 inside the range, growing linearly
        with distance outside it, capped at 100
    """
    config = config or AnalysisConfig()
    baseline, has_baseline = baseline_for(identification.format, config.baselines)

    if not data:
        return EntropyReport(
            entropy=0.0,
            baseline=baseline,
            has_baseline=has_baseline,
            status=EntropyStatus.EMPTY,
        )

    sample = data[: config.entropy_sample_bytes]
    entropy = shannon_entropy(sample)
    blocks = block_entropies(sample, config.entropy_block_size, config.max_entropy_blocks)

    low, high = baseline
    deviation = 0.0
    if len(sample) < config.min_entropy_sample:
        status = EntropyStatus.INSUFFICIENT_SAMPLE
    elif entropy > high:
        status = EntropyStatus.HIGH
        deviation = min(100.0, (entropy - high) * config.entropy_deviation_scale)
    elif entropy < low:
        status = EntropyStatus.LOW
        deviation = min(100.0, (low - entropy) * config.entropy_deviation_scale)
    else:
        status = EntropyStatus.NORMAL

    if deviation:
        logger.debug(
            "Entropy %.3f outside %s range %.2f-%.2f (deviation %.1f)",
            entropy,
            identification.format,
            low,
            high,
            deviation,
        )

    return EntropyReport(
        entropy=entropy,
        baseline=baseline,
        has_baseline=has_baseline,
        status=status,
        deviation=deviation,
        block_entropies=blocks,
        sampled=len(sample) < len(data),
        sample_size=len(sample),
    )

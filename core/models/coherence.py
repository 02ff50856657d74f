"""
Mirror Coherence Model

Heuristic coherence score from keystroke rhythm and reaction time.

Low variation between keystroke intervals and a quick first keystroke both
raise the score. The result is a decorative trust signal bounded to a
narrow plausible band, not a biometric measurement.
"""

import logging
import math
import random
from typing import Optional

from core.processors.keyboard import InteractionMetrics


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SCORE_MIN = 55.0
SCORE_MAX = 99.0

# Fallback band when there is nothing to measure: [72, 87)
FALLBACK_BASE = 72.0
FALLBACK_SPREAD = 15.0

BASE_FLOOR = 60.0
CV_WEIGHT = 40.0
CONSISTENCY_WEIGHT = 0.8
REACTION_WEIGHT = 20.0
REACTION_WINDOW_MS = 5000.0


def compute_coherence_score(
    metrics: InteractionMetrics,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Score typing coherence in [55.0, 99.0] with one decimal.

    With fewer than two samples a value from [72, 87) is drawn from `rng`
    instead of measured.
    """
    timestamps = metrics.keystroke_timestamps
    if len(timestamps) < 2:
        rng = rng or random.Random()
        fallback = FALLBACK_BASE + rng.random() * FALLBACK_SPREAD
        # Floor keeps the one-decimal value inside the half-open band
        return math.floor(fallback * 10) / 10

    intervals = metrics.intervals
    mean = sum(intervals) / len(intervals)
    variance = sum((d - mean) ** 2 for d in intervals) / len(intervals)
    std_dev = math.sqrt(variance)
    cv = std_dev / mean if mean > 0 else 1.0

    first = metrics.first_keystroke_time
    if first is None:
        first = timestamps[0]
    start = metrics.input_start_time if metrics.input_start_time is not None else first
    reaction_time = first - start
    # Lower bound only; reaction_time >= 0 keeps this <= 1 in practice
    reaction_factor = max(0.0, 1 - reaction_time / REACTION_WINDOW_MS)

    base = max(BASE_FLOOR, 100 - cv * CV_WEIGHT)
    adjusted = base * CONSISTENCY_WEIGHT + reaction_factor * REACTION_WEIGHT

    score = min(SCORE_MAX, max(SCORE_MIN, _round_half_up(adjusted)))
    logger.debug(
        f"Coherence: mean={mean:.1f}ms cv={cv:.4f} "
        f"reaction={reaction_time:.0f}ms -> {score}"
    )
    return score


def _round_half_up(value: float) -> float:
    """Round to one decimal, halves away from negative infinity."""
    return math.floor(value * 10 + 0.5) / 10

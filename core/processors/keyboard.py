"""
Mirror Keyboard Metrics Collector

Stateful timing capture for the INPUT phase.
Records keystroke timestamps, the reaction start mark and the total
input duration for one verification attempt.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Keys that trigger submission; never recorded as timing samples
SUBMIT_KEYS = {"Enter", "enter", "Return"}

# Interval (ms) that maps to a full-strength typing pulse
PULSE_REFERENCE_MS = 300.0

# Intervals faster than this are treated as this (ms)
PULSE_MIN_INTERVAL_MS = 50.0

# Per-frame pulse decay
PULSE_DECAY = 0.95


# =============================================================================
# Data Structures
# =============================================================================

@dataclass
class InteractionMetrics:
    """Timing facts for one verification attempt (milliseconds)."""
    first_keystroke_time: Optional[float] = None
    input_start_time: Optional[float] = None
    keystroke_timestamps: List[float] = field(default_factory=list)
    total_duration: float = 0.0

    @property
    def sample_count(self) -> int:
        return len(self.keystroke_timestamps)

    @property
    def intervals(self) -> List[float]:
        """Inter-keystroke intervals d_i = t_i - t_(i-1)."""
        ts = self.keystroke_timestamps
        return [ts[i] - ts[i - 1] for i in range(1, len(ts))]


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """
    Collects interaction metrics while the session is in INPUT.

    Lifecycle:
    - closed until `mark_input_start()` (INPUT became interactive)
    - open: `record_keystroke()` appends samples
    - closed for good after `finalize()` (submission)

    The collector only mutates its own `InteractionMetrics`.
    """

    def __init__(self) -> None:
        self.metrics = InteractionMetrics()
        self.pulse_intensity: float = 0.0
        self._open = False
        self._finalized = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def mark_input_start(self, timestamp: float) -> None:
        """Mark the moment INPUT became interactive. Only the first call counts."""
        if self.metrics.input_start_time is not None or self._finalized:
            return
        self.metrics.input_start_time = timestamp
        self._open = True
        logger.debug(f"Input start marked at {timestamp:.1f}ms")

    def record_keystroke(self, timestamp: float, key: Optional[str] = None) -> bool:
        """
        Record a character keystroke.

        Returns True if the sample was recorded. Ignored when the collector
        is not open or when the key is a submit key.
        """
        if not self._open:
            return False
        if key in SUBMIT_KEYS:
            return False

        timestamps = self.metrics.keystroke_timestamps
        # Keep the sequence non-decreasing under clock jitter
        if timestamps and timestamp < timestamps[-1]:
            timestamp = timestamps[-1]

        if self.metrics.first_keystroke_time is None:
            self.metrics.first_keystroke_time = timestamp
        timestamps.append(timestamp)

        if len(timestamps) >= 2:
            last_interval = timestamps[-1] - timestamps[-2]
            self.pulse_intensity = min(
                1.0,
                max(self.pulse_intensity, PULSE_REFERENCE_MS / max(last_interval, PULSE_MIN_INTERVAL_MS))
            )
        return True

    def finalize(self, now: float) -> InteractionMetrics:
        """Close the collector and fix `total_duration` (once per session)."""
        if not self._finalized:
            start = self.metrics.input_start_time
            self.metrics.total_duration = now - start if start is not None else 0.0
            self._finalized = True
            self._open = False
            logger.debug(
                f"Metrics finalized: {self.metrics.sample_count} samples, "
                f"duration={self.metrics.total_duration:.1f}ms"
            )
        return self.metrics

    def decay_pulse(self) -> float:
        """Apply one frame of pulse decay and return the new intensity."""
        self.pulse_intensity *= PULSE_DECAY
        return self.pulse_intensity

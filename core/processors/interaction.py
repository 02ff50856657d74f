"""
Mirror Interaction Processor

Normalizes pointer and device-orientation samples into the 2D influence
vector the renderer reads, and derives the access-card tilt once a
session is AUTHORIZED.

Tilt sensing is only used on mobile user agents and only after the
platform permission was granted; otherwise input degrades to pointer only.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from core.schemas.inputs import OrientationSample, PointerSample


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

POINTER_TILT_DEGREES = 8.0
ORIENTATION_TILT_DEGREES = 12.0
ORIENTATION_RANGE_DEGREES = 45.0


@dataclass
class PointerState:
    """Last pointer sample in pixels and normalized device coordinates."""
    x: float = 0.0
    y: float = 0.0
    nx: float = 0.0
    ny: float = 0.0


@dataclass
class OrientationState:
    beta: float = 0.0
    gamma: float = 0.0


class InteractionTracker:
    """
    Tracks pointer and tilt input for one session.

    `orientation_enabled` starts True only for mobile devices that need no
    permission prompt; `set_orientation_permission()` settles the rest.
    """

    def __init__(self, is_mobile: bool = False, requires_permission: bool = True) -> None:
        self.pointer = PointerState()
        self.orientation = OrientationState()
        self.is_mobile = is_mobile
        self.orientation_enabled = is_mobile and not requires_permission

    def set_orientation_permission(self, granted: bool) -> bool:
        """Apply the permission outcome. Denial keeps pointer-only input."""
        if not self.is_mobile:
            return False
        self.orientation_enabled = granted
        if not granted:
            logger.info("Orientation permission denied, using pointer input only")
        return self.orientation_enabled

    def record_pointer(self, sample: PointerSample) -> Tuple[float, float]:
        """Store a pointer sample and return its normalized (nx, ny) in [-1, 1]."""
        self.pointer.x = sample.x
        self.pointer.y = sample.y
        self.pointer.nx = (sample.x / sample.viewport_width) * 2 - 1
        self.pointer.ny = -(sample.y / sample.viewport_height) * 2 + 1
        return self.pointer.nx, self.pointer.ny

    def record_orientation(self, sample: OrientationSample) -> bool:
        """Store a tilt sample. Ignored unless orientation sensing is enabled."""
        if not self.orientation_enabled:
            return False
        self.orientation.beta = sample.beta or 0.0
        self.orientation.gamma = sample.gamma or 0.0
        return True

    def influence(self) -> Tuple[float, float]:
        """Normalized 2D influence vector for the renderer."""
        if self.orientation_enabled:
            return (
                _clamp(self.orientation.gamma / ORIENTATION_RANGE_DEGREES),
                _clamp(self.orientation.beta / ORIENTATION_RANGE_DEGREES),
            )
        return self.pointer.nx, self.pointer.ny

    def card_tilt(
        self,
        card_center: Optional[Tuple[float, float]] = None,
        card_half_size: Optional[Tuple[float, float]] = None,
    ) -> Tuple[float, float]:
        """
        Card rotation (rotate_y, rotate_x) in degrees.

        Pointer tilt is measured against the card rectangle; without one,
        the viewport-normalized pointer is used.
        """
        if self.orientation_enabled:
            dx = self.orientation.gamma / ORIENTATION_RANGE_DEGREES
            dy = self.orientation.beta / ORIENTATION_RANGE_DEGREES
            return dx * ORIENTATION_TILT_DEGREES, -dy * ORIENTATION_TILT_DEGREES

        if card_center and card_half_size:
            dx = (self.pointer.x - card_center[0]) / card_half_size[0]
            dy = (self.pointer.y - card_center[1]) / card_half_size[1]
        else:
            dx, dy = self.pointer.nx, -self.pointer.ny
        return dx * POINTER_TILT_DEGREES, -dy * POINTER_TILT_DEGREES


def _clamp(value: float) -> float:
    return max(-1.0, min(1.0, value))

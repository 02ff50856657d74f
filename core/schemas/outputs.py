"""
Mirror Protocol Output Schemas

Enums and Pydantic V2 models describing what the orchestrator exposes
to the presentation layer and the HTTP gateway.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class Phase(str, Enum):
    """Verification phase. Exactly one is current per session."""
    IDLE = "IDLE"
    OBSERVING = "OBSERVING"
    INPUT = "INPUT"
    ANALYZING = "ANALYZING"
    SYNCHRONIZING = "SYNCHRONIZING"
    AUTHORIZED = "AUTHORIZED"
    DIVERGENCE = "DIVERGENCE"


TERMINAL_PHASES = frozenset({Phase.AUTHORIZED, Phase.DIVERGENCE})


class DivergenceResult(str, Enum):
    """Outcome of comparing a submission with the stored identity."""
    MATCH = "MATCH"
    MISMATCH = "MISMATCH"
    NONE = "NONE"


# =============================================================================
# Access Card
# =============================================================================

class AccessCard(BaseModel):
    """Rendered field values for the access card shown on AUTHORIZED."""
    identifier: str = Field(..., description="Verified identifier")
    issued_at: str = Field(..., description="Display date/time, e.g. 'Oct 19, 2026 01:26 PM'")
    coherence: str = Field(..., description="'98.8%' or 'SESSION RESUMED'")
    hash_preview: str = Field(..., description="First 24 fingerprint chars + ellipsis")
    resumed: bool = Field(False, description="True when rendered from a stored identity")


# =============================================================================
# Interaction
# =============================================================================

class CardTilt(BaseModel):
    """Access card rotation in degrees."""
    rotate_y: float = Field(..., description="Rotation around the vertical axis")
    rotate_x: float = Field(..., description="Rotation around the horizontal axis")


class InteractionView(BaseModel):
    """
    Pointer/tilt state the renderer reads.

    `card_tilt` is only set once the session is AUTHORIZED.
    """
    influence_x: float = Field(0.0, description="Normalized horizontal influence")
    influence_y: float = Field(0.0, description="Normalized vertical influence (up is positive)")
    orientation_enabled: bool = Field(False, description="True when tilt drives influence")
    card_tilt: Optional[CardTilt] = Field(None, description="Card rotation on AUTHORIZED")


class FrameView(BaseModel):
    """Per-frame renderer state returned by the frame hook."""
    phase: Phase = Field(..., description="Current phase")
    pulse: float = Field(..., ge=0.0, le=1.0, description="Typing pulse intensity after decay")
    interaction: InteractionView = Field(..., description="Pointer/tilt state")


# =============================================================================
# Session View (Root Model)
# =============================================================================

class SessionView(BaseModel):
    """
    Snapshot of a verification session for the gateway.

    `coherence_score` is None until ANALYZING computes it, and stays
    None for resumed sessions.
    """
    session_id: str = Field(..., description="Gateway session identifier")
    phase: Phase = Field(..., description="Current phase")
    identifier: Optional[str] = Field(None, description="Submitted or resumed identifier")
    coherence_score: Optional[float] = Field(None, ge=55.0, le=99.0, description="Coherence score")
    fingerprint: Optional[str] = Field(None, description="Identity fingerprint (hex)")
    keystrokes: int = Field(0, ge=0, description="Recorded keystroke samples")
    card: Optional[AccessCard] = Field(None, description="Access card once AUTHORIZED")
    interaction: InteractionView = Field(default_factory=InteractionView, description="Pointer/tilt state")

"""
Mirror Protocol Schemas

Public exports for input and output Pydantic models.
"""

# Input schemas
from core.schemas.inputs import (
    EnvironmentDescriptor,
    KeyPressPayload,
    SubmitPayload,
    PointerSample,
    OrientationSample,
    OrientationPermission,
    SessionStartPayload,
    FramePayload,
)

# Output schemas
from core.schemas.outputs import (
    Phase,
    TERMINAL_PHASES,
    DivergenceResult,
    AccessCard,
    CardTilt,
    InteractionView,
    FrameView,
    SessionView,
)

__all__ = [
    # Input
    "EnvironmentDescriptor",
    "KeyPressPayload",
    "SubmitPayload",
    "PointerSample",
    "OrientationSample",
    "OrientationPermission",
    "SessionStartPayload",
    "FramePayload",
    # Output
    "Phase",
    "TERMINAL_PHASES",
    "DivergenceResult",
    "AccessCard",
    "CardTilt",
    "InteractionView",
    "FrameView",
    "SessionView",
]

"""
Mirror Protocol Input Schemas

This module defines Pydantic V2 models for:
- The environment descriptor used for hashing and device binding
- Keystroke and submit payloads from the display binding
- Pointer and device-orientation samples
"""

from typing import Optional

from pydantic import BaseModel, Field
from user_agents import parse as parse_user_agent


# =============================================================================
# Environment
# =============================================================================

class EnvironmentDescriptor(BaseModel):
    """
    Facts about the visiting device.

    Feeds both the identity fingerprint and the device signature.
    Read through a provider on every computation, never cached across
    sessions.
    """
    user_agent: str = Field(..., description="Raw user agent string")
    screen_width: int = Field(..., ge=0, description="Screen width in CSS pixels")
    screen_height: int = Field(..., ge=0, description="Screen height in CSS pixels")
    timezone: str = Field("UTC", description="IANA timezone identifier")
    language: str = Field("en-US", description="Preferred locale/language tag")

    @property
    def resolution(self) -> str:
        """Screen resolution as `WIDTHxHEIGHT`."""
        return f"{self.screen_width}x{self.screen_height}"

    @property
    def is_mobile(self) -> bool:
        """True for phones and tablets (tilt input is only sampled there)."""
        ua = parse_user_agent(self.user_agent)
        return ua.is_mobile or ua.is_tablet

    @property
    def requires_orientation_permission(self) -> bool:
        """iOS gates tilt sensing behind an explicit permission prompt."""
        return parse_user_agent(self.user_agent).os.family == "iOS"

    @property
    def device_family(self) -> str:
        """Human-readable device/browser summary for logs and audit."""
        return str(parse_user_agent(self.user_agent))


# =============================================================================
# Keyboard
# =============================================================================

class KeyPressPayload(BaseModel):
    """
    Single key press captured by the display binding.

    `value` carries the current field contents; it is only read when the
    key is Enter (the submit trigger).
    """
    key: str = Field(..., min_length=1, description="Key name (e.g. 'a', 'Enter')")
    value: Optional[str] = Field(None, description="Input field value at key press")


class SubmitPayload(BaseModel):
    """Submit action carrying the typed identifier."""
    identifier: str = Field(..., description="Identifier as typed (trimmed server-side)")


# =============================================================================
# Pointer / Orientation
# =============================================================================

class PointerSample(BaseModel):
    """Pointer position in viewport pixels."""
    x: float = Field(..., description="clientX")
    y: float = Field(..., description="clientY")
    viewport_width: float = Field(..., gt=0, description="window.innerWidth")
    viewport_height: float = Field(..., gt=0, description="window.innerHeight")


class OrientationSample(BaseModel):
    """Device tilt in degrees (DeviceOrientation beta/gamma)."""
    beta: Optional[float] = Field(None, description="Front-back tilt")
    gamma: Optional[float] = Field(None, description="Left-right tilt")


class OrientationPermission(BaseModel):
    """Outcome of the platform permission prompt for tilt sensing."""
    granted: bool = Field(..., description="True when the user allowed sensing")


# =============================================================================
# Session Start (Root Model)
# =============================================================================

class SessionStartPayload(BaseModel):
    """Payload for opening a verification session."""
    environment: EnvironmentDescriptor = Field(..., description="Visiting device facts")


# =============================================================================
# Frame
# =============================================================================

class FramePayload(BaseModel):
    """Render-loop tick from the display binding."""
    elapsed: float = Field(..., ge=0, description="Seconds since the render loop started")
    delta: float = Field(..., ge=0, description="Seconds since the previous frame")

"""
Mirror Protocol Configuration

Environment-driven settings for the verification gateway.
Values are read once at construction; call `MirrorSettings.from_env()`
again to pick up changes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class MirrorSettings:
    """Runtime settings for the orchestrator and its collaborators."""
    observe_dwell: float = 3.5          # seconds in OBSERVING before INPUT
    time_scale: float = 1.0             # presentation speed (0 = instant)
    hash_algorithm: str = "sha256"
    profile: str = "default"
    storage_key: str = "ai_mirror_identity"
    environment: str = "production"
    session_ttl: float = 300.0          # seconds a finished session stays readable
    session_idle_timeout: float = 1800.0  # seconds before an abandoned session is dropped
    max_sessions: int = 100             # open sessions held by the gateway

    @classmethod
    def from_env(cls) -> MirrorSettings:
        """Build settings from process environment (and .env if present)."""
        load_dotenv()
        return cls(
            observe_dwell=float(os.getenv("MIRROR_OBSERVE_DWELL", 3.5)),
            time_scale=float(os.getenv("MIRROR_TIME_SCALE", 1.0)),
            hash_algorithm=os.getenv("MIRROR_HASH_ALGORITHM", "sha256"),
            profile=os.getenv("MIRROR_PROFILE", "default"),
            storage_key=os.getenv("MIRROR_STORAGE_KEY", "ai_mirror_identity"),
            environment=os.getenv("MIRROR_ENV", "production"),
            session_ttl=float(os.getenv("MIRROR_SESSION_TTL", 300.0)),
            session_idle_timeout=float(os.getenv("MIRROR_SESSION_IDLE_TIMEOUT", 1800.0)),
            max_sessions=int(os.getenv("MIRROR_MAX_SESSIONS", 100)),
        )

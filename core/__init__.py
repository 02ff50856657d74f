"""
Mirror Core

Central module exports for the Mirror Protocol identity gateway.
"""

from core.orchestrator import MirrorOrchestrator

__all__ = [
    "MirrorOrchestrator",
]

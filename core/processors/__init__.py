"""
Mirror Processors

Input capture for keyboard timing and pointer/tilt interaction.
"""

from core.processors.keyboard import MetricsCollector, InteractionMetrics
from core.processors.interaction import InteractionTracker

__all__ = [
    "MetricsCollector",
    "InteractionMetrics",
    "InteractionTracker",
]

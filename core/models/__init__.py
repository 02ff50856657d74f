"""
Mirror Core Models

Coherence scoring, identity hashing and divergence detection.
"""

from core.models.coherence import compute_coherence_score
from core.models.identity import (
    HashingError,
    build_hash_payload,
    device_signature,
    generate_identity_hash,
)
from core.models.divergence import check_divergence

__all__ = [
    "compute_coherence_score",
    "HashingError",
    "build_hash_payload",
    "device_signature",
    "generate_identity_hash",
    "check_divergence",
]

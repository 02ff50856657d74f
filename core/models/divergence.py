"""
Mirror Divergence Model

Detects an identity conflict: a device already bound to one identifier
receiving a submission for another.
"""

from typing import TYPE_CHECKING, Optional

from core.schemas.outputs import DivergenceResult

if TYPE_CHECKING:
    from persistence.identity_store import IdentityRecord


def check_divergence(
    submitted_identifier: str,
    stored: Optional["IdentityRecord"],
) -> DivergenceResult:
    """
    Compare a submission with the identity stored for this device.

    Exact string equality after trimming; case is preserved.
    The caller passes None when the stored record belongs to another device.
    """
    if stored is None:
        return DivergenceResult.NONE
    if stored.identifier.strip() == submitted_identifier.strip():
        return DivergenceResult.MATCH
    return DivergenceResult.MISMATCH

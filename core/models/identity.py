"""
Mirror Identity Model

Deterministic identity fingerprint and device signature.

The fingerprint binds an identifier to the timing facts of one attempt and
the visiting environment. It is a session binding token, not a secret:
anyone with the same inputs can recompute it.
"""

import asyncio
import hashlib
import logging
from typing import Union

from core.processors.keyboard import InteractionMetrics
from core.schemas.inputs import EnvironmentDescriptor


logger = logging.getLogger(__name__)


DELIMITER = "|"
DEFAULT_ALGORITHM = "sha256"


class HashingError(Exception):
    """Raised when a fingerprint digest cannot be produced."""
    pass


def _format_number(value: Union[int, float]) -> str:
    """Render numbers the way the browser does: no trailing '.0' for integers."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_hash_payload(
    identifier: str,
    metrics: InteractionMetrics,
    env: EnvironmentDescriptor,
) -> str:
    """Ordered, delimited payload the fingerprint is computed over."""
    return DELIMITER.join([
        identifier,
        env.user_agent,
        env.resolution,
        env.timezone,
        _format_number(metrics.total_duration),
        str(metrics.sample_count),
        _format_number(metrics.first_keystroke_time or 0),
    ])


def _digest(payload: str, algorithm: str) -> str:
    try:
        hasher = hashlib.new(algorithm)
    except ValueError as e:
        raise HashingError(f"Unsupported hash algorithm '{algorithm}': {e}") from e

    try:
        data = payload.encode("utf-8")
    except UnicodeEncodeError as e:
        raise HashingError(f"Payload encoding failed: {e}") from e

    hasher.update(data)
    return hasher.hexdigest()


async def generate_identity_hash(
    identifier: str,
    metrics: InteractionMetrics,
    env: EnvironmentDescriptor,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """
    Compute the identity fingerprint as lowercase hex.

    The digest runs in a worker thread so the event loop keeps serving
    frames while it is computed.

    Raises:
        HashingError: algorithm unavailable or payload not encodable.
    """
    payload = build_hash_payload(identifier, metrics, env)
    fingerprint = await asyncio.to_thread(_digest, payload, algorithm)
    logger.debug(f"Identity hash computed with {algorithm}: {fingerprint[:12]}...")
    return fingerprint


def device_signature(env: EnvironmentDescriptor) -> str:
    """Deterministic signature deciding whether a stored identity belongs here."""
    return DELIMITER.join([env.user_agent, env.resolution, env.language])

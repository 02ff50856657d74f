"""
Mirror Identity Store

Redis-backed persistence for the device-bound identity record.
One record per device profile; every save overwrites it.

Key Schema:
    {storage_key}:{profile}  → IdentityRecord JSON
        {"identifier", "fingerprint", "deviceSignature", "createdAt"}

Reads fail soft: missing, malformed or unreachable data is reported as
"no stored identity" and never raised to the caller.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from redis.exceptions import RedisError


logger = logging.getLogger(__name__)


# =============================================================================
# Data Models
# =============================================================================

class IdentityRecord(BaseModel):
    """Identity bound to this device profile."""
    model_config = ConfigDict(populate_by_name=True)

    identifier: str = Field(..., min_length=1)
    fingerprint: str = Field("", pattern=r"^[0-9a-f]*$")
    device_signature: str = Field(..., alias="deviceSignature")
    created_at: float = Field(default_factory=lambda: time.time() * 1000.0, alias="createdAt")

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True))

    @classmethod
    def from_json(cls, raw: str) -> IdentityRecord:
        return cls.model_validate(json.loads(raw))


# =============================================================================
# Repository
# =============================================================================

class IdentityStore:
    """
    Persists and retrieves the identity record for one device profile.

    `client` is anything with Redis' `get`/`set`/`delete` surface; the
    shared connection pool is used when none is given.
    """

    DEFAULT_KEY: str = "ai_mirror_identity"

    def __init__(
        self,
        client: Any = None,
        profile: str = "default",
        storage_key: str = DEFAULT_KEY,
    ) -> None:
        if client is None:
            from .connection import get_redis_client
            client = get_redis_client()
        self.client = client
        self.profile = profile
        self.storage_key = storage_key

    # -------------------------------------------------------------------------
    # Key Builders
    # -------------------------------------------------------------------------

    def _record_key(self) -> str:
        return f"{self.storage_key}:{self.profile}"

    # -------------------------------------------------------------------------
    # Record Operations
    # -------------------------------------------------------------------------

    def load(self) -> Optional[IdentityRecord]:
        """Get the stored record, returns None if missing/corrupt/unreachable."""
        try:
            raw = self.client.get(self._record_key())
        except RedisError as e:
            logger.error(f"Failed to read identity for profile {self.profile}: {e}")
            return None

        if raw is None:
            return None
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning(f"Discarding undecodable identity record: {e}")
                return None

        try:
            return IdentityRecord.from_json(raw)
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(f"Discarding corrupt identity record for {self.profile}: {e}")
            return None

    def save(self, record: IdentityRecord) -> bool:
        """Overwrite the stored record in a single write. Returns success."""
        try:
            self.client.set(self._record_key(), record.to_json())
            logger.info(f"Identity stored for profile {self.profile}: {record.identifier}")
            return True
        except RedisError as e:
            logger.error(f"Failed to store identity for profile {self.profile}: {e}")
            return False

    def clear(self) -> None:
        """Discard the stored record (device changed)."""
        try:
            self.client.delete(self._record_key())
        except RedisError as e:
            logger.warning(f"Failed to clear identity for profile {self.profile}: {e}")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def exists(self) -> bool:
        return self.load() is not None

    def matches(self, signature: str) -> bool:
        """True if a stored record exists and was bound with `signature`."""
        record = self.load()
        return record is not None and record.device_signature == signature

    @staticmethod
    def signature(env: Any) -> str:
        """Device signature for an environment descriptor."""
        from core.models.identity import device_signature
        return device_signature(env)

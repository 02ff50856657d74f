"""
Mirror Persistence Layer

Public exports for the Redis connection, identity store and audit trail.
"""

from .connection import get_redis_client
from .identity_store import IdentityStore, IdentityRecord
from .audit_logger import AuditLogger

__all__ = [
    "get_redis_client",
    "IdentityStore",
    "IdentityRecord",
    "AuditLogger",
]

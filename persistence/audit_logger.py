"""
Mirror Audit Logger

Fire-and-forget audit log writer that inserts one structured entry into
the Supabase `verification_events` table for every verification outcome
(AUTHORIZED, RESUMED, DIVERGENCE).

Schema:
    verification_events (
        event_id TEXT PRIMARY KEY,
        payload  JSONB,
        created_at TIMESTAMPTZ DEFAULT now()
    )
"""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import create_client, Client

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Builds and inserts verification audit entries into Supabase.

    All writes are best-effort: errors are logged but never raised
    to avoid disrupting the verification sequence.
    """

    TABLE = "verification_events"
    PROTOCOL_VERSION = "v1.0.0"

    def __init__(self, client: Optional[Client] = None, environment: str = "production") -> None:
        self._client: Optional[Client] = client
        self.environment = environment
        if client is not None:
            return

        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_KEY")
        if not url or not key:
            logger.warning("Supabase credentials missing, audit logging disabled")
            return
        self._client = create_client(url, key)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def log(self, event: str, session: Any, env: Any) -> None:
        """
        Build and insert an audit log entry.

        Args:
            event:    Outcome name (AUTHORIZED, RESUMED, DIVERGENCE).
            session:  The VerificationSession that produced the outcome.
            env:      The EnvironmentDescriptor in effect.
        """
        if self._client is None:
            return

        try:
            entry = self._build_entry(event, session, env)
            self._client.table(self.TABLE).insert({
                "event_id": entry["event_id"],
                "payload": entry,
            }).execute()
            logger.debug(f"Audit log inserted: {entry['event_id']}")
        except Exception as e:
            logger.error(f"Audit log insertion failed: {e}")

    # ------------------------------------------------------------------
    # Payload Builder
    # ------------------------------------------------------------------

    def _build_entry(self, event: str, session: Any, env: Any) -> Dict[str, Any]:
        """Assemble the audit payload. Only a fingerprint preview is logged."""
        now = datetime.now(timezone.utc)
        fingerprint = session.fingerprint or ""

        return {
            "event_id": f"evt_{uuid.uuid4()}",
            "timestamp": now.isoformat(),
            "environment": self.environment,
            "protocol_version": self.PROTOCOL_VERSION,

            "outcome": {
                "event": event,
                "phase": session.phase.value,
                "identifier": session.identifier,
                "coherence_score": session.coherence_score,
                "fingerprint_preview": fingerprint[:12],
            },

            "device": {
                "family": env.device_family,
                "resolution": env.resolution,
                "timezone": env.timezone,
                "language": env.language,
                "is_mobile": env.is_mobile,
            },

            "interaction": {
                "keystrokes": session.metrics.sample_count,
                "total_duration_ms": session.metrics.total_duration,
            },
        }

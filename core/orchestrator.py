"""
Mirror Orchestrator (v1.0)

Phase state machine for the identity gateway.

    IDLE → OBSERVING → INPUT → ANALYZING → SYNCHRONIZING → AUTHORIZED
      └──────────── (stored identity, same device) ───────→ AUTHORIZED
                           INPUT ── (identity conflict) ──→ DIVERGENCE

One orchestrator owns one VerificationSession. All work runs on a single
asyncio loop; each stage that depends on a presentation signal awaits it
before the phase moves on, and presentation stages never overlap.

Failure policy:
- storage read/write errors degrade to "no stored identity"
- hashing errors degrade to an empty fingerprint
- neither blocks the AUTHORIZED transition
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional

from pydantic import ValidationError

from core.config import MirrorSettings
from core.models import (
    HashingError,
    check_divergence,
    compute_coherence_score,
    device_signature,
    generate_identity_hash,
)
from core.presentation import Presenter, TimelinePresenter
from core.processors import InteractionMetrics, InteractionTracker, MetricsCollector
from core.schemas.inputs import EnvironmentDescriptor, OrientationSample, PointerSample
from core.schemas.outputs import (
    AccessCard,
    CardTilt,
    DivergenceResult,
    FrameView,
    InteractionView,
    Phase,
    SessionView,
    TERMINAL_PHASES,
)
from persistence.audit_logger import AuditLogger
from persistence.identity_store import IdentityRecord, IdentityStore


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

ALLOWED_TRANSITIONS: Dict[Phase, FrozenSet[Phase]] = {
    Phase.IDLE: frozenset({Phase.OBSERVING, Phase.AUTHORIZED}),
    Phase.OBSERVING: frozenset({Phase.INPUT}),
    Phase.INPUT: frozenset({Phase.ANALYZING, Phase.DIVERGENCE}),
    Phase.ANALYZING: frozenset({Phase.SYNCHRONIZING}),
    Phase.SYNCHRONIZING: frozenset({Phase.AUTHORIZED}),
    Phase.AUTHORIZED: frozenset(),
    Phase.DIVERGENCE: frozenset(),
}

RESUMED_COHERENCE_TEXT = "SESSION RESUMED"
HASH_PREVIEW_LENGTH = 24


# =============================================================================
# Exceptions
# =============================================================================

class InvalidTransitionError(Exception):
    """Raised when a phase change is not allowed from the current phase."""
    pass


class InputRejectedError(Exception):
    """Raised when input arrives in a phase that does not accept it."""
    pass


# =============================================================================
# Session Context
# =============================================================================

@dataclass
class VerificationSession:
    """State of one verification attempt, owned by its orchestrator."""
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    phase: Phase = Phase.IDLE
    collector: MetricsCollector = field(default_factory=MetricsCollector)
    interaction: InteractionTracker = field(default_factory=InteractionTracker)
    identifier: Optional[str] = None
    fingerprint: Optional[str] = None
    coherence_score: Optional[float] = None
    card: Optional[AccessCard] = None
    resumed: bool = False
    persisted: bool = False

    @property
    def metrics(self) -> InteractionMetrics:
        return self.collector.metrics

    def to_view(self) -> SessionView:
        return SessionView(
            session_id=self.session_id,
            phase=self.phase,
            identifier=self.identifier,
            coherence_score=self.coherence_score,
            fingerprint=self.fingerprint,
            keystrokes=self.metrics.sample_count,
            card=self.card,
            interaction=self.interaction_view(),
        )

    def interaction_view(self) -> InteractionView:
        """Influence vector, plus card tilt once AUTHORIZED."""
        tracker = self.interaction
        influence_x, influence_y = tracker.influence()
        card_tilt = None
        if self.phase == Phase.AUTHORIZED:
            rotate_y, rotate_x = tracker.card_tilt()
            card_tilt = CardTilt(rotate_y=rotate_y, rotate_x=rotate_x)
        return InteractionView(
            influence_x=influence_x,
            influence_y=influence_y,
            orientation_enabled=tracker.orientation_enabled,
            card_tilt=card_tilt,
        )


# =============================================================================
# Orchestrator
# =============================================================================

class MirrorOrchestrator:
    """
    Drives one verification session through its phases.

    Collaborators are injected: the identity store, an environment
    provider (read on every computation), the presenter, and optionally
    a clock (ms), sleep function and random source for deterministic tests.
    """

    def __init__(
        self,
        store: IdentityStore,
        environment: Callable[[], EnvironmentDescriptor],
        presenter: Optional[Presenter] = None,
        settings: Optional[MirrorSettings] = None,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Optional[random.Random] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.store = store
        self.settings = settings or MirrorSettings()
        self.presenter = presenter or TimelinePresenter(self.settings.time_scale)
        self.audit = audit
        self._environment = environment
        self._clock = clock or (lambda: time.monotonic() * 1000.0)
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

        env = environment()
        self.session = VerificationSession(
            interaction=InteractionTracker(
                is_mobile=env.is_mobile,
                requires_permission=env.requires_orientation_permission,
            ),
        )
        if session_id:
            self.session.session_id = session_id

        self._stage_lock = asyncio.Lock()
        self._phase_changed = asyncio.Event()

        logger.info(
            f"MirrorOrchestrator initialized (session={self.session.session_id}, "
            f"device={env.device_family})"
        )

    @property
    def phase(self) -> Phase:
        return self.session.phase

    @property
    def card(self) -> Optional[AccessCard]:
        return self.session.card

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    async def start(self) -> Phase:
        """
        Run startup: resume a stored identity bound to this device, or
        observe for the dwell time and open INPUT.
        """
        if self.phase != Phase.IDLE:
            raise InvalidTransitionError(f"Session already started ({self.phase.value})")

        env = self._environment()
        signature = device_signature(env)
        stored = self.store.load()

        if stored is not None and stored.device_signature == signature:
            await self._resume(stored, env)
            return self.phase

        if stored is not None:
            logger.info("Stored identity belongs to another device signature; discarding")
            self.store.clear()

        self._transition(Phase.OBSERVING)
        started = self._clock()
        await self._play(self.presenter.observe)

        remaining = self.settings.observe_dwell - (self._clock() - started) / 1000.0
        if remaining > 0:
            await self._sleep(remaining)

        self._transition(Phase.INPUT)
        self.session.collector.mark_input_start(self._clock())
        await self._play(self.presenter.reveal_input)
        return self.phase

    async def _resume(self, stored: IdentityRecord, env: EnvironmentDescriptor) -> None:
        """Returning visitor on the same device: straight to AUTHORIZED."""
        session = self.session
        self._transition(Phase.AUTHORIZED)
        session.identifier = stored.identifier
        session.fingerprint = stored.fingerprint
        session.resumed = True
        session.card = self._build_card()

        await self._audit("RESUMED", env)
        await self._play(self.presenter.resume, session.card)

    # -------------------------------------------------------------------------
    # Input
    # -------------------------------------------------------------------------

    def key_down(self, key: str, timestamp: Optional[float] = None) -> bool:
        """Record a key press. Returns True if it became a timing sample."""
        if self.phase != Phase.INPUT:
            return False
        ts = timestamp if timestamp is not None else self._clock()
        return self.session.collector.record_keystroke(ts, key)

    def pointer(self, sample: PointerSample) -> None:
        self.session.interaction.record_pointer(sample)

    def orientation(self, sample: OrientationSample) -> bool:
        return self.session.interaction.record_orientation(sample)

    def orientation_permission(self, granted: bool) -> bool:
        return self.session.interaction.set_orientation_permission(granted)

    async def submit(self, raw_identifier: str) -> Phase:
        """
        Handle a submission and run the resulting sequence to completion.

        Empty input is a no-op. A conflicting stored identity on this device
        leads to DIVERGENCE; otherwise the analysis sequence runs through
        to AUTHORIZED.

        Raises:
            InputRejectedError: the session is not in INPUT.
        """
        if self.phase != Phase.INPUT:
            raise InputRejectedError(f"Submission not accepted in phase {self.phase.value}")

        identifier = (raw_identifier or "").strip()
        if not identifier:
            logger.info("Empty identifier submitted; awaiting resubmission")
            return self.phase

        result = check_divergence(identifier, self._load_device_record())
        if result == DivergenceResult.MISMATCH:
            await self._diverge(identifier)
        else:
            await self._analyze(identifier)
        return self.phase

    def _load_device_record(self) -> Optional[IdentityRecord]:
        """Stored record for this device, or None if absent or foreign."""
        stored = self.store.load()
        if stored is None:
            return None
        if stored.device_signature != device_signature(self._environment()):
            return None
        return stored

    # -------------------------------------------------------------------------
    # Analysis Sequence
    # -------------------------------------------------------------------------

    async def _analyze(self, identifier: str) -> None:
        session = self.session
        self._transition(Phase.ANALYZING)
        session.identifier = identifier
        metrics = session.collector.finalize(self._clock())

        await self._play(self.presenter.begin_analysis)

        env = self._environment()
        session.fingerprint = await self._compute_fingerprint(identifier, metrics, env)
        session.coherence_score = compute_coherence_score(metrics, self._rng)

        await self._play(self.presenter.split)
        self._transition(Phase.SYNCHRONIZING)

        await self._play(self.presenter.converge, session.coherence_score)
        await self._play(self.presenter.form_crystal)

        session.card = self._build_card()
        await self._play(self.presenter.reveal_card, session.card)

        self._transition(Phase.AUTHORIZED)
        self._persist(identifier, session.fingerprint)
        await self._audit("AUTHORIZED", env)

    async def _compute_fingerprint(
        self,
        identifier: str,
        metrics: InteractionMetrics,
        env: EnvironmentDescriptor,
    ) -> str:
        try:
            return await generate_identity_hash(
                identifier, metrics, env, algorithm=self.settings.hash_algorithm
            )
        except HashingError as e:
            logger.error(f"Identity hash unavailable, continuing without fingerprint: {e}")
            return ""

    def _persist(self, identifier: str, fingerprint: str) -> None:
        """Write the identity record. Failure is logged, never raised."""
        try:
            record = IdentityRecord(
                identifier=identifier,
                fingerprint=fingerprint,
                device_signature=device_signature(self._environment()),
                created_at=time.time() * 1000.0,
            )
        except ValidationError as e:
            logger.error(f"Identity record rejected, not persisted: {e}")
            return

        self.session.persisted = self.store.save(record)
        if not self.session.persisted:
            logger.warning(f"Identity for {identifier} not persisted; session stays AUTHORIZED")

    # -------------------------------------------------------------------------
    # Divergence
    # -------------------------------------------------------------------------

    async def _diverge(self, identifier: str) -> None:
        self._transition(Phase.DIVERGENCE)
        self.session.identifier = identifier
        self.session.collector.finalize(self._clock())
        logger.warning("Identity divergence: submitted identifier conflicts with bound device")

        await self._audit("DIVERGENCE", self._environment())
        await self._play(self.presenter.diverge)

    # -------------------------------------------------------------------------
    # Frame Hook
    # -------------------------------------------------------------------------

    def frame(self, elapsed: float, delta: float) -> FrameView:
        """
        Per-frame hook: decay the typing pulse and forward the phase and
        influence vector to the renderer.
        """
        pulse = self.session.collector.decay_pulse()
        interaction = self.session.interaction_view()
        self.presenter.update(
            elapsed, delta, self.phase, (interaction.influence_x, interaction.influence_y)
        )
        return FrameView(phase=self.phase, pulse=pulse, interaction=interaction)

    # -------------------------------------------------------------------------
    # Core Helpers
    # -------------------------------------------------------------------------

    async def wait_until(self, *phases: Phase) -> Phase:
        """Suspend until the session is in one of `phases`."""
        targets = set(phases) or set(TERMINAL_PHASES)
        while self.phase not in targets:
            changed = self._phase_changed
            await changed.wait()
        return self.phase

    def _transition(self, new_phase: Phase) -> None:
        current = self.session.phase
        if new_phase not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(f"{current.value} → {new_phase.value} is not allowed")

        logger.info(f"[{self.session.session_id}] {current.value} → {new_phase.value}")
        self.session.phase = new_phase

        # Wake waiters, then arm a fresh event for the next change
        self._phase_changed.set()
        self._phase_changed = asyncio.Event()

    async def _play(self, stage: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Run one presentation stage; stages never overlap."""
        async with self._stage_lock:
            await stage(*args)

    async def _audit(self, event: str, env: EnvironmentDescriptor) -> None:
        if self.audit is None or not self.audit.enabled:
            return
        await asyncio.to_thread(self.audit.log, event, self.session, env)

    def _build_card(self) -> AccessCard:
        session = self.session
        now = datetime.now()
        issued_at = f"{now:%b} {now.day}, {now:%Y %I:%M %p}"

        if session.resumed or session.coherence_score is None:
            coherence = RESUMED_COHERENCE_TEXT
        else:
            coherence = f"{session.coherence_score:.1f}%"

        return AccessCard(
            identifier=session.identifier or "",
            issued_at=issued_at,
            coherence=coherence,
            hash_preview=(session.fingerprint or "")[:HASH_PREVIEW_LENGTH] + "…",
            resumed=session.resumed,
        )

"""
Mirror Protocol Gateway API

Local FastAPI application the browser shell talks to:
- POST /sessions                          → open a verification session
- GET  /sessions/{id}                     → session snapshot
- PUT  /sessions/{id}/environment         → refresh environment facts
- POST /sessions/{id}/keys                → key press (Enter submits)
- POST /sessions/{id}/submit              → submit identifier
- POST /sessions/{id}/pointer             → 204 (no body)
- POST /sessions/{id}/orientation         → 204 (no body)
- POST /sessions/{id}/orientation/permission
- POST /sessions/{id}/frame               → per-frame renderer state

Binds to 127.0.0.1: verification state belongs to this device only.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
import logging
from typing import Dict, Optional, Set

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from redis.exceptions import RedisError

from core.config import MirrorSettings
from core.orchestrator import MirrorOrchestrator
from core.processors.keyboard import SUBMIT_KEYS
from core.schemas.inputs import (
    EnvironmentDescriptor,
    FramePayload,
    KeyPressPayload,
    OrientationPermission,
    OrientationSample,
    PointerSample,
    SessionStartPayload,
    SubmitPayload,
)
from core.schemas.outputs import FrameView, Phase, SessionView, TERMINAL_PHASES
from persistence.audit_logger import AuditLogger
from persistence.connection import get_redis_client
from persistence.identity_store import IdentityStore


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Upper bound for ?wait=true requests (seconds)
WAIT_TIMEOUT = 30.0


# =============================================================================
# Application State
# =============================================================================

class AppState:
    """Application state container."""
    settings: Optional[MirrorSettings] = None
    store: Optional[IdentityStore] = None
    audit: Optional[AuditLogger] = None
    sessions: Dict[str, MirrorOrchestrator] = {}
    environments: Dict[str, EnvironmentDescriptor] = {}
    last_seen: Dict[str, float] = {}  # insertion order is least recently used first
    tasks: Set[asyncio.Task] = set()


state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Mirror Protocol gateway...")
    state.settings = MirrorSettings.from_env()

    try:
        client = get_redis_client()
    except RedisError as e:
        logger.error(f"Identity store unreachable, identities will not persist: {e}")
        client = get_redis_client(verify=False)

    state.store = IdentityStore(
        client=client,
        profile=state.settings.profile,
        storage_key=state.settings.storage_key,
    )
    state.audit = AuditLogger(environment=state.settings.environment)
    state.sessions = {}
    state.environments = {}
    state.last_seen = {}
    state.tasks = set()
    logger.info("Mirror Protocol gateway ready")

    yield

    # Shutdown
    logger.info("Shutting down Mirror Protocol gateway...")
    for task in list(state.tasks):
        task.cancel()


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Mirror Protocol",
    description="Device-bound identity gateway with keystroke coherence scoring",
    version=VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Shell is served from file:// or a local dev server
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Helpers
# =============================================================================

def _get_session(session_id: str) -> MirrorOrchestrator:
    orchestrator = state.sessions.get(session_id)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown session {session_id}"
        )
    _touch(session_id)
    return orchestrator


def _touch(session_id: str) -> None:
    """Mark a session as most recently used."""
    state.last_seen.pop(session_id, None)
    state.last_seen[session_id] = time.monotonic()


def _evict(session_id: str) -> None:
    state.sessions.pop(session_id, None)
    state.environments.pop(session_id, None)
    state.last_seen.pop(session_id, None)


def _sweep_sessions() -> None:
    """
    Drop finished sessions older than the TTL and abandoned sessions past
    the idle timeout.
    """
    settings = state.settings
    now = time.monotonic()
    expired = []
    for session_id, seen in state.last_seen.items():
        orchestrator = state.sessions.get(session_id)
        idle = now - seen
        if orchestrator is None or idle >= settings.session_idle_timeout:
            expired.append(session_id)
        elif orchestrator.phase in TERMINAL_PHASES and idle >= settings.session_ttl:
            expired.append(session_id)

    for session_id in expired:
        _evict(session_id)
    if expired:
        logger.info(f"Evicted {len(expired)} session(s), {len(state.sessions)} held")


def _make_room() -> None:
    """Evict least recently used sessions until one more fits."""
    while state.last_seen and len(state.sessions) >= state.settings.max_sessions:
        oldest = next(iter(state.last_seen))
        logger.warning(f"Session limit reached, evicting {oldest}")
        _evict(oldest)


def _spawn(coro) -> asyncio.Task:
    """Run a session stage in the background, keeping a reference."""
    task = asyncio.create_task(coro)
    state.tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        state.tasks.discard(t)
        if not t.cancelled() and t.exception() is not None:
            logger.error(f"Session task failed: {t.exception()}")

    task.add_done_callback(_done)
    return task


async def _wait_for(orchestrator: MirrorOrchestrator, *phases: Phase) -> None:
    try:
        await asyncio.wait_for(orchestrator.wait_until(*phases), timeout=WAIT_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning(
            f"Timed out waiting for {[p.value for p in phases]} "
            f"(session {orchestrator.session.session_id} in {orchestrator.phase.value})"
        )


async def _begin_submit(orchestrator: MirrorOrchestrator, identifier: str, wait: bool) -> SessionView:
    if orchestrator.phase != Phase.INPUT:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Submission not accepted in phase {orchestrator.phase.value}"
        )

    _spawn(orchestrator.submit(identifier))
    # Let the submission run up to its first suspension point
    await asyncio.sleep(0)

    if wait and orchestrator.phase != Phase.INPUT:
        await _wait_for(orchestrator, *TERMINAL_PHASES)

    view = orchestrator.session.to_view()
    _sweep_sessions()
    return view


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse
    return RedirectResponse(url="/docs")


# =============================================================================
# Session Endpoints
# =============================================================================

@app.post("/sessions", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def open_session(payload: SessionStartPayload, wait: bool = False):
    """
    Open a verification session and run startup.

    - Same-device stored identity → AUTHORIZED immediately
    - Otherwise OBSERVING, then INPUT after the dwell time
    - `wait=true` returns once INPUT or AUTHORIZED is reached
    """
    _sweep_sessions()
    _make_room()

    session_id = uuid.uuid4().hex
    state.environments[session_id] = payload.environment

    orchestrator = MirrorOrchestrator(
        store=state.store,
        environment=lambda: state.environments.get(session_id, payload.environment),
        settings=state.settings,
        audit=state.audit,
        session_id=session_id,
    )
    state.sessions[session_id] = orchestrator
    _touch(session_id)

    _spawn(orchestrator.start())
    await asyncio.sleep(0)

    if wait:
        await _wait_for(orchestrator, Phase.INPUT, Phase.AUTHORIZED)
    return orchestrator.session.to_view()


@app.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str):
    """Current session snapshot."""
    return _get_session(session_id).session.to_view()


@app.put("/sessions/{session_id}/environment", status_code=status.HTTP_204_NO_CONTENT)
async def update_environment(session_id: str, environment: EnvironmentDescriptor):
    """Replace the environment facts read by later computations."""
    _get_session(session_id)
    state.environments[session_id] = environment
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/sessions/{session_id}/keys", response_model=SessionView)
async def key_press(session_id: str, payload: KeyPressPayload, wait: bool = False):
    """
    Ingest one key press.

    - Character keys become timing samples during INPUT
    - Enter submits the field value carried in `value`
    """
    orchestrator = _get_session(session_id)

    if payload.key in SUBMIT_KEYS:
        return await _begin_submit(orchestrator, payload.value or "", wait)

    orchestrator.key_down(payload.key)
    return orchestrator.session.to_view()


@app.post("/sessions/{session_id}/submit", response_model=SessionView)
async def submit(session_id: str, payload: SubmitPayload, wait: bool = False):
    """
    Submit the typed identifier.

    - Empty identifier: no-op, session stays in INPUT
    - Conflicting identity on this device: DIVERGENCE
    - Otherwise the analysis sequence runs to AUTHORIZED
    """
    orchestrator = _get_session(session_id)
    return await _begin_submit(orchestrator, payload.identifier, wait)


# =============================================================================
# Interaction Endpoints (HTTP 204)
# =============================================================================

@app.post("/sessions/{session_id}/pointer", status_code=status.HTTP_204_NO_CONTENT)
async def pointer(session_id: str, sample: PointerSample):
    """Ingest a pointer sample."""
    _get_session(session_id).pointer(sample)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/sessions/{session_id}/orientation", status_code=status.HTTP_204_NO_CONTENT)
async def orientation(session_id: str, sample: OrientationSample):
    """Ingest a device tilt sample (ignored unless sensing is enabled)."""
    _get_session(session_id).orientation(sample)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/sessions/{session_id}/orientation/permission")
async def orientation_permission(session_id: str, payload: OrientationPermission):
    """Record the tilt permission outcome; denial keeps pointer-only input."""
    enabled = _get_session(session_id).orientation_permission(payload.granted)
    return {"orientation_enabled": enabled}


# =============================================================================
# Render Loop
# =============================================================================

@app.post("/sessions/{session_id}/frame", response_model=FrameView)
async def frame(session_id: str, payload: FramePayload):
    """
    Per-frame hook driven by the shell's render loop.

    Decays the typing pulse and returns the phase, pulse, influence vector
    and (once AUTHORIZED) the card tilt.
    """
    return _get_session(session_id).frame(payload.elapsed, payload.delta)


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)

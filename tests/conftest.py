"""
Mirror Test Suite - Shared Pytest Fixtures

This conftest.py provides fixtures for all test categories including:
- An in-memory stand-in for the Redis client used by the identity store
- Desktop and mobile environment descriptors
- A deterministic clock and orchestrator factory

Usage:
    pytest tests/ -v -s
"""

import random
from typing import Dict, Iterable, List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from core.config import MirrorSettings
from core.orchestrator import MirrorOrchestrator
from core.presentation import TimelinePresenter
from core.processors.keyboard import InteractionMetrics
from core.schemas.inputs import EnvironmentDescriptor
from persistence.identity_store import IdentityStore


DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
ANDROID_UA = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)


# =============================================================================
# Test Doubles
# =============================================================================

class InMemoryRedis:
    """
    Dict-backed object with the subset of the Redis client API the
    identity store uses. `fail_reads` / `fail_writes` simulate outages.
    """

    def __init__(self) -> None:
        self.data: Dict[str, str] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        if self.fail_reads:
            raise RedisConnectionError("simulated read outage")
        return self.data.get(key)

    def set(self, key: str, value: str) -> bool:
        if self.fail_writes:
            raise RedisConnectionError("simulated write outage")
        self.writes += 1
        self.data[key] = value
        return True

    def delete(self, *keys: str) -> int:
        if self.fail_writes:
            raise RedisConnectionError("simulated write outage")
        return sum(1 for k in keys if self.data.pop(k, None) is not None)


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


# =============================================================================
# Helpers
# =============================================================================

def make_env(
    user_agent: str = DESKTOP_UA,
    width: int = 1920,
    height: int = 1080,
    timezone: str = "Asia/Kolkata",
    language: str = "en-US",
) -> EnvironmentDescriptor:
    """Build an environment descriptor with sensible defaults."""
    return EnvironmentDescriptor(
        user_agent=user_agent,
        screen_width=width,
        screen_height=height,
        timezone=timezone,
        language=language,
    )


def make_metrics(
    timestamps: Iterable[float],
    input_start: Optional[float] = 0.0,
    total_duration: float = 0.0,
) -> InteractionMetrics:
    """Build finalized interaction metrics from keystroke timestamps."""
    ts: List[float] = list(timestamps)
    return InteractionMetrics(
        first_keystroke_time=ts[0] if ts else None,
        input_start_time=input_start,
        keystroke_timestamps=ts,
        total_duration=total_duration,
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def env() -> EnvironmentDescriptor:
    return make_env()


@pytest.fixture
def memory_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def identity_store(memory_redis) -> IdentityStore:
    """Identity store backed by the in-memory client."""
    return IdentityStore(client=memory_redis, profile="test")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def presenter() -> TimelinePresenter:
    """Presenter whose stages resolve immediately."""
    return TimelinePresenter(time_scale=0)


@pytest.fixture
def settings() -> MirrorSettings:
    return MirrorSettings(observe_dwell=0.0, time_scale=0.0)


@pytest.fixture
def make_orchestrator(identity_store, presenter, settings, clock, env):
    """
    Factory for orchestrators wired to the in-memory store.

    Usage:
        orchestrator = make_orchestrator()
        orchestrator = make_orchestrator(environment=lambda: other_env)
    """
    def _make(**overrides) -> MirrorOrchestrator:
        kwargs = dict(
            store=identity_store,
            environment=lambda: env,
            presenter=presenter,
            settings=settings,
            clock=clock,
            rng=random.Random(7),
        )
        kwargs.update(overrides)
        return MirrorOrchestrator(**kwargs)

    return _make

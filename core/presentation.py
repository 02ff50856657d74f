"""
Mirror Presentation Contract

The orchestrator drives visuals through a `Presenter`. Every stage method
is awaitable and resolves when its declared visual sequence finishes; the
orchestrator never mutates the phase while a stage is still in flight.

`TimelinePresenter` is the headless implementation: each stage resolves
after its declared duration scaled by `time_scale` (0 resolves on the next
loop iteration). Browser renderers implement the same protocol.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Tuple

from core.schemas.outputs import AccessCard, Phase


logger = logging.getLogger(__name__)


class Presenter(Protocol):
    """Visual layer consumed by the orchestrator."""

    async def observe(self) -> None: ...
    async def reveal_input(self) -> None: ...
    async def begin_analysis(self) -> None: ...
    async def split(self) -> None: ...
    async def converge(self, score: float) -> None: ...
    async def form_crystal(self) -> None: ...
    async def reveal_card(self, card: AccessCard) -> None: ...
    async def resume(self, card: AccessCard) -> None: ...
    async def diverge(self) -> None: ...

    def update(
        self, elapsed: float, delta: float, phase: Phase, influence: Tuple[float, float]
    ) -> None: ...


# Stage durations (seconds) of the reference timelines
STAGE_DURATIONS: Dict[str, float] = {
    "observe": 2.0,         # observing text fade-in
    "reveal_input": 2.5,    # input zone materializes, then focus
    "begin_analysis": 1.5,  # input zone out, analysis HUD in
    "split": 1.5,           # organism splits into mirrored halves
    "converge": 2.5,        # halves merge, coherence counter runs
    "form_crystal": 3.5,    # nodes collapse, crystal grows, camera push
    "reveal_card": 3.5,     # crystal fractures into the access card
    "resume": 2.0,          # stored card fades in
    "diverge": 0.9,         # red shake + rejection overlay
}


class TimelinePresenter:
    """
    Headless presenter resolving stages on a timer.

    Keeps a `history` of played stages and the last per-frame tuple.
    """

    def __init__(self, time_scale: float = 1.0) -> None:
        self.time_scale = max(0.0, time_scale)
        self.history: List[str] = []
        self.last_frame: Optional[Tuple[float, float, Phase, Tuple[float, float]]] = None
        self.coherence_display: Optional[str] = None
        self.card: Optional[AccessCard] = None

    async def _run(self, stage: str) -> None:
        self.history.append(stage)
        duration = STAGE_DURATIONS[stage] * self.time_scale
        logger.debug(f"Stage {stage} started ({duration:.2f}s)")
        await asyncio.sleep(duration)

    async def observe(self) -> None:
        await self._run("observe")

    async def reveal_input(self) -> None:
        await self._run("reveal_input")

    async def begin_analysis(self) -> None:
        await self._run("begin_analysis")

    async def split(self) -> None:
        await self._run("split")

    async def converge(self, score: float) -> None:
        await self._run("converge")
        self.coherence_display = f"{round(score)}%"

    async def form_crystal(self) -> None:
        await self._run("form_crystal")

    async def reveal_card(self, card: AccessCard) -> None:
        self.card = card
        await self._run("reveal_card")

    async def resume(self, card: AccessCard) -> None:
        self.card = card
        await self._run("resume")

    async def diverge(self) -> None:
        await self._run("diverge")

    def update(
        self, elapsed: float, delta: float, phase: Phase, influence: Tuple[float, float]
    ) -> None:
        self.last_frame = (elapsed, delta, phase, influence)

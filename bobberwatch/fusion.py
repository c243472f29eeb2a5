"""
bobberwatch/fusion.py - One strike flag out of all the motion signals.
"""

from dataclasses import dataclass
from typing import Optional

from .motion import SPLASH_VOTES

SPLASH_GATE_SECONDS = 0.450

STRONG_MICRO_Z_DY = 2.0
STRONG_MICRO_Z_RIPPLE = 1.5
STRONG_MICRO_DY_PX = 2.0
RIPPLE_SPIKE_ENERGY = 0.65


@dataclass(frozen=True)
class FusionInputs:
    votes: int = 0
    micro_fired: bool = False
    z_dy: float = 0.0
    z_ripple: float = 0.0
    dy: float = 0.0
    ripple_energy: float = 0.0


@dataclass(frozen=True)
class FusionDecision:
    hook: bool = False
    splash: bool = False
    strong_micro: bool = False
    ripple_spike: bool = False
    gate_open: bool = False
    gate_expires_at: Optional[float] = None


class EventFusionGate:
    """
    hook = splash votes >= 2 OR strong micro OR ripple spike OR gate open

    The gate is (re)opened by a splash vote or a micro-motion fire and stays
    open for 450 ms, so a bite that only shows up in one or two frames still
    holds the hook flag long enough for the caller to react.
    """

    def __init__(self, window: float = SPLASH_GATE_SECONDS) -> None:
        self.window = window
        self.last_open: Optional[float] = None

    def open(self, now: float) -> None:
        self.last_open = now

    def is_open(self, now: float) -> bool:
        return self.last_open is not None and (now - self.last_open) <= self.window

    @property
    def expires_at(self) -> Optional[float]:
        if self.last_open is None:
            return None
        return self.last_open + self.window

    def evaluate(self, inputs: FusionInputs, now: float) -> FusionDecision:
        splash = inputs.votes >= SPLASH_VOTES
        if splash or inputs.micro_fired:
            self.open(now)

        strong_micro = (
            inputs.micro_fired
            or inputs.z_dy > STRONG_MICRO_Z_DY
            or inputs.z_ripple > STRONG_MICRO_Z_RIPPLE
            or abs(inputs.dy) >= STRONG_MICRO_DY_PX
        )
        ripple_spike = inputs.ripple_energy > RIPPLE_SPIKE_ENERGY
        gate_open = self.is_open(now)

        return FusionDecision(
            hook=splash or strong_micro or ripple_spike or gate_open,
            splash=splash,
            strong_micro=strong_micro,
            ripple_spike=ripple_spike,
            gate_open=gate_open,
            gate_expires_at=self.expires_at
        )

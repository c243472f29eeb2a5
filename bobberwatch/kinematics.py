"""
bobberwatch/kinematics.py - Derivative chain on the marker's vertical position.

velocity -> acceleration -> jerk, each a plain backward difference over the
wall-clock interval between calls. A bite yanks the float down hard, which
shows up as a spike in acceleration or jerk long before the float is gone.
"""

from dataclasses import dataclass
from typing import Optional

ACCEL_THRESHOLD = 220.0     # px/s^2
JERK_THRESHOLD = 5000.0     # px/s^3
FALLBACK_DT = 1.0 / 60.0    # first call, nothing to diff against
MIN_DT = 0.001              # clamp so a double call can't blow up the division


@dataclass
class KinematicSample:
    velocity: float = 0.0
    acceleration: float = 0.0
    jerk: float = 0.0
    dt: float = FALLBACK_DT
    signal: bool = False


class KinematicDifferentiator:
    # Holds last y / velocity / acceleration / timestamp between frames

    def __init__(self) -> None:
        self.last_y: float = 0.0
        self.last_velocity: float = 0.0
        self.last_acceleration: float = 0.0
        self.last_timestamp: Optional[float] = None
        self.initialized: bool = False

    def reset(self) -> None:
        self.last_y = 0.0
        self.last_velocity = 0.0
        self.last_acceleration = 0.0
        self.last_timestamp = None
        self.initialized = False

    def update(self, y: float, now: float) -> KinematicSample:
        if not self.initialized:
            # No history yet: report a flat sample and seed the state
            self.last_y = y
            self.last_velocity = 0.0
            self.last_acceleration = 0.0
            self.last_timestamp = now
            self.initialized = True
            return KinematicSample()

        dt = max(MIN_DT, now - self.last_timestamp)
        velocity = (y - self.last_y) / dt
        acceleration = (velocity - self.last_velocity) / dt
        jerk = (acceleration - self.last_acceleration) / dt
        signal = abs(acceleration) > ACCEL_THRESHOLD or abs(jerk) > JERK_THRESHOLD

        self.last_y = y
        self.last_velocity = velocity
        self.last_acceleration = acceleration
        self.last_timestamp = now

        return KinematicSample(
            velocity=velocity,
            acceleration=acceleration,
            jerk=jerk,
            dt=dt,
            signal=signal
        )

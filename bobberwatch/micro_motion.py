"""
bobberwatch/micro_motion.py - Sub-pixel bobbing and local ripple.

A nibble rarely moves the float more than a pixel or two, and the water
barely ripples. Fixed thresholds either miss that or fire on every wave, so
both measurements are compared against the session's own recent history:

  dy      - vertical lag (px) between the previous and current 36x36 window
  ripple  - mean |radial flow| in a fixed 20..44 px ring around the float

|dy| is scored against a rolling mean/std of the last 60 samples; ripple is
scored as its excess over an EMA baseline. A hysteresis gate plus a 600 ms
cooldown turn those scores into discrete "fired" events.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Iterator, Optional, Tuple

import cv2
import numpy as np

from .motion import AnnulusCrop, dense_flow, radial_flow_energy

MICRO_HALF = 18                 # window 36x36 around the float
MICRO_BLUR = (3, 3)
MIN_WINDOW = 6                  # windows this thin are useless
MAX_LAG = 4
MIN_SLICE_ROWS = 4              # each compared slice needs more rows than this

RIPPLE_R0 = 20
RIPPLE_R1 = 44
RIPPLE_FLOW_PARAMS = (0.5, 2, 13, 2, 5, 1.1, 0)

EMA_ALPHA = 0.15
HISTORY_SIZE = 60

DY_Z_ON = 2.0
DY_Z_OFF = 1.0
RIPPLE_Z_ON = 2.2
RIPPLE_Z_OFF = 1.2
COOLDOWN_SECONDS = 0.600

STD_EPS = 1e-6
EMA_EPS = 1e-3


def _lag_order(max_shift: int) -> Iterator[int]:
    # 0, -1, 1, -2, 2 ... so ties go to the smaller shift
    yield 0
    for k in range(1, max_shift + 1):
        yield -k
        yield k


def estimate_vertical_lag(prev: np.ndarray, curr: np.ndarray, max_lag: int = MAX_LAG) -> int:
    """
    Row shift that best aligns `curr` with `prev` (positive = moved down).

    Compares curr[lag:] with prev[:-lag] (and the mirror for negative lags)
    with normalized cross-correlation. Returns 0 when shapes differ or no lag
    leaves enough rows to compare.
    """
    if prev.shape != curr.shape:
        return 0
    rows = curr.shape[0]
    max_shift = min(max_lag, rows // 8)

    best = float("-inf")
    best_lag = 0
    for lag in _lag_order(max_shift):
        now_slice = curr[max(0, lag):min(rows, rows + lag)]
        prev_slice = prev[max(0, -lag):min(rows, rows - lag)]
        if now_slice.shape[0] <= MIN_SLICE_ROWS or prev_slice.shape[0] <= MIN_SLICE_ROWS:
            continue
        corr = float(cv2.matchTemplate(now_slice, prev_slice, cv2.TM_CCORR_NORMED)[0, 0])
        if not np.isfinite(corr):
            continue
        if corr > best:
            best = corr
            best_lag = lag
    return best_lag


class RollingStats:
    # Bounded FIFO with population mean/std

    def __init__(self, capacity: int = HISTORY_SIZE) -> None:
        self._values: Deque[float] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._values)

    @property
    def capacity(self) -> int:
        return self._values.maxlen

    def push(self, value: float) -> None:
        self._values.append(value)

    def mean(self) -> float:
        if not self._values:
            return 0.0
        return float(np.mean(self._values))

    def std(self) -> float:
        if not self._values:
            return 0.0
        return float(np.std(self._values))

    def zscore(self, value: float) -> float:
        std = self.std()
        if std <= STD_EPS:
            return 0.0
        return (value - self.mean()) / std


class MicroGate:
    """
    Hysteresis latch with a fire cooldown.

    Off: needs zDy >= 2.0 or zRipple >= 2.2 to qualify.
    On:  stays qualified down to zDy >= 1.0 or zRipple >= 1.2.
    A qualifying frame fires only if the last fire is at least 600 ms old;
    a frame that doesn't qualify clears the latch.
    """

    def __init__(self, cooldown: float = COOLDOWN_SECONDS) -> None:
        self.cooldown = cooldown
        self.on: bool = False
        self.last_fire: Optional[float] = None

    def in_cooldown(self, now: float) -> bool:
        return self.last_fire is not None and (now - self.last_fire) < self.cooldown

    @property
    def cooldown_until(self) -> Optional[float]:
        if self.last_fire is None:
            return None
        return self.last_fire + self.cooldown

    def update(self, z_dy: float, z_ripple: float, now: float) -> bool:
        dy_gate = z_dy >= (DY_Z_OFF if self.on else DY_Z_ON)
        ripple_gate = z_ripple >= (RIPPLE_Z_OFF if self.on else RIPPLE_Z_ON)
        qualifies = dy_gate or ripple_gate

        fire = qualifies and not self.in_cooldown(now)
        if fire:
            self.on = True
            self.last_fire = now
        elif not qualifies:
            self.on = False
        return fire


@dataclass
class MicroMotionState:
    previous_window: Optional[np.ndarray] = None
    history: RollingStats = field(default_factory=RollingStats)
    ema_dy: float = 0.0
    ema_ripple: float = 0.0
    gate: MicroGate = field(default_factory=MicroGate)


@dataclass
class MicroMotionResult:
    fired: bool = False
    z_dy: float = 0.0
    z_ripple: float = 0.0
    dy: float = 0.0
    ripple_energy: float = 0.0
    gate_on: bool = False
    cooldown_until: Optional[float] = None


def _ema(old: float, sample: float) -> float:
    return (1.0 - EMA_ALPHA) * old + EMA_ALPHA * sample


class MicroMotionAnalyzer:

    def analyze(
        self,
        gray: np.ndarray,
        center: Tuple[float, float],
        ring: AnnulusCrop,
        state: MicroMotionState,
        now: float
    ) -> MicroMotionResult:
        h_img, w_img = gray.shape[:2]
        x0 = max(0, int(center[0]) - MICRO_HALF)
        y0 = max(0, int(center[1]) - MICRO_HALF)
        w = min(w_img - x0, 2 * MICRO_HALF)
        h = min(h_img - y0, 2 * MICRO_HALF)
        if w <= MIN_WINDOW or h <= MIN_WINDOW:
            return MicroMotionResult(gate_on=state.gate.on, cooldown_until=state.gate.cooldown_until)

        window = cv2.GaussianBlur(gray[y0:y0 + h, x0:x0 + w], MICRO_BLUR, 0)

        dy = 0.0
        prev = state.previous_window
        if prev is not None and prev.shape == window.shape:
            dy = float(estimate_vertical_lag(prev, window))

        ripple = 0.0
        if ring.comparable:
            flow = dense_flow(ring.previous, ring.current, RIPPLE_FLOW_PARAMS)
            ripple = radial_flow_energy(flow, RIPPLE_R0, RIPPLE_R1)

        state.ema_dy = _ema(state.ema_dy, abs(dy))
        state.ema_ripple = _ema(state.ema_ripple, ripple)
        state.history.push(abs(dy))

        z_dy = state.history.zscore(abs(dy))
        # Relative excess over the baseline, not a true z-score
        z_ripple = ripple / state.ema_ripple - 1.0 if state.ema_ripple >= EMA_EPS else 0.0

        fired = state.gate.update(z_dy, z_ripple, now)
        state.previous_window = window

        return MicroMotionResult(
            fired=fired,
            z_dy=z_dy,
            z_ripple=z_ripple,
            dy=dy,
            ripple_energy=ripple,
            gate_on=state.gate.on,
            cooldown_until=state.gate.cooldown_until
        )

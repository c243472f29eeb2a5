"""
bobberwatch/motion.py - Splash detection in a ring around the marker.

The ring [r0, r1] skips the float's own body and samples the water right
around it. Two signals come out of the same pair of crops:

  flow  - mean |radial component| of dense Farneback flow inside the ring
  diff  - share of pixels whose blurred intensity moved by more than 24/255

Together with the kinematic jerk flag they form the splash vote (0-3).
"""

import cv2
import numpy as np
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .kinematics import KinematicSample

RING_INNER_FACTOR = 0.55    # r0 = factor * max(match w, h)
RING_WIDTH = 24             # r1 = r0 + width
FLOW_THRESHOLD = 0.55       # px/frame, mean |radial|
DIFF_BLUR = (5, 5)
DIFF_LEVEL = 24
DIFF_ACTIVE_RATIO = 0.10
SPLASH_VOTES = 2

# Farneback: pyr_scale, levels, winsize, iterations, poly_n, poly_sigma, flags
SPLASH_FLOW_PARAMS = (0.5, 2, 15, 3, 5, 1.2, 0)


def crop_square(gray: np.ndarray, cx: float, cy: float, half: int) -> np.ndarray:
    """Window of side 2*half centred on (cx, cy), clipped to the image."""
    h, w = gray.shape[:2]
    x0 = max(0, int(cx - half))
    y0 = max(0, int(cy - half))
    x1 = min(w, int(cx - half) + 2 * half)
    y1 = min(h, int(cy - half) + 2 * half)
    if x1 <= x0 or y1 <= y0:
        return gray[0:0, 0:0]
    return gray[y0:y1, x0:x1].copy()


def dense_flow(prev: np.ndarray, curr: np.ndarray,
               params: Tuple = SPLASH_FLOW_PARAMS) -> np.ndarray:
    return cv2.calcOpticalFlowFarneback(prev, curr, None, *params)


def radial_flow_energy(flow: np.ndarray, r0: float, r1: float) -> float:
    """
    Mean absolute radial flow for pixels whose distance from the crop centre
    lies in [r0, r1]. 0.0 if the ring holds no pixels.
    """
    h, w = flow.shape[:2]
    ys, xs = np.mgrid[0:h, 0:w].astype(np.float32)
    dx = xs - w / 2.0
    dy = ys - h / 2.0
    norm = np.sqrt(dx * dx + dy * dy)
    ring = (norm >= r0) & (norm <= r1)
    if not ring.any():
        return 0.0
    radial = (flow[:, :, 0] * dx + flow[:, :, 1] * dy) / (norm + 1e-6)
    return float(np.mean(np.abs(radial[ring])))


def ring_radii(match_w: int, match_h: int) -> Tuple[int, int]:
    r0 = int(max(match_w, match_h) * RING_INNER_FACTOR)
    return r0, r0 + RING_WIDTH


@dataclass
class AnnulusCrop:
    # Previous and current ring window, shared read-only with the micro-motion analyzer
    previous: Optional[np.ndarray] = None
    current: Optional[np.ndarray] = None

    @property
    def comparable(self) -> bool:
        return (self.previous is not None and self.current is not None
                and self.current.size > 0 and self.previous.shape == self.current.shape)


@dataclass
class AnnularSignals:
    jerk: bool = False
    flow: bool = False
    diff: bool = False
    radial_mean: float = 0.0
    active_ratio: float = 0.0
    r0: int = 0
    r1: int = 0
    kinematics: KinematicSample = field(default_factory=KinematicSample)
    crops: AnnulusCrop = field(default_factory=AnnulusCrop)

    @property
    def votes(self) -> int:
        return int(self.jerk) + int(self.flow) + int(self.diff)

    @property
    def splash(self) -> bool:
        return self.votes >= SPLASH_VOTES


class AnnularMotionAnalyzer:
    """
    Stateless: the previous ring crop comes in, the current one goes out in
    `signals.crops.current` and the caller decides where to keep it.
    """

    def analyze(
        self,
        gray: np.ndarray,
        center: Tuple[float, float],
        match_size: Tuple[int, int],
        previous: Optional[np.ndarray],
        kinematics: Optional[KinematicSample] = None
    ) -> AnnularSignals:
        r0, r1 = ring_radii(*match_size)
        kin = kinematics or KinematicSample()
        current = crop_square(gray, center[0], center[1], r1)
        crops = AnnulusCrop(previous=previous, current=current)
        signals = AnnularSignals(jerk=kin.signal, r0=r0, r1=r1, kinematics=kin, crops=crops)

        if not crops.comparable:
            # First frame or the ring changed size: no flow/diff this time
            return signals

        flow = dense_flow(previous, current)
        signals.radial_mean = radial_flow_energy(flow, r0, r1)
        signals.flow = signals.radial_mean > FLOW_THRESHOLD

        now_blur = cv2.GaussianBlur(current, DIFF_BLUR, 0)
        prev_blur = cv2.GaussianBlur(previous, DIFF_BLUR, 0)
        delta = cv2.absdiff(now_blur, prev_blur)
        _, active = cv2.threshold(delta, DIFF_LEVEL, 255, cv2.THRESH_BINARY)
        signals.active_ratio = cv2.countNonZero(active) / float(current.size)
        signals.diff = signals.active_ratio > DIFF_ACTIVE_RATIO
        return signals

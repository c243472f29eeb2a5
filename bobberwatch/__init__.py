"""
bobberwatch package - Float tracking and strike detection

vision.py       - Screen capture (mss), template store and the masked locator
kinematics.py   - y(t) -> velocity/acceleration/jerk with the jerk vote
motion.py       - Splash ring: radial optical flow + frame difference
micro_motion.py - Sub-pixel bob and ripple against adaptive baselines
fusion.py       - Splash gate and the final strike flag
detector.py     - StrikeDetector: the per-frame pipeline and its results
reporter.py     - Per-frame CSV/JSONL session telemetry
ui.py           - Rich terminal dashboard
config.py       - Typed configuration dataclasses
"""

from .vision import Region, Frame, ScreenCapture, Template, TemplateLocator, load_template
from .detector import StrikeDetector, DetectionResult, VerboseDetectionResult, TrackingState
from .reporter import FrameReporter
from .ui import Dashboard, Stats, make_logger
from .config import AppConfig, DetectorConfig, load_config

__all__ = [
    "Region", "Frame", "ScreenCapture", "Template", "TemplateLocator", "load_template",
    "StrikeDetector", "DetectionResult", "VerboseDetectionResult", "TrackingState",
    "FrameReporter",
    "Dashboard", "Stats", "make_logger",
    "AppConfig", "DetectorConfig", "load_config"
]

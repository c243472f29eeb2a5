"""
bobberwatch/config.py - The Knobs and Dials

Everything the live monitor reads from config.yaml lives here. The detector
toggles are frozen on purpose: flip them in the YAML and hot-reload, and a
fresh detector gets built with a fresh session.

Defaults are the boring, debuggable baseline. Opt up from there.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


# ═══════════════════════════════════════════════════════════════════════════════
# CAPTURE - Where to Look
# ═══════════════════════════════════════════════════════════════════════════════
#
# The region is in pixels relative to the selected monitor's top-left corner;
# an unknown monitor index falls back to absolute. Keep it tight around the water
# where the float lands - every extra pixel is extra matching work.
#

@dataclass
class CaptureConfig:
    # Fishing region of interest
    region_x: int = 760
    region_y: int = 340
    region_width: int = 400
    region_height: int = 300

    # Monitor selection: 0=all, 1=primary, 2+=specific
    monitor: int = 1

    # Loop pacing. The detector is duration-based, so jitter here is fine.
    # 30 is plenty; above 60 you just burn CPU.
    target_fps: int = 30


# ═══════════════════════════════════════════════════════════════════════════════
# MATCHING - Finding the Float
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class MatchingConfig:
    # Minimum correlation to call the float "found". 0.5 works for the
    # stock template; raise it if it locks onto foam.
    confidence_threshold: float = 0.5

    # Empty = search data/images/bobber_in_water.png and friends
    template_path: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# DETECTOR MODULES - What Gets Computed
# ═══════════════════════════════════════════════════════════════════════════════
#
# All off = template search plus splash ring only. Turn things on one at a
# time and watch the dashboard before trusting them.
#

@dataclass(frozen=True)
class DetectorConfig:
    multi_scale_search: bool = False   # 0.6x-1.2x scale ladder
    gradient_fallback: bool = False    # Canny edge channel rescue
    equalize_luminance: bool = False   # CLAHE before matching
    micro_motion: bool = False         # sub-pixel bob + ripple baselines
    kinematics: bool = False           # jerk vote from y(t)
    color_gate: bool = False           # red-paint check, diagnostics only

    @classmethod
    def template_only(cls) -> "DetectorConfig":
        return cls()

    @classmethod
    def signal_enhanced(cls) -> "DetectorConfig":
        return cls(
            multi_scale_search=True,
            gradient_fallback=True,
            equalize_luminance=True,
            micro_motion=True,
            kinematics=True,
            color_gate=True
        )

    @property
    def preset_name(self) -> str:
        if self == DetectorConfig.template_only():
            return "template-only"
        if self == DetectorConfig.signal_enhanced():
            return "signal-enhanced"
        return "custom"


# ═══════════════════════════════════════════════════════════════════════════════
# REPORTING - Per-Frame Telemetry
# ═══════════════════════════════════════════════════════════════════════════════
#
# CSV + JSONL, one row per frame. Great for tuning, terrible for your disk
# if you leave it on overnight.
#

@dataclass
class ReportConfig:
    enabled: bool = False
    output_dir: str = "analysis_output"
    session_name: str = ""


@dataclass
class UIConfig:
    # Dashboard refresh rate. 100ms is smooth. Higher = choppier but less CPU.
    refresh_rate_ms: int = 100
    night_mode_hour: int = 20


@dataclass
class HotkeysConfig:
    stop_bot: str = "f10"
    pause_bot: str = "f9"
    reload_bot: str = "f5"
    # Flip between template-only and signal-enhanced at runtime
    cycle_preset: str = "f8"


@dataclass
class VisualConfig:
    # Saves an annotated PNG for every detected frame under logs/debug
    debug_mode: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# MASTER CONFIG
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class AppConfig:
    """
    Everything bundled together. Don't instantiate this manually -
    use load_config() which deals with partial and broken YAML for you.
    """
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    hotkeys: HotkeysConfig = field(default_factory=HotkeysConfig)
    visual: VisualConfig = field(default_factory=VisualConfig)


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIG LOADER
# ═══════════════════════════════════════════════════════════════════════════════

# Written to config.yaml on first run
DEFAULT_CONFIG = """
# BobberWatch Configuration

capture:
  region:          # pixels relative to the selected monitor
    x: 760
    y: 340
    width: 400
    height: 300
  monitor: 1       # 0=all, 1=primary, 2+=specific
  target_fps: 30

matching:
  confidence_threshold: 0.5
  template_path: ""  # empty = data/images/bobber_in_water.png

detector:
  preset: "template-only"  # template-only, signal-enhanced
  # Per-module overrides (uncomment to force)
  # multi_scale_search: true
  # gradient_fallback: true
  # equalize_luminance: true
  # micro_motion: true
  # kinematics: true
  # color_gate: false

report:
  enabled: false
  output_dir: "analysis_output"
  session_name: ""

hotkeys:
  pause_bot: "f9"
  stop_bot: "f10"
  reload_bot: "f5"
  cycle_preset: "f8"

visual:
  debug_mode: false

ui:
  refresh_rate_ms: 100
  night_mode_hour: 20
"""


def _get(data: dict, *keys, default=None):
    """Drill into nested dicts without KeyError explosions."""
    for key in keys:
        if not isinstance(data, dict):
            return default
        data = data.get(key)
        if data is None:
            return default
    return data


def load_config(path: str = "config.yaml") -> AppConfig:
    """
    Load config from YAML. Missing file = all defaults. Missing keys = defaults.
    """
    config_path = Path(path)

    if not config_path.exists():
        return AppConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return AppConfig()  # Malformed YAML fallback.

    if not isinstance(data, dict):
        return AppConfig()

    capture = CaptureConfig(
        region_x=_get(data, "capture", "region", "x", default=760),
        region_y=_get(data, "capture", "region", "y", default=340),
        region_width=_get(data, "capture", "region", "width", default=400),
        region_height=_get(data, "capture", "region", "height", default=300),
        monitor=_get(data, "capture", "monitor", default=1),
        target_fps=_get(data, "capture", "target_fps", default=30)
    )

    matching = MatchingConfig(
        confidence_threshold=_get(data, "matching", "confidence_threshold", default=0.5),
        template_path=_get(data, "matching", "template_path", default="")
    )

    preset = _get(data, "detector", "preset", default="")
    if preset == "signal-enhanced":
        base = DetectorConfig.signal_enhanced()
    else:
        base = DetectorConfig.template_only()

    detector = DetectorConfig(
        multi_scale_search=_get(data, "detector", "multi_scale_search", default=base.multi_scale_search),
        gradient_fallback=_get(data, "detector", "gradient_fallback", default=base.gradient_fallback),
        equalize_luminance=_get(data, "detector", "equalize_luminance", default=base.equalize_luminance),
        micro_motion=_get(data, "detector", "micro_motion", default=base.micro_motion),
        kinematics=_get(data, "detector", "kinematics", default=base.kinematics),
        color_gate=_get(data, "detector", "color_gate", default=base.color_gate)
    )

    report = ReportConfig(
        enabled=_get(data, "report", "enabled", default=False),
        output_dir=_get(data, "report", "output_dir", default="analysis_output"),
        session_name=_get(data, "report", "session_name", default="")
    )

    ui = UIConfig(
        refresh_rate_ms=_get(data, "ui", "refresh_rate_ms", default=100),
        night_mode_hour=_get(data, "ui", "night_mode_hour", default=20)
    )

    hotkeys = HotkeysConfig(
        stop_bot=_get(data, "hotkeys", "stop_bot", default="f10"),
        pause_bot=_get(data, "hotkeys", "pause_bot", default="f9"),
        reload_bot=_get(data, "hotkeys", "reload_bot", default="f5"),
        cycle_preset=_get(data, "hotkeys", "cycle_preset", default="f8")
    )

    return AppConfig(
        capture=capture,
        matching=matching,
        detector=detector,
        report=report,
        ui=ui,
        hotkeys=hotkeys,
        visual=VisualConfig(
            debug_mode=_get(data, "visual", "debug_mode", default=False)
        )
    )

"""
bobberwatch/detector.py - The strike detector.

Per frame:
    capture -> locate float -> (if found) kinematics + splash ring + micro-motion
            -> fusion gate -> result

Nothing escapes `detect*` as an exception. Capture, template and geometry
failures come back as a not-detected result with a reason string; anything
unexpected is caught at the boundary and reported the same way.

One detector = one session. Calls mutate `TrackingState` in place, so feed
frames from one thread only.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

import cv2
import numpy as np

from .config import DetectorConfig
from .fusion import EventFusionGate, FusionDecision, FusionInputs
from .kinematics import KinematicDifferentiator, KinematicSample
from .micro_motion import MicroMotionAnalyzer, MicroMotionResult, MicroMotionState
from .motion import AnnularMotionAnalyzer, AnnularSignals
from .reporter import FrameReporter
from .vision import (
    DEFAULT_TEMPLATE, Frame, LocatorMatch, Region, ScreenCapture, Template,
    TemplateError, TemplateLocator, color_gate, load_template, patch_std,
    resolve_template_path, save_debug,
)

FrameSource = Callable[[Region], Optional[np.ndarray]]


@dataclass
class TrackingState:
    # Everything that survives from one frame to the next
    kinematics: KinematicDifferentiator = field(default_factory=KinematicDifferentiator)
    previous_annulus: Optional[np.ndarray] = None
    micro: MicroMotionState = field(default_factory=MicroMotionState)
    fusion: EventFusionGate = field(default_factory=EventFusionGate)


@dataclass(frozen=True)
class DetectionResult:
    detected: bool = False
    score: float = 0.0
    x: float = 0.0
    y: float = 0.0
    width: int = 0
    height: int = 0
    scale: float = 1.0
    region: Optional[Region] = None
    jerk: bool = False
    flow: bool = False
    diff: bool = False
    votes: int = 0
    micro_move: bool = False
    z_dy: float = 0.0
    z_ripple: float = 0.0
    dy: float = 0.0
    ripple_energy: float = 0.0
    hook_detected: bool = False
    gate_open: bool = False
    reason: str = ""

    @property
    def ok(self) -> bool:
        return not self.reason

    @property
    def center(self):
        return self.x, self.y

    @classmethod
    def failed(cls, reason: str, region: Optional[Region] = None, **extra):
        return cls(detected=False, score=0.0, region=region, reason=reason or "Unknown failure", **extra)


@dataclass(frozen=True)
class VerboseDetectionResult(DetectionResult):
    bbox_x: int = 0
    bbox_y: int = 0
    intensity_score: float = 0.0
    gradient_score: float = 0.0
    mask_on_ratio: float = 0.0
    patch_std: float = 0.0
    color_gate_ok: Optional[bool] = None
    velocity: float = 0.0
    acceleration: float = 0.0
    jerk_value: float = 0.0
    radial_flow: float = 0.0
    diff_ratio: float = 0.0
    gate_expires_at: Optional[float] = None
    micro_gate_on: bool = False
    micro_cooldown_until: Optional[float] = None
    template_id: str = ""
    timestamp: float = 0.0

    def basic(self) -> DetectionResult:
        return DetectionResult(**{f: getattr(self, f) for f in DetectionResult.__dataclass_fields__})


@dataclass
class DiagnosticStep:
    description: str
    success: bool
    details: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class FrameDiagnostics:
    region: Region
    confidence_threshold: float
    started: datetime = field(default_factory=datetime.now)
    success: bool = False
    steps: List[DiagnosticStep] = field(default_factory=list)
    result: Optional[DetectionResult] = None

    def add_step(self, description: str, success: bool, details: str = "") -> None:
        self.steps.append(DiagnosticStep(description, success, details))

    def full_report(self) -> str:
        lines = [
            "=== FLOAT DETECTION DIAGNOSIS ===",
            f"Run at:    {self.started:%Y-%m-%d %H:%M:%S}",
            f"Region:    {self.region}",
            f"Threshold: {self.confidence_threshold:.3f}",
            f"Outcome:   {'OK' if self.success else 'FAILED'}",
            "",
            "Steps:",
        ]
        for step in self.steps:
            mark = "ok " if step.success else "ERR"
            lines.append(f"  [{mark}] {step.timestamp:%H:%M:%S} {step.description}")
            if step.details:
                lines.append(f"        {step.details}")
        if self.result is not None:
            r = self.result
            lines += ["", "Detection:", f"  detected={r.detected} score={r.score:.3f}"]
            if r.detected:
                lines.append(f"  position=({r.x:.1f}, {r.y:.1f})")
            if r.reason:
                lines.append(f"  reason={r.reason}")
        return "\n".join(lines)


class StrikeDetector:
    """
    Locates the float in a screen region and decides, frame by frame,
    whether something just took the bait.
    """

    def __init__(
        self,
        config: Optional[DetectorConfig] = None,
        template_path: Optional[str] = None,
        frame_source: Optional[FrameSource] = None,
        clock: Callable[[], float] = time.monotonic,
        reporter: Optional[FrameReporter] = None,
        debug_path: Optional[Path] = None,
        log_fn: Optional[Callable[[str, str], None]] = None
    ) -> None:
        self.config = config or DetectorConfig()
        self.template_path = template_path or ""
        self._source = frame_source or ScreenCapture()
        self._clock = clock
        self._reporter = reporter
        self._debug = debug_path
        self._log = log_fn or (lambda m, l: None)

        self._locator = TemplateLocator(
            multi_scale=self.config.multi_scale_search,
            gradient_fallback=self.config.gradient_fallback,
            equalize=self.config.equalize_luminance,
            log_fn=self._log
        )
        self._annular = AnnularMotionAnalyzer()
        self._micro = MicroMotionAnalyzer()
        self._templates: Dict[Path, Template] = {}

        self.state = TrackingState()
        self._last_failure = ""
        self._hook_latched = False

    # -- public contract ----------------------------------------------------

    def detect(self, region: Region, confidence_threshold: float = 0.5,
               template_path: Optional[str] = None) -> DetectionResult:
        return self.detect_verbose(region, confidence_threshold, template_path).basic()

    def detect_verbose(self, region: Region, confidence_threshold: float = 0.5,
                       template_path: Optional[str] = None) -> VerboseDetectionResult:
        now = self._clock()
        try:
            pixels = self._source(region)
        except Exception as e:
            return self._finish(self._failure(f"Capture failed: {e}", region, now))
        if pixels is None:
            return self._finish(self._failure("Capture returned no frame", region, now))
        return self._guarded(pixels, region, confidence_threshold, template_path, now)

    def detect_frame(self, pixels: np.ndarray, confidence_threshold: float = 0.5,
                     template_path: Optional[str] = None,
                     region: Optional[Region] = None) -> VerboseDetectionResult:
        """Same pipeline on a frame the caller already grabbed."""
        now = self._clock()
        if pixels is None:
            return self._finish(self._failure("Capture returned no frame", region, now))
        return self._guarded(pixels, region, confidence_threshold, template_path, now)

    def is_gate_open(self) -> bool:
        return self.state.fusion.is_open(self._clock())

    def reset_session(self) -> None:
        self.state = TrackingState()
        self._hook_latched = False
        self._log("Tracking session reset", "INFO")

    def load(self, template_path: Optional[str] = None) -> Template:
        """Resolve and decode a template (cached). Raises TemplateError."""
        path = resolve_template_path(template_path or self.template_path or None, DEFAULT_TEMPLATE)
        cached = self._templates.get(path)
        if cached is not None:
            return cached
        template = load_template(path)
        self._templates[path] = template
        w, h = template.size
        self._log(f"Template loaded: {path.name} ({w}x{h}, {'alpha' if template.has_alpha else 'derived'} mask)", "INFO")
        return template

    # -- pipeline -----------------------------------------------------------

    def _guarded(self, pixels, region, threshold, template_path, now) -> VerboseDetectionResult:
        try:
            pixels = np.asarray(pixels)
            if region is None:
                h, w = pixels.shape[:2] if pixels.ndim >= 2 else (0, 0)
                region = Region(0, 0, w, h)
            if pixels.size == 0 or pixels.ndim < 2:
                return self._finish(self._failure("Empty frame", region, now))
            frame = Frame.from_array(pixels, origin=(region.x, region.y), timestamp=now)
            template = self.load(template_path)
            result = self._process(frame, template, region, threshold, now)
        except TemplateError as e:
            result = self._failure(e.reason, region, now)
        except (ValueError, cv2.error) as e:
            result = self._failure(str(e) or "Geometry failure", region, now)
        except Exception as e:
            result = self._failure(f"Unexpected error: {e}", region, now, level="ERROR")
        return self._finish(result)

    def _process(self, frame: Frame, template: Template, region: Region,
                 threshold: float, now: float) -> VerboseDetectionResult:
        cfg = self.config
        match: LocatorMatch = self._locator.locate(frame, template)
        detected = match.score >= threshold
        cx, cy = match.center

        kin = KinematicSample()
        annular = AnnularSignals()
        micro = MicroMotionResult(gate_on=self.state.micro.gate.on,
                                  cooldown_until=self.state.micro.gate.cooldown_until)

        if detected:
            if cfg.kinematics:
                kin = self.state.kinematics.update(cy, now)

            annular = self._annular.analyze(
                frame.gray, (cx, cy), (match.width, match.height),
                self.state.previous_annulus, kin
            )
            if annular.crops.current is not None and annular.crops.current.size > 0:
                self.state.previous_annulus = annular.crops.current

            if cfg.micro_motion:
                micro = self._micro.analyze(frame.gray, (cx, cy), annular.crops, self.state.micro, now)

        decision: FusionDecision = self.state.fusion.evaluate(FusionInputs(
            votes=annular.votes,
            micro_fired=micro.fired,
            z_dy=micro.z_dy,
            z_ripple=micro.z_ripple,
            dy=micro.dy,
            ripple_energy=micro.ripple_energy
        ), now)

        if annular.splash:
            self._log(f"Splash @ ({cx:.0f},{cy:.0f}) votes={annular.votes} - gate open", "INFO")
        if micro.fired:
            self._log(f"Micro-move: zDy={micro.z_dy:.2f} zRipple={micro.z_ripple:.2f} dy={micro.dy:.0f}px", "INFO")
        if decision.hook and not self._hook_latched:
            self._log(f"STRIKE (votes={annular.votes}, score={match.score:.2f})", "STRIKE")
        self._hook_latched = decision.hook

        gate_ok = color_gate(frame, match) if (cfg.color_gate and detected) else None
        if detected and self._debug:
            save_debug(self._debug, frame, match, "float")

        return VerboseDetectionResult(
            detected=detected,
            score=float(match.score),
            x=float(cx),
            y=float(cy),
            width=match.width,
            height=match.height,
            scale=match.scale,
            region=region,
            jerk=annular.jerk,
            flow=annular.flow,
            diff=annular.diff,
            votes=annular.votes,
            micro_move=micro.fired,
            z_dy=micro.z_dy,
            z_ripple=micro.z_ripple,
            dy=micro.dy,
            ripple_energy=micro.ripple_energy,
            hook_detected=decision.hook,
            gate_open=decision.gate_open,
            bbox_x=match.x,
            bbox_y=match.y,
            intensity_score=match.intensity_score,
            gradient_score=match.gradient_score,
            mask_on_ratio=match.mask_on_ratio,
            patch_std=patch_std(frame, match),
            color_gate_ok=gate_ok,
            velocity=kin.velocity,
            acceleration=kin.acceleration,
            jerk_value=kin.jerk,
            radial_flow=annular.radial_mean,
            diff_ratio=annular.active_ratio,
            gate_expires_at=decision.gate_expires_at,
            micro_gate_on=micro.gate_on,
            micro_cooldown_until=micro.cooldown_until,
            template_id=template.path.name,
            timestamp=now
        )

    def _failure(self, reason: str, region: Optional[Region], now: float,
                 level: str = "WARN") -> VerboseDetectionResult:
        if reason != self._last_failure:
            self._log(reason, level)
        fusion = self.state.fusion
        return VerboseDetectionResult.failed(
            reason, region,
            gate_open=fusion.is_open(now),
            gate_expires_at=fusion.expires_at,
            timestamp=now
        )

    def _finish(self, result: VerboseDetectionResult) -> VerboseDetectionResult:
        self._last_failure = result.reason
        if self._reporter is not None:
            self._reporter.log_frame(result)
        return result

    # -- diagnostics --------------------------------------------------------

    def diagnose(self, region: Region, confidence_threshold: float = 0.5,
                 save_images: bool = False, output_dir: Path = Path("debug_output")) -> FrameDiagnostics:
        """Walk the pipeline step by step and record where it breaks."""
        diag = FrameDiagnostics(region=region, confidence_threshold=confidence_threshold)
        diag.add_step("Diagnosis started", True)
        try:
            pixels = self._source(region)
            if pixels is None:
                diag.add_step("Capture region", False, "Frame source returned nothing")
                return diag
            diag.add_step(f"Capture region ({pixels.shape[1]}x{pixels.shape[0]})", True)

            path = resolve_template_path(self.template_path or None, DEFAULT_TEMPLATE)
            if not path.is_file():
                diag.add_step("Template exists", False, f"Not found: {path}")
                return diag
            diag.add_step(f"Template exists ({path})", True)

            if pixels.size == 0:
                diag.add_step("Decode frame", False, "Frame is empty")
                return diag
            channels = 1 if pixels.ndim == 2 else pixels.shape[2]
            diag.add_step(f"Decode frame ({channels} channels)", True)

            raw = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
            if raw is None or raw.size == 0:
                diag.add_step("Decode template", False, "cv2.imread returned nothing")
                return diag
            diag.add_step(f"Decode template ({raw.shape[1]}x{raw.shape[0]})", True)

            if save_images:
                output_dir.mkdir(parents=True, exist_ok=True)
                stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                cv2.imwrite(str(output_dir / f"captured_{stamp}.png"), pixels)
                cv2.imwrite(str(output_dir / f"template_{stamp}.png"), raw)
                diag.add_step(f"Images saved to {output_dir}", True)

            result = self.detect_frame(pixels, confidence_threshold, region=region).basic()
            diag.add_step(f"Detection ran (score {result.score:.3f}, detected {result.detected})", result.ok,
                          result.reason)
            diag.result = result
            diag.success = result.ok
        except Exception as e:
            diag.add_step(f"Exception: {e}", False)
        return diag

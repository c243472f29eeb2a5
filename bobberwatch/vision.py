"""
bobberwatch/vision.py - Screen capture, template loading and the marker locator.
"""

import time
import mss
from mss.exception import ScreenShotError
import cv2
import numpy as np
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Callable, List

# Scale ladder for the multi-scale search. Single scale otherwise.
MULTI_SCALES = (0.60, 0.70, 0.80, 0.90, 1.00, 1.10, 1.20)
SINGLE_SCALE = (1.00,)

# Masks thinner than this get one dilation pass at the current scale
MIN_MASK_ON_RATIO = 0.08

# Intensity/gradient blend and the gradient rescue rule
INTENSITY_WEIGHT = 0.6
GRADIENT_WEIGHT = 0.4
RESCUE_BEST_BELOW = 0.30
RESCUE_GRADIENT_MIN = 0.62
RESCUE_INTENSITY_BELOW = 0.35

# Oversized templates are shrunk to fit with this margin
OVERSIZE_MARGIN = 0.9

DEFAULT_TEMPLATE = "data/images/bobber_in_water.png"
TEMPLATE_VARIANTS = ("bobber_in_water.png", "bobber_inwater.png")
PACKAGE_RESOURCES = Path(__file__).resolve().parent / "resources"


@dataclass(frozen=True)
class Region:
    # Screen rectangle in absolute pixels
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)

    def as_monitor(self) -> dict:
        return {"left": self.x, "top": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class Frame:
    """
    One captured instant of the region of interest.

    `image` is BGR, `gray` its single-channel twin. Both are treated as
    read-only by everything downstream.
    """
    image: np.ndarray
    gray: np.ndarray
    origin: Tuple[int, int] = (0, 0)
    timestamp: float = 0.0

    @classmethod
    def from_array(cls, pixels: np.ndarray, origin: Tuple[int, int] = (0, 0),
                   timestamp: Optional[float] = None) -> "Frame":
        if pixels is None or pixels.size == 0:
            raise ValueError("empty pixel buffer")
        if pixels.ndim == 2:
            gray = pixels
            image = cv2.cvtColor(pixels, cv2.COLOR_GRAY2BGR)
        elif pixels.shape[2] == 4:
            image = cv2.cvtColor(pixels, cv2.COLOR_BGRA2BGR)
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            image = pixels
            gray = cv2.cvtColor(pixels, cv2.COLOR_BGR2GRAY)
        ts = time.monotonic() if timestamp is None else timestamp
        return cls(image=image, gray=gray, origin=origin, timestamp=ts)

    @property
    def width(self) -> int:
        return self.gray.shape[1]

    @property
    def height(self) -> int:
        return self.gray.shape[0]


class ScreenCapture:
    # Region grabber using mss

    def __init__(self, monitor_index: int = 1) -> None:
        self._sct: Optional[mss.mss] = None
        self.monitor_index = monitor_index

    def __enter__(self):
        self._sct = mss.mss()
        return self

    def __exit__(self, exc_type, exc_str, exc_tb):
        self.close()

    def close(self) -> None:
        if self._sct:
            self._sct.close()
            self._sct = None

    def list_monitors(self) -> list:
        if not self._sct:
            self._sct = mss.mss()
        return self._sct.monitors

    def capture_region(self, region: Region) -> Optional[np.ndarray]:
        """BGR pixels of the region, or None when nothing could be grabbed."""
        if region.area <= 0:
            return None
        if not self._sct:
            self._sct = mss.mss()
        try:
            img = self._sct.grab(region.as_monitor())
        except ScreenShotError:
            return None
        frame = np.array(img)
        if frame.size == 0:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)

    def __call__(self, region: Region) -> Optional[np.ndarray]:
        return self.capture_region(region)


def monitor_region(x: int, y: int, width: int, height: int,
                   monitors: list, monitor_index: int) -> Optional[Region]:
    """
    Region for coordinates relative to an mss monitor. None when the monitor
    index is unknown; the caller decides whether absolute coordinates will do.
    """
    if not 0 <= monitor_index < len(monitors):
        return None
    mon = monitors[monitor_index]
    return Region(mon["left"] + x, mon["top"] + y, width, height)


# ---------------------------------------------------------------------------
# Template store
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Template:
    # Marker reference image (BGR) and its binary matching mask
    image: np.ndarray
    mask: np.ndarray
    path: Path
    has_alpha: bool = False

    @property
    def size(self) -> Tuple[int, int]:
        h, w = self.image.shape[:2]
        return w, h


class TemplateError(Exception):
    # Raised by load_template; `reason` is the human-readable failure string
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def resolve_template_path(explicit: Optional[str] = None,
                          default: str = DEFAULT_TEMPLATE,
                          base_dir: Optional[Path] = None) -> Path:
    """
    Search order: explicit path, default relative path, sibling filename
    variants of the default, packaged resources. Falls back to the first
    candidate so the caller can report it as missing.
    """
    base = base_dir or Path.cwd()
    candidates: List[Path] = []

    if explicit:
        p = Path(explicit)
        candidates.append(p if p.is_absolute() else base / p)

    default_path = Path(default)
    if not default_path.is_absolute():
        default_path = base / default_path
    candidates.append(default_path)

    for name in TEMPLATE_VARIANTS:
        candidates.append(default_path.with_name(name))
    for name in TEMPLATE_VARIANTS:
        candidates.append(PACKAGE_RESOURCES / name)

    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return candidates[0]


def build_mask(raw: np.ndarray) -> Tuple[np.ndarray, np.ndarray, bool]:
    """
    Split a decoded template into (bgr, mask, has_alpha).

    Alpha is used as-is when present. Otherwise near-black background
    (gray <= 15) is removed and the mask cleaned with open/close.
    """
    if raw.ndim == 2:
        raw = cv2.cvtColor(raw, cv2.COLOR_GRAY2BGR)

    if raw.shape[2] == 4:
        bgr = cv2.cvtColor(raw, cv2.COLOR_BGRA2BGR)
        mask = np.where(raw[:, :, 3] > 0, 255, 0).astype(np.uint8)
        return bgr, mask, True

    bgr = raw[:, :, :3].copy()
    gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
    _, mask = cv2.threshold(gray, 15, 255, cv2.THRESH_BINARY)
    kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (3, 3))
    mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, kernel)
    mask = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kernel)
    return bgr, mask, False


def load_template(path: Path) -> Template:
    # Missing file and undecodable file are separate failures
    path = Path(path)
    if not path.is_file():
        raise TemplateError(f"Template not found: {path}")

    raw = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if raw is None or raw.size == 0:
        raise TemplateError(f"Template could not be decoded: {path}")

    bgr, mask, has_alpha = build_mask(raw)
    return Template(image=bgr, mask=mask, path=path, has_alpha=has_alpha)


# ---------------------------------------------------------------------------
# Locator
# ---------------------------------------------------------------------------

@dataclass
class LocatorMatch:
    # Best match across the scale ladder, in region coordinates
    score: float = -1.0
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0
    scale: float = 1.0
    intensity_score: float = 0.0
    gradient_score: float = 0.0
    mask_on_ratio: float = 0.0

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2.0, self.y + self.height / 2.0


def _mask_ratio(mask: np.ndarray) -> float:
    total = mask.size
    return cv2.countNonZero(mask) / total if total > 0 else 0.0


def _best(res: np.ndarray) -> Tuple[float, Tuple[int, int]]:
    res = np.nan_to_num(res, nan=0.0, posinf=0.0, neginf=0.0)
    _, max_val, _, max_loc = cv2.minMaxLoc(res)
    return float(max_val), max_loc


def gradient_rescues(best_score: float, intensity: float, gradient: float) -> bool:
    # A strong edge match wins while nothing convincing has been found yet
    return (best_score < RESCUE_BEST_BELOW and gradient >= RESCUE_GRADIENT_MIN
            and intensity < RESCUE_INTENSITY_BELOW)


def fit_template(template: Template, frame_w: int, frame_h: int) -> Template:
    """Shrink a template that does not fit inside the frame (aspect kept)."""
    tw, th = template.size
    if tw <= frame_w and th <= frame_h:
        return template

    scale = min(frame_w / tw, frame_h / th) * OVERSIZE_MARGIN
    new_size = (int(tw * scale), int(th * scale))
    if new_size[0] < 1 or new_size[1] < 1:
        raise ValueError("Template larger than frame after downscale")
    image = cv2.resize(template.image, new_size, interpolation=cv2.INTER_CUBIC)
    mask = cv2.resize(template.mask, new_size, interpolation=cv2.INTER_NEAREST)
    return Template(image=image, mask=mask, path=template.path, has_alpha=template.has_alpha)


class TemplateLocator:
    """
    Masked normalized-correlation search over a scale ladder.

    Intensity matching uses TM_CCORR_NORMED with the template mask. With the
    gradient fallback on, a Canny edge map is matched as well (TM_CCOEFF_NORMED)
    and blended 0.6/0.4; a strong edge match can rescue a frame where the
    intensity score collapses under a lighting shift.
    """

    def __init__(
        self,
        multi_scale: bool = False,
        gradient_fallback: bool = False,
        equalize: bool = False,
        log_fn: Optional[Callable[[str, str], None]] = None
    ) -> None:
        self._scales = MULTI_SCALES if multi_scale else SINGLE_SCALE
        self._gradient = gradient_fallback
        self._equalize = equalize
        self._log = log_fn or (lambda m, l: None)

    @property
    def scales(self) -> Tuple[float, ...]:
        return self._scales

    def _equalized(self, image: np.ndarray) -> np.ndarray:
        # CLAHE on the luma channel only
        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        ycrcb = cv2.cvtColor(image, cv2.COLOR_BGR2YCrCb)
        ycrcb[:, :, 0] = clahe.apply(ycrcb[:, :, 0])
        return cv2.cvtColor(ycrcb, cv2.COLOR_YCrCb2BGR)

    def _scaled(self, template: Template, scale: float) -> Tuple[np.ndarray, np.ndarray]:
        if scale == 1.0:
            tpl = template.image
        else:
            tpl = cv2.resize(template.image, None, fx=scale, fy=scale,
                             interpolation=cv2.INTER_CUBIC)
        h, w = tpl.shape[:2]
        mask = cv2.resize(template.mask, (w, h), interpolation=cv2.INTER_NEAREST)
        return tpl, mask

    def locate(self, frame: Frame, template: Template) -> LocatorMatch:
        """Best location over all scales. Raises ValueError on bad geometry."""
        if frame.width == 0 or frame.height == 0:
            raise ValueError("Empty frame")

        template = fit_template(template, frame.width, frame.height)
        screen = self._equalized(frame.image) if self._equalize else frame.image
        screen_edges = None
        if self._gradient:
            screen_edges = cv2.Canny(cv2.cvtColor(screen, cv2.COLOR_BGR2GRAY), 60, 120)

        best = LocatorMatch()
        for scale in self._scales:
            tpl, mask = self._scaled(template, scale)
            h, w = tpl.shape[:2]
            if w < 1 or h < 1 or w > frame.width or h > frame.height:
                continue

            ratio = _mask_ratio(mask)
            if ratio < MIN_MASK_ON_RATIO:
                kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (3, 3))
                mask = cv2.dilate(mask, kernel)
                ratio = _mask_ratio(mask)
            if cv2.countNonZero(mask) == 0:
                # Nothing left to weight with: match on every pixel
                mask = np.full_like(mask, 255)
                ratio = 1.0

            v1, p1 = _best(cv2.matchTemplate(screen, tpl, cv2.TM_CCORR_NORMED, mask=mask))
            v, p, v2 = v1, p1, 0.0

            if screen_edges is not None:
                tpl_edges = cv2.Canny(cv2.cvtColor(tpl, cv2.COLOR_BGR2GRAY), 60, 120)
                if cv2.countNonZero(tpl_edges) > 0:
                    v2, p2 = _best(cv2.matchTemplate(screen_edges, tpl_edges, cv2.TM_CCOEFF_NORMED))
                    v = INTENSITY_WEIGHT * v1 + GRADIENT_WEIGHT * v2
                    p = p1 if v1 >= v2 else p2

            rescue = self._gradient and gradient_rescues(best.score, v1, v2)
            if v > best.score or rescue:
                if rescue and v <= best.score:
                    self._log(f"Gradient rescue at scale {scale:.2f} (v1={v1:.2f}, v2={v2:.2f})", "INFO")
                best = LocatorMatch(
                    score=v, x=int(p[0]), y=int(p[1]), width=w, height=h,
                    scale=scale, intensity_score=v1, gradient_score=v2,
                    mask_on_ratio=ratio
                )

        if best.width == 0:
            raise ValueError("Template larger than frame after downscale")
        return best


def patch_std(frame: Frame, match: LocatorMatch) -> float:
    # Texture of the matched window; flat patches hint at a false match
    x0, y0 = max(0, match.x), max(0, match.y)
    patch = frame.gray[y0:y0 + match.height, x0:x0 + match.width]
    if patch.shape[0] <= 2 or patch.shape[1] <= 2:
        return 0.0
    return float(np.std(patch))


def color_gate(frame: Frame, match: LocatorMatch) -> Optional[bool]:
    """
    Red float paint present and enough non-water pixels in the matched window.
    None when the window is too small to judge.
    """
    x0, y0 = max(0, match.x), max(0, match.y)
    win = frame.image[y0:y0 + match.height, x0:x0 + match.width]
    if win.shape[0] <= 3 or win.shape[1] <= 3:
        return None

    hsv = cv2.cvtColor(win, cv2.COLOR_BGR2HSV)
    red_low = cv2.inRange(hsv, np.array([0, 60, 40]), np.array([10, 255, 255]))
    red_high = cv2.inRange(hsv, np.array([170, 60, 40]), np.array([180, 255, 255]))
    reds = cv2.bitwise_or(red_low, red_high)
    _, non_water = cv2.threshold(hsv[:, :, 1], 50, 255, cv2.THRESH_BINARY)

    total = win.shape[0] * win.shape[1]
    reds_pct = cv2.countNonZero(reds) / total
    non_water_pct = cv2.countNonZero(non_water) / total
    return reds_pct >= 0.05 and non_water_pct >= 0.25


def save_debug(debug_dir: Path, frame: Frame, match: LocatorMatch, name: str = "match") -> None:
    try:
        debug_dir.mkdir(parents=True, exist_ok=True)
        vis = frame.image.copy()
        cv2.rectangle(
            vis,
            (match.x, match.y),
            (match.x + match.width, match.y + match.height),
            (0, 255, 0), 2
        )
        cv2.putText(vis, f"{name} {match.score:.2f} x{match.scale:.2f}",
                    (match.x, max(10, match.y - 10)), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 255, 0), 1)
        ts = int(time.time() * 1000)
        cv2.imwrite(str(debug_dir / f"{name}_{ts}.png"), vis)
    except (OSError, cv2.error):
        pass

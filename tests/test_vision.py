from __future__ import annotations

from dataclasses import FrozenInstanceError
from pathlib import Path

import cv2
import numpy as np
import pytest

from bobberwatch.vision import (
    Frame, GRADIENT_WEIGHT, INTENSITY_WEIGHT, MIN_MASK_ON_RATIO, MULTI_SCALES, Region,
    Template, TemplateError, TemplateLocator, build_mask, color_gate, fit_template,
    gradient_rescues, load_template, monitor_region, resolve_template_path, LocatorMatch,
)

from conftest import make_texture, paste


@pytest.mark.parametrize("scale", [0.6, 0.8, 1.0, 1.1, 1.2])
def test_locator_finds_pasted_float_at_every_ladder_scale(tmp_path: Path, float_image: np.ndarray, scale: float) -> None:
    assert scale in MULTI_SCALES
    path = tmp_path / "float.png"
    cv2.imwrite(str(path), float_image)
    template = load_template(path)

    scaled = cv2.resize(float_image, None, fx=scale, fy=scale, interpolation=cv2.INTER_CUBIC)
    h, w = scaled.shape[:2]
    background = make_texture(seed=3, h=200, w=200, low=0, high=40)
    frame = Frame.from_array(paste(background, scaled, 100 - w // 2, 100 - h // 2), timestamp=0.0)

    match = TemplateLocator(multi_scale=True).locate(frame, template)

    cx, cy = match.center
    assert abs(cx - 100) <= 2
    assert abs(cy - 100) <= 2
    assert match.score >= 0.9
    assert match.scale == scale


def test_single_scale_by_default() -> None:
    assert TemplateLocator().scales == (1.0,)


def test_build_mask_removes_dark_background() -> None:
    raw = np.zeros((30, 30, 3), dtype=np.uint8)
    raw[10:20, 10:20] = (0, 0, 200)
    bgr, mask, has_alpha = build_mask(raw)

    assert not has_alpha
    assert bgr.shape == raw.shape
    assert mask[15, 15] == 255
    assert mask[2, 2] == 0
    assert cv2.countNonZero(mask) == 100


def test_build_mask_prefers_alpha() -> None:
    raw = np.full((20, 20, 4), 255, dtype=np.uint8)
    raw[:, :10, 3] = 0
    bgr, mask, has_alpha = build_mask(raw)

    assert has_alpha
    assert bgr.shape == (20, 20, 3)
    assert cv2.countNonZero(mask) == 200


def test_empty_mask_still_matches(tmp_path: Path) -> None:
    # All-black template: nothing survives the threshold
    path = tmp_path / "black.png"
    cv2.imwrite(str(path), np.zeros((12, 12, 3), dtype=np.uint8))
    template = load_template(path)
    assert cv2.countNonZero(template.mask) == 0

    frame = Frame.from_array(make_texture(seed=5, h=60, w=60), timestamp=0.0)
    match = TemplateLocator().locate(frame, template)
    assert match.width == 12
    assert match.mask_on_ratio == 1.0


def test_load_template_failures_are_distinct(tmp_path: Path) -> None:
    with pytest.raises(TemplateError) as missing:
        load_template(tmp_path / "nope.png")
    assert missing.value.reason.startswith("Template not found")

    broken = tmp_path / "broken.png"
    broken.write_bytes(b"definitely not a png")
    with pytest.raises(TemplateError) as undecodable:
        load_template(broken)
    assert undecodable.value.reason.startswith("Template could not be decoded")


def test_resolve_template_path_search_order(tmp_path: Path) -> None:
    images = tmp_path / "data" / "images"
    images.mkdir(parents=True)
    variant = images / "bobber_inwater.png"
    variant.write_bytes(b"x")

    # Explicit path missing, default missing, sibling variant present
    assert resolve_template_path("custom.png", base_dir=tmp_path) == variant

    default = images / "bobber_in_water.png"
    default.write_bytes(b"x")
    assert resolve_template_path("custom.png", base_dir=tmp_path) == default

    explicit = tmp_path / "custom.png"
    explicit.write_bytes(b"x")
    assert resolve_template_path("custom.png", base_dir=tmp_path) == explicit


def test_resolve_template_path_reports_first_candidate_when_nothing_exists(tmp_path: Path) -> None:
    assert resolve_template_path("missing.png", base_dir=tmp_path) == tmp_path / "missing.png"


def test_fit_template_shrinks_oversized(tmp_path: Path, template_file: Path) -> None:
    template = load_template(template_file)
    fitted = fit_template(template, 20, 30)
    w, h = fitted.size
    assert w <= 20 and h <= 30
    assert fitted.mask.shape == fitted.image.shape[:2]

    with pytest.raises(ValueError, match="Template larger than frame"):
        fit_template(template, 1, 1)


def test_frame_from_bgra_and_gray() -> None:
    bgra = np.zeros((10, 12, 4), dtype=np.uint8)
    frame = Frame.from_array(bgra, origin=(5, 6), timestamp=1.0)
    assert frame.image.shape == (10, 12, 3)
    assert frame.gray.shape == (10, 12)
    assert (frame.width, frame.height) == (12, 10)

    gray = Frame.from_array(np.zeros((4, 4), dtype=np.uint8), timestamp=0.0)
    assert gray.image.shape == (4, 4, 3)

    with pytest.raises(ValueError):
        Frame.from_array(np.zeros((0, 0, 3), dtype=np.uint8))


def test_region_as_monitor() -> None:
    region = Region(10, 20, 300, 200)
    assert region.as_monitor() == {"left": 10, "top": 20, "width": 300, "height": 200}
    assert Region(0, 0, -5, 10).area == 0


def test_color_gate() -> None:
    red = np.zeros((20, 20, 3), dtype=np.uint8)
    red[:, :] = (0, 0, 220)
    frame = Frame.from_array(red, timestamp=0.0)
    assert color_gate(frame, LocatorMatch(score=1.0, x=0, y=0, width=20, height=20)) is True

    grey = Frame.from_array(np.full((20, 20, 3), 128, dtype=np.uint8), timestamp=0.0)
    assert color_gate(grey, LocatorMatch(score=1.0, x=0, y=0, width=20, height=20)) is False
    assert color_gate(grey, LocatorMatch(score=1.0, x=0, y=0, width=3, height=3)) is None


def test_gradient_blend_on_equalized_frame(scene: np.ndarray, template_file: Path) -> None:
    template = load_template(template_file)
    frame = Frame.from_array(scene, timestamp=0.0)

    match = TemplateLocator(gradient_fallback=True, equalize=True).locate(frame, template)

    assert match.gradient_score > 0
    assert match.intensity_score > 0.8
    assert match.score == pytest.approx(
        INTENSITY_WEIGHT * match.intensity_score + GRADIENT_WEIGHT * match.gradient_score
    )
    cx, cy = match.center
    assert abs(cx - 100) <= 2
    assert abs(cy - 80) <= 2


def test_gradient_rescue_rule() -> None:
    # Nothing found yet, weak intensity, strong edges
    assert gradient_rescues(-1.0, 0.2, 0.7)
    assert not gradient_rescues(0.5, 0.2, 0.7)
    assert not gradient_rescues(-1.0, 0.4, 0.7)
    assert not gradient_rescues(-1.0, 0.2, 0.5)


def test_thin_mask_is_dilated(scene: np.ndarray, float_image: np.ndarray) -> None:
    mask = np.zeros(float_image.shape[:2], dtype=np.uint8)
    mask[18:21, 18:21] = 255
    before = cv2.countNonZero(mask) / mask.size
    template = Template(image=float_image, mask=mask, path=Path("thin.png"), has_alpha=True)

    match = TemplateLocator().locate(Frame.from_array(scene, timestamp=0.0), template)

    assert before < MIN_MASK_ON_RATIO
    assert match.mask_on_ratio > before
    assert match.mask_on_ratio < 1.0


def test_template_is_read_only(template_file: Path) -> None:
    template = load_template(template_file)
    with pytest.raises(FrozenInstanceError):
        template.path = Path("other.png")


def test_monitor_region_adds_monitor_origin() -> None:
    monitors = [
        {"left": 0, "top": 0, "width": 3840, "height": 1080},
        {"left": 0, "top": 0, "width": 1920, "height": 1080},
        {"left": 1920, "top": 0, "width": 1920, "height": 1080},
    ]
    assert monitor_region(760, 340, 400, 300, monitors, 2) == Region(2680, 340, 400, 300)
    assert monitor_region(760, 340, 400, 300, monitors, 1) == Region(760, 340, 400, 300)
    assert monitor_region(760, 340, 400, 300, monitors, 3) is None
    assert monitor_region(760, 340, 400, 300, monitors, -1) is None

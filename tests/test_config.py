from __future__ import annotations

from pathlib import Path

import pytest

from bobberwatch.config import DEFAULT_CONFIG, AppConfig, DetectorConfig, load_config


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg == AppConfig()
    assert cfg.detector == DetectorConfig.template_only()
    assert cfg.matching.confidence_threshold == 0.5


def test_partial_yaml_fills_in_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "capture:\n"
        "  region:\n"
        "    x: 10\n"
        "    width: 320\n"
        "  target_fps: 60\n"
        "matching:\n"
        "  confidence_threshold: 0.7\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.capture.region_x == 10
    assert cfg.capture.region_y == 340
    assert cfg.capture.region_width == 320
    assert cfg.capture.target_fps == 60
    assert cfg.matching.confidence_threshold == 0.7
    assert cfg.hotkeys.cycle_preset == "f8"


def test_preset_with_override(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "detector:\n"
        "  preset: signal-enhanced\n"
        "  color_gate: false\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.detector.micro_motion
    assert cfg.detector.kinematics
    assert cfg.detector.multi_scale_search
    assert not cfg.detector.color_gate
    assert cfg.detector.preset_name == "custom"


@pytest.mark.parametrize("content", ["capture: [unclosed", "- just\n- a list\n", ""])
def test_broken_yaml_falls_back(tmp_path: Path, content: str) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(content, encoding="utf-8")
    assert load_config(str(path)) == AppConfig()


def test_detector_config_is_frozen() -> None:
    cfg = DetectorConfig()
    with pytest.raises(Exception):
        cfg.micro_motion = True  # type: ignore[misc]
    assert DetectorConfig.signal_enhanced().preset_name == "signal-enhanced"
    assert DetectorConfig().preset_name == "template-only"


def test_first_run_config_starts_from_the_all_off_baseline(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(DEFAULT_CONFIG.strip(), encoding="utf-8")
    cfg = load_config(str(path))

    assert cfg.detector == DetectorConfig.template_only()
    assert cfg.detector.preset_name == "template-only"
    assert cfg == AppConfig()

from __future__ import annotations

import numpy as np
import pytest

from bobberwatch.micro_motion import (
    COOLDOWN_SECONDS, HISTORY_SIZE, MicroGate, MicroMotionAnalyzer, MicroMotionState,
    RollingStats, estimate_vertical_lag,
)
from bobberwatch.motion import AnnulusCrop, crop_square

from conftest import make_texture


@pytest.mark.parametrize("shift", [-3, -1, 1, 2, 4])
def test_vertical_lag_recovers_row_shift(shift: int) -> None:
    prev = make_texture(seed=9, h=36, w=36)[:, :, 0]
    curr = np.roll(prev, shift, axis=0)
    assert estimate_vertical_lag(prev, curr) == shift


def test_vertical_lag_of_identical_windows_is_zero() -> None:
    window = make_texture(seed=9, h=36, w=36)[:, :, 0]
    assert estimate_vertical_lag(window, window.copy()) == 0


def test_vertical_lag_is_capped_by_window_height() -> None:
    # 16 rows -> at most 2 rows of search
    prev = make_texture(seed=4, h=16, w=36)[:, :, 0]
    curr = np.roll(prev, 4, axis=0)
    assert abs(estimate_vertical_lag(prev, curr)) <= 2


def test_vertical_lag_needs_matching_shapes() -> None:
    prev = np.zeros((36, 36), dtype=np.uint8)
    assert estimate_vertical_lag(prev, np.zeros((30, 36), dtype=np.uint8)) == 0


def test_rolling_stats_is_bounded() -> None:
    stats = RollingStats()
    for i in range(HISTORY_SIZE * 2):
        stats.push(float(i))
    assert len(stats) == HISTORY_SIZE
    assert stats.capacity == HISTORY_SIZE
    assert stats.mean() == pytest.approx(np.mean(np.arange(HISTORY_SIZE, HISTORY_SIZE * 2)))


def test_rolling_stats_flat_history_scores_zero() -> None:
    stats = RollingStats()
    for _ in range(10):
        stats.push(1.0)
    assert stats.zscore(1.0) == 0.0
    assert RollingStats().zscore(3.0) == 0.0


def test_hysteresis_sequence() -> None:
    gate = MicroGate()
    states = []
    for i, z in enumerate([0.0, 2.5, 1.5, 0.5]):
        gate.update(z, 0.0, now=float(i))
        states.append(gate.on)
    assert states == [False, True, True, False]


def test_ripple_hysteresis_thresholds() -> None:
    gate = MicroGate()
    assert not gate.update(0.0, 2.0, now=0.0)
    assert gate.update(0.0, 2.3, now=1.0)
    gate.update(0.0, 1.3, now=2.0)
    assert gate.on
    gate.update(0.0, 1.1, now=3.0)
    assert not gate.on


def test_cooldown_allows_one_fire_per_window() -> None:
    gate = MicroGate()
    fires = [gate.update(2.5, 0.0, now=t) for t in (0.0, 0.3)]
    assert fires == [True, False]
    assert gate.on
    assert gate.in_cooldown(0.5)
    assert gate.cooldown_until == pytest.approx(COOLDOWN_SECONDS)
    assert gate.update(2.5, 0.0, now=0.7)


def test_static_scene_never_fires() -> None:
    gray = make_texture(seed=13, h=160, w=200)[:, :, 0]
    ring = gray[34:126, 54:146].copy()
    analyzer = MicroMotionAnalyzer()
    state = MicroMotionState()

    results = [
        analyzer.analyze(gray, (100.0, 80.0), AnnulusCrop(ring if i else None, ring), state, now=i * 0.05)
        for i in range(5)
    ]
    for result in results:
        assert not result.fired
        assert result.dy == 0.0
        assert result.z_dy == 0.0
        assert result.z_ripple == 0.0
    assert state.previous_window is not None
    assert state.previous_window.shape == (36, 36)
    assert len(state.history) == 5


def test_micro_window_too_small_is_skipped() -> None:
    gray = np.zeros((5, 5), dtype=np.uint8)
    state = MicroMotionState()
    result = MicroMotionAnalyzer().analyze(gray, (2.0, 2.0), AnnulusCrop(), state, now=0.0)
    assert not result.fired
    assert state.previous_window is None
    assert len(state.history) == 0


def test_small_bob_fires_with_ripple() -> None:
    still = make_texture(seed=13, h=160, w=200)[:, :, 0]
    bobbed = np.roll(still, 3, axis=0)
    analyzer = MicroMotionAnalyzer()
    state = MicroMotionState()

    previous = None
    for i in range(8):
        ring = crop_square(still, 100.0, 80.0, 46)
        quiet = analyzer.analyze(still, (100.0, 80.0), AnnulusCrop(previous, ring), state, now=i * 0.05)
        assert not quiet.fired
        previous = ring

    ring = crop_square(bobbed, 100.0, 80.0, 46)
    result = analyzer.analyze(bobbed, (100.0, 80.0), AnnulusCrop(previous, ring), state, now=0.4)

    assert result.dy == 3.0
    assert result.z_dy >= 2.0
    assert result.ripple_energy > 0
    assert result.fired
    assert result.gate_on
    assert result.cooldown_until == pytest.approx(0.4 + COOLDOWN_SECONDS)

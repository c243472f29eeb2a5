from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
import pytest


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def make_texture(seed: int, h: int, w: int, low: int = 40, high: int = 256) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(low, high, size=(h, w, 3), dtype=np.uint8)


def paste(background: np.ndarray, patch: np.ndarray, x: int, y: int) -> np.ndarray:
    out = background.copy()
    h, w = patch.shape[:2]
    out[y:y + h, x:x + w] = patch
    return out


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def float_image() -> np.ndarray:
    # Bright noise everywhere, so the derived mask keeps every pixel
    return make_texture(seed=7, h=40, w=40)


@pytest.fixture
def template_file(tmp_path: Path, float_image: np.ndarray) -> Path:
    path = tmp_path / "float.png"
    cv2.imwrite(str(path), float_image)
    return path


@pytest.fixture
def water() -> np.ndarray:
    return make_texture(seed=11, h=160, w=200, low=0, high=40)


@pytest.fixture
def scene(water: np.ndarray, float_image: np.ndarray) -> np.ndarray:
    # Float top-left at (80, 60), centre at (100, 80)
    return paste(water, float_image, 80, 60)

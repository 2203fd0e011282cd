import cv2
import numpy as np
import pytest


@pytest.fixture
def frame():
    """Smoothed random texture so neighbouring patches differ but stay correlated."""
    rng = np.random.default_rng(7)
    noise = rng.integers(0, 256, (120, 160, 3), dtype=np.uint8)
    return cv2.GaussianBlur(noise, (5, 5), 1.5)

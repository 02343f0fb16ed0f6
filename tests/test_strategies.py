from unittest.mock import patch

import numpy as np
import pytest

from dot_fiducial.config import ThresholdConfig
from dot_fiducial.errors import ConfigurationError
from dot_fiducial.render import render_gray
from dot_fiducial.strategies import threshold as threshold_mod
from dot_fiducial.strategies.threshold import (
    FixedLevel,
    GlobalOtsu,
    LocalGaussian,
    LocalMean,
    build_threshold,
    to_gray,
)
from dot_fiducial.transforms import apply_homography


@pytest.mark.parametrize("method", ["global_otsu", "local_mean", "local_gaussian", "fixed"])
def test_threshold_marks_dark_dots_as_foreground(method, marker_set, placement, image_shape):
    marker = marker_set.markers[0]
    gray = render_gray(image_shape, [(marker, placement)])
    binary = build_threshold(ThresholdConfig(method=method)).apply(gray)

    assert binary.dtype == np.uint8
    for x, y in apply_homography(placement, marker.points):
        assert binary[int(round(y)), int(round(x))] == 255
    assert binary[5, 5] == 0
    # foreground is roughly the rendered dot area
    assert abs(int((binary > 0).sum()) - int((gray < 128).sum())) < 0.05 * (gray < 128).sum()


def test_threshold_bright_dots():
    gray = np.full((100, 100), 20, dtype=np.uint8)
    gray[40:60, 40:60] = 220
    binary = build_threshold(ThresholdConfig(method="local_mean", block_size=31, dark_dots=False)).apply(gray)
    assert binary[50, 50] == 255
    assert binary[5, 5] == 0


def test_build_threshold_picks_strategy():
    assert isinstance(build_threshold(ThresholdConfig(method="global_otsu")), GlobalOtsu)
    assert isinstance(build_threshold(ThresholdConfig(method="fixed", level=90)), FixedLevel)
    assert isinstance(build_threshold(ThresholdConfig(method="local_mean")), LocalMean)
    assert isinstance(build_threshold(ThresholdConfig(method="local_gaussian")), LocalGaussian)
    with pytest.raises(ConfigurationError):
        build_threshold(ThresholdConfig(method="local_mean", block_size=4))


def test_fixed_level_threshold_value():
    gray = np.array([[10, 99, 100, 101, 250]], dtype=np.uint8)
    binary = FixedLevel(level=100).apply(gray)
    assert binary.tolist() == [[255, 255, 255, 0, 0]]


@patch("dot_fiducial.strategies.threshold.cv2.cvtColor", return_value=np.zeros((2, 2), dtype=np.uint8))
def test_to_gray_converts_bgr(mock_cvt):
    img = np.zeros((2, 2, 3), dtype=np.uint8)
    out = to_gray(img)
    assert out.shape == (2, 2)
    mock_cvt.assert_called_once_with(img, threshold_mod.cv2.COLOR_BGR2GRAY)


def test_to_gray_passes_gray_through():
    img = np.full((3, 3), 7, dtype=np.uint8)
    assert to_gray(img) is img


def test_to_gray_rejects_odd_shapes():
    with pytest.raises(ValueError):
        to_gray(np.zeros((2, 2, 2), dtype=np.uint8))

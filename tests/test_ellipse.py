import cv2
import numpy as np
import pytest

from dot_fiducial.config import DotMarkerConfig
from dot_fiducial.ellipse import EllipseDetector


def _canvas(shape=(200, 200)):
    return np.zeros(shape, dtype=np.uint8)


def test_detects_circles_with_accurate_centers():
    img = _canvas()
    centers = [(50, 60), (140, 50), (100, 150)]
    for c in centers:
        cv2.circle(img, c, 12, 255, -1)

    obs = EllipseDetector(DotMarkerConfig(marker_length=1.0)).detect(img)
    assert len(obs) == 3
    assert [o.index for o in obs] == [0, 1, 2]
    found = sorted((round(o.x), round(o.y)) for o in obs)
    assert found == sorted(centers)
    for o in obs:
        assert o.major_axis == pytest.approx(12.0, abs=1.0)
        assert o.minor_axis == pytest.approx(12.0, abs=1.0)
        assert o.axis_ratio < 1.1
        assert o.edge_intensity is None


def test_detects_rotated_ellipse():
    img = _canvas()
    cv2.ellipse(img, (100, 100), (30, 15), 30, 0, 360, 255, -1)
    obs = EllipseDetector(DotMarkerConfig(marker_length=1.0)).detect(img)
    assert len(obs) == 1
    assert obs[0].major_axis == pytest.approx(30.0, abs=1.5)
    assert obs[0].minor_axis == pytest.approx(15.0, abs=1.5)
    assert obs[0].x == pytest.approx(100.0, abs=0.5)
    assert obs[0].y == pytest.approx(100.0, abs=0.5)


def test_rejects_blob_touching_border():
    img = _canvas()
    cv2.circle(img, (5, 100), 12, 255, -1)
    cv2.circle(img, (100, 100), 12, 255, -1)
    obs = EllipseDetector(DotMarkerConfig(marker_length=1.0)).detect(img)
    assert len(obs) == 1
    assert round(obs[0].x) == 100


def test_rejects_short_contours():
    img = _canvas()
    img[100:102, 100:102] = 255
    assert EllipseDetector(DotMarkerConfig(marker_length=1.0)).detect(img) == []


def test_rejects_non_elliptical_blob():
    img = _canvas()
    cv2.rectangle(img, (60, 60), (140, 140), 255, -1)
    assert EllipseDetector(DotMarkerConfig(marker_length=1.0)).detect(img) == []


def test_rejects_elongated_blob():
    img = _canvas()
    cv2.ellipse(img, (100, 100), (80, 3), 0, 0, 360, 255, -1)
    cfg = DotMarkerConfig(marker_length=1.0, max_major_to_minor_ratio=5.0)
    assert EllipseDetector(cfg).detect(img) == []


def test_rejects_thin_blob_by_minor_axis():
    img = _canvas()
    cv2.ellipse(img, (100, 100), (20, 4), 0, 0, 360, 255, -1)
    cfg = DotMarkerConfig(marker_length=1.0, minimum_minor_axis=6.0)
    assert EllipseDetector(cfg).detect(img) == []


def test_edge_check_uses_gray_image():
    binary = _canvas()
    cv2.circle(binary, (100, 100), 15, 255, -1)
    detector = EllipseDetector(DotMarkerConfig(marker_length=1.0))

    gray = np.full(binary.shape, 220, dtype=np.uint8)
    gray[binary > 0] = 20
    obs = detector.detect(binary, gray)
    assert len(obs) == 1
    assert obs[0].edge_intensity > 100

    flat = np.full(binary.shape, 128, dtype=np.uint8)
    assert detector.detect(binary, flat) == []


def test_edge_check_disabled_by_zero_threshold():
    binary = _canvas()
    cv2.circle(binary, (100, 100), 15, 255, -1)
    cfg = DotMarkerConfig(marker_length=1.0)
    cfg.check_edge.minimum_edge_intensity = 0.0
    flat = np.full(binary.shape, 128, dtype=np.uint8)
    assert len(EllipseDetector(cfg).detect(binary, flat)) == 1


def test_connectivity_rule_controls_blob_merging():
    rr, cc = np.mgrid[0:200, 0:200]
    img = _canvas()
    img[(rr - 70) ** 2 + (cc - 70) ** 2 <= 144] = 255
    img[(rr - 130) ** 2 + (cc - 130) ** 2 <= 144] = 255
    # diagonal bridge; touches both disks only through corners
    for i in range(79, 122):
        img[i, i] = 255

    four = EllipseDetector(DotMarkerConfig(marker_length=1.0, contour_rule=4)).detect(img)
    eight = EllipseDetector(DotMarkerConfig(marker_length=1.0, contour_rule=8)).detect(img)
    assert len(four) == 2
    assert len(eight) == 0


def test_rejects_non_2d_input():
    with pytest.raises(ValueError):
        EllipseDetector(DotMarkerConfig(marker_length=1.0)).detect(np.zeros((10, 10, 3), dtype=np.uint8))

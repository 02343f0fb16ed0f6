import numpy as np
import pytest

from dot_fiducial.config import DotMarkerConfig
from dot_fiducial.generator import generate_marker_set
from dot_fiducial.tracker import DotMarkerTracker
from dot_fiducial.transforms import similarity_homography


MARKER_WIDTH = 80.0
DOT_DIAMETER = 5.0
IMAGE_SHAPE = (720, 720)


def _place(width: float, scale: float, angle: float, cx: float, cy: float) -> np.ndarray:
    """Homography putting the marker center at (cx, cy), rotated and scaled."""
    c = np.cos(angle) * scale
    s = np.sin(angle) * scale
    mid = 0.5 * width
    tx = cx - (c * mid - s * mid)
    ty = cy - (s * mid + c * mid)
    return similarity_homography(scale, angle, tx, ty)


@pytest.fixture
def place():
    return _place


@pytest.fixture(scope="session")
def marker_set():
    """Four 30 dot markers, 80 mm wide, 5 mm dots."""
    return generate_marker_set(0xDEADBEEF, 4, 30, MARKER_WIDTH, DOT_DIAMETER)


@pytest.fixture
def config():
    return DotMarkerConfig(marker_length=MARKER_WIDTH)


@pytest.fixture(scope="session")
def tracker(marker_set):
    t = DotMarkerTracker(DotMarkerConfig(marker_length=MARKER_WIDTH))
    t.register(marker_set)
    return t


@pytest.fixture
def placement():
    """Marker 480 px wide, rotated 0.3 rad, centered in a 720x720 image."""
    return _place(MARKER_WIDTH, 6.0, 0.3, 360.0, 360.0)


@pytest.fixture
def image_shape():
    return IMAGE_SHAPE

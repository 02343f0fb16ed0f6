from unittest.mock import patch

import numpy as np
import pytest

from dot_fiducial.config import RansacConfig
from dot_fiducial.dm_types import Candidate, Correspondence, Detection, InsufficientConsensus, MarkerDefinition, PointObservation
from dot_fiducial.homography import verify
from dot_fiducial.transforms import apply_homography, marker_corners


H_TRUE = np.array([[5.0, 0.8, 100.0], [-0.6, 4.5, 80.0], [1e-4, 2e-4, 1.0]])


def _scene(points, H=H_TRUE):
    img = apply_homography(H, points)
    observations = [PointObservation(i, float(x), float(y), 3.0, 3.0, 0.0) for i, (x, y) in enumerate(img)]
    return observations


def _candidate(n, votes=5):
    return Candidate(7, votes * n, [Correspondence(i, i, votes) for i in range(n)])


def test_four_exact_correspondences_are_accepted():
    pts = np.array([[0, 0], [10, 0], [10, 10], [0, 10]], dtype=float)
    marker = MarkerDefinition(7, pts, 10.0)
    result = verify(_candidate(4), _scene(pts), marker, RansacConfig())

    assert isinstance(result, Detection)
    assert result.marker_id == 7
    assert result.inlier_fraction == 1.0
    assert len(result.inliers) == 4
    assert np.allclose(result.homography, H_TRUE / H_TRUE[2, 2], atol=1e-4)
    assert np.allclose(result.corners, apply_homography(H_TRUE, marker_corners(10.0)), atol=1e-3)


@pytest.mark.parametrize("n", [0, 1, 2, 3])
def test_three_or_fewer_correspondences_are_rejected_without_fit(n):
    pts = np.array([[0, 0], [10, 0], [10, 10]], dtype=float)
    marker = MarkerDefinition(7, pts, 10.0)
    with patch("dot_fiducial.homography.cv2.getPerspectiveTransform") as fit, \
            patch("dot_fiducial.homography.cv2.findHomography") as refit:
        result = verify(_candidate(n), _scene(pts), marker, RansacConfig())

    assert isinstance(result, InsufficientConsensus)
    assert result.reason == "too few correspondences"
    assert result.correspondences == n
    fit.assert_not_called()
    refit.assert_not_called()


def test_outliers_are_excluded():
    rng = np.random.default_rng(11)
    pts = rng.uniform(0, 80, size=(25, 2))
    marker = MarkerDefinition(7, pts, 80.0)
    observations = _scene(pts)
    for i in range(20, 25):
        observations[i].x += rng.uniform(30, 60)
        observations[i].y -= rng.uniform(30, 60)

    result = verify(_candidate(25), observations, marker, RansacConfig())
    assert isinstance(result, Detection)
    assert len(result.inliers) == 20
    assert result.inlier_fraction == pytest.approx(0.8)
    assert {c.point_index for c in result.inliers} == set(range(20))
    assert np.allclose(apply_homography(result.homography, pts[:20]), apply_homography(H_TRUE, pts[:20]), atol=1e-3)


def test_mostly_wrong_correspondences_are_rejected():
    rng = np.random.default_rng(5)
    pts = rng.uniform(0, 80, size=(20, 2))
    marker = MarkerDefinition(7, pts, 80.0)
    observations = _scene(pts)
    for o in observations[6:]:
        o.x, o.y = rng.uniform(0, 800, size=2)

    result = verify(_candidate(20), observations, marker, RansacConfig())
    assert isinstance(result, InsufficientConsensus)
    assert result.reason == "insufficient consensus"
    assert result.inlier_fraction <= 0.5


def test_half_inliers_is_not_enough():
    """Acceptance needs strictly more than min_inlier_fraction."""
    rng = np.random.default_rng(8)
    pts = rng.uniform(0, 80, size=(8, 2))
    marker = MarkerDefinition(7, pts, 80.0)
    observations = _scene(pts)
    for o in observations[4:]:
        o.x, o.y = rng.uniform(0, 800, size=2)

    result = verify(_candidate(8), observations, marker, RansacConfig(min_inlier_fraction=0.5))
    assert isinstance(result, InsufficientConsensus)
    assert result.inlier_fraction == pytest.approx(0.5)


def test_collinear_points_give_no_model():
    pts = np.array([[0, 0], [1, 0], [2, 0], [3, 0], [4, 0]], dtype=float)
    marker = MarkerDefinition(7, pts, 4.0)
    result = verify(_candidate(5), _scene(pts), marker, RansacConfig())
    assert isinstance(result, InsufficientConsensus)
    assert result.reason == "no valid model"


def test_verify_is_deterministic():
    rng = np.random.default_rng(1)
    pts = rng.uniform(0, 80, size=(30, 2))
    marker = MarkerDefinition(7, pts, 80.0)
    observations = _scene(pts)
    for o in observations[::4]:
        o.x += 25.0

    a = verify(_candidate(30), observations, marker, RansacConfig())
    b = verify(_candidate(30), observations, marker, RansacConfig())
    assert np.array_equal(a.homography, b.homography)
    assert [c.point_index for c in a.inliers] == [c.point_index for c in b.inliers]


def _partly_scrambled(n_good, n_total, seed):
    rng = np.random.default_rng(seed)
    pts = rng.uniform(0, 80, size=(n_total, 2))
    observations = _scene(pts)
    for o in observations[n_good:]:
        o.x, o.y = rng.uniform(0, 800, size=2)
    return MarkerDefinition(7, pts, 80.0), observations


@pytest.mark.parametrize("seed", range(5))
def test_minimal_sample_alone_is_not_consensus(seed):
    """Four agreeing out of seven clear 0.5 but any four points fit exactly."""
    marker, observations = _partly_scrambled(4, 7, seed)
    result = verify(_candidate(7), observations, marker, RansacConfig())
    assert isinstance(result, InsufficientConsensus)
    assert result.reason == "no support beyond minimal sample"
    assert result.inlier_fraction == pytest.approx(4 / 7)


def test_five_of_seven_is_accepted():
    marker, observations = _partly_scrambled(5, 7, 21)
    result = verify(_candidate(7), observations, marker, RansacConfig())
    assert isinstance(result, Detection)
    assert sorted(c.point_index for c in result.inliers) == [0, 1, 2, 3, 4]

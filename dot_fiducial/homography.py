"""RANSAC homography verification of marker candidates."""

from __future__ import annotations

import itertools
import logging
from typing import Optional, Sequence, Union

import cv2
import numpy as np

from .config import RansacConfig
from .dm_types import Candidate, Detection, InsufficientConsensus, MarkerDefinition, PointObservation
from .transforms import apply_homography, marker_corners, normalize_homography, reprojection_errors, triangle_area2


logger = logging.getLogger(__name__)

MIN_CORRESPONDENCES = 4
_COLLINEAR_EPS = 1e-6


def _is_degenerate(pts: np.ndarray) -> bool:
    """True when any three of the four points are (nearly) collinear."""
    span = np.ptp(pts, axis=0).max()
    if span <= 0:
        return True
    tol = _COLLINEAR_EPS * span * span
    for i, j, k in itertools.combinations(range(4), 3):
        if abs(triangle_area2(pts[i], pts[j], pts[k])) <= tol:
            return True
    return False


def _fit_minimal(src: np.ndarray, dst: np.ndarray) -> Optional[np.ndarray]:
    H = cv2.getPerspectiveTransform(src.astype(np.float32), dst.astype(np.float32))
    return normalize_homography(H)


def _fit_least_squares(src: np.ndarray, dst: np.ndarray) -> Optional[np.ndarray]:
    H, _mask = cv2.findHomography(src.astype(np.float64), dst.astype(np.float64), 0)
    if H is None:
        return None
    return normalize_homography(H)


def verify(
    candidate: Candidate,
    observations: Sequence[PointObservation],
    marker: MarkerDefinition,
    ransac_config: RansacConfig,
    rng: Optional[np.random.Generator] = None,
) -> Union[Detection, InsufficientConsensus]:
    """
    Fit a marker -> image homography to the candidate's correspondences.

    Args:
        candidate: Output of voting for one marker
        observations: Observed dots, indexed by ``Correspondence.observation_index``
        marker: Registered marker definition (points in marker_length units)
        ransac_config: Iterations, inlier threshold and acceptance fraction
        rng: Random generator; a fresh one seeded from the config when omitted

    Returns:
        Detection when more than ``min_inlier_fraction`` of the
        correspondences agree and, beyond exactly four correspondences, more
        than four are inliers; otherwise InsufficientConsensus
    """
    corr = candidate.correspondences
    n = len(corr)
    if n < MIN_CORRESPONDENCES:
        return InsufficientConsensus(candidate.marker_id, "too few correspondences", n)

    src = marker.points[[c.point_index for c in corr]]
    dst = np.array([observations[c.observation_index].center for c in corr], dtype=np.float64)
    if rng is None:
        rng = np.random.default_rng(ransac_config.random_seed)
    threshold = float(ransac_config.inlier_threshold)

    best_H: Optional[np.ndarray] = None
    best_mask = np.zeros(n, dtype=bool)
    best_count = 0

    for _ in range(ransac_config.iterations):
        sample = rng.choice(n, size=MIN_CORRESPONDENCES, replace=False)
        if _is_degenerate(src[sample]) or _is_degenerate(dst[sample]):
            continue
        H = _fit_minimal(src[sample], dst[sample])
        if H is None:
            continue
        mask = reprojection_errors(H, src, dst) <= threshold
        count = int(mask.sum())
        if count > best_count:
            best_H, best_mask, best_count = H, mask, count
            if count == n:
                break

    if best_H is None:
        return InsufficientConsensus(candidate.marker_id, "no valid model", n)

    if best_count >= MIN_CORRESPONDENCES:
        refit = _fit_least_squares(src[best_mask], dst[best_mask])
        if refit is not None:
            mask = reprojection_errors(refit, src, dst) <= threshold
            if int(mask.sum()) >= best_count:
                best_H, best_mask, best_count = refit, mask, int(mask.sum())

    fraction = best_count / n
    if fraction <= ransac_config.min_inlier_fraction:
        return InsufficientConsensus(candidate.marker_id, "insufficient consensus", n, fraction)
    # any four correspondences fit exactly; with more, the model needs support outside its sample
    if n > MIN_CORRESPONDENCES and best_count <= MIN_CORRESPONDENCES:
        return InsufficientConsensus(candidate.marker_id, "no support beyond minimal sample", n, fraction)

    inliers = [c for c, ok in zip(corr, best_mask) if ok]
    logger.debug(
        "marker %d verified: %d/%d inliers (%.2f)", candidate.marker_id, best_count, n, fraction
    )
    return Detection(
        marker_id=candidate.marker_id,
        homography=best_H,
        inliers=inliers,
        inlier_fraction=fraction,
        votes=candidate.votes,
        corners=apply_homography(best_H, marker_corners(marker.width)),
    )

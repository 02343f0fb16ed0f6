"""Planar homography utilities for marker <-> image mapping."""

import numpy as np
from typing import Optional


def apply_homography(H: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Map 2D points through a homography.

    Args:
        H: 3x3 homography
        points: (N, 2) points

    Returns:
        (N, 2) mapped points; points sent to infinity come back as inf
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    hom = np.hstack([pts, np.ones((pts.shape[0], 1))]) @ np.asarray(H, dtype=np.float64).T
    w = hom[:, 2:3]
    with np.errstate(divide="ignore", invalid="ignore"):
        out = hom[:, :2] / w
    out[~np.isfinite(out).all(axis=1)] = np.inf
    return out


def reprojection_errors(H: np.ndarray, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """
    Euclidean distance between H(src) and dst for every correspondence.

    Args:
        H: 3x3 homography mapping src -> dst
        src: (N, 2) source points
        dst: (N, 2) destination points

    Returns:
        (N,) errors, inf where the projection is undefined
    """
    proj = apply_homography(H, src)
    with np.errstate(invalid="ignore"):
        err = np.linalg.norm(proj - np.asarray(dst, dtype=np.float64).reshape(-1, 2), axis=1)
    err[~np.isfinite(err)] = np.inf
    return err


def normalize_homography(H: np.ndarray) -> Optional[np.ndarray]:
    """Scale H so H[2, 2] == 1. Returns None for non-finite or degenerate H."""
    H = np.asarray(H, dtype=np.float64)
    if H.shape != (3, 3) or not np.isfinite(H).all():
        return None
    if abs(H[2, 2]) < 1e-12 or abs(np.linalg.det(H)) < 1e-12:
        return None
    return H / H[2, 2]


def marker_corners(width: float) -> np.ndarray:
    """Corners of the marker square, clockwise from the origin in image orientation."""
    w = float(width)
    return np.array([[0.0, 0.0], [w, 0.0], [w, w], [0.0, w]], dtype=np.float64)


def similarity_homography(
    scale: float,
    angle_rad: float = 0.0,
    tx: float = 0.0,
    ty: float = 0.0,
) -> np.ndarray:
    """
    Build a rotation + uniform scale + translation as a 3x3 homography.

    Args:
        scale: Uniform scale (e.g. pixels per marker unit)
        angle_rad: In-plane rotation
        tx, ty: Translation applied after rotation and scale

    Returns:
        3x3 homography
    """
    c = np.cos(angle_rad) * scale
    s = np.sin(angle_rad) * scale
    return np.array([[c, -s, tx], [s, c, ty], [0.0, 0.0, 1.0]], dtype=np.float64)


def triangle_area2(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    """Twice the signed area of triangles (a, b, c); operates on the last axis."""
    return (b[..., 0] - a[..., 0]) * (c[..., 1] - a[..., 1]) - (b[..., 1] - a[..., 1]) * (c[..., 0] - a[..., 0])

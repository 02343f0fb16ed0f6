"""Rasterize markers: printable pages and synthetic camera views."""

from __future__ import annotations

from typing import Iterable, Optional

import cv2
import numpy as np

from .dm_types import MarkerDefinition
from .transforms import apply_homography, marker_corners


_SHIFT = 4  # fixed point bits for sub-pixel drawing
_ONE = 1 << _SHIFT


def _fixed(points: np.ndarray) -> np.ndarray:
    return np.round(np.asarray(points, dtype=np.float64) * _ONE).astype(np.int32)


def render_marker_image(
    marker: MarkerDefinition,
    pixels_per_unit: float,
    margin: Optional[float] = None,
    draw_border: bool = False,
) -> np.ndarray:
    """
    Draw one marker as black dots on a white page.

    Args:
        marker: Marker to draw
        pixels_per_unit: Output resolution, pixels per marker unit
        margin: White space around the marker square in marker units
            (defaults to one dot diameter)
        draw_border: Outline the marker square

    Returns:
        uint8 gray image
    """
    if pixels_per_unit <= 0:
        raise ValueError("pixels_per_unit must be positive")
    if margin is None:
        margin = marker.dot_diameter
    size = int(np.ceil((marker.width + 2 * margin) * pixels_per_unit))
    page = np.full((size, size), 255, dtype=np.uint8)

    offset = margin * pixels_per_unit
    radius = max(1, int(round(0.5 * marker.dot_diameter * pixels_per_unit * _ONE)))
    for x, y in marker.points:
        center = _fixed([offset + x * pixels_per_unit, offset + y * pixels_per_unit])
        cv2.circle(page, (int(center[0]), int(center[1])), radius, 0, -1, cv2.LINE_AA, _SHIFT)

    if draw_border:
        square = _fixed(offset + marker_corners(marker.width) * pixels_per_unit).reshape(-1, 1, 2)
        cv2.polylines(page, [square], True, 0, 1, cv2.LINE_AA, _SHIFT)
    return page


def draw_marker(
    canvas: np.ndarray,
    marker: MarkerDefinition,
    H: np.ndarray,
    dot_diameter: Optional[float] = None,
    value: int = 255,
    samples: int = 48,
) -> np.ndarray:
    """Fill every dot of ``marker`` as seen through homography ``H`` (marker -> canvas)."""
    diameter = marker.dot_diameter if dot_diameter is None else dot_diameter
    if diameter <= 0:
        raise ValueError("marker has no dot diameter to draw")
    t = np.linspace(0.0, 2.0 * np.pi, samples, endpoint=False)
    circle = 0.5 * diameter * np.stack([np.cos(t), np.sin(t)], axis=1)

    for center in marker.points:
        outline = apply_homography(H, center + circle)
        if not np.isfinite(outline).all():
            continue
        # one call per dot; overlapping polygons in a single call cancel out
        cv2.fillPoly(canvas, [_fixed(outline).reshape(-1, 1, 2)], value, cv2.LINE_8, _SHIFT)
    return canvas


def render_binary(
    shape: tuple[int, int],
    placements: Iterable[tuple[MarkerDefinition, np.ndarray]],
) -> np.ndarray:
    """Binary view (dots = 255) of markers placed by (marker, homography) pairs."""
    canvas = np.zeros(shape, dtype=np.uint8)
    for marker, H in placements:
        draw_marker(canvas, marker, H)
    return canvas


def render_gray(
    shape: tuple[int, int],
    placements: Iterable[tuple[MarkerDefinition, np.ndarray]],
    background: int = 230,
    foreground: int = 30,
) -> np.ndarray:
    """Camera-like gray view: dark dots on light paper."""
    binary = render_binary(shape, placements)
    gray = np.full(shape, background, dtype=np.uint8)
    gray[binary > 0] = foreground
    return gray

"""Binary image -> ellipse shaped blobs (candidate dots)."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Optional

import cv2
import numpy as np

from .config import DotMarkerConfig
from .dm_types import PointObservation


logger = logging.getLogger(__name__)


def _contour_distance(pts: np.ndarray, cx: float, cy: float, ra: float, rb: float, angle_deg: float) -> np.ndarray:
    """Radial distance of every contour pixel from the ellipse (pixels)."""
    ang = np.deg2rad(angle_deg)
    ca, sa = np.cos(ang), np.sin(ang)
    dx = pts[:, 0] - cx
    dy = pts[:, 1] - cy
    u = dx * ca + dy * sa
    v = -dx * sa + dy * ca
    r = np.sqrt((u / ra) ** 2 + (v / rb) ** 2)
    rho = np.hypot(dx, dy)
    with np.errstate(divide="ignore", invalid="ignore"):
        d = rho * np.abs(1.0 - 1.0 / r)
    d[~np.isfinite(d)] = max(ra, rb)
    return d


class EllipseDetector:
    """Finds dots as ellipses fitted to the outer contour of foreground blobs.

    Rejections (border blobs, short contours, thin or elongated ellipses, poor
    fits, weak edges) are expected and frequent; they only shrink the output.
    """

    def __init__(self, config: DotMarkerConfig):
        self.contour_rule = int(config.contour_rule)
        self.contour_minimum_length = int(config.contour_minimum_length)
        self.minimum_minor_axis = float(config.minimum_minor_axis)
        self.max_major_to_minor_ratio = float(config.max_major_to_minor_ratio)
        self.max_distance_from_ellipse = float(config.max_distance_from_ellipse)
        self.edge = config.check_edge
        self.dark_dots = bool(config.threshold.dark_dots)

    def detect(self, binary: np.ndarray, gray: Optional[np.ndarray] = None) -> list[PointObservation]:
        """
        Detect dots in a binary image.

        Args:
            binary: 2D array, non-zero pixels are foreground (dots)
            gray: Optional gray image of the same size used for the edge check

        Returns:
            One PointObservation per accepted ellipse
        """
        binary = np.asarray(binary)
        if binary.ndim != 2:
            raise ValueError(f"binary image must be 2D, got shape {binary.shape}")
        if gray is not None and np.asarray(gray).shape[:2] != binary.shape:
            raise ValueError("gray image and binary image sizes differ")

        mask = (binary > 0).astype(np.uint8)
        h, w = mask.shape
        n_labels, labels, stats, _centroids = cv2.connectedComponentsWithStats(
            mask, connectivity=self.contour_rule
        )

        check_edge = gray is not None and self.edge.minimum_edge_intensity > 0
        gray_f = np.asarray(gray, dtype=np.float32) if check_edge else None

        observations: list[PointObservation] = []
        rejected: Counter = Counter()

        for label in range(1, n_labels):
            x, y, bw, bh = (int(v) for v in stats[label, :4])
            if x == 0 or y == 0 or x + bw >= w or y + bh >= h:
                rejected["border"] += 1
                continue

            roi = (labels[y:y + bh, x:x + bw] == label).astype(np.uint8)
            roi = cv2.copyMakeBorder(roi, 1, 1, 1, 1, cv2.BORDER_CONSTANT, value=0)
            contours = cv2.findContours(roi, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)[-2]
            if not contours:
                continue
            contour = max(contours, key=len)
            if len(contour) < max(5, self.contour_minimum_length):
                rejected["short_contour"] += 1
                continue

            pts = contour.reshape(-1, 2).astype(np.float64) + (x - 1, y - 1)
            try:
                (cx, cy), (ew, eh), angle = cv2.fitEllipse(pts.astype(np.float32))
            except cv2.error:
                rejected["fit"] += 1
                continue
            ra, rb = 0.5 * float(ew), 0.5 * float(eh)
            if not np.isfinite([cx, cy, ra, rb, angle]).all() or min(ra, rb) <= 0:
                rejected["fit"] += 1
                continue

            major, minor = max(ra, rb), min(ra, rb)
            if minor < self.minimum_minor_axis:
                rejected["minor_axis"] += 1
                continue
            if major / minor > self.max_major_to_minor_ratio:
                rejected["axis_ratio"] += 1
                continue

            if _contour_distance(pts, cx, cy, ra, rb, angle).max() > self.max_distance_from_ellipse:
                rejected["contour_distance"] += 1
                continue

            edge_intensity = None
            if check_edge:
                edge_intensity = self._edge_intensity(gray_f, cx, cy, ra, rb, angle)
                if edge_intensity < self.edge.minimum_edge_intensity:
                    rejected["edge"] += 1
                    continue

            observations.append(
                PointObservation(
                    index=len(observations),
                    x=float(cx),
                    y=float(cy),
                    major_axis=major,
                    minor_axis=minor,
                    angle=float(angle),
                    edge_intensity=edge_intensity,
                )
            )

        logger.debug("ellipses accepted=%d rejected=%s", len(observations), dict(rejected))
        return observations

    def _edge_intensity(
        self,
        gray: np.ndarray,
        cx: float,
        cy: float,
        ra: float,
        rb: float,
        angle_deg: float,
    ) -> float:
        """Mean intensity step across the ellipse boundary, positive for a real edge."""
        n = max(4, int(self.edge.number_of_samples))
        d = float(self.edge.check_radial_distance)
        t = np.linspace(0.0, 2.0 * np.pi, n, endpoint=False)
        ex = ra * np.cos(t)
        ey = rb * np.sin(t)
        nx = ex / (ra * ra)
        ny = ey / (rb * rb)
        norm = np.hypot(nx, ny)
        nx /= norm
        ny /= norm

        ang = np.deg2rad(angle_deg)
        ca, sa = np.cos(ang), np.sin(ang)

        def _sample(px: np.ndarray, py: np.ndarray) -> np.ndarray:
            map_x = (cx + px * ca - py * sa).astype(np.float32).reshape(1, -1)
            map_y = (cy + px * sa + py * ca).astype(np.float32).reshape(1, -1)
            return cv2.remap(gray, map_x, map_y, cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE).ravel()

        inner = _sample(ex - d * nx, ey - d * ny)
        outer = _sample(ex + d * nx, ey + d * ny)
        step = outer - inner if self.dark_dots else inner - outer
        return float(np.mean(step))

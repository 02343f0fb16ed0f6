from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np


@dataclass
class Frame:
    idx: int
    ts_iso: str
    image: Any  # numpy array
    source: str = ""


@dataclass(frozen=True, eq=False)
class MarkerDefinition:
    """Dot centers of one marker in marker-local coordinates."""

    marker_id: int
    points: np.ndarray  # (K, 2) float64, read-only
    width: float
    dot_diameter: float = 0.0

    def __post_init__(self):
        pts = np.array(self.points, dtype=np.float64).reshape(-1, 2)
        pts.flags.writeable = False
        object.__setattr__(self, "points", pts)

    def __len__(self) -> int:
        return int(self.points.shape[0])

    def scaled(self, width: float) -> MarkerDefinition:
        """Return a copy whose coordinates are rescaled to a new marker width."""
        s = float(width) / float(self.width)
        return MarkerDefinition(self.marker_id, self.points * s, float(width), self.dot_diameter * s)


@dataclass
class MarkerSet:
    random_seed: int
    dot_count: int
    dot_diameter: float
    marker_width: float
    units: str = "mm"
    markers: list[MarkerDefinition] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.markers)


@dataclass
class PointObservation:
    index: int
    x: float
    y: float
    major_axis: float  # semi-axis, px
    minor_axis: float  # semi-axis, px
    angle: float  # degrees, as reported by cv2.fitEllipse
    edge_intensity: Optional[float] = None

    @property
    def axis_ratio(self) -> float:
        return self.major_axis / max(self.minor_axis, 1e-12)

    @property
    def center(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass
class LlahDescriptor:
    point_index: int
    combination: tuple[int, ...]  # neighbor indices in canonical order
    invariants: tuple[float, ...]
    levels: tuple[int, ...]
    key: int


@dataclass
class HashEntry:
    marker_id: int
    point_index: int
    descriptor: LlahDescriptor


@dataclass
class Correspondence:
    observation_index: int
    point_index: int
    votes: int


@dataclass
class Candidate:
    marker_id: int
    votes: int
    correspondences: list[Correspondence] = field(default_factory=list)


@dataclass
class Detection:
    marker_id: int
    homography: np.ndarray  # 3x3, marker-local -> image
    inliers: list[Correspondence]
    inlier_fraction: float
    votes: int = 0
    corners: Optional[np.ndarray] = None  # (4, 2) marker square in image px


@dataclass
class InsufficientConsensus:
    """Verification outcome for a candidate that is not a detection."""

    marker_id: int
    reason: str
    correspondences: int
    inlier_fraction: float = 0.0

from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigurationError


HASH_TYPES = {"affine": 4, "cross_ratio": 5}  # hash type -> points per invariant
THRESHOLD_METHODS = ("global_otsu", "local_mean", "local_gaussian", "fixed")
MAX_HASH_TABLE_SIZE = 2 ** 32


@dataclass
class ThresholdConfig:
    """How gray images are turned into the binary image the detector consumes."""

    method: str = "local_mean"
    block_size: int = 51  # local methods only, odd
    offset: float = 5.0  # margin between a dot pixel and the local mean
    level: int = 128  # fixed method only
    dark_dots: bool = True  # printed dots are darker than the paper

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def check_validity(self) -> None:
        if self.method not in THRESHOLD_METHODS:
            raise ConfigurationError(f"Unknown threshold method: {self.method}")
        if self.method.startswith("local") and (self.block_size < 3 or self.block_size % 2 == 0):
            raise ConfigurationError("threshold.block_size must be an odd number >= 3")


@dataclass
class LlahConfig:
    number_of_neighbors: int = 7  # N
    size_of_combination: int = 5  # M
    quantization_k: int = 32
    hash_type: str = "affine"
    hash_table_size: int = MAX_HASH_TABLE_SIZE

    @property
    def invariant_size(self) -> int:
        return HASH_TYPES[self.hash_type]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def check_validity(self) -> None:
        if self.hash_type not in HASH_TYPES:
            raise ConfigurationError(f"Unknown LLAH hash type: {self.hash_type}")
        if self.size_of_combination >= self.number_of_neighbors:
            raise ConfigurationError(
                f"llah.size_of_combination ({self.size_of_combination}) must be less than "
                f"llah.number_of_neighbors ({self.number_of_neighbors})"
            )
        if self.size_of_combination < self.invariant_size:
            raise ConfigurationError(
                f"hash type {self.hash_type} needs size_of_combination >= {self.invariant_size}"
            )
        if self.quantization_k < 2:
            raise ConfigurationError("llah.quantization_k must be at least 2")
        if not 1 <= self.hash_table_size <= MAX_HASH_TABLE_SIZE:
            raise ConfigurationError("llah.hash_table_size must be in 1 .. 2**32")


@dataclass
class RansacConfig:
    iterations: int = 200
    inlier_threshold: float = 2.0  # reprojection error in pixels
    min_inlier_fraction: float = 0.5
    random_seed: int = 0xBEEF

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def check_validity(self) -> None:
        if self.iterations <= 0:
            raise ConfigurationError("ransac.iterations must be positive")
        if self.inlier_threshold <= 0:
            raise ConfigurationError("ransac.inlier_threshold must be positive")
        if not 0.0 <= self.min_inlier_fraction < 1.0:
            raise ConfigurationError("ransac.min_inlier_fraction must be in [0, 1)")


@dataclass
class EdgeCheckConfig:
    """Intensity check along a fitted ellipse; suppresses thresholding artifacts."""

    minimum_edge_intensity: float = 20.0  # <= 0 disables the check
    number_of_samples: int = 20
    check_radial_distance: float = 1.5

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SessionConfig:
    """Where and how a batch recognition run stores its results."""

    session_root: str = "./sessions"
    session_name: str = "dots"
    markers_path: Optional[str] = None  # YAML marker set
    workers: int = 4
    max_frames: Optional[int] = None
    save_annotated: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "SessionConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self

    def check_validity(self) -> None:
        if self.workers < 1:
            raise ConfigurationError("session.workers must be at least 1")
        if self.max_frames is not None and self.max_frames < 0:
            raise ConfigurationError("session.max_frames must not be negative")


@dataclass
class DotMarkerConfig:
    marker_length: float = -1.0  # must match the width the dots were generated with
    threshold: ThresholdConfig = field(default_factory=ThresholdConfig)
    llah: LlahConfig = field(default_factory=LlahConfig)
    ransac: RansacConfig = field(default_factory=RansacConfig)
    contour_rule: int = 4
    contour_minimum_length: int = 8
    max_distance_from_ellipse: float = 3.0
    minimum_minor_axis: float = 0.5
    max_major_to_minor_ratio: float = 20.0
    check_edge: EdgeCheckConfig = field(default_factory=EdgeCheckConfig)
    min_votes: int = 10
    pair_vote_ratio: float = 0.5  # of the best pairing seen for the same observation
    neighborhood_tolerance: float = 0.2  # of the mean neighbour distance
    session: SessionConfig = field(default_factory=SessionConfig)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "DotMarkerConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self

    def check_validity(self) -> None:
        self.llah.check_validity()
        self.ransac.check_validity()
        self.threshold.check_validity()
        self.session.check_validity()
        if self.marker_length <= 0:
            raise ConfigurationError("marker_length must be set to a positive value")
        if self.contour_rule not in (4, 8):
            raise ConfigurationError("contour_rule must be 4 or 8")
        if self.min_votes < 0:
            raise ConfigurationError("min_votes must not be negative")
        if not 0.0 <= self.pair_vote_ratio <= 1.0:
            raise ConfigurationError("pair_vote_ratio must be in [0, 1]")
        if self.neighborhood_tolerance <= 0:
            raise ConfigurationError("neighborhood_tolerance must be positive")


def _load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be a mapping")
    return value


def load_config(path: str | Path) -> DotMarkerConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    cfg = DotMarkerConfig()
    cfg.marker_length = float(raw.get("marker_length", cfg.marker_length))
    cfg.contour_rule = int(raw.get("contour_rule", cfg.contour_rule))
    cfg.contour_minimum_length = int(raw.get("contour_minimum_length", cfg.contour_minimum_length))
    cfg.max_distance_from_ellipse = float(raw.get("max_distance_from_ellipse", cfg.max_distance_from_ellipse))
    cfg.minimum_minor_axis = float(raw.get("minimum_minor_axis", cfg.minimum_minor_axis))
    cfg.max_major_to_minor_ratio = float(raw.get("max_major_to_minor_ratio", cfg.max_major_to_minor_ratio))
    cfg.min_votes = int(raw.get("min_votes", cfg.min_votes))
    cfg.pair_vote_ratio = float(raw.get("pair_vote_ratio", cfg.pair_vote_ratio))
    cfg.neighborhood_tolerance = float(raw.get("neighborhood_tolerance", cfg.neighborhood_tolerance))

    th_raw = _section(raw, "threshold")
    th = cfg.threshold
    th.method = str(th_raw.get("method", th.method))
    th.block_size = int(th_raw.get("block_size", th.block_size))
    th.offset = float(th_raw.get("offset", th.offset))
    th.level = int(th_raw.get("level", th.level))
    th.dark_dots = bool(th_raw.get("dark_dots", th.dark_dots))

    llah_raw = _section(raw, "llah")
    llah = cfg.llah
    llah.number_of_neighbors = int(llah_raw.get("number_of_neighbors", llah.number_of_neighbors))
    llah.size_of_combination = int(llah_raw.get("size_of_combination", llah.size_of_combination))
    llah.quantization_k = int(llah_raw.get("quantization_k", llah.quantization_k))
    llah.hash_type = str(llah_raw.get("hash_type", llah.hash_type)).lower()
    llah.hash_table_size = int(llah_raw.get("hash_table_size", llah.hash_table_size))

    rs_raw = _section(raw, "ransac")
    rs = cfg.ransac
    rs.iterations = int(rs_raw.get("iterations", rs.iterations))
    rs.inlier_threshold = float(rs_raw.get("inlier_threshold", rs.inlier_threshold))
    rs.min_inlier_fraction = float(rs_raw.get("min_inlier_fraction", rs.min_inlier_fraction))
    rs.random_seed = int(rs_raw.get("random_seed", rs.random_seed))

    edge_raw = _section(raw, "check_edge")
    edge = cfg.check_edge
    edge.minimum_edge_intensity = float(edge_raw.get("minimum_edge_intensity", edge.minimum_edge_intensity))
    edge.number_of_samples = int(edge_raw.get("number_of_samples", edge.number_of_samples))
    edge.check_radial_distance = float(edge_raw.get("check_radial_distance", edge.check_radial_distance))

    ses_raw = _section(raw, "session")
    ses = cfg.session
    ses.session_root = str(ses_raw.get("session_root", ses.session_root))
    ses.session_name = str(ses_raw.get("session_name", ses.session_name))
    ses.markers_path = ses_raw.get("markers_path", ses.markers_path)
    ses.workers = int(ses_raw.get("workers", ses.workers))
    max_frames = ses_raw.get("max_frames", ses.max_frames)
    ses.max_frames = int(max_frames) if max_frames is not None else None
    ses.save_annotated = bool(ses_raw.get("save_annotated", ses.save_annotated))

    return cfg

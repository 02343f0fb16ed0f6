"""Marker registration and per-frame recognition."""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional, Union

import numpy as np

from .config import DotMarkerConfig
from .dm_types import Detection, InsufficientConsensus, MarkerDefinition, MarkerSet
from .ellipse import EllipseDetector
from .errors import ConfigurationError
from .homography import verify
from .llah import HashTable, LlahHasher, find_neighbors
from .strategies.threshold import build_threshold, to_gray
from .voting import assemble, cast_votes


logger = logging.getLogger(__name__)


class DotMarkerTracker:
    """
    Recognizes registered random dot markers in images.

    ``register`` runs once, before any frame is processed; afterwards the
    hash table and hasher are only read, so ``process`` may be called from
    several threads at once.
    """

    def __init__(self, config: DotMarkerConfig):
        config.check_validity()
        self.config = config
        self.detector = EllipseDetector(config)
        self.hasher = LlahHasher(config.llah)
        self.table = HashTable()
        self.threshold = build_threshold(config.threshold)
        self.markers: dict[int, MarkerDefinition] = {}

    @property
    def is_registered(self) -> bool:
        return bool(self.markers)

    def register(self, marker_set: Union[MarkerSet, Iterable[MarkerDefinition]]) -> None:
        """Index every dot of every marker in the hash table."""
        markers = marker_set.markers if isinstance(marker_set, MarkerSet) else list(marker_set)
        length = float(self.config.marker_length)

        self.table.clear()
        self.markers = {}
        for marker in markers:
            if marker.marker_id in self.markers:
                raise ConfigurationError(f"duplicate marker id {marker.marker_id}")
            if not math.isclose(marker.width, length):
                logger.info("rescaling marker %d from width %g to %g", marker.marker_id, marker.width, length)
                marker = marker.scaled(length)
            self.markers[marker.marker_id] = marker

        raw: dict[int, list] = {}
        samples = []
        for marker_id, marker in self.markers.items():
            neighbors = find_neighbors(marker.points, self.hasher.n)
            per_point = [self.hasher.compute_invariants(marker.points, i, neighbors) for i in range(len(marker))]
            raw[marker_id] = per_point
            samples.extend(r[1].ravel() for r in per_point if r is not None)
            if all(r is None for r in per_point):
                logger.warning("marker %d has too few dots (%d) to be recognized", marker_id, len(marker))

        if samples:
            self.hasher.learn_discretization(np.concatenate(samples))

        for marker_id, per_point in raw.items():
            for point_index, result in enumerate(per_point):
                if result is None:
                    continue
                for descriptor in self.hasher.describe(point_index, *result):
                    self.table.add(marker_id, descriptor)

        logger.info(
            "registered %d markers: %d descriptors in %d buckets",
            len(self.markers), len(self.table), self.table.bucket_count,
        )

    def process(self, binary: np.ndarray, gray: Optional[np.ndarray] = None) -> list[Detection]:
        """
        Run one recognition pass on a binary image.

        Args:
            binary: Non-zero pixels are dots
            gray: Optional gray image enabling the ellipse edge check

        Returns:
            Verified detections sorted by marker id
        """
        if not self.markers:
            raise RuntimeError("process() called before register()")

        observations = self.detector.detect(binary, gray)
        if len(observations) <= self.hasher.n:
            logger.debug("only %d dots found, nothing to match", len(observations))
            return []

        points = np.array([o.center for o in observations], dtype=np.float64)
        votes = cast_votes(self.hasher, self.table, points, self.markers, self.config.neighborhood_tolerance)
        candidates = assemble(votes, self.config.min_votes, self.config.pair_vote_ratio)

        detections: list[Detection] = []
        for candidate in candidates:
            result = verify(candidate, observations, self.markers[candidate.marker_id], self.config.ransac)
            if isinstance(result, InsufficientConsensus):
                logger.debug(
                    "marker %d rejected: %s (%d correspondences, %.2f inliers)",
                    result.marker_id, result.reason, result.correspondences, result.inlier_fraction,
                )
                continue
            detections.append(result)

        detections.sort(key=lambda d: d.marker_id)
        return detections

    def process_image(self, image: np.ndarray) -> list[Detection]:
        """Threshold a camera image with the configured strategy and recognize markers in it."""
        gray = to_gray(image)
        binary = self.threshold.apply(gray)
        return self.process(binary, gray)

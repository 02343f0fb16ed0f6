"""Locally Likely Arrangement Hashing (LLAH).

Every dot is described by the geometry of its N nearest neighbours. Each
M-of-N combination of neighbours, kept in angular order around the dot, yields
a tuple of geometric invariants. The invariants are quantized and folded into
one integer key which indexes a hash table built from the registered markers.
"""

from __future__ import annotations

import itertools
import logging
from collections import defaultdict
from typing import Iterable, Optional

import numpy as np
from scipy.spatial import cKDTree

from .config import LlahConfig
from .dm_types import HashEntry, LlahDescriptor
from .transforms import triangle_area2


logger = logging.getLogger(__name__)

_EPS = 1e-12


def _safe_ratio(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    den = np.where(np.abs(den) < _EPS, np.copysign(_EPS, den), den)
    return num / den


def _affine_invariant(p: np.ndarray) -> np.ndarray:
    # area ratio of two triangles sharing p0; unchanged by orientation-preserving affine maps
    p0, p1, p2, p3 = (p[..., i, :] for i in range(4))
    return _safe_ratio(triangle_area2(p0, p2, p3), triangle_area2(p0, p1, p2))


def _cross_ratio_invariant(p: np.ndarray) -> np.ndarray:
    # five point cross ratio; unchanged by homographies
    p0, p1, p2, p3, p4 = (p[..., i, :] for i in range(5))
    num = triangle_area2(p0, p1, p2) * triangle_area2(p0, p3, p4)
    den = triangle_area2(p0, p1, p3) * triangle_area2(p0, p2, p4)
    return _safe_ratio(num, den)


_INVARIANTS = {
    "affine": _affine_invariant,
    "cross_ratio": _cross_ratio_invariant,
}


def find_neighbors(points: np.ndarray, n: int) -> np.ndarray:
    """Indices of the ``n`` nearest neighbours of every point, closest first.

    Returns an empty ``(P, 0)`` array when the set has ``n`` points or fewer.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    count = pts.shape[0]
    if count <= n:
        return np.empty((count, 0), dtype=np.intp)
    tree = cKDTree(pts)
    _dist, idx = tree.query(pts, k=n + 1)
    out = np.empty((count, n), dtype=np.intp)
    for i, row in enumerate(np.asarray(idx, dtype=np.intp)):
        out[i] = row[row != i][:n]
    return out


class HashTable:
    """Key -> bucket of entries. Filled at registration, read-only afterwards."""

    def __init__(self):
        self._buckets: dict[int, list[HashEntry]] = defaultdict(list)
        self._entries = 0

    def __len__(self) -> int:
        return self._entries

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    def add(self, marker_id: int, descriptor: LlahDescriptor) -> None:
        self._buckets[descriptor.key].append(HashEntry(marker_id, descriptor.point_index, descriptor))
        self._entries += 1

    def lookup(self, descriptor: LlahDescriptor) -> list[HashEntry]:
        bucket = self._buckets.get(descriptor.key)
        if not bucket:
            return []
        # keys folded modulo the table size can collide; require identical levels
        return [e for e in bucket if e.descriptor.levels == descriptor.levels]

    def clear(self) -> None:
        self._buckets.clear()
        self._entries = 0


class LlahHasher:
    """Computes LLAH descriptors for points of a dot pattern."""

    def __init__(self, config: Optional[LlahConfig] = None):
        self.config = config or LlahConfig()
        self.config.check_validity()
        self.n = self.config.number_of_neighbors
        self.m = self.config.size_of_combination
        self.k = self.config.quantization_k
        self.table_size = self.config.hash_table_size
        self._invariant = _INVARIANTS[self.config.hash_type]

        combinations = np.array(list(itertools.combinations(range(self.n), self.m)), dtype=np.intp)
        shifts = (np.arange(self.m)[:, None] + np.arange(self.m)[None, :]) % self.m
        # [combination, shift, position] -> index into the angularly sorted neighbours
        self._shifted = combinations[:, shifts]
        self._subsets = np.array(
            list(itertools.combinations(range(self.m), self.config.invariant_size)), dtype=np.intp
        )
        self.boundaries = self.default_boundaries(self.k)

    @staticmethod
    def default_boundaries(k: int) -> np.ndarray:
        """K-1 boundaries, uniform in arctan space over the whole real line."""
        t = np.arange(1, k, dtype=np.float64) / k
        return np.tan(np.pi * (t - 0.5))

    @property
    def invariants_per_descriptor(self) -> int:
        return int(self._subsets.shape[0])

    def learn_discretization(self, values: np.ndarray) -> None:
        """Place the quantization boundaries at the K-quantiles of ``values``."""
        v = np.asarray(values, dtype=np.float64).ravel()
        v = np.sort(v[np.isfinite(v)])
        if v.size < self.k:
            logger.warning("only %d invariants available, keeping default discretization", v.size)
            return
        idx = (np.arange(1, self.k) * v.size) // self.k
        # midpoints between neighbouring samples keep every sample off a boundary
        self.boundaries = 0.5 * (v[idx - 1] + v[idx])
        logger.debug("learned %d quantization boundaries from %d invariants", self.boundaries.size, v.size)

    def quantize(self, invariants: np.ndarray) -> np.ndarray:
        return np.searchsorted(self.boundaries, invariants, side="right")

    def compute_key(self, levels: Iterable[int]) -> int:
        key = 0
        weight = 1
        for q in levels:
            key += int(q) * weight
            weight *= self.k
        return key % self.table_size

    def compute_invariants(
        self,
        points: np.ndarray,
        reference_index: int,
        neighbors: Optional[np.ndarray] = None,
    ) -> Optional[tuple[np.ndarray, np.ndarray]]:
        """
        Raw invariants for every combination and cyclic shift around one point.

        Args:
            points: (P, 2) point set
            reference_index: Index of the described point
            neighbors: Output of ``find_neighbors`` for the same set (optional)

        Returns:
            (sorted_neighbors, invariants) where invariants has shape
            (combinations, M, invariants_per_descriptor), or None when the
            point has fewer than N neighbours.
        """
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if neighbors is None:
            neighbors = find_neighbors(pts, self.n)
        nb_idx = np.asarray(neighbors[reference_index], dtype=np.intp)
        if nb_idx.size < self.n:
            return None

        rel = pts[nb_idx] - pts[reference_index]
        order = np.argsort(np.arctan2(rel[:, 1], rel[:, 0]), kind="stable")
        nb_idx = nb_idx[order]
        rel = rel[order]

        sub = rel[self._shifted][:, :, self._subsets]
        return nb_idx, self._invariant(sub)

    def describe(self, reference_index: int, sorted_neighbors: np.ndarray, invariants: np.ndarray) -> list[LlahDescriptor]:
        levels = self.quantize(invariants)
        out: list[LlahDescriptor] = []
        for c in range(levels.shape[0]):
            rows = [tuple(r) for r in levels[c].tolist()]
            # the shift with the largest level tuple is the canonical start of the cycle
            s = max(range(self.m), key=rows.__getitem__)
            combo = tuple(int(sorted_neighbors[j]) for j in self._shifted[c, s])
            out.append(
                LlahDescriptor(
                    point_index=int(reference_index),
                    combination=combo,
                    invariants=tuple(invariants[c, s].tolist()),
                    levels=rows[s],
                    key=self.compute_key(rows[s]),
                )
            )
        return out

    def encode(
        self,
        points: np.ndarray,
        reference_index: int,
        neighbors: Optional[np.ndarray] = None,
    ) -> list[LlahDescriptor]:
        """Descriptors of one point, one per M-of-N neighbour combination."""
        result = self.compute_invariants(points, reference_index, neighbors)
        if result is None:
            return []
        return self.describe(reference_index, *result)

    def encode_all(self, points: np.ndarray) -> list[list[LlahDescriptor]]:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        neighbors = find_neighbors(pts, self.n)
        return [self.encode(pts, i, neighbors) for i in range(pts.shape[0])]

"""Hash table voting: observed dots -> candidate markers with point correspondences."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Mapping, Optional

import numpy as np

from .dm_types import Candidate, Correspondence, LlahDescriptor, MarkerDefinition
from .llah import HashTable, LlahHasher, find_neighbors


logger = logging.getLogger(__name__)

DEFAULT_NEIGHBORHOOD_TOLERANCE = 0.2


def neighborhood_agrees(
    observed: np.ndarray,
    registered: np.ndarray,
    tolerance: float = DEFAULT_NEIGHBORHOOD_TOLERANCE,
) -> bool:
    """
    Check that two matched neighbourhoods are related by one affine map.

    The invariants only describe the neighbours, so a hash hit says nothing
    about the reference dot itself. Fitting the affine map neighbours ->
    neighbours and applying it to the registered reference tells whether the
    hit really pairs the two reference dots.

    Args:
        observed: (1 + M, 2) observed reference followed by its combination
        registered: (1 + M, 2) registered reference and combination, same order
        tolerance: Allowed error as a fraction of the mean observed
            reference -> neighbour distance

    Returns:
        True when every point, the reference included, lands within tolerance
    """
    src = np.hstack([registered, np.ones((registered.shape[0], 1))])
    A, *_ = np.linalg.lstsq(src[1:], observed[1:], rcond=None)
    scale = np.linalg.norm(observed[1:] - observed[0], axis=1).mean()
    if not np.isfinite(scale) or scale <= 0:
        return False
    err = np.linalg.norm(src @ A - observed, axis=1)
    return bool(err.max() <= tolerance * scale)


def _hit_agrees(
    points: np.ndarray,
    descriptor: LlahDescriptor,
    found: LlahDescriptor,
    marker: MarkerDefinition,
    tolerance: float,
) -> bool:
    observed = points[[descriptor.point_index, *descriptor.combination]]
    registered = marker.points[[found.point_index, *found.combination]]
    return neighborhood_agrees(observed, registered, tolerance)


def cast_votes(
    hasher: LlahHasher,
    table: HashTable,
    points: np.ndarray,
    markers: Optional[Mapping[int, MarkerDefinition]] = None,
    tolerance: float = DEFAULT_NEIGHBORHOOD_TOLERANCE,
) -> Counter:
    """
    Look up every descriptor of every observed point.

    Args:
        hasher: Hasher configured like the one that filled ``table``
        table: Registered marker descriptors
        points: (P, 2) observed dot centers, row i is observation i
        markers: Registered markers by id. When given, a hit only votes if
            the matched neighbourhoods agree geometrically (``neighborhood_agrees``)
        tolerance: Passed to ``neighborhood_agrees``

    Returns:
        Counter keyed by (marker_id, observation_index, point_index)
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    votes: Counter = Counter()
    if pts.shape[0] <= hasher.n:
        return votes

    neighbors = find_neighbors(pts, hasher.n)
    hits = 0
    for obs_idx in range(pts.shape[0]):
        for descriptor in hasher.encode(pts, obs_idx, neighbors):
            for entry in table.lookup(descriptor):
                hits += 1
                if markers is not None and not _hit_agrees(
                    pts, descriptor, entry.descriptor, markers[entry.marker_id], tolerance
                ):
                    continue
                votes[(entry.marker_id, obs_idx, entry.point_index)] += 1

    if markers is not None:
        logger.debug("%d of %d hash hits agree with their neighbourhood", sum(votes.values()), hits)
    return votes


def assemble(votes: Counter, min_votes: int, min_pair_ratio: float = 0.0) -> list[Candidate]:
    """Group votes by marker and pick one-to-one correspondences greedily.

    A marker becomes a candidate only when its total vote count exceeds
    ``min_votes``. A pairing is considered only when it has at least
    ``min_pair_ratio`` times the votes of the strongest pairing of the same
    observation with any marker. Candidates come back strongest first, ties
    by marker id.
    """
    best_per_obs: dict[int, int] = defaultdict(int)
    by_marker: dict[int, list[tuple[int, int, int]]] = defaultdict(list)
    for (marker_id, obs_idx, point_idx), count in votes.items():
        by_marker[marker_id].append((count, obs_idx, point_idx))
        best_per_obs[obs_idx] = max(best_per_obs[obs_idx], count)

    candidates: list[Candidate] = []
    for marker_id, pairings in by_marker.items():
        total = sum(p[0] for p in pairings)
        if total <= min_votes:
            logger.debug("marker %d: %d votes, below minimum %d", marker_id, total, min_votes)
            continue

        pairings.sort(key=lambda p: (-p[0], p[1], p[2]))
        used_obs: set[int] = set()
        used_points: set[int] = set()
        correspondences: list[Correspondence] = []
        for count, obs_idx, point_idx in pairings:
            if count < min_pair_ratio * best_per_obs[obs_idx]:
                continue
            if obs_idx in used_obs or point_idx in used_points:
                continue
            used_obs.add(obs_idx)
            used_points.add(point_idx)
            correspondences.append(Correspondence(obs_idx, point_idx, count))

        candidates.append(Candidate(marker_id, total, correspondences))

    candidates.sort(key=lambda c: (-c.votes, c.marker_id))
    return candidates

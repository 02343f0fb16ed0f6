"""Random dot marker generation.

Markers are sets of dots scattered uniformly over a square. A seeded
``numpy.random.Generator`` is threaded through every call so the same seed
always reproduces the same printed markers.
"""

from __future__ import annotations

import logging

import numpy as np

from .dm_types import MarkerDefinition, MarkerSet
from .errors import ConfigurationError, GenerationFailure


logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 1000


def _as_rng(rng) -> np.random.Generator:
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(int(rng))


def generate_marker(
    rng,
    dot_count: int,
    width: float,
    min_separation: float,
    marker_id: int = 0,
    dot_diameter: float = 0.0,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> MarkerDefinition:
    """Place ``dot_count`` dots inside ``[0, width) x [0, width)``.

    Args:
        rng: ``numpy.random.Generator`` (advanced in place) or an integer seed
        dot_count: Number of dots in the marker
        width: Side length of the marker square
        min_separation: Minimum center-to-center distance between two dots
        marker_id: Identity stored in the returned definition
        dot_diameter: Dot diameter stored in the returned definition
        max_attempts: Draws allowed per dot before giving up

    Returns:
        MarkerDefinition with the dots in placement order

    Raises:
        GenerationFailure: a dot could not be placed within ``max_attempts``
    """
    rng = _as_rng(rng)
    min_sq = float(min_separation) ** 2
    points = np.empty((dot_count, 2), dtype=np.float64)

    for i in range(dot_count):
        for _attempt in range(max_attempts):
            candidate = rng.uniform(0.0, width, size=2)
            if i == 0:
                break
            d2 = np.sum((points[:i] - candidate) ** 2, axis=1)
            if d2.min() >= min_sq:
                break
        else:
            raise GenerationFailure(
                f"could not place dot {i + 1} of {dot_count} with separation {min_separation} "
                f"in a {width}x{width} marker after {max_attempts} attempts"
            )
        points[i] = candidate

    return MarkerDefinition(marker_id, points, float(width), float(dot_diameter))


def generate_marker_set(
    seed: int,
    marker_count: int,
    dot_count: int,
    marker_width: float,
    dot_diameter: float,
    units: str = "mm",
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> MarkerSet:
    """Generate ``marker_count`` independent markers from one random stream."""
    if marker_count < 1 or dot_count < 1:
        raise ConfigurationError("marker_count and dot_count must be at least 1")
    if marker_width <= 0 or dot_diameter <= 0:
        raise ConfigurationError("marker_width and dot_diameter must be positive")

    rng = np.random.default_rng(seed)
    min_separation = dot_diameter * 2.0
    markers = [
        generate_marker(rng, dot_count, marker_width, min_separation, marker_id=i,
                        dot_diameter=dot_diameter, max_attempts=max_attempts)
        for i in range(marker_count)
    ]
    logger.info(
        "generated %d markers: dots=%d width=%g diameter=%g seed=%#x",
        marker_count, dot_count, marker_width, dot_diameter, seed,
    )
    return MarkerSet(
        random_seed=int(seed),
        dot_count=int(dot_count),
        dot_diameter=float(dot_diameter),
        marker_width=float(marker_width),
        units=units,
        markers=markers,
    )

from pathlib import Path
from typing import Any, Union

import yaml

from ..dm_types import MarkerDefinition, MarkerSet


def marker_set_to_dict(marker_set: MarkerSet) -> dict[str, Any]:
    return {
        "random_seed": int(marker_set.random_seed),
        "dot_diameter": float(marker_set.dot_diameter),
        "max_dots_per_marker": int(marker_set.dot_count),
        "marker_width": float(marker_set.marker_width),
        "units": marker_set.units,
        "markers": [[[float(x), float(y)] for x, y in m.points] for m in marker_set.markers],
    }


def marker_set_from_dict(data: Any) -> MarkerSet:
    if not isinstance(data, dict):
        raise ValueError("marker file root must be a mapping")
    for key in ("dot_diameter", "marker_width", "markers"):
        if key not in data:
            raise ValueError(f"marker file is missing '{key}'")

    width = float(data["marker_width"])
    if width <= 0:
        raise ValueError("marker_width must be positive")
    dot_diameter = float(data["dot_diameter"])

    raw_markers = data["markers"]
    if not isinstance(raw_markers, list):
        raise ValueError("markers must be a list")

    markers = []
    for marker_id, raw in enumerate(raw_markers):
        if not isinstance(raw, list):
            raise ValueError(f"marker {marker_id} must be a list of [x, y] points")
        points = []
        for pt in raw:
            if not isinstance(pt, (list, tuple)) or len(pt) != 2:
                raise ValueError(f"marker {marker_id}: bad point {pt!r}")
            points.append((float(pt[0]), float(pt[1])))
        markers.append(MarkerDefinition(marker_id, points, width, dot_diameter))

    dot_count = data.get("max_dots_per_marker")
    if dot_count is None:
        dot_count = max((len(m) for m in markers), default=0)

    return MarkerSet(
        random_seed=int(data.get("random_seed", 0)),
        dot_count=int(dot_count),
        dot_diameter=dot_diameter,
        marker_width=width,
        units=str(data.get("units", "mm")),
        markers=markers,
    )


def save_marker_set(marker_set: MarkerSet, path: Union[str, Path]) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as fp:
        yaml.safe_dump(marker_set_to_dict(marker_set), fp, default_flow_style=None, sort_keys=False)
    return p


def load_marker_set(path: Union[str, Path]) -> MarkerSet:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Marker file not found: {p}")
    with p.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp)
    return marker_set_from_dict(data)

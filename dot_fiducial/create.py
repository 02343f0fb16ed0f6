import argparse
import logging
import sys
from pathlib import Path

import cv2

from .errors import DotFiducialError
from .generator import generate_marker_set
from .logging_utils import setup_logger
from .render import render_marker_image
from .services.marker_io import save_marker_set


def _int_auto(value: str) -> int:
    # accepts 0x... as well as decimal
    return int(value, 0)


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Create printable random dot markers",
        epilog="example: -w 8 --units cm -um 4 -n 30 --dump-yaml --marker-border -o markers/",
    )
    ap.add_argument("-n", "--dots-per-marker", type=int, default=30, help="Number of dots per marker")
    ap.add_argument("-um", "--unique-markers", type=int, default=1, help="Number of unique markers to create")
    ap.add_argument("-dd", "--diameter", type=float, default=0.5, help="Dot diameter in marker units")
    ap.add_argument("-rs", "--random-seed", type=_int_auto, default=0xDEADBEEF, help="Random seed")
    ap.add_argument("-w", "--marker-width", type=float, default=8.0, help="Marker width in marker units")
    ap.add_argument("--units", default="cm", help="Unit label stored with the markers")
    ap.add_argument("--pixels-per-unit", type=float, default=100.0, help="Resolution of the PNG output")
    ap.add_argument("--dump-yaml", action="store_true", help="Save marker coordinates into a YAML file")
    ap.add_argument("--marker-border", action="store_true", help="Draw a line at the marker border")
    ap.add_argument("-o", "--output-dir", default=".", help="Directory for the PNG and YAML files")
    ap.add_argument("--verbose", action="store_true")
    return ap


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    logger = setup_logger("create", logging.DEBUG if args.verbose else logging.INFO)
    out_dir = Path(args.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    try:
        marker_set = generate_marker_set(
            args.random_seed,
            args.unique_markers,
            args.dots_per_marker,
            args.marker_width,
            args.diameter,
            units=args.units,
        )
    except DotFiducialError as e:
        logger.error("marker generation failed: %s", e)
        return 1

    for marker in marker_set.markers:
        page = render_marker_image(marker, args.pixels_per_unit, draw_border=args.marker_border)
        path = out_dir / f"marker_{marker.marker_id:03d}.png"
        if not cv2.imwrite(str(path), page):
            logger.error("could not write %s", path)
            return 1
        logger.info("wrote %s", path)

    if args.dump_yaml:
        path = save_marker_set(marker_set, out_dir / "markers.yaml")
        logger.info("wrote %s", path)

    return 0


if __name__ == "__main__":
    sys.exit(main())

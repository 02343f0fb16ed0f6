import argparse
import logging
import signal
import sys

from .capture import build_captures
from .config import DotMarkerConfig, load_config
from .services.marker_io import load_marker_set
from .tracker import DotMarkerTracker
from .worker import RecognitionWorker


_STOP_SIGNALS = [signal.SIGINT] + ([signal.SIGTERM] if hasattr(signal, "SIGTERM") else [])


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Recognize random dot markers in images and videos")
    ap.add_argument("inputs", nargs="+", help="Image files, image directories or video files")
    ap.add_argument("--config", help="Path to JSON/YAML config")
    ap.add_argument("--markers", help="YAML marker set created with dot_fiducial.create")
    ap.add_argument("--out")
    ap.add_argument("--name")
    ap.add_argument("--workers", type=int)
    ap.add_argument("--marker-length", type=float)
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--save-annotated", action="store_true")
    ap.add_argument("--no-save-annotated", action="store_true")
    ap.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return ap


def _apply_args(cfg: DotMarkerConfig, args: argparse.Namespace) -> DotMarkerConfig:
    save_annotated = None
    if args.save_annotated:
        save_annotated = True
    if args.no_save_annotated:
        save_annotated = False

    cfg.apply_overrides(marker_length=args.marker_length)
    cfg.session.apply_overrides(
        session_root=args.out,
        session_name=args.name,
        markers_path=args.markers,
        workers=args.workers,
        max_frames=args.max_frames,
        save_annotated=save_annotated,
    )
    return cfg


def main(argv=None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)
    logging.getLogger("dot_fiducial").setLevel(args.log_level)

    cfg = load_config(args.config) if args.config else DotMarkerConfig()
    cfg = _apply_args(cfg, args)
    if not cfg.session.markers_path:
        ap.error("a marker set is required (--markers or session.markers_path)")

    marker_set = load_marker_set(cfg.session.markers_path)
    if cfg.marker_length <= 0:
        # no explicit length: keep the units the markers were generated in
        cfg.marker_length = marker_set.marker_width

    tracker = DotMarkerTracker(cfg)
    tracker.register(marker_set)

    worker = RecognitionWorker(cfg, tracker, build_captures(args.inputs))

    def _handle_signal(_sig, _frame):
        worker.stop()

    previous = {sig: signal.signal(sig, _handle_signal) for sig in _STOP_SIGNALS}
    try:
        summary = worker.run()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())

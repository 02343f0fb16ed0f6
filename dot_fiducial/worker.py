from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

import cv2
import numpy as np

from .capture import BaseCapture
from .config import DotMarkerConfig
from .dm_types import Detection, Frame, MarkerDefinition
from .logging_utils import add_file_handler, setup_logger
from .output import CsvOutput, OutputSink
from .services.storage import SessionStorage
from .tracker import DotMarkerTracker
from .transforms import apply_homography


@dataclass
class SessionSummary:
    session_path: str
    frames_processed: int
    detections: int
    csv_path: str
    log_path: str
    avg_fps: float
    errors: int


def annotate(image: np.ndarray, detections: Sequence[Detection], markers: dict[int, MarkerDefinition]) -> np.ndarray:
    """Draw marker outlines, ids and inlier dots on a copy of ``image``."""
    draw = image.copy()
    if draw.ndim == 2:
        draw = cv2.cvtColor(draw, cv2.COLOR_GRAY2BGR)

    for det in detections:
        if det.corners is not None and np.isfinite(det.corners).all():
            quad = np.round(det.corners).astype(np.int32).reshape(-1, 1, 2)
            cv2.polylines(draw, [quad], True, (0, 255, 0), 2, cv2.LINE_AA)
            x, y = quad[0, 0]
            cv2.putText(draw, f"id={det.marker_id}", (int(x), int(y) - 6),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 255), 2, cv2.LINE_AA)

        marker = markers.get(det.marker_id)
        if marker is None or not det.inliers:
            continue
        pts = apply_homography(det.homography, marker.points[[c.point_index for c in det.inliers]])
        for px, py in pts[np.isfinite(pts).all(axis=1)]:
            cv2.circle(draw, (int(round(px)), int(round(py))), 3, (255, 0, 0), -1, cv2.LINE_AA)
    return draw


class RecognitionWorker:
    """
    Runs a registered tracker over every frame of the given captures.

    Frames are recognized on a thread pool; results are written to the outputs
    in frame order.
    """

    def __init__(
        self,
        config: DotMarkerConfig,
        tracker: DotMarkerTracker,
        captures: Sequence[BaseCapture],
        logger=None,
        outputs: Optional[list[OutputSink]] = None,
    ):
        self.config = config
        self.session = config.session
        self.tracker = tracker
        self.captures = list(captures)
        self.logger = logger or setup_logger(self.session.session_name)
        self.outputs = outputs if outputs is not None else [CsvOutput()]
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def _frames(self) -> Iterator[Frame]:
        for cap in self.captures:
            cap.start()
            try:
                yield from cap.frames()
            finally:
                cap.stop()

    def _finish(self, storage: SessionStorage, seq: int, frame: Frame, future: Future) -> Optional[int]:
        try:
            detections = future.result()
        except (cv2.error, ValueError) as e:
            self.logger.warning("frame=%d source=%s failed: %s", frame.idx, frame.source, e)
            return None

        for det in detections:
            for out in self.outputs:
                out.write_detection(frame, det)

        saved = None
        if detections and self.session.save_annotated:
            saved = storage.save_annotated(seq, annotate(frame.image, detections, self.tracker.markers), frame.source)

        self.logger.info(
            "frame=%d source=%s detections=%d ids=%s saved=%s",
            frame.idx, frame.source, len(detections), [d.marker_id for d in detections], saved,
        )
        return len(detections)

    def run(self) -> SessionSummary:
        if not self.tracker.is_registered:
            raise RuntimeError("tracker has no registered markers")

        storage = SessionStorage(self.session.session_root, name=self.session.session_name)
        session_path = storage.begin()
        storage.write_manifest(self.config.as_dict())

        log_file = str(Path(storage.logs_dir) / "session.log")
        file_handler = add_file_handler(logging.getLogger("dot_fiducial"), self.session.session_name, log_file)

        for out in self.outputs:
            out.open(Path(storage.session_dir))

        self.logger.info("session started: %s", session_path)
        self.logger.info("config: %s", self.config.as_dict())

        t0 = time.time()
        submitted = 0
        frames = 0
        detections = 0
        errors = 0
        max_in_flight = 2 * self.session.workers
        pending: deque = deque()
        frame_iter = self._frames()

        def _drain(keep: int) -> None:
            nonlocal frames, detections, errors
            while len(pending) > keep:
                n = self._finish(storage, *pending.popleft())
                frames += 1
                if n is None:
                    errors += 1
                else:
                    detections += n

        try:
            with ThreadPoolExecutor(max_workers=self.session.workers) as pool:
                for f in frame_iter:
                    if self._stop_event.is_set():
                        break
                    if self.session.max_frames is not None and submitted >= self.session.max_frames:
                        break
                    submitted += 1
                    pending.append((submitted, f, pool.submit(self.tracker.process_image, f.image)))
                    _drain(max_in_flight)
                _drain(0)
        finally:
            frame_iter.close()
            for out in self.outputs:
                out.close()
            logging.getLogger("dot_fiducial").removeHandler(file_handler)
            file_handler.close()

        for cap in self.captures:
            for path in getattr(cap, "failed", []):
                self.logger.warning("could not read image %s", path)
                errors += 1

        avg = frames / max(1e-6, (time.time() - t0))
        self.logger.info("summary frames=%d detections=%d avg_fps=%.2f errors=%d", frames, detections, avg, errors)

        csv_path = str(Path(storage.session_dir) / "detections.csv")
        return SessionSummary(
            str(session_path),
            frames,
            detections,
            csv_path,
            log_file,
            avg,
            errors,
        )

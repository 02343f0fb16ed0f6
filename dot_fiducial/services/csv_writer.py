import csv
import io

import numpy as np


class CsvWriter:
    HEADER = [
        "frame_idx", "source", "marker_id",
        "votes", "inliers", "inlier_fraction",
        "h00", "h01", "h02",
        "h10", "h11", "h12",
        "h20", "h21", "h22",
    ]

    def __init__(self, csv_path: str):
        self.csv_path = csv_path
        self._opened = False
        self._fh = None
        self._w = None

    def open(self):
        self._fh = open(self.csv_path, "w", newline="")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.HEADER)
        self._opened = True

    @staticmethod
    def _row(frame_idx, source, detection):
        h = np.asarray(detection.homography, dtype=np.float64).reshape(-1).tolist()
        if len(h) != 9:
            h = [float("nan")] * 9
        return [
            frame_idx, source, detection.marker_id,
            detection.votes, len(detection.inliers), f"{detection.inlier_fraction:.4f}",
            *(f"{v:.9g}" for v in h),
        ]

    def append(self, frame_idx, source, detection):
        self._w.writerow(self._row(frame_idx, source, detection))
        self._fh.flush()

    @classmethod
    def to_csv_line(cls, frame_idx, source, detection):
        buf = io.StringIO()
        csv.writer(buf).writerow(cls._row(frame_idx, source, detection))
        return buf.getvalue().strip()

    def close(self):
        if self._opened and self._fh:
            self._fh.close()
            self._opened = False
            self._fh = None
            self._w = None

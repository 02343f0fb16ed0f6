import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import cv2

from .dm_types import Frame


IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".pgm", ".ppm"}


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S")


class BaseCapture(ABC):
    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def next_frame(self) -> Optional[Frame]: ...

    @abstractmethod
    def stop(self) -> None: ...

    def frames(self) -> Iterable[Frame]:
        while True:
            f = self.next_frame()
            if f is None:
                return
            yield f


class ImageFileCapture(BaseCapture):
    """Still images read from disk, one frame per file."""

    def __init__(self, paths: Sequence[str]):
        self.paths = [str(p) for p in paths]
        self.idx = 0
        self.failed: list[str] = []

    def start(self) -> None:
        self.idx = 0
        self.failed = []

    def next_frame(self) -> Optional[Frame]:
        while self.idx < len(self.paths):
            path = self.paths[self.idx]
            self.idx += 1
            img = cv2.imread(path, cv2.IMREAD_COLOR)
            if img is None:
                self.failed.append(path)
                continue
            return Frame(self.idx, _now_iso(), img, source=path)
        return None

    def stop(self) -> None:
        return None


class VideoFileCapture(BaseCapture):
    def __init__(self, path: str):
        self.path = str(path)
        self.cap: Any = None
        self.idx = 0

    def start(self) -> None:
        self.cap = cv2.VideoCapture(self.path)
        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open video: {self.path}")

    def next_frame(self) -> Optional[Frame]:
        ok, img = self.cap.read()
        if not ok:
            return None
        self.idx += 1
        return Frame(self.idx, _now_iso(), img, source=self.path)

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


def build_captures(inputs: Sequence[str]) -> list[BaseCapture]:
    """Directories and image files become ImageFileCaptures, anything else is opened as video."""
    captures: list[BaseCapture] = []
    images: list[str] = []
    for item in inputs:
        p = Path(item)
        if p.is_dir():
            images.extend(str(c) for c in sorted(p.iterdir()) if c.suffix.lower() in IMAGE_SUFFIXES)
        elif p.suffix.lower() in IMAGE_SUFFIXES:
            images.append(str(p))
        else:
            if images:
                captures.append(ImageFileCapture(images))
                images = []
            captures.append(VideoFileCapture(str(p)))
    if images:
        captures.append(ImageFileCapture(images))
    return captures

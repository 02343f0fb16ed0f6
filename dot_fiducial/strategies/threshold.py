from abc import ABC, abstractmethod

import cv2
import numpy as np

from ..config import ThresholdConfig
from ..errors import ConfigurationError


def to_gray(image: np.ndarray) -> np.ndarray:
    """BGR / BGRA / gray input -> single channel uint8."""
    img = np.asarray(image)
    if img.ndim == 2:
        gray = img
    elif img.ndim == 3 and img.shape[2] == 1:
        gray = img[:, :, 0]
    elif img.ndim == 3 and img.shape[2] == 3:
        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    elif img.ndim == 3 and img.shape[2] == 4:
        gray = cv2.cvtColor(img, cv2.COLOR_BGRA2GRAY)
    else:
        raise ValueError(f"unsupported image shape {img.shape}")
    if gray.dtype != np.uint8:
        gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    return gray


class ThresholdStrategy(ABC):
    """Gray image -> binary image with dots as non-zero foreground."""

    def __init__(self, dark_dots: bool = True):
        self.dark_dots = dark_dots

    @property
    def _type(self) -> int:
        return cv2.THRESH_BINARY_INV if self.dark_dots else cv2.THRESH_BINARY

    @abstractmethod
    def apply(self, gray: np.ndarray) -> np.ndarray: ...


class GlobalOtsu(ThresholdStrategy):
    def apply(self, gray: np.ndarray) -> np.ndarray:
        _t, binary = cv2.threshold(gray, 0, 255, self._type | cv2.THRESH_OTSU)
        return binary


class FixedLevel(ThresholdStrategy):
    def __init__(self, level: int = 128, dark_dots: bool = True):
        super().__init__(dark_dots)
        self.level = level

    def apply(self, gray: np.ndarray) -> np.ndarray:
        _t, binary = cv2.threshold(gray, self.level, 255, self._type)
        return binary


class _LocalThreshold(ThresholdStrategy):
    adaptive_method = cv2.ADAPTIVE_THRESH_MEAN_C

    def __init__(self, block_size: int = 51, offset: float = 5.0, dark_dots: bool = True):
        super().__init__(dark_dots)
        self.block_size = block_size
        self.offset = offset

    def apply(self, gray: np.ndarray) -> np.ndarray:
        # cv2 compares against (local mean - C); flip C so the margin always favours background
        c = self.offset if self.dark_dots else -self.offset
        return cv2.adaptiveThreshold(gray, 255, self.adaptive_method, self._type, self.block_size, c)


class LocalMean(_LocalThreshold):
    adaptive_method = cv2.ADAPTIVE_THRESH_MEAN_C


class LocalGaussian(_LocalThreshold):
    adaptive_method = cv2.ADAPTIVE_THRESH_GAUSSIAN_C


def build_threshold(config: ThresholdConfig) -> ThresholdStrategy:
    config.check_validity()
    if config.method == "global_otsu":
        return GlobalOtsu(config.dark_dots)
    if config.method == "fixed":
        return FixedLevel(config.level, config.dark_dots)
    if config.method == "local_mean":
        return LocalMean(config.block_size, config.offset, config.dark_dots)
    if config.method == "local_gaussian":
        return LocalGaussian(config.block_size, config.offset, config.dark_dots)
    raise ConfigurationError(f"Unknown threshold method: {config.method}")

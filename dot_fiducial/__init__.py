"""Random dot fiducial markers: generation and LLAH based recognition."""

from .config import DotMarkerConfig, load_config
from .dm_types import Detection, MarkerDefinition, MarkerSet
from .errors import ConfigurationError, DotFiducialError, GenerationFailure
from .generator import generate_marker, generate_marker_set
from .tracker import DotMarkerTracker

__all__ = [
    "ConfigurationError",
    "Detection",
    "DotFiducialError",
    "DotMarkerConfig",
    "DotMarkerTracker",
    "GenerationFailure",
    "MarkerDefinition",
    "MarkerSet",
    "generate_marker",
    "generate_marker_set",
    "load_config",
]

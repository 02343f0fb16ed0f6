class DotFiducialError(Exception):
    """Base class for errors raised by dot_fiducial."""


class ConfigurationError(DotFiducialError, ValueError):
    """Invalid parameter combination, raised before any image is processed."""


class GenerationFailure(DotFiducialError, RuntimeError):
    """A dot could not be placed within the retry budget (marker too dense)."""

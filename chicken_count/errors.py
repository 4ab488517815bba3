"""
Error types raised by the detection pipeline.
"""


class DetectionError(Exception):
    """Base class for all pipeline errors."""


class NotFoundError(DetectionError):
    """Raised when an input path does not exist or cannot be listed."""


class DecodeError(DetectionError):
    """Raised when image content is corrupt or in an unsupported format."""


class ShapeError(DetectionError):
    """Raised when a pixel buffer or tensor has an inconsistent shape."""


class ModelLoadError(DetectionError):
    """Raised when a model cannot be fetched or parsed."""


class InferenceError(DetectionError):
    """Raised when running the model fails."""

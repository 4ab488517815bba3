"""
Chicken counting with pretrained detectors and custom classifiers.
"""

from .backends import BinaryClassifier, GenericDetector, InferenceBackend
from .batch import collect_image_paths, process_many
from .errors import (
    DecodeError,
    DetectionError,
    InferenceError,
    ModelLoadError,
    NotFoundError,
    ShapeError,
)
from .pipeline import BoxDetectionPipeline, ClassificationPipeline
from .types import BatchSummary, BoundingBoxResult, ClassificationResult

__version__ = "1.0.0"

__all__ = [
    "BinaryClassifier",
    "GenericDetector",
    "InferenceBackend",
    "BoxDetectionPipeline",
    "ClassificationPipeline",
    "collect_image_paths",
    "process_many",
    "BatchSummary",
    "BoundingBoxResult",
    "ClassificationResult",
    "DetectionError",
    "NotFoundError",
    "DecodeError",
    "ShapeError",
    "ModelLoadError",
    "InferenceError",
]

"""
Single-image pipelines: load, normalize, infer, interpret.

Each pipeline is built around an already loaded model handle owned by the
caller, so one model serves every image of a run.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Protocol, Tuple, Union

from . import image_loader
from .backends import BinaryClassifier, GenericDetector, InferenceBackend
from .config import ClassifierSettings, DetectorSettings
from .errors import DetectionError, InferenceError
from .interpreter import interpret_detections, interpret_scores
from .tensor_builder import tensor_scope
from .types import BoundingBoxResult, ClassificationResult, DetectionResult, Tensor

logger = logging.getLogger(__name__)


class Pipeline(Protocol):
    """Anything that turns one image path into a DetectionResult."""

    def process(self, path: Union[str, Path]) -> DetectionResult:
        ...


def _run_model(model: InferenceBackend, tensor: Tensor) -> Any:
    try:
        return model.infer(tensor)
    except DetectionError:
        raise
    except Exception as e:
        raise InferenceError(f"Model invocation failed: {e}") from e


class BoxDetectionPipeline:
    """Multi-class detection at native resolution, filtered to one class."""

    def __init__(self, model: InferenceBackend, settings: DetectorSettings = DetectorSettings()):
        self.model = model
        self.settings = settings

    def process(self, path: Union[str, Path]) -> BoundingBoxResult:
        buffer = image_loader.load(path)
        logger.info("Analyzing image: %s", path)

        with tensor_scope(buffer, channels=3) as tensor:
            detections = _run_model(self.model, tensor)

        return interpret_detections(
            detections,
            buffer.size,
            target_label=self.settings.target_label,
            threshold=self.settings.threshold
        )


class ClassificationPipeline:
    """Whole-image classification at the model's fixed input resolution."""

    def __init__(
        self,
        model: InferenceBackend,
        settings: ClassifierSettings = ClassifierSettings(),
        input_size: Optional[Tuple[int, int]] = None
    ):
        self.model = model
        self.settings = settings
        self.input_size = input_size or (settings.input_size, settings.input_size)

    def process(self, path: Union[str, Path]) -> ClassificationResult:
        buffer = image_loader.load(path)
        logger.info("Analyzing image: %s", path)

        original_size = buffer.size
        resized = image_loader.resize(buffer, *self.input_size)

        with tensor_scope(resized, channels=3, batch=True) as tensor:
            scores = _run_model(self.model, tensor)

        return interpret_scores(
            scores,
            original_size,
            labels=self.settings.labels,
            positive_label=self.settings.positive_label,
            threshold=self.settings.threshold
        )


def load_detector(settings: DetectorSettings = DetectorSettings()) -> GenericDetector:
    """Create and load the multi-class detector. Raises ModelLoadError."""
    detector = GenericDetector(
        weights=settings.weights,
        backend=settings.backend,
        min_score=settings.min_score,
        iou_threshold=settings.iou_threshold,
        img_size=settings.img_size
    )
    detector.load()
    return detector


def load_classifier(
    settings: ClassifierSettings = ClassifierSettings(),
    model_location: Optional[str] = None
) -> BinaryClassifier:
    """Create and load the binary classifier. Raises ModelLoadError."""
    classifier = BinaryClassifier(
        input_size=settings.input_size,
        download_timeout=settings.download_timeout
    )
    classifier.load(model_location or settings.model)
    return classifier


def build_detection_pipeline(settings: DetectorSettings = DetectorSettings()) -> BoxDetectionPipeline:
    """Load the detector once and wrap it in a pipeline."""
    return BoxDetectionPipeline(load_detector(settings), settings)


def build_classification_pipeline(settings: ClassifierSettings = ClassifierSettings(),
                                  model_location: Optional[str] = None) -> ClassificationPipeline:
    """Load the classifier once and wrap it in a pipeline sized to its input."""
    classifier = load_classifier(settings, model_location)
    return ClassificationPipeline(classifier, settings, input_size=classifier.input_size)

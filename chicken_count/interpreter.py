"""
Interpretation of raw model output into per-image results.
"""

from typing import List, Optional, Sequence

from .errors import InferenceError
from .types import (
    BoundingBoxResult,
    ClassificationResult,
    ImageSize,
    Prediction,
    RawDetection,
)

DEFAULT_TARGET_LABEL = "bird"  # COCO files chickens under "bird"
DEFAULT_DETECTION_THRESHOLD = 0.5

DEFAULT_LABELS = ("No Chicken", "Chicken")
DEFAULT_POSITIVE_LABEL = "Chicken"
DEFAULT_DECISION_THRESHOLD = 0.7


def interpret_detections(
    detections: Sequence[RawDetection],
    image_size: ImageSize,
    target_label: str = DEFAULT_TARGET_LABEL,
    threshold: float = DEFAULT_DETECTION_THRESHOLD
) -> BoundingBoxResult:
    """
    Keep the detections of the target class scoring above the threshold.

    The filter is stable: matching entries keep the model's output order.

    Args:
        detections: Raw detections in model output order
        image_size: Original image size
        target_label: Class label to keep
        threshold: Exclusive lower bound on the score

    Returns:
        BoundingBoxResult with both the filtered and the full list
    """
    detections = tuple(detections)
    filtered = tuple(
        d for d in detections
        if d.label == target_label and d.score > threshold
    )

    return BoundingBoxResult(
        image_size=image_size,
        total_count=len(detections),
        filtered_count=len(filtered),
        filtered=filtered,
        detections=detections
    )


def label_scores(scores: Sequence[float], labels: Sequence[str] = DEFAULT_LABELS) -> List[Prediction]:
    """Pair each score with its label, naming unlabeled outputs `Class {index}`."""
    return [
        Prediction(
            label=labels[i] if i < len(labels) else f"Class {i}",
            confidence=float(score)
        )
        for i, score in enumerate(scores)
    ]


def best_prediction(predictions: Sequence[Prediction]) -> Optional[Prediction]:
    """Highest-confidence prediction; the first one wins ties."""
    best = None
    for prediction in predictions:
        if best is None or prediction.confidence > best.confidence:
            best = prediction
    return best


def interpret_scores(
    scores: Sequence[float],
    image_size: ImageSize,
    labels: Sequence[str] = DEFAULT_LABELS,
    positive_label: str = DEFAULT_POSITIVE_LABEL,
    threshold: float = DEFAULT_DECISION_THRESHOLD
) -> ClassificationResult:
    """
    Turn classifier scores into a labeled decision.

    The decision is positive only when the best label is the positive label
    and its confidence exceeds the threshold.

    Args:
        scores: One score per output unit, in training order
        image_size: Original (pre-resize) image size
        labels: Labels in output order
        positive_label: Label that counts as a positive decision
        threshold: Exclusive lower bound on the winning confidence

    Raises:
        InferenceError: If the model produced no scores
    """
    predictions = label_scores(scores, labels)
    best = best_prediction(predictions)
    if best is None:
        raise InferenceError("Classifier returned no scores")

    return ClassificationResult(
        image_size=image_size,
        predictions=tuple(predictions),
        best=best,
        decision=best.label == positive_label and best.confidence > threshold,
        confidence=best.confidence
    )

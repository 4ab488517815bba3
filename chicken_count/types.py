"""
Data model shared by the pipeline stages.
"""

from pathlib import Path
from typing import List, Optional, Tuple, Union
from dataclasses import dataclass, field
import numpy as np

from .errors import DetectionError, ShapeError


@dataclass(frozen=True)
class ImageSize:
    """Original image dimensions in pixels."""
    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class PixelBuffer:
    """Decoded image as interleaved 8-bit channels, row-major."""
    width: int
    height: int
    channels: int
    data: bytes

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ShapeError(
                f"Pixel buffer dimensions must be positive, got {self.width}x{self.height}"
            )
        if self.channels not in (3, 4):
            raise ShapeError(f"Unsupported channel count: {self.channels}")

    @property
    def size(self) -> ImageSize:
        return ImageSize(self.width, self.height)

    @property
    def expected_length(self) -> int:
        """Number of bytes needed to hold every pixel."""
        return self.width * self.height * self.channels


class Tensor:
    """
    Normalized float32 image array with an explicit, disposable lifetime.

    Shape is (H, W, C) or (1, H, W, C). Once disposed the underlying array
    is released and any further access raises ShapeError.
    """

    def __init__(self, array: np.ndarray):
        if array.ndim not in (3, 4) or (array.ndim == 4 and array.shape[0] != 1):
            raise ShapeError(f"Unexpected tensor shape: {array.shape}")
        self._array: Optional[np.ndarray] = array
        self._shape = tuple(array.shape)

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._shape

    @property
    def size(self) -> int:
        """Element count, the product of the shape."""
        return int(np.prod(self._shape))

    @property
    def has_batch_dim(self) -> bool:
        return len(self._shape) == 4

    @property
    def height(self) -> int:
        return self._shape[-3]

    @property
    def width(self) -> int:
        return self._shape[-2]

    @property
    def channels(self) -> int:
        return self._shape[-1]

    @property
    def disposed(self) -> bool:
        return self._array is None

    @property
    def array(self) -> np.ndarray:
        if self._array is None:
            raise ShapeError("Tensor has already been disposed")
        return self._array

    def dispose(self) -> None:
        """Release the underlying array. Safe to call more than once."""
        self._array = None

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "live"
        return f"Tensor(shape={self._shape}, {state})"


BoundingBox = Tuple[float, float, float, float]  # x, y, width, height


@dataclass(frozen=True)
class RawDetection:
    """Single detection as produced by the multi-class model."""
    label: str
    score: float
    bbox: BoundingBox

    @property
    def x(self) -> float:
        return self.bbox[0]

    @property
    def y(self) -> float:
        return self.bbox[1]

    @property
    def width(self) -> float:
        return self.bbox[2]

    @property
    def height(self) -> float:
        return self.bbox[3]


@dataclass(frozen=True)
class Prediction:
    """Label paired with the classifier's score for it."""
    label: str
    confidence: float


@dataclass(frozen=True)
class BoundingBoxResult:
    """Interpreted output of the multi-class detector for one image."""
    image_size: ImageSize
    total_count: int
    filtered_count: int
    filtered: Tuple[RawDetection, ...]
    detections: Tuple[RawDetection, ...]

    @property
    def is_positive(self) -> bool:
        return self.filtered_count > 0

    @property
    def object_count(self) -> int:
        return self.filtered_count


@dataclass(frozen=True)
class ClassificationResult:
    """Interpreted output of the binary classifier for one image."""
    image_size: ImageSize
    predictions: Tuple[Prediction, ...]
    best: Prediction
    decision: bool
    confidence: float

    @property
    def is_positive(self) -> bool:
        return self.decision

    @property
    def object_count(self) -> int:
        return 1 if self.decision else 0


DetectionResult = Union[BoundingBoxResult, ClassificationResult]


@dataclass(frozen=True)
class ImageOutcome:
    """Outcome of one image in a batch: a result or the error that replaced it."""
    path: Path
    result: Optional[DetectionResult] = None
    error: Optional[DetectionError] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass
class BatchSummary:
    """Ordered per-image outcomes plus aggregate counts."""
    outcomes: List[ImageOutcome] = field(default_factory=list)
    total_positive: int = 0
    total_objects: int = 0

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def processed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        return self.attempted - self.processed

    @property
    def results(self) -> List[Optional[DetectionResult]]:
        return [outcome.result for outcome in self.outcomes]

    def add(self, outcome: ImageOutcome) -> None:
        self.outcomes.append(outcome)

    def finalize(self) -> "BatchSummary":
        """Compute aggregate counts over the non-null results."""
        results = [outcome.result for outcome in self.outcomes if outcome.ok]
        self.total_positive = sum(1 for r in results if r.is_positive)
        self.total_objects = sum(r.object_count for r in results)
        return self

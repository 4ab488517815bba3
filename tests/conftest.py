"""Pytest configuration and fixtures."""

import pytest
import numpy as np
from pathlib import Path
from PIL import Image

from chicken_count.types import RawDetection


class FakeDetector:
    """Stands in for GenericDetector; records every tensor it sees."""

    def __init__(self, detections=None, error=None):
        self.detections = list(detections or [])
        self.error = error
        self.tensors = []
        self.shapes = []

    def infer(self, tensor):
        self.tensors.append(tensor)
        self.shapes.append(tensor.shape)
        if self.error is not None:
            raise self.error
        return list(self.detections)


class FakeClassifier:
    """Stands in for BinaryClassifier; returns fixed scores."""

    def __init__(self, scores=(0.152, 0.848), error=None):
        self.scores = list(scores)
        self.error = error
        self.tensors = []
        self.shapes = []

    def infer(self, tensor):
        self.tensors.append(tensor)
        self.shapes.append(tensor.shape)
        if self.error is not None:
            raise self.error
        return list(self.scores)


@pytest.fixture
def sample_image():
    """Create a sample test image."""
    return np.random.randint(0, 255, (480, 640, 3), dtype=np.uint8)


@pytest.fixture
def make_image(tmp_path):
    """Factory writing a solid-color image; format follows the file extension."""

    def _make(name="image.png", size=(32, 24), color=(200, 100, 50), mode="RGB"):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if mode == "RGBA" and len(color) == 3:
            color = tuple(color) + (128,)
        Image.new(mode, size, color).save(path)
        return path

    return _make


@pytest.fixture
def corrupt_image(tmp_path):
    """A .jpg file whose content is not an image."""
    path = tmp_path / "corrupt.jpg"
    path.write_bytes(b"this is not a jpeg")
    return path


@pytest.fixture
def scenario_a_detections():
    """Two birds and one person, in model output order."""
    return [
        RawDetection(label="bird", score=0.873, bbox=(12.4, 30.6, 100.2, 80.5)),
        RawDetection(label="person", score=0.652, bbox=(200.0, 10.0, 50.0, 150.0)),
        RawDetection(label="bird", score=0.765, bbox=(150.5, 60.0, 90.0, 70.0)),
    ]


@pytest.fixture
def fake_detector():
    return FakeDetector


@pytest.fixture
def fake_classifier():
    return FakeClassifier


@pytest.fixture
def project_root():
    """Get project root directory."""
    return Path(__file__).parent.parent

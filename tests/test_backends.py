"""Tests for the inference backends."""

from types import SimpleNamespace

import pytest
import numpy as np
import onnxruntime
import requests

from chicken_count import backends
from chicken_count.backends import (
    BinaryClassifier,
    GenericDetector,
    is_url,
    letterbox,
    nms,
)
from chicken_count.errors import InferenceError, ModelLoadError
from chicken_count.types import Tensor


def make_session_class(input_shape, output, metadata=None, run_error=None):
    """Build a stand-in for onnxruntime.InferenceSession."""

    class FakeSession:
        created = []

        def __init__(self, source, providers=None):
            self.source = source
            self.providers = providers
            self.feeds = None
            FakeSession.created.append(self)

        def get_inputs(self):
            return [SimpleNamespace(name="images", shape=list(input_shape))]

        def get_outputs(self):
            return [SimpleNamespace(name="output0", shape=list(np.shape(output)))]

        def get_modelmeta(self):
            return SimpleNamespace(custom_metadata_map=metadata or {})

        def run(self, output_names, feeds):
            if run_error is not None:
                raise run_error
            self.feeds = feeds
            return [np.asarray(output, dtype=np.float32)]

    return FakeSession


@pytest.fixture
def patch_session(monkeypatch):
    """Install a fake InferenceSession and return its class."""

    def _patch(input_shape, output, metadata=None, run_error=None):
        session_cls = make_session_class(input_shape, output, metadata, run_error)
        monkeypatch.setattr(onnxruntime, "InferenceSession", session_cls)
        monkeypatch.setattr(onnxruntime, "get_available_providers", lambda: ["CPUExecutionProvider"])
        return session_cls

    return _patch


@pytest.fixture
def onnx_file(tmp_path):
    path = tmp_path / "model.onnx"
    path.write_bytes(b"\x08\x01")
    return path


class TestHelpers:

    def test_letterbox_preserves_aspect_ratio(self):
        """A 640x480 image is padded, not stretched, into 640x640."""
        img = np.zeros((480, 640, 3), dtype=np.float32)

        out, scale, pad = letterbox(img, 640)

        assert out.shape == (640, 640, 3)
        assert scale == pytest.approx(1.0)
        assert pad == (0.0, 80.0)
        assert out[0, 0, 0] == pytest.approx(114 / 255)
        assert out[320, 320, 0] == 0.0

    def test_letterbox_downscales(self):
        img = np.ones((200, 400, 3), dtype=np.float32)

        out, scale, pad = letterbox(img, 100)

        assert out.shape == (100, 100, 3)
        assert scale == pytest.approx(0.25)
        assert pad == (0.0, 25.0)

    def test_nms_removes_overlapping_boxes(self):
        boxes = np.array([
            [0, 0, 100, 100],
            [10, 10, 110, 110],  # Overlaps with first
            [200, 200, 300, 300],  # No overlap
        ], dtype=np.float32)
        scores = np.array([0.9, 0.8, 0.7], dtype=np.float32)

        assert nms(boxes, scores, 0.45) == [0, 2]

    def test_nms_orders_by_score(self):
        boxes = np.array([[0, 0, 10, 10], [50, 50, 60, 60]], dtype=np.float32)
        scores = np.array([0.3, 0.9], dtype=np.float32)

        assert nms(boxes, scores, 0.45) == [1, 0]

    @pytest.mark.parametrize("location,expected", [
        ("https://example.com/model.onnx", True),
        ("HTTP://example.com/model.onnx", True),
        ("./model/model.onnx", False),
        ("/abs/model.onnx", False),
    ])
    def test_is_url(self, location, expected):
        assert is_url(location) is expected


class TestGenericDetector:
    """Tests for GenericDetector."""

    def test_backend_from_extension(self):
        assert GenericDetector("yolov8n.pt").backend == "pytorch"
        assert GenericDetector("weights/best.onnx").backend == "onnx"

    def test_unknown_format(self):
        with pytest.raises(ModelLoadError):
            GenericDetector("model.tflite")

    def test_unknown_backend(self):
        with pytest.raises(ModelLoadError):
            GenericDetector("yolov8n.pt", backend="coreml")

    def test_infer_before_load(self):
        with pytest.raises(InferenceError):
            GenericDetector("yolov8n.pt").infer(Tensor(np.zeros((4, 4, 3), dtype=np.float32)))

    def test_missing_onnx_file(self, tmp_path):
        detector = GenericDetector(str(tmp_path / "absent.onnx"))
        with pytest.raises(ModelLoadError):
            detector.load()

    def test_unreadable_onnx_file(self, tmp_path):
        """A real ONNX Runtime parse failure becomes ModelLoadError."""
        path = tmp_path / "garbage.onnx"
        path.write_bytes(b"definitely not a protobuf graph")

        with pytest.raises(ModelLoadError):
            GenericDetector(str(path)).load()

    def test_onnx_load_reads_metadata(self, patch_session, onnx_file):
        patch_session(
            [1, 3, 320, 320],
            np.zeros((1, 6, 1)),
            metadata={"names": "{0: 'person', 1: 'bird'}"}
        )

        detector = GenericDetector(str(onnx_file))
        detector.load()

        assert detector.loaded
        assert detector.img_size == 320
        assert detector.class_names == {0: "person", 1: "bird"}
        assert detector.describe()["input_shape"] == [1, 3, 320, 320]

    def test_non_square_onnx_input_rejected(self, patch_session, onnx_file):
        patch_session([1, 3, 384, 640], np.zeros((1, 6, 1)))

        detector = GenericDetector(str(onnx_file))
        with pytest.raises(ModelLoadError, match="square"):
            detector.load()
        assert not detector.loaded

    def test_onnx_infer_decodes_boxes(self, patch_session, onnx_file):
        """Boxes come back as (x, y, w, h) in original image pixels, after NMS."""
        anchors = [
            [100, 180, 40, 60, 0.1, 0.9],   # bird
            [102, 182, 40, 60, 0.1, 0.8],   # duplicate bird, suppressed
            [400, 300, 50, 50, 0.7, 0.05],  # person
            [10, 10, 5, 5, 0.1, 0.1],       # below min_score
        ]
        output = np.array(anchors, dtype=np.float32).T[None]
        session_cls = patch_session(
            [1, 3, 640, 640], output,
            metadata={"names": "{0: 'person', 1: 'bird'}"}
        )

        detector = GenericDetector(str(onnx_file))
        detector.load()
        detections = detector.infer(Tensor(np.zeros((480, 640, 3), dtype=np.float32)))

        assert [d.label for d in detections] == ["bird", "person"]
        assert detections[0].score == pytest.approx(0.9)
        assert detections[0].bbox == pytest.approx((80.0, 70.0, 40.0, 60.0))
        assert detections[1].bbox == pytest.approx((375.0, 195.0, 50.0, 50.0))
        assert session_cls.created[0].feeds["images"].shape == (1, 3, 640, 640)

    def test_onnx_infer_no_detections(self, patch_session, onnx_file):
        patch_session([1, 3, 64, 64], np.zeros((1, 84, 10), dtype=np.float32))

        detector = GenericDetector(str(onnx_file))
        detector.load()

        assert detector.infer(Tensor(np.zeros((1, 32, 32, 3), dtype=np.float32))) == []

    def test_onnx_run_failure(self, patch_session, onnx_file):
        patch_session([1, 3, 64, 64], np.zeros((1, 84, 1)), run_error=RuntimeError("boom"))

        detector = GenericDetector(str(onnx_file))
        detector.load()

        with pytest.raises(InferenceError):
            detector.infer(Tensor(np.zeros((32, 32, 3), dtype=np.float32)))

    def test_pytorch_backend(self, monkeypatch):
        import ultralytics

        calls = []

        class FakeYOLO:
            names = {0: "person", 14: "bird"}

            def __init__(self, weights):
                self.weights = weights

            def __call__(self, frame, conf, iou, verbose):
                calls.append((frame, conf, iou))
                box = SimpleNamespace(xyxy=[[10.0, 20.0, 110.0, 220.0]], cls=[14], conf=[0.9])
                return [SimpleNamespace(boxes=[box])]

        monkeypatch.setattr(ultralytics, "YOLO", FakeYOLO)

        detector = GenericDetector("yolov8n.pt", min_score=0.3)
        detector.load()

        image = np.zeros((8, 8, 3), dtype=np.float32)
        image[:, :, 0] = 1.0  # pure red
        detections = detector.infer(Tensor(image))

        assert len(detections) == 1
        assert detections[0].label == "bird"
        assert detections[0].bbox == pytest.approx((10.0, 20.0, 100.0, 200.0))

        frame, conf, _ = calls[0]
        assert frame.dtype == np.uint8
        assert frame[0, 0].tolist() == [0, 0, 255]  # BGR
        assert conf == 0.3

    def test_pytorch_load_failure(self, monkeypatch):
        import ultralytics

        def broken(weights):
            raise ConnectionError("download failed")

        monkeypatch.setattr(ultralytics, "YOLO", broken)

        with pytest.raises(ModelLoadError):
            GenericDetector("yolov8n.pt").load()


class TestBinaryClassifier:
    """Tests for BinaryClassifier."""

    def test_missing_local_model(self, tmp_path):
        with pytest.raises(ModelLoadError):
            BinaryClassifier().load(str(tmp_path / "model" / "model.onnx"))

    def test_unreadable_local_model(self, tmp_path):
        path = tmp_path / "model.onnx"
        path.write_bytes(b"not a model")

        with pytest.raises(ModelLoadError):
            BinaryClassifier().load(str(path))

    def test_nhwc_model(self, patch_session, onnx_file):
        session_cls = patch_session(["batch", 224, 224, 3], [[0.152, 0.848]])

        classifier = BinaryClassifier()
        classifier.load(str(onnx_file))
        scores = classifier.infer(Tensor(np.zeros((1, 224, 224, 3), dtype=np.float32)))

        assert scores == pytest.approx([0.152, 0.848])
        assert not classifier.channels_first
        assert classifier.input_size == (224, 224)
        assert session_cls.created[0].feeds["images"].shape == (1, 224, 224, 3)

    def test_nchw_model_sets_size_and_layout(self, patch_session, onnx_file):
        session_cls = patch_session([1, 3, 128, 96], [[0.2, 0.3, 0.5]])

        classifier = BinaryClassifier()
        classifier.load(str(onnx_file))
        scores = classifier.infer(Tensor(np.zeros((128, 96, 3), dtype=np.float32)))

        assert classifier.channels_first
        assert classifier.input_size == (96, 128)
        assert len(scores) == 3
        assert session_cls.created[0].feeds["images"].shape == (1, 3, 128, 96)

    def test_dynamic_spatial_size_keeps_default(self, patch_session, onnx_file):
        patch_session([1, "height", "width", 3], [[0.5, 0.5]])

        classifier = BinaryClassifier(input_size=160)
        classifier.load(str(onnx_file))

        assert classifier.input_size == (160, 160)

    def test_rejects_non_image_input(self, patch_session, onnx_file):
        patch_session([1, 1000], [[0.5, 0.5]])

        with pytest.raises(ModelLoadError):
            BinaryClassifier().load(str(onnx_file))

    def test_remote_model(self, patch_session, monkeypatch):
        session_cls = patch_session([1, 224, 224, 3], [[0.9, 0.1]])
        requested = []

        class FakeResponse:
            content = b"onnx-bytes"

            def raise_for_status(self):
                pass

        def fake_get(url, timeout):
            requested.append((url, timeout))
            return FakeResponse()

        monkeypatch.setattr(backends.requests, "get", fake_get)

        classifier = BinaryClassifier(download_timeout=5.0)
        classifier.load("https://example.com/models/abc/model.onnx")

        assert requested == [("https://example.com/models/abc/model.onnx", 5.0)]
        assert session_cls.created[0].source == b"onnx-bytes"
        assert classifier.describe()["source"] == "https://example.com/models/abc/model.onnx"

    @pytest.mark.parametrize("error", [
        requests.ConnectionError("offline"),
        requests.HTTPError("404 Client Error"),
    ])
    def test_remote_model_failure(self, monkeypatch, error):
        class FailingResponse:
            content = b""

            def raise_for_status(self):
                raise error

        def fake_get(url, timeout):
            if isinstance(error, requests.ConnectionError):
                raise error
            return FailingResponse()

        monkeypatch.setattr(backends.requests, "get", fake_get)

        with pytest.raises(ModelLoadError):
            BinaryClassifier().load("https://example.com/model.onnx")

    def test_infer_before_load(self):
        with pytest.raises(InferenceError):
            BinaryClassifier().infer(Tensor(np.zeros((1, 4, 4, 3), dtype=np.float32)))

    def test_run_failure(self, patch_session, onnx_file):
        patch_session([1, 224, 224, 3], [[0.5, 0.5]], run_error=RuntimeError("bad input"))

        classifier = BinaryClassifier()
        classifier.load(str(onnx_file))

        with pytest.raises(InferenceError):
            classifier.infer(Tensor(np.zeros((1, 224, 224, 3), dtype=np.float32)))

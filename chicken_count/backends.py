"""
Inference backends.

Two model families share the single `infer(tensor)` capability:

- GenericDetector: COCO-pretrained multi-class detector
  (Ultralytics PyTorch weights or an exported ONNX graph)
- BinaryClassifier: small custom-trained ONNX classifier, loaded from a
  local path or a URL

Callers depend on the InferenceBackend protocol only.
"""

import ast
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import cv2
import numpy as np
import requests

from .errors import InferenceError, ModelLoadError
from .types import RawDetection, Tensor

logger = logging.getLogger(__name__)


COCO_CLASS_NAMES = [
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train",
    "truck", "boat", "traffic light", "fire hydrant", "stop sign",
    "parking meter", "bench", "bird", "cat", "dog", "horse", "sheep", "cow",
    "elephant", "bear", "zebra", "giraffe", "backpack", "umbrella", "handbag",
    "tie", "suitcase", "frisbee", "skis", "snowboard", "sports ball", "kite",
    "baseball bat", "baseball glove", "skateboard", "surfboard",
    "tennis racket", "bottle", "wine glass", "cup", "fork", "knife", "spoon",
    "bowl", "banana", "apple", "sandwich", "orange", "broccoli", "carrot",
    "hot dog", "pizza", "donut", "cake", "chair", "couch", "potted plant",
    "bed", "dining table", "toilet", "tv", "laptop", "mouse", "remote",
    "keyboard", "cell phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "book", "clock", "vase", "scissors", "teddy bear",
    "hair drier", "toothbrush"
]


class InferenceBackend(Protocol):
    """Anything that turns one input tensor into raw model predictions."""

    def infer(self, tensor: Tensor) -> Any:
        ...


def is_url(location: str) -> bool:
    """Check whether a model location is a remote http(s) URL."""
    return str(location).lower().startswith(("http://", "https://"))


def _select_providers(ort) -> List[str]:
    """Select best available ONNX Runtime provider."""
    providers = ['CPUExecutionProvider']
    if 'CUDAExecutionProvider' in ort.get_available_providers():
        providers.insert(0, 'CUDAExecutionProvider')
    return providers


def _tensor_image(tensor: Tensor) -> np.ndarray:
    """Return the tensor's (H, W, C) array, dropping a batch dimension."""
    array = tensor.array
    if tensor.has_batch_dim:
        array = array[0]
    return array


def letterbox(
    img: np.ndarray,
    new_shape: int = 640,
    color: Tuple[float, float, float] = (114 / 255, 114 / 255, 114 / 255)
) -> Tuple[np.ndarray, float, Tuple[float, float]]:
    """
    Resize image with letterbox padding.

    Args:
        img: Input image (HWC, float32 in [0, 1])
        new_shape: Target size
        color: Padding color

    Returns:
        Tuple of (resized_image, scale, padding)
    """
    shape = img.shape[:2]  # (h, w)

    # Calculate scale
    r = min(new_shape / shape[0], new_shape / shape[1])
    new_unpad = int(round(shape[1] * r)), int(round(shape[0] * r))

    # Padding
    dw = (new_shape - new_unpad[0]) / 2
    dh = (new_shape - new_unpad[1]) / 2

    if shape[::-1] != new_unpad:
        img = cv2.resize(img, new_unpad, interpolation=cv2.INTER_LINEAR)

    top, bottom = int(round(dh - 0.1)), int(round(dh + 0.1))
    left, right = int(round(dw - 0.1)), int(round(dw + 0.1))
    img = cv2.copyMakeBorder(
        img, top, bottom, left, right,
        cv2.BORDER_CONSTANT, value=color
    )

    return img, r, (dw, dh)


def nms(boxes: np.ndarray, scores: np.ndarray, iou_threshold: float) -> List[int]:
    """
    Class-agnostic non-maximum suppression.

    Args:
        boxes: Boxes [N, 4] in x1y1x2y2 format
        scores: Confidence scores [N]
        iou_threshold: IoU threshold

    Returns:
        Indices of kept boxes, highest score first
    """
    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = boxes[:, 2]
    y2 = boxes[:, 3]

    areas = (x2 - x1) * (y2 - y1)
    order = scores.argsort(kind="stable")[::-1]

    keep = []
    while order.size > 0:
        i = order[0]
        keep.append(int(i))

        xx1 = np.maximum(x1[i], x1[order[1:]])
        yy1 = np.maximum(y1[i], y1[order[1:]])
        xx2 = np.minimum(x2[i], x2[order[1:]])
        yy2 = np.minimum(y2[i], y2[order[1:]])

        w = np.maximum(0, xx2 - xx1)
        h = np.maximum(0, yy2 - yy1)

        intersection = w * h
        union = areas[i] + areas[order[1:]] - intersection
        iou = np.divide(intersection, union, out=np.zeros_like(intersection), where=union > 0)

        inds = np.where(iou <= iou_threshold)[0]
        order = order[inds + 1]

    return keep


def _parse_class_names(raw: Optional[str]) -> Optional[Dict[int, str]]:
    """Parse the `names` entry Ultralytics writes into exported ONNX metadata."""
    if not raw:
        return None
    try:
        names = ast.literal_eval(raw)
    except (ValueError, SyntaxError):
        logger.warning("Ignoring unreadable class-name metadata")
        return None
    if isinstance(names, dict):
        return {int(k): str(v) for k, v in names.items()}
    if isinstance(names, (list, tuple)):
        return {i: str(v) for i, v in enumerate(names)}
    return None


class GenericDetector:
    """
    COCO-pretrained multi-class object detector.

    Supports:
    - PyTorch weights via Ultralytics (downloaded on first use)
    - ONNX Runtime for exported graphs
    """

    def __init__(
        self,
        weights: str = "yolov8n.pt",
        backend: str = "auto",
        min_score: float = 0.25,
        iou_threshold: float = 0.45,
        img_size: int = 640
    ):
        """
        Initialize detector. Nothing is loaded until load() is called.

        Args:
            weights: Weights file name or path (.pt or .onnx)
            backend: Backend to use ("auto", "onnx", "pytorch")
            min_score: Model-internal score cut-off
            iou_threshold: IoU threshold for NMS
            img_size: Network input size for the ONNX backend
        """
        self.weights = str(weights)
        self.min_score = min_score
        self.iou_threshold = iou_threshold
        self.img_size = img_size

        if backend == "auto":
            backend = self._detect_backend()
        if backend not in ("onnx", "pytorch"):
            raise ModelLoadError(f"Unknown backend: {backend}")
        self.backend = backend

        self.class_names: Dict[int, str] = dict(enumerate(COCO_CLASS_NAMES))
        self.model = None
        self.session = None
        self.input_name: Optional[str] = None

    def _detect_backend(self) -> str:
        """Detect backend from weights file extension."""
        suffix = Path(self.weights).suffix.lower()

        if suffix == ".onnx":
            return "onnx"
        elif suffix == ".pt":
            return "pytorch"
        else:
            raise ModelLoadError(f"Unknown model format: {suffix or self.weights}")

    @property
    def loaded(self) -> bool:
        return self.model is not None or self.session is not None

    def load(self) -> None:
        """
        Load model weights.

        Raises:
            ModelLoadError: If the weights cannot be fetched or parsed
        """
        logger.info("Loading %s detector from %s", self.backend, self.weights)
        try:
            if self.backend == "onnx":
                self._load_onnx()
            else:
                self._load_pytorch()
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load detector {self.weights}: {e}") from e
        logger.info("Detector loaded (%d classes)", len(self.class_names))

    def _load_onnx(self) -> None:
        """Load ONNX Runtime session."""
        import onnxruntime as ort

        model_path = Path(self.weights)
        if not model_path.is_file():
            raise ModelLoadError(f"Model file not found: {model_path}")

        session = ort.InferenceSession(str(model_path), providers=_select_providers(ort))
        model_input = session.get_inputs()[0]

        # Static NCHW graphs fix the input size; letterboxing assumes a square
        shape = model_input.shape
        if len(shape) == 4 and isinstance(shape[2], int) and isinstance(shape[3], int):
            if shape[2] != shape[3]:
                raise ModelLoadError(
                    f"Detector input must be square, got {shape[3]}x{shape[2]} in {model_path}"
                )
            self.img_size = int(shape[2])

        names = _parse_class_names(
            session.get_modelmeta().custom_metadata_map.get("names")
        )
        if names:
            self.class_names = names

        self.input_name = model_input.name
        self.session = session

    def _load_pytorch(self) -> None:
        """Load PyTorch model via Ultralytics."""
        from ultralytics import YOLO

        model = YOLO(self.weights)
        names = getattr(model, "names", None)
        if names:
            self.class_names = {int(k): str(v) for k, v in dict(names).items()}
        self.model = model

    def class_name(self, class_id: int) -> str:
        return self.class_names.get(class_id, str(class_id))

    def infer(self, tensor: Tensor) -> List[RawDetection]:
        """
        Run detection on one image tensor.

        Args:
            tensor: Normalized (H, W, 3) or (1, H, W, 3) RGB tensor

        Returns:
            Detections above the model's own score cut-off, boxes as
            (x, y, width, height) in the tensor's pixel space
        """
        if not self.loaded:
            raise InferenceError("Model not loaded. Call load() first.")

        image = _tensor_image(tensor)
        try:
            if self.backend == "pytorch":
                return self._infer_pytorch(image)
            return self._infer_onnx(image)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"Detection failed: {e}") from e

    def _infer_pytorch(self, image: np.ndarray) -> List[RawDetection]:
        import torch

        # Ultralytics expects uint8 BGR arrays
        frame = np.ascontiguousarray(
            (np.clip(image, 0.0, 1.0) * 255.0).round().astype(np.uint8)[:, :, ::-1]
        )

        with torch.inference_mode():
            results = self.model(
                frame,
                conf=self.min_score,
                iou=self.iou_threshold,
                verbose=False
            )[0]

            detections = []
            for box in results.boxes:
                x1, y1, x2, y2 = (float(v) for v in box.xyxy[0])
                detections.append(RawDetection(
                    label=self.class_name(int(box.cls[0])),
                    score=float(box.conf[0]),
                    bbox=(x1, y1, x2 - x1, y2 - y1)
                ))
        return detections

    def preprocess(self, image: np.ndarray) -> Tuple[np.ndarray, float, Tuple[float, float]]:
        """
        Letterbox an (H, W, 3) float image into the NCHW network input.

        Returns:
            Tuple of (network_input, scale, padding)
        """
        img, scale, pad = letterbox(image.astype(np.float32, copy=False), self.img_size)

        # HWC to CHW, add batch dimension
        img = np.expand_dims(img.transpose(2, 0, 1), 0)

        return np.ascontiguousarray(img, dtype=np.float32), scale, pad

    def postprocess(
        self,
        output: np.ndarray,
        original_size: Tuple[int, int],
        scale: float,
        pad: Tuple[float, float]
    ) -> List[RawDetection]:
        """
        Decode YOLOv8 output into detections.

        Args:
            output: Model output [1, 4 + num_classes, num_anchors]
            original_size: Original image size (w, h)
            scale: Resize scale
            pad: Padding (dw, dh)

        Returns:
            Detections in original image coordinates, highest score first
        """
        if len(output.shape) == 3:
            output = output[0].T

        boxes = output[:, :4]  # x_center, y_center, width, height
        scores = output[:, 4:]

        class_ids = np.argmax(scores, axis=1)
        confidences = np.max(scores, axis=1)

        mask = confidences > self.min_score
        boxes = boxes[mask]
        confidences = confidences[mask]
        class_ids = class_ids[mask]

        if len(boxes) == 0:
            return []

        boxes_xyxy = np.zeros_like(boxes)
        boxes_xyxy[:, 0] = boxes[:, 0] - boxes[:, 2] / 2
        boxes_xyxy[:, 1] = boxes[:, 1] - boxes[:, 3] / 2
        boxes_xyxy[:, 2] = boxes[:, 0] + boxes[:, 2] / 2
        boxes_xyxy[:, 3] = boxes[:, 1] + boxes[:, 3] / 2

        # Remove padding and scale to original size
        boxes_xyxy[:, [0, 2]] -= pad[0]
        boxes_xyxy[:, [1, 3]] -= pad[1]
        boxes_xyxy /= scale

        boxes_xyxy[:, [0, 2]] = np.clip(boxes_xyxy[:, [0, 2]], 0, original_size[0])
        boxes_xyxy[:, [1, 3]] = np.clip(boxes_xyxy[:, [1, 3]], 0, original_size[1])

        detections = []
        for i in nms(boxes_xyxy, confidences, self.iou_threshold):
            x1, y1, x2, y2 = (float(v) for v in boxes_xyxy[i])
            detections.append(RawDetection(
                label=self.class_name(int(class_ids[i])),
                score=float(confidences[i]),
                bbox=(x1, y1, x2 - x1, y2 - y1)
            ))

        return detections

    def _infer_onnx(self, image: np.ndarray) -> List[RawDetection]:
        original_size = (image.shape[1], image.shape[0])  # (w, h)
        network_input, scale, pad = self.preprocess(image)
        output = self.session.run(None, {self.input_name: network_input})[0]
        return self.postprocess(np.asarray(output), original_size, scale, pad)

    def describe(self) -> Dict[str, Any]:
        """Summary of the loaded model for logging."""
        info: Dict[str, Any] = {
            "backend": self.backend,
            "source": self.weights,
            "classes": len(self.class_names),
        }
        if self.session is not None:
            info["input_shape"] = list(self.session.get_inputs()[0].shape)
            info["output_shape"] = list(self.session.get_outputs()[0].shape)
        return info


class BinaryClassifier:
    """
    Custom-trained image classifier with a small fixed output vector.

    The model is an ONNX graph taking a (1, H, W, 3) or (1, 3, H, W) float
    tensor and returning one score per class, in training order.
    """

    def __init__(self, input_size: int = 224, download_timeout: float = 60.0):
        """
        Args:
            input_size: Square input resolution used when the model does not
                declare a static one
            download_timeout: Seconds to wait when fetching a remote model
        """
        self.input_size: Tuple[int, int] = (input_size, input_size)  # (w, h)
        self.download_timeout = download_timeout
        self.channels_first = False
        self.source: Optional[str] = None
        self.session = None
        self.input_name: Optional[str] = None

    @property
    def loaded(self) -> bool:
        return self.session is not None

    def load(self, model_location: str) -> None:
        """
        Load the classifier from a local path or a remote URL.

        Raises:
            ModelLoadError: If the model cannot be fetched or its structure
                cannot be read
        """
        logger.info("Loading custom classifier from %s", model_location)
        try:
            import onnxruntime as ort

            if is_url(model_location):
                model_source = self._fetch(model_location)
            else:
                model_path = Path(model_location)
                if not model_path.is_file():
                    raise ModelLoadError(f"Model file not found: {model_path}")
                model_source = str(model_path)

            session = ort.InferenceSession(model_source, providers=_select_providers(ort))
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load classifier {model_location}: {e}") from e

        self._configure_input(session.get_inputs()[0])
        self.session = session
        self.source = str(model_location)

        info = self.describe()
        logger.info("Model input shape: %s", info["input_shape"])
        logger.info("Model output shape: %s", info["output_shape"])

    def _fetch(self, url: str) -> bytes:
        try:
            response = requests.get(url, timeout=self.download_timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ModelLoadError(f"Could not download model from {url}: {e}") from e
        return response.content

    def _configure_input(self, model_input) -> None:
        """Read layout and static size from the model's input declaration."""
        self.input_name = model_input.name
        shape = list(model_input.shape)
        if len(shape) != 4:
            raise ModelLoadError(f"Expected a 4-D image input, got shape {shape}")

        self.channels_first = shape[1] == 3 and shape[3] != 3
        h, w = (shape[2], shape[3]) if self.channels_first else (shape[1], shape[2])
        if isinstance(h, int) and isinstance(w, int):
            self.input_size = (w, h)

    def infer(self, tensor: Tensor) -> List[float]:
        """
        Score one image tensor.

        Returns:
            One score per output unit
        """
        if not self.loaded:
            raise InferenceError("Model not loaded. Call load() first.")

        batch = tensor.array
        if not tensor.has_batch_dim:
            batch = np.expand_dims(batch, 0)
        if self.channels_first:
            batch = batch.transpose(0, 3, 1, 2)

        try:
            outputs = self.session.run(
                None, {self.input_name: np.ascontiguousarray(batch, dtype=np.float32)}
            )
        except Exception as e:
            raise InferenceError(f"Classification failed: {e}") from e

        return [float(score) for score in np.asarray(outputs[0]).reshape(-1)]

    def describe(self) -> Dict[str, Any]:
        """Summary of the loaded model for logging."""
        info: Dict[str, Any] = {
            "backend": "onnx",
            "source": self.source,
            "input_size": self.input_size,
        }
        if self.session is not None:
            info["input_shape"] = list(self.session.get_inputs()[0].shape)
            info["output_shape"] = list(self.session.get_outputs()[0].shape)
        return info

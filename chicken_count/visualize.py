"""
Drawing of detections onto images.
"""

import logging
from pathlib import Path
from typing import Sequence, Tuple, Union

import cv2
import numpy as np

from . import image_loader
from .types import BoundingBoxResult, PixelBuffer, RawDetection

logger = logging.getLogger(__name__)

TARGET_COLOR = (0, 200, 0)      # green (BGR)
OTHER_COLOR = (160, 160, 160)   # grey


def buffer_to_bgr(buffer: PixelBuffer) -> np.ndarray:
    """Convert an RGB/RGBA pixel buffer to an OpenCV BGR image."""
    img = np.frombuffer(buffer.data, dtype=np.uint8, count=buffer.expected_length)
    img = img.reshape(buffer.height, buffer.width, buffer.channels)
    code = cv2.COLOR_RGBA2BGR if buffer.channels == 4 else cv2.COLOR_RGB2BGR
    return cv2.cvtColor(img, code)


def draw_detections(
    image: np.ndarray,
    detections: Sequence[RawDetection],
    color: Tuple[int, int, int] = TARGET_COLOR,
    line_thickness: int = 2,
    font_scale: float = 0.6
) -> np.ndarray:
    """
    Draw detections on image.

    Args:
        image: Input image (BGR)
        detections: Detections with (x, y, w, h) boxes
        color: Box color
        line_thickness: Box line thickness
        font_scale: Label font scale

    Returns:
        Annotated copy of the image
    """
    img = image.copy()

    for det in detections:
        x1, y1 = int(round(det.x)), int(round(det.y))
        x2, y2 = int(round(det.x + det.width)), int(round(det.y + det.height))
        cv2.rectangle(img, (x1, y1), (x2, y2), color, line_thickness)

        label = f"{det.label} {det.score:.2f}"
        label_size, _ = cv2.getTextSize(
            label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, 1
        )

        # Keep the label inside the image when the box touches the top edge
        label_top = max(y1 - label_size[1] - 10, 0)
        cv2.rectangle(
            img,
            (x1, label_top),
            (x1 + label_size[0], label_top + label_size[1] + 10),
            color,
            -1
        )
        cv2.putText(
            img, label,
            (x1, label_top + label_size[1] + 5),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (255, 255, 255),
            1
        )

    return img


def save_annotated(
    image_path: Union[str, Path],
    result: BoundingBoxResult,
    output_dir: Union[str, Path]
) -> Path:
    """
    Write a copy of the image with target detections highlighted.

    Non-target detections are drawn in grey underneath.

    Returns:
        Path of the written JPEG

    Raises:
        OSError: If the output directory or the file cannot be written
        DetectionError: If the source image can no longer be read
    """
    image_path = Path(image_path)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    image = buffer_to_bgr(image_loader.load(image_path))
    others = [d for d in result.detections if d not in result.filtered]
    image = draw_detections(image, others, color=OTHER_COLOR, line_thickness=1)
    image = draw_detections(image, result.filtered, color=TARGET_COLOR)

    output_path = output_dir / f"{image_path.stem}_detections.jpg"
    if not cv2.imwrite(str(output_path), image, [cv2.IMWRITE_JPEG_QUALITY, 90]):
        raise OSError(f"Could not write annotated image {output_path}")
    logger.info("Saved annotated image to %s", output_path)
    return output_path

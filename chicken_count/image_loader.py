"""
Image loading and resampling.

Decoding goes through Pillow; every image is converted to RGBA so the
tensor builder always sees the same interleaved layout.
"""

import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, NotFoundError, ShapeError
from .types import PixelBuffer

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".gif")

# Pillow format names for the extensions above; MPO is a multi-picture JPEG
SUPPORTED_FORMATS = {"JPEG", "MPO", "PNG", "BMP", "GIF"}


def is_supported_image(path: Union[str, Path]) -> bool:
    """Check whether a file name carries a supported image extension."""
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def load(path: Union[str, Path]) -> PixelBuffer:
    """
    Read and decode an image file.

    Args:
        path: Path to a JPEG, PNG, BMP or GIF file

    Returns:
        RGBA PixelBuffer at the image's native resolution

    Raises:
        NotFoundError: If the path does not exist or is not a file
        DecodeError: If the content is not a supported, readable image
    """
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(f"Image file not found: {path}")

    try:
        with Image.open(path) as img:
            if img.format not in SUPPORTED_FORMATS:
                raise DecodeError(f"Unsupported image format {img.format} in {path}")
            # GIF and MPO: first frame only
            rgba = img.convert("RGBA")
    except UnidentifiedImageError as e:
        raise DecodeError(f"Could not decode image {path}: {e}") from e
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Could not read image {path}: {e}") from e

    logger.debug("Decoded %s (%dx%d)", path, rgba.width, rgba.height)

    return PixelBuffer(
        width=rgba.width,
        height=rgba.height,
        channels=4,
        data=rgba.tobytes()
    )


def resize(buffer: PixelBuffer, target_w: int, target_h: int) -> PixelBuffer:
    """
    Resample a pixel buffer to a fixed resolution.

    Args:
        buffer: Source buffer
        target_w: Target width in pixels
        target_h: Target height in pixels

    Returns:
        New PixelBuffer with the same channel layout
    """
    if target_w <= 0 or target_h <= 0:
        raise ShapeError(f"Resize target must be positive, got {target_w}x{target_h}")
    if len(buffer.data) < buffer.expected_length:
        raise ShapeError(
            f"Pixel buffer holds {len(buffer.data)} bytes, expected {buffer.expected_length}"
        )
    if (buffer.width, buffer.height) == (target_w, target_h):
        return buffer

    img = np.frombuffer(buffer.data, dtype=np.uint8, count=buffer.expected_length)
    img = img.reshape(buffer.height, buffer.width, buffer.channels)

    resized = cv2.resize(img, (target_w, target_h), interpolation=cv2.INTER_LINEAR)

    return PixelBuffer(
        width=target_w,
        height=target_h,
        channels=buffer.channels,
        data=resized.tobytes()
    )

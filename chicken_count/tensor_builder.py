"""
Conversion of pixel buffers into normalized model input tensors.
"""

from contextlib import contextmanager
from typing import Iterator

import numpy as np

from .errors import ShapeError
from .types import PixelBuffer, Tensor


def build(buffer: PixelBuffer, channels: int = 3, batch: bool = False) -> Tensor:
    """
    Build a normalized tensor from a pixel buffer.

    Pixels are taken in row-major order; the first `channels` components of
    each pixel are kept (alpha is dropped) and mapped from [0, 255] to
    [0.0, 1.0].

    Args:
        buffer: Decoded image
        channels: Number of leading color components to keep
        batch: Add a leading batch dimension of size 1

    Returns:
        Tensor of shape (H, W, C), or (1, H, W, C) when batch is set

    Raises:
        ShapeError: If the buffer is shorter than width*height*channels or
            the requested channel count is out of range
    """
    if not 1 <= channels <= buffer.channels:
        raise ShapeError(
            f"Cannot take {channels} channels from a {buffer.channels}-channel buffer"
        )
    if len(buffer.data) < buffer.expected_length:
        raise ShapeError(
            f"Pixel buffer holds {len(buffer.data)} bytes, "
            f"expected {buffer.width}x{buffer.height}x{buffer.channels}="
            f"{buffer.expected_length}"
        )

    pixels = np.frombuffer(buffer.data, dtype=np.uint8, count=buffer.expected_length)
    pixels = pixels.reshape(buffer.height, buffer.width, buffer.channels)

    # Normalize to 0-1
    array = pixels[:, :, :channels].astype(np.float32) / np.float32(255.0)

    if batch:
        array = np.expand_dims(array, 0)

    return Tensor(np.ascontiguousarray(array))


@contextmanager
def tensor_scope(buffer: PixelBuffer, channels: int = 3, batch: bool = False) -> Iterator[Tensor]:
    """Build a tensor and dispose it when the block exits, even on error."""
    tensor = build(buffer, channels=channels, batch=batch)
    try:
        yield tensor
    finally:
        tensor.dispose()

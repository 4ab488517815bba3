"""
Sequential multi-image processing with per-image failure isolation.
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from .errors import DetectionError, NotFoundError
from .image_loader import is_supported_image
from .pipeline import Pipeline
from .types import BatchSummary, ImageOutcome

logger = logging.getLogger(__name__)


def collect_image_paths(path: Union[str, Path]) -> List[Path]:
    """
    Resolve an input path into the list of images to process.

    A file is returned as-is. A directory yields its entries with a supported
    image extension (case-insensitive), sorted by name.

    Raises:
        NotFoundError: If the path does not exist or the directory cannot be listed
    """
    path = Path(path)
    if not path.exists():
        raise NotFoundError(f"Path not found: {path}")

    if not path.is_dir():
        return [path]

    try:
        entries = sorted(path.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise NotFoundError(f"Could not list directory {path}: {e}") from e

    return [p for p in entries if p.is_file() and is_supported_image(p)]


def process_one(pipeline: Pipeline, path: Union[str, Path]) -> ImageOutcome:
    """Run the pipeline on one image, turning pipeline errors into an outcome."""
    path = Path(path)
    try:
        return ImageOutcome(path=path, result=pipeline.process(path))
    except DetectionError as e:
        logger.error("Error processing image %s: %s", path, e)
        return ImageOutcome(path=path, error=e)


def process_many(
    pipeline: Pipeline,
    paths: Iterable[Union[str, Path]],
    on_result: Optional[Callable[[ImageOutcome], None]] = None
) -> BatchSummary:
    """
    Process images one at a time, in input order.

    A failing image is recorded with a null result and the batch continues.

    Args:
        pipeline: Single-image pipeline holding the loaded model
        paths: Image paths, processed strictly in this order
        on_result: Called with each outcome as soon as it is available

    Returns:
        Finalized BatchSummary
    """
    paths = list(paths)
    logger.info("Processing %d images...", len(paths))

    summary = BatchSummary()
    for path in paths:
        outcome = process_one(pipeline, path)
        summary.add(outcome)
        if on_result is not None:
            on_result(outcome)

    summary.finalize()
    logger.info(
        "Batch done: %d/%d processed, %d positive",
        summary.processed, summary.attempted, summary.total_positive
    )
    return summary

"""
Console reports for single images and batches.
"""

import math
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.markup import escape

from .types import BatchSummary, BoundingBoxResult, ClassificationResult, DetectionResult

console = Console()


def _pct(score: float) -> str:
    return f"{score * 100:.1f}%"


def _px(value: float) -> int:
    """Round half up to the nearest pixel."""
    return int(math.floor(value + 0.5))


def print_detection_result(
    result: BoundingBoxResult,
    image_path: Union[str, Path],
    out: Optional[Console] = None
) -> None:
    """Print the bounding-box report for one image."""
    out = out or console

    out.print("\n[bold blue]=== DETECTION RESULTS ===[/bold blue]")
    out.print(f"Image: {escape(str(image_path))}")
    out.print(f"Image size: {result.image_size}")
    out.print(f"Total objects detected: {result.total_count}")
    out.print(f"Birds/Chickens detected: {result.filtered_count}")

    if result.filtered:
        out.print("\n[bold]Bird/Chicken detections:[/bold]")
        for index, det in enumerate(result.filtered, start=1):
            out.print(f"  {index}. Confidence: {_pct(det.score)}")
            out.print(f"     Location: x={_px(det.x)}, y={_px(det.y)}")
            out.print(f"     Size: {_px(det.width)}x{_px(det.height)}")
    else:
        out.print("\nNo birds/chickens detected in this image.")

    if result.detections:
        out.print("\n[bold]All detected objects:[/bold]")
        for index, det in enumerate(result.detections, start=1):
            out.print(f"  {index}. {escape(det.label)} ({_pct(det.score)})")

    out.print("[bold blue]========================[/bold blue]\n")


def print_classification_result(
    result: ClassificationResult,
    image_path: Union[str, Path],
    out: Optional[Console] = None
) -> None:
    """Print the classifier report for one image."""
    out = out or console

    out.print("\n[bold blue]=== CLASSIFICATION RESULTS ===[/bold blue]")
    out.print(f"Image: {escape(str(image_path))}")
    out.print(f"Original image size: {result.image_size}")

    out.print("\n[bold]All predictions:[/bold]")
    for prediction in result.predictions:
        out.print(f"  {escape(prediction.label)}: {_pct(prediction.confidence)}")

    out.print(
        f"\nBest prediction: {escape(result.best.label)} ({_pct(result.best.confidence)})"
    )
    if result.decision:
        out.print(f"[green]CHICKEN DETECTED![/green] Confidence: {_pct(result.confidence)}")
    else:
        out.print(f"[yellow]No chicken detected.[/yellow] Best guess: {escape(result.best.label)}")
    out.print(f"Decision: {result.decision}")

    out.print("[bold blue]==============================[/bold blue]\n")


def print_result(result: DetectionResult, image_path: Union[str, Path], out: Optional[Console] = None) -> None:
    """Dispatch to the report matching the result variant."""
    if isinstance(result, BoundingBoxResult):
        print_detection_result(result, image_path, out)
    else:
        print_classification_result(result, image_path, out)


def print_verdict(result: DetectionResult, out: Optional[Console] = None) -> None:
    """One-line verdict printed after a single-image run."""
    out = out or console

    if isinstance(result, BoundingBoxResult):
        if result.is_positive:
            out.print(f"[green]Found {result.filtered_count} chicken(s) in the image![/green]")
        else:
            out.print("No chickens detected in this image.")
    elif result.is_positive:
        out.print(f"[green]Detected a chicken with {_pct(result.confidence)} confidence![/green]")
    else:
        out.print("No chicken detected by the classifier.")


def print_batch_summary(summary: BatchSummary, out: Optional[Console] = None) -> None:
    """Print aggregate counts for a batch."""
    out = out or console

    out.print("\n[bold green]=== BATCH SUMMARY ===[/bold green]")
    out.print(f"Total images processed: {summary.processed}")
    if summary.failed:
        out.print(f"[red]Failed images: {summary.failed}[/red]")
    out.print(f"Images with chickens: {summary.total_positive}")
    out.print(f"Total chickens detected: {summary.total_objects}")
    out.print("[bold green]=====================[/bold green]\n")

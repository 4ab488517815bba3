"""
Command-line entry point.

Usage:
    chicken-count detect ./chicken-image.jpg
    chicken-count detect ./photos --annotate ./annotated
    chicken-count classify ./test.jpg ./my-model/model.onnx
    chicken-count check
"""

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from rich.console import Console
from rich.logging import RichHandler

from . import report
from .batch import collect_image_paths, process_many, process_one
from .config import Settings, load_config, override
from .errors import DetectionError, ModelLoadError
from .pipeline import Pipeline, build_classification_pipeline, build_detection_pipeline
from .types import BoundingBoxResult, ImageOutcome
from .visualize import save_annotated

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("configs/default.yaml")

DETECT_USAGE = """Usage: chicken-count detect <image-path>
Example: chicken-count detect ./chicken-image.jpg

Supported image formats: JPEG, PNG, BMP, GIF"""

CLASSIFY_USAGE = """Usage: chicken-count classify <image-path> [model-location]
Example: chicken-count classify ./test.jpg
Example: chicken-count classify ./test.jpg ./my-model/model.onnx
Example: chicken-count classify ./test.jpg https://example.com/models/chicken/model.onnx"""


def setup_logging(verbose: bool = False) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True
    )


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=str,
        default=None,
        help=f"Path to configuration YAML (default: {DEFAULT_CONFIG} if present)"
    )
    common.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when the model, the input path or any image fails"
    )
    common.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    parser = argparse.ArgumentParser(
        prog="chicken-count",
        description="Count chickens in images with a pretrained detector or a custom classifier"
    )

    subparsers = parser.add_subparsers(dest="command")

    detect = subparsers.add_parser("detect", parents=[common], help="Multi-class detection filtered to one class")
    detect.add_argument("path", nargs="?", help="Image file or directory")
    detect.add_argument("--weights", type=str, default=None, help="Detector weights (.pt or .onnx)")
    detect.add_argument("--target", type=str, default=None, help="Class label to count")
    detect.add_argument("--threshold", type=float, default=None, help="Score threshold")
    detect.add_argument("--annotate", type=str, default=None, help="Directory for annotated images")

    classify = subparsers.add_parser("classify", parents=[common], help="Binary classification with a custom model")
    classify.add_argument("path", nargs="?", help="Image file or directory")
    classify.add_argument("model", nargs="?", default=None, help="Model path or URL")
    classify.add_argument("--labels", nargs="+", default=None, help="Class labels in output order")
    classify.add_argument("--positive", type=str, default=None, help="Label counted as a chicken")
    classify.add_argument("--threshold", type=float, default=None, help="Decision threshold")

    subparsers.add_parser("check", parents=[common], help="Verify that the detector stack loads")

    return parser


def _load_settings(config: Optional[str]) -> Settings:
    if config is not None:
        return load_config(config)
    if DEFAULT_CONFIG.exists():
        return load_config(DEFAULT_CONFIG)
    return Settings()


def _failure(args) -> int:
    return 1 if args.strict else 0


def run_pipeline(args, pipeline: Pipeline, paths: List[Path], single: bool) -> int:
    """Run a loaded pipeline over the resolved paths and print reports."""

    def on_result(outcome: ImageOutcome) -> None:
        if not outcome.ok:
            return
        report.print_result(outcome.result, outcome.path)
        annotate = getattr(args, "annotate", None)
        if annotate and isinstance(outcome.result, BoundingBoxResult):
            try:
                save_annotated(outcome.path, outcome.result, annotate)
            except (OSError, DetectionError) as e:
                logger.error("Could not annotate %s: %s", outcome.path, e)

    if single:
        outcome = process_one(pipeline, paths[0])
        on_result(outcome)
        if not outcome.ok:
            return _failure(args)
        report.print_verdict(outcome.result)
        return 0

    report.console.print(f"Processing {len(paths)} images...\n")
    summary = process_many(pipeline, paths, on_result=on_result)
    report.print_batch_summary(summary)
    return _failure(args) if summary.failed else 0


def run(args, settings: Settings, usage: str) -> int:
    if not args.path:
        report.console.print(usage, markup=False)
        return 0

    try:
        paths = collect_image_paths(args.path)
    except DetectionError as e:
        logger.error("Error accessing path: %s", e)
        return _failure(args)

    if not paths:
        report.console.print("No image files found in the directory.")
        return 0

    annotate = getattr(args, "annotate", None)
    if annotate:
        try:
            Path(annotate).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Cannot use annotation directory %s: %s", annotate, e)
            return _failure(args)

    try:
        if args.command == "detect":
            detector_settings = override(
                settings.detector,
                weights=args.weights,
                target_label=args.target,
                threshold=args.threshold
            )
            pipeline = build_detection_pipeline(detector_settings)
        else:
            classifier_settings = override(
                settings.classifier,
                labels=args.labels,
                positive_label=args.positive,
                threshold=args.threshold
            )
            pipeline = build_classification_pipeline(classifier_settings, args.model)
    except ModelLoadError as e:
        logger.error("Error: %s", e)
        logger.error("Make sure the model is reachable; remote models need a stable internet connection.")
        return _failure(args)

    return run_pipeline(args, pipeline, paths, single=not Path(args.path).is_dir())


def run_check(args, settings: Settings) -> int:
    """Load the default detector to confirm the installation works."""
    report.console.print("Testing chicken detection installation...\n")
    try:
        pipeline = build_detection_pipeline(settings.detector)
    except ModelLoadError as e:
        logger.error("Test failed: %s", e)
        logger.error("Please make sure all dependencies are installed correctly.")
        return _failure(args)

    info = pipeline.model.describe()
    report.console.print(f"[green]✓[/green] Detector loaded ({info['backend']}, {info['classes']} classes)")
    report.console.print("[green]✓[/green] All dependencies are working correctly.")
    report.console.print("[green]✓[/green] Ready to detect chickens in images!\n")
    report.console.print("To test with an actual image, run:")
    report.console.print("  chicken-count detect your-image.jpg\n")
    report.console.print("Supported image formats: JPEG, PNG, BMP, GIF")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(args.verbose)

    try:
        settings = _load_settings(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        logger.error("Invalid configuration: %s", e)
        return _failure(args)

    if args.command == "check":
        return run_check(args, settings)
    if args.command == "detect":
        return run(args, settings, DETECT_USAGE)
    return run(args, settings, CLASSIFY_USAGE)


if __name__ == "__main__":
    raise SystemExit(main())

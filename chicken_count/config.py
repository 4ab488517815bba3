"""
YAML configuration for the detector and classifier pipelines.

Example:

    detector:
      weights: yolov8n.pt
      target_label: bird
      threshold: 0.5
    classifier:
      model: ./model/model.onnx
      labels: ["No Chicken", "Chicken"]
      positive_label: Chicken
      threshold: 0.7
"""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union
from dataclasses import dataclass, field, fields, replace
import yaml

from .interpreter import (
    DEFAULT_DECISION_THRESHOLD,
    DEFAULT_DETECTION_THRESHOLD,
    DEFAULT_LABELS,
    DEFAULT_POSITIVE_LABEL,
    DEFAULT_TARGET_LABEL,
)


@dataclass(frozen=True)
class DetectorSettings:
    """Settings for the multi-class bounding-box pipeline."""
    weights: str = "yolov8n.pt"
    backend: str = "auto"
    target_label: str = DEFAULT_TARGET_LABEL
    threshold: float = DEFAULT_DETECTION_THRESHOLD
    min_score: float = 0.25
    iou_threshold: float = 0.45
    img_size: int = 640


@dataclass(frozen=True)
class ClassifierSettings:
    """Settings for the binary classification pipeline."""
    model: str = "./model/model.onnx"
    labels: Tuple[str, ...] = DEFAULT_LABELS
    positive_label: str = DEFAULT_POSITIVE_LABEL
    threshold: float = DEFAULT_DECISION_THRESHOLD
    input_size: int = 224
    download_timeout: float = 60.0


@dataclass(frozen=True)
class Settings:
    detector: DetectorSettings = field(default_factory=DetectorSettings)
    classifier: ClassifierSettings = field(default_factory=ClassifierSettings)


def _coerce(section: str, name: str, kind, value):
    if name == "labels":
        if not isinstance(value, (list, tuple)) or not value:
            raise ValueError(f"Config value '{section}.labels' must be a non-empty list")
        return tuple(str(label) for label in value)

    if kind is str:
        if not isinstance(value, str):
            raise ValueError(f"Config value '{section}.{name}' must be a string, got {value!r}")
        return value

    # YAML reads yes/no as booleans, which int() and float() would accept
    if isinstance(value, bool):
        raise ValueError(f"Config value '{section}.{name}' must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ValueError(
            f"Config value '{section}.{name}' must be {kind.__name__}, got {value!r}"
        ) from e


def _build_section(cls, values: Optional[Dict[str, Any]], section: str):
    if values is None:
        return cls()
    if not isinstance(values, dict):
        raise ValueError(f"Config section '{section}' must be a mapping")

    types = {f.name: f.type for f in fields(cls)}
    unknown = sorted(set(values) - set(types))
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {unknown}")

    return cls(**{
        name: _coerce(section, name, types[name], value)
        for name, value in values.items()
    })


def load_config(config_path: Union[str, Path, None] = None) -> Settings:
    """
    Load settings from a YAML file.

    Args:
        config_path: Path to the YAML file, or None for built-in defaults

    Returns:
        Parsed Settings

    Raises:
        FileNotFoundError: If the configuration file does not exist
        ValueError: If the file contains unknown sections, unknown keys or
            values of the wrong type
        yaml.YAMLError: If the file cannot be parsed as YAML
    """
    if config_path is None:
        return Settings()

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file '{config_path}' not found")

    with open(config_path, "r") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file '{config_path}' must contain a mapping")

    unknown = sorted(set(raw) - {"detector", "classifier"})
    if unknown:
        raise ValueError(f"Unknown config sections: {unknown}")

    return Settings(
        detector=_build_section(DetectorSettings, raw.get("detector"), "detector"),
        classifier=_build_section(ClassifierSettings, raw.get("classifier"), "classifier")
    )


def override(settings, **changes):
    """Return a copy of a settings section with the non-None changes applied."""
    changes = {k: v for k, v in changes.items() if v is not None}
    if "labels" in changes:
        changes["labels"] = tuple(changes["labels"])
    return replace(settings, **changes)

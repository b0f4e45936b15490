"""
PinchPad Configuration - Tunables for every pipeline stage

Defaults match the values the tracker was tuned with on a 640x480 webcam.
Any field can be overridden from a ``.env`` file or the process
environment using the ``PINCHPAD_`` prefix:

    PINCHPAD_MATCH_THRESHOLD=0.5
    PINCHPAD_OCCLUSION_DELAY_MS=250
    PINCHPAD_PARALLEL_STAGES=true

Environment variables win over values read from the file.
"""

import os
import logging
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values


ENV_PREFIX = "PINCHPAD_"

logger = logging.getLogger(__name__)


@dataclass
class ExtractorConfig:
    """Region extraction settings."""
    apply_mask: bool = True
    mask_margin_px: int = 3         # inset so the circle edge never shows up as an edge


@dataclass
class ContourConfig:
    """Contour detection and polygon approximation."""
    blur_kernel: int = 5
    canny_low: int = 50
    canny_high: int = 150
    min_contour_area: float = 100.0
    max_contours: int = 10
    approx_epsilon: float = 0.04    # fraction of perimeter


@dataclass
class ShapeMatchConfig:
    """Hu-moment shape re-identification."""
    identity_enabled: bool = True
    hu_match_threshold: float = 0.8


@dataclass
class FeatureConfig:
    """ORB feature extraction, matching and homography."""
    max_features: int = 500
    fast_threshold: int = 10
    small_roi_fast_threshold: int = 5
    small_roi_px: int = 150
    min_keypoints: int = 10
    min_matches: int = 8
    max_match_distance: float = 64.0
    spatial_weight: float = 0.05
    ransac_reproj_threshold: float = 3.0
    match_threshold: float = 0.4


@dataclass
class OcclusionConfig:
    """Visibility debouncing."""
    occlusion_threshold: float = 0.5
    occlusion_delay_ms: float = 300.0
    reappearance_delay_ms: float = 300.0


@dataclass
class MarkerConfig:
    """Marker state machine timings."""
    engagement_duration_ms: float = 500.0
    release_timeout_ms: float = 300.0


@dataclass
class PipelineConfig:
    """Top-level settings for :class:`RoiTrackingPipeline`."""
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    contours: ContourConfig = field(default_factory=ContourConfig)
    shape_match: ShapeMatchConfig = field(default_factory=ShapeMatchConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    occlusion: OcclusionConfig = field(default_factory=OcclusionConfig)
    markers: MarkerConfig = field(default_factory=MarkerConfig)

    max_rois: int = 1
    parallel_stages: bool = False
    smoothing: bool = True
    latency_budget_ms: float = 50.0
    knuckle_distance_cm: float = 8.0


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_value(name: str, raw: str, current):
    """Convert a raw env string to the type of the current field value."""
    text = raw.strip()
    if isinstance(current, bool):
        lowered = text.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"{name}: expected a boolean, got {raw!r}")
    try:
        if isinstance(current, int):
            return int(text)
        if isinstance(current, float):
            return float(text)
    except ValueError:
        raise ValueError(f"{name}: expected {type(current).__name__}, got {raw!r}") from None
    return text


def _apply_overrides(config, values: Mapping[str, Optional[str]]) -> int:
    """
    Apply PINCHPAD_<FIELD> overrides to a config tree.

    Nested sections are flattened: ``PINCHPAD_MATCH_THRESHOLD`` sets
    ``config.features.match_threshold``. Field names are unique across
    sections, so no section prefix is needed.

    Returns:
        Number of fields changed
    """
    applied = 0
    for f in fields(config):
        current = getattr(config, f.name)
        if is_dataclass(current):
            applied += _apply_overrides(current, values)
            continue
        key = ENV_PREFIX + f.name.upper()
        raw = values.get(key)
        if raw is None:
            continue
        setattr(config, f.name, _parse_value(key, raw, current))
        applied += 1
    return applied


def _find_env_file() -> Optional[Path]:
    """Look for a .env next to the project root or in the working directory."""
    candidates = [
        Path(__file__).resolve().parents[2] / ".env",   # src/pinchpad/../../.env
        Path.cwd() / ".env",
    ]
    for path in candidates:
        if path.is_file():
            return path
    return None


def load_config(
    env_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineConfig:
    """
    Build a PipelineConfig from defaults, a .env file and the environment.

    Args:
        env_file: Explicit .env path (None = search the usual locations)
        environ: Environment mapping (None = os.environ)

    Returns:
        Populated PipelineConfig

    Raises:
        ValueError: If an override cannot be parsed
    """
    path = Path(env_file) if env_file else _find_env_file()
    values: Dict[str, Optional[str]] = {}
    if path is not None and path.is_file():
        values.update(dotenv_values(path))
        logger.info(f"Loaded settings from {path}")

    env = os.environ if environ is None else environ
    values.update({k: v for k, v in env.items() if k.startswith(ENV_PREFIX)})

    config = PipelineConfig()
    applied = _apply_overrides(config, values)
    if applied:
        logger.info(f"Applied {applied} configuration override(s)")
    return config

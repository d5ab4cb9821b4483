"""
Configuration management for the matching pipeline.

Loads configuration from YAML and validates it with pydantic models.
Algorithm sections carry documented defaults so the core can be built
without a file; unknown keys are rejected.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from functools import lru_cache
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sift_homography.logging import VALID_LOG_LEVELS

ModelT = TypeVar("ModelT", bound=BaseModel)

__all__ = [
    "ConfigurationError",
    "EstimationConfig",
    "ExtractionConfig",
    "IOConfig",
    "LoggingConfig",
    "MatchingConfig",
    "RefinementConfig",
    "RenderingConfig",
    "ServiceConfig",
    "Settings",
    "clear_settings_cache",
    "get_config_path",
    "get_settings",
    "load_settings",
    "load_yaml_config",
]


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class ServiceConfig(BaseModel):
    """Pipeline identity configuration."""

    model_config = ConfigDict(extra="forbid")

    name: str = "sift_homography"
    version: str = "0.1.0"


class ExtractionConfig(BaseModel):
    """SIFT extraction parameters."""

    model_config = ConfigDict(extra="forbid")

    num_octaves: int = Field(default=5, ge=1)
    """Number of octaves searched for extrema."""

    init_blur: float = Field(default=1.0, ge=0.0)
    """Assumed blur of the input image (sigma, pixels)."""

    threshold: float = Field(default=3.5, gt=0.0)
    """DoG contrast threshold in grey levels (0-255 scale)."""

    lowest_scale: float = Field(default=0.0, ge=0.0)
    """Keypoints with a smaller scale (pixels) are discarded."""

    upscale: bool = False
    """Upsample the image by two before detection."""

    capacity: int = Field(default=32768, gt=0)
    """Maximum number of keypoints kept per image."""

    num_octave_layers: int = Field(default=3, ge=1)
    """Scale samples per octave."""

    sigma: float = Field(default=1.6, gt=0.0)
    """Blur of the first scale of each octave (pixels)."""


class MatchingConfig(BaseModel):
    """Correspondence scoring configuration."""

    model_config = ConfigDict(extra="forbid")

    inlier_threshold_sq: float = Field(default=100.0, gt=0.0)
    """Squared pixel distance below which a pair is a geometric inlier."""

    dump_diagnostics: bool = False
    """Log the all-pairs scoring dump after refinement (quadratic in keypoints)."""


class EstimationConfig(BaseModel):
    """Initial robust homography estimate."""

    model_config = ConfigDict(extra="forbid")

    max_iterations: int = Field(default=10000, gt=0)
    min_score: float = 0.0
    """Minimum best-match similarity for a correspondence to be sampled."""

    max_ambiguity: float = Field(default=0.80, gt=0.0)
    """Maximum second-best / best similarity ratio."""

    threshold: float = Field(default=5.0, gt=0.0)
    """Reprojection threshold in pixels."""

    confidence: float = Field(default=0.995, gt=0.0, lt=1.0)
    seed: int = 0
    """Seed for the RANSAC sampler, keeps runs reproducible."""


class RefinementConfig(BaseModel):
    """Iterative inlier-only refinement."""

    model_config = ConfigDict(extra="forbid")

    num_loops: int = Field(default=5, ge=0)
    min_score: float = 0.0
    max_ambiguity: float = Field(default=0.80, gt=0.0)
    threshold: float = Field(default=3.0, gt=0.0)
    """Residual threshold in pixels."""


class RenderingConfig(BaseModel):
    """Annotation values written into the image buffer."""

    model_config = ConfigDict(extra="forbid")

    max_match_error: float = Field(default=5.0, gt=0.0)
    """Matches with a larger error (pixels) get no trajectory line."""

    line_value: float = 255.0
    outer_value: float = 255.0
    inner_value: float = 0.0
    marker_scale: float = Field(default=1.41, ge=0.0)
    """Marker half-size as a multiple of keypoint scale."""


class IOConfig(BaseModel):
    """Driver input and output paths."""

    model_config = ConfigDict(extra="forbid")

    image1: Path = Path("data/img1.png")
    image2: Path = Path("data/img2.png")
    output: Path = Path("data/limg_pts.pgm")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        if value.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}. Must be one of {sorted(VALID_LOG_LEVELS)}")
        return value.upper()


class Settings(BaseModel):
    """
    Root configuration container.

    Usage:
        from sift_homography.config import get_settings
        settings = get_settings()
    """

    model_config = ConfigDict(extra="forbid")

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    estimation: EstimationConfig = Field(default_factory=EstimationConfig)
    refinement: RefinementConfig = Field(default_factory=RefinementConfig)
    rendering: RenderingConfig = Field(default_factory=RenderingConfig)
    io: IOConfig = Field(default_factory=IOConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load and parse YAML configuration file.

    Args:
        config_path: Path to config.yaml

    Returns:
        Parsed configuration dictionary

    Raises:
        ConfigurationError: If file is missing, empty, or invalid
    """
    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}\n"
            f"Expected location: {config_path.absolute()}\n"
            f"Create the file or set CONFIG_PATH environment variable."
        )

    try:
        with config_path.open() as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if config is None:
        raise ConfigurationError(f"Configuration file is empty: {config_path}")

    if not isinstance(config, dict):
        raise ConfigurationError(
            f"Configuration must be a YAML mapping, got {type(config).__name__}"
        )

    return config


def load_settings(
    settings_model: type[ModelT],
    yaml_config: dict[str, Any],
) -> ModelT:
    """
    Build typed settings from raw YAML config.

    Raises:
        ConfigurationError: If validation fails
    """
    try:
        return settings_model(**yaml_config)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def get_config_path() -> Path:
    """
    Determine configuration file path.

    Uses CONFIG_PATH environment variable if set, otherwise defaults
    to ./config.yaml relative to working directory.
    """
    config_path_str = os.environ.get("CONFIG_PATH")
    if config_path_str is None:
        config_path_str = "config.yaml"
    return Path(config_path_str)


def create_settings_loader(
    settings_model: type[ModelT],
    get_config_path_fn: Callable[[], Path],
) -> tuple[Callable[[], ModelT], Callable[[], None]]:
    """
    Create cached settings getter and cache resetter.

    Returns:
        Tuple of (get_settings, clear_settings_cache)
    """

    @lru_cache
    def get_settings() -> ModelT:
        config_path = get_config_path_fn()
        yaml_config = load_yaml_config(config_path)
        return load_settings(settings_model, yaml_config)

    def clear_settings_cache() -> None:
        get_settings.cache_clear()

    return get_settings, clear_settings_cache


get_settings, clear_settings_cache = create_settings_loader(Settings, get_config_path)

"""Configuration loading and management for clip-gate.

Pipeline settings come from three layers, later ones winning:
1. Model defaults
2. A JSON config file
3. ``CLIP_GATE_*`` environment variables
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from clip_gate.errors import ConfigurationError

ENV_PREFIX = "CLIP_GATE_"
DEFAULT_CONFIG_FILE = "clip_gate.json"


class InferenceSettings(BaseModel):
    """Vision inference settings used by gates 4-7."""

    # "claude" or "openai"
    provider: str = "claude"
    model: str | None = None  # None = provider default
    max_tokens: int = 1024
    # Attempts per call for rate limits and transient service errors
    max_attempts: int = 3


class OverlaySettings(BaseModel):
    """Camera UI chrome composited before overlay verification."""

    # Ring cam label shown under the timestamp (e.g. "Front Door")
    ring_camera_name: str = "Front Door"
    # Ring cam brand: HomeCam, DoorView, PorchGuard
    ring_brand: str = "HomeCam"
    # Body cam unit identifier shown in the HUD
    body_unit_id: str = "UNIT-247"
    # Monospace font used for every drawtext element
    font_file: str = "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf"


class PipelineConfig(BaseModel):
    """Configuration for one producer instance."""

    # Full passes through the gate sequence per production attempt
    retry_budget: int = 3
    # Seconds before an inference call is abandoned
    inference_timeout: float = 60.0
    # Seconds before a media toolkit subprocess is killed
    toolkit_timeout: float = 180.0
    # Scenes produced concurrently by produce_many
    max_concurrent_scenes: int = 2

    # Per-scene temp directories are created here (None = system temp)
    temp_dir: Path | None = None
    # Accepted clips are exported here
    output_dir: Path = Path("output")
    # Overlay templates, laid out as <format>/<name>.png
    overlay_dir: Path = Path("assets/overlays")
    # Ambient audio beds for body cam sub-types
    audio_bed_dir: Path = Path("assets/audio_beds")
    # Replacement ambience for ring cam clips that are too loud
    ambient_audio_asset: Path | None = None
    # Review queue for budget-exhausted scenes (None = disabled)
    review_dir: Path | None = Path("review")
    # Operator alerts are POSTed here (None = log only)
    alert_webhook_url: str | None = None

    # Gain applied to an audio bed before mixing
    bed_attenuation_db: float = -15.0
    # Frames sampled for content policy, crop and overlay checks
    keyframe_count: int = 5
    # Requested length of generated clips in seconds
    generation_duration: int = 10

    inference: InferenceSettings = Field(default_factory=InferenceSettings)
    overlay: OverlaySettings = Field(default_factory=OverlaySettings)

    log_level: str = "normal"  # quiet, normal, verbose, debug
    log_json: bool = False
    log_file: Path | None = None

    @field_validator("retry_budget", "keyframe_count", "max_concurrent_scenes")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("inference_timeout", "toolkit_timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value


def _env_overrides(environ: dict[str, str]) -> dict[str, Any]:
    """Collect ``CLIP_GATE_*`` variables into a nested settings dict.

    A double underscore descends into a nested model, so
    ``CLIP_GATE_INFERENCE__PROVIDER=openai`` sets ``inference.provider``.
    """
    overrides: dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}CONFIG":
            continue
        path = key[len(ENV_PREFIX):].lower().split("__")
        target = overrides
        for part in path[:-1]:
            target = target.setdefault(part, {})
        target[path[-1]] = value
    return overrides


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_pipeline_config(
    path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> PipelineConfig:
    """Load pipeline configuration.

    Args:
        path: JSON config file. Defaults to ``$CLIP_GATE_CONFIG`` or
            ``clip_gate.json`` in the working directory when present.
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated PipelineConfig

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    environ = dict(os.environ) if environ is None else environ

    explicit = path is not None or f"{ENV_PREFIX}CONFIG" in environ
    if path is None:
        path = Path(environ.get(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_FILE))

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config file: {e}", {"path": str(path)}) from e
    elif explicit:
        raise ConfigurationError("Config file not found", {"path": str(path)})

    data = _merge(data, _env_overrides(environ))

    try:
        return PipelineConfig(**data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid pipeline configuration: {e}") from e


def save_pipeline_config(config: PipelineConfig, path: Path) -> Path:
    """Save pipeline configuration to JSON with atomic write.

    Args:
        config: Configuration to save
        path: Destination file

    Returns:
        Path to the saved config file
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")

    with open(temp_path, "w", encoding="utf-8") as f:
        json.dump(config.model_dump(mode="json"), f, indent=2)

    temp_path.replace(path)
    return path

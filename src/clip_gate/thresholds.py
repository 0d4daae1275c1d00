"""Per-format gate thresholds.

Static policy data keyed by camera format. Nothing here changes at runtime;
lookups go through :func:`get_policy`.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from clip_gate.errors import ConfigurationError


class CamFormat(str, Enum):
    """Content formats.

    RING_CAM is a static doorbell/porch camera; BODY_CAM is a moving
    first-person POV camera.
    """

    RING_CAM = "ring_cam"
    BODY_CAM = "body_cam"


class BodyCamSubType(str, Enum):
    """Body cam variants. They only select the audio bed."""

    POLICE_SECURITY = "police_security"
    HIKER_TRAIL = "hiker_trail"
    DASHCAM = "dashcam"
    HELMET_ACTION = "helmet_action"


class MotionBounds(BaseModel):
    """Motion-vector magnitude bounds in pixels per frame.

    A static format sets the maxima; a moving format sets the minimum mean.
    """

    model_config = ConfigDict(frozen=True)

    max_mean: float | None = None
    max_peak: float | None = None
    min_mean: float | None = None


class AudioBounds(BaseModel):
    """Mean-volume bounds in dB. ``None`` means no bound on that side."""

    model_config = ConfigDict(frozen=True)

    floor: float | None = None
    ceiling: float | None = None


class FormatPolicy(BaseModel):
    """Every threshold a gate needs for one format."""

    model_config = ConfigDict(frozen=True)

    format: CamFormat
    motion: MotionBounds
    audio: AudioBounds
    # Moving formats have an in-place motion fix (synthetic shake); static ones do not
    static_camera: bool


# Any clip whose mean volume is below this fails gate 3 regardless of format
SILENCE_FLOOR_DB = -40.0

# Strictly more than this fraction of sampled frames off-center means not crop-safe
OFF_CENTER_THRESHOLD = 0.4

# Default gain applied to an audio bed before mixing
DEFAULT_BED_ATTENUATION_DB = -15.0

# Stage A: any whole-word match rejects the prompt before generation
BLOCKED_TERMS: tuple[str, ...] = (
    "weapon",
    "gun",
    "knife",
    "blood",
    "injury",
    "wound",
    "dead",
    "kill",
    "arrest",
    "handcuff",
    "taser",
    "pepper spray",
    "use of force",
    "traffic stop",
    "pull over",
    "suspect",
    "perpetrator",
    "criminal",
    "child",
    "minor",
    "nude",
    "explicit",
)

# Stage A: soft euphemisms substituted before generation
REWRITE_MAP: dict[str, str] = {
    "ghost": "dark shadow figure",
    "demon": "unexplained dark shape",
    "attack": "sudden rapid approach",
    "chase": "rapid movement toward",
    "scream": "loud startled vocalization",
    "police officer": "security patrol person",
    "cop": "patrol worker",
    "badge": "ID tag",
    "siren": "alert tone",
}

AUDIO_BEDS: dict[BodyCamSubType, str] = {
    BodyCamSubType.POLICE_SECURITY: "police_patrol_walking",
    BodyCamSubType.HIKER_TRAIL: "hiker_trail_night",
    BodyCamSubType.DASHCAM: "dashcam_highway",
    BodyCamSubType.HELMET_ACTION: "helmet_wind",
}
DEFAULT_AUDIO_BED = "police_patrol_walking"

_POLICIES: dict[CamFormat, FormatPolicy] = {
    CamFormat.RING_CAM: FormatPolicy(
        format=CamFormat.RING_CAM,
        motion=MotionBounds(max_mean=0.5, max_peak=2.0),
        audio=AudioBounds(floor=None, ceiling=-10.0),
        static_camera=True,
    ),
    CamFormat.BODY_CAM: FormatPolicy(
        format=CamFormat.BODY_CAM,
        motion=MotionBounds(min_mean=1.5),
        audio=AudioBounds(floor=-35.0, ceiling=None),
        static_camera=False,
    ),
}


def get_policy(fmt: CamFormat | str) -> FormatPolicy:
    """Look up the threshold policy for a format.

    Args:
        fmt: Format enum or its string value

    Returns:
        FormatPolicy for that format

    Raises:
        ConfigurationError: If the format is unknown
    """
    try:
        return _POLICIES[CamFormat(fmt)]
    except ValueError as e:
        raise ConfigurationError(f"Unknown format: {fmt}", {"valid": [f.value for f in CamFormat]}) from e


def audio_bed_for(sub_type: BodyCamSubType | str | None) -> str:
    """Pick the ambient bed for a body cam sub-type."""
    if sub_type is None:
        return DEFAULT_AUDIO_BED
    try:
        return AUDIO_BEDS[BodyCamSubType(sub_type)]
    except ValueError:
        return DEFAULT_AUDIO_BED

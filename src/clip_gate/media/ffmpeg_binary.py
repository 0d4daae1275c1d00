"""FFmpeg binary discovery for clip-gate.

Uses the binary bundled with imageio-ffmpeg by default, with an explicit
override and an opt-in preference for the system PATH. ffprobe is looked up
next to whichever ffmpeg was chosen, then on PATH.

Motion analysis needs an FFmpeg built with libvidstab and the HUD needs
drawtext (libfreetype); ``missing_filters`` reports builds that lack them.
"""

from __future__ import annotations

import platform
import shutil
import subprocess
from pathlib import Path

import imageio_ffmpeg
from pydantic import BaseModel, Field

# Filters the gates and corrective actions depend on.
REQUIRED_FILTERS = ("vidstabdetect", "volumedetect", "boxblur", "amix", "drawtext")


class FFmpegConfig(BaseModel):
    """Where to find FFmpeg."""

    custom_ffmpeg_path: str | None = Field(default=None, description="Explicit ffmpeg executable")
    custom_ffprobe_path: str | None = Field(default=None, description="Explicit ffprobe executable")
    prefer_system: bool = Field(default=False, description="Try PATH before the imageio-ffmpeg binary")


def _bundled_ffmpeg() -> str | None:
    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError:
        return None


def get_ffmpeg_path(config: FFmpegConfig | None = None) -> str | None:
    """Resolve the ffmpeg executable.

    Order: an existing custom path, then the bundled binary and PATH (PATH
    first when ``prefer_system`` is set).

    Returns:
        Path to ffmpeg, or None if none was found
    """
    config = config or FFmpegConfig()

    if config.custom_ffmpeg_path and Path(config.custom_ffmpeg_path).exists():
        return config.custom_ffmpeg_path

    if config.prefer_system:
        return shutil.which("ffmpeg") or _bundled_ffmpeg()
    return _bundled_ffmpeg() or shutil.which("ffmpeg")


def get_ffprobe_path(config: FFmpegConfig | None = None) -> str | None:
    """Resolve the ffprobe executable.

    imageio-ffmpeg ships no ffprobe, so the chosen ffmpeg's directory is
    checked before PATH.
    """
    config = config or FFmpegConfig()

    if config.custom_ffprobe_path and Path(config.custom_ffprobe_path).exists():
        return config.custom_ffprobe_path

    ffmpeg_path = get_ffmpeg_path(config)
    if ffmpeg_path:
        name = "ffprobe.exe" if platform.system() == "Windows" else "ffprobe"
        sibling = Path(ffmpeg_path).parent / name
        if sibling.exists():
            return str(sibling)

    return shutil.which("ffprobe")


def missing_filters(ffmpeg_path: str, required: tuple[str, ...] = REQUIRED_FILTERS) -> list[str]:
    """Names from ``required`` that ``ffmpeg -filters`` does not list.

    An ffmpeg that cannot be run is reported as missing every filter.
    """
    try:
        result = subprocess.run(
            [ffmpeg_path, "-hide_banner", "-filters"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (subprocess.TimeoutExpired, OSError):
        return list(required)

    # Rows look like " T.C vidstabdetect     V->V       Extract relative transformations..."
    available = set()
    for line in result.stdout.splitlines():
        fields = line.split()
        if len(fields) >= 2:
            available.add(fields[1])
    return [name for name in required if name not in available]


def verify_ffmpeg(config: FFmpegConfig | None = None) -> tuple[bool, str]:
    """Check that ffmpeg runs and has every filter the pipeline uses.

    Returns:
        Tuple of (usable, message); the message names the version or the
        problem
    """
    ffmpeg_path = get_ffmpeg_path(config)
    if ffmpeg_path is None:
        return False, "FFmpeg not found. Install imageio-ffmpeg or add FFmpeg to PATH."

    try:
        result = subprocess.run([ffmpeg_path, "-version"], capture_output=True, text=True, timeout=10)
    except (subprocess.TimeoutExpired, OSError) as e:
        return False, f"FFmpeg at {ffmpeg_path} could not be run: {e}"
    if result.returncode != 0:
        return False, f"FFmpeg at {ffmpeg_path} returned exit code {result.returncode}"

    version = result.stdout.split("\n", 1)[0]
    missing = missing_filters(ffmpeg_path)
    if missing:
        return False, f"{version} lacks filters: {', '.join(missing)}"
    return True, f"{version} ({ffmpeg_path})"

"""Media toolkit interface consumed by the gates and the producer.

The gates never compute signals themselves: motion vectors, loudness and
subject regions come from a :class:`MediaToolkit`. Every transforming
operation writes a new file and returns a new :class:`Clip` snapshot.
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from clip_gate.media.snapshots import Clip
from clip_gate.thresholds import CamFormat


@dataclass(frozen=True)
class Region:
    """A rectangle in percent of frame width/height (0-100)."""

    x: float
    y: float
    w: float
    h: float

    def to_pixels(self, width: int, height: int, pad: int = 0) -> tuple[int, int, int, int]:
        """Convert to a pixel box clamped to the frame.

        Args:
            width: Frame width in pixels
            height: Frame height in pixels
            pad: Extra pixels added on every side

        Returns:
            (x, y, w, h) in pixels
        """
        px = max(0, int(self.x / 100 * width) - pad)
        py = max(0, int(self.y / 100 * height) - pad)
        pw = min(width - px, int(self.w / 100 * width) + 2 * pad)
        ph = min(height - py, int(self.h / 100 * height) + 2 * pad)
        return px, py, max(pw, 1), max(ph, 1)

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary."""
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Region":
        """Create from dictionary."""
        return cls(
            x=float(data.get("x", 0)),
            y=float(data.get("y", 0)),
            w=float(data.get("w", 0)),
            h=float(data.get("h", 0)),
        )


@dataclass(frozen=True)
class FrameImage:
    """A still image extracted from a clip."""

    path: Path
    index: int = 0
    media_type: str = "image/jpeg"

    def read_base64(self) -> str:
        """Read the image as base64 for an inference request."""
        return base64.standard_b64encode(self.path.read_bytes()).decode("ascii")


@dataclass(frozen=True)
class MotionStats:
    """Camera motion-vector magnitudes in pixels per frame."""

    mean_magnitude: float
    peak_magnitude: float
    frames_analyzed: int = 0


@dataclass
class OverlaySpec:
    """Camera UI chrome for one scene.

    Built once per scene so every (re)application draws identical chrome.

    Attributes:
        format: Camera format (selects the ring or body HUD layout)
        timestamp: Time shown in the HUD
        camera_name: Ring cam location label
        brand: Ring cam brand label
        unit_id: Body cam unit identifier
        sub_type: Body cam sub-type
        show_gps: Draw a GPS readout (body cam)
        speed_mph: Draw a speed readout when set (body cam)
        font_file: Monospace font for drawtext
    """

    format: CamFormat
    timestamp: datetime
    camera_name: str = "Front Door"
    brand: str = "HomeCam"
    unit_id: str = "UNIT-247"
    sub_type: str | None = None
    show_gps: bool = False
    speed_mph: int | None = None
    font_file: str = "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf"


class MediaToolkit(ABC):
    """Media operations used by the gate pipeline.

    Implementations raise :class:`~clip_gate.errors.MediaToolkitError` on
    unrecoverable I/O failure and
    :class:`~clip_gate.errors.ToolkitTimeoutError` when a call hangs.
    """

    @abstractmethod
    async def analyze_motion(self, clip: Clip) -> MotionStats:
        """Measure camera motion across the clip."""

    @abstractmethod
    async def probe_mean_volume(self, clip: Clip) -> float:
        """Mean audio volume in dB."""

    @abstractmethod
    async def detect_subjects(self, clip: Clip) -> list[list[Region]]:
        """Subject/face regions, one list per sampled frame."""

    @abstractmethod
    async def apply_blur(self, clip: Clip, regions: list[Region], output: Path) -> Clip:
        """Blur the given regions for the whole clip."""

    @abstractmethod
    async def inject_shake(self, clip: Clip, output: Path) -> Clip:
        """Add synthetic hand-held camera shake."""

    @abstractmethod
    async def mix_audio_bed(
        self,
        clip: Clip,
        bed_id: str,
        attenuation_db: float,
        output: Path,
    ) -> Clip:
        """Mix an attenuated ambient bed under the clip's audio."""

    @abstractmethod
    async def replace_audio(self, clip: Clip, audio_asset: Path, output: Path) -> Clip:
        """Replace the clip's audio track."""

    @abstractmethod
    async def apply_overlay(
        self,
        clip: Clip,
        template: Path | None,
        spec: OverlaySpec,
        output: Path,
    ) -> Clip:
        """Composite camera UI chrome onto the clip."""

    @abstractmethod
    async def burn_disclosure(self, clip: Clip, output: Path) -> Clip:
        """Burn the AI disclosure label into the bottom-right corner."""

    @abstractmethod
    async def crop_to_vertical(self, clip: Clip, output: Path) -> Clip:
        """Center-crop to 9:16."""

    @abstractmethod
    async def extract_keyframes(self, clip: Clip, count: int, output_dir: Path) -> list[FrameImage]:
        """Extract ``count`` evenly spaced frames."""

    @abstractmethod
    async def extract_final_frame(self, clip: Clip, output: Path) -> FrameImage:
        """Extract the last frame of the clip."""

    @abstractmethod
    async def degrade(
        self,
        clip: Clip,
        fmt: CamFormat,
        output: Path,
        sub_type: str | None = None,
    ) -> Clip:
        """Apply the format's security-camera look (lens, grain, compression)."""

"""Media snapshots and the toolkit interface.

The FFmpeg implementation lives in :mod:`clip_gate.media.ffmpeg` and is
imported directly by callers that need it.
"""

from clip_gate.media.snapshots import Clip, SnapshotScope
from clip_gate.media.toolkit import FrameImage, MediaToolkit, MotionStats, OverlaySpec, Region

__all__ = [
    "Clip",
    "SnapshotScope",
    "FrameImage",
    "MediaToolkit",
    "MotionStats",
    "OverlaySpec",
    "Region",
]

"""Gate 6: overlay verification.

The camera UI chrome (timestamp, camera name or unit ID, REC indicator) is
composited onto the working snapshot right before this gate runs, then a
vision model confirms it is present, readable and styled for the format.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path

from clip_gate.config import OverlaySettings
from clip_gate.errors import ConfigurationError
from clip_gate.gates.base import Gate, GateContext
from clip_gate.gates.transitions import FailureKind, corrective_action_for
from clip_gate.gates.verdict import Classification, GateVerdict
from clip_gate.inference.base import FreeformText, coerce_bool, parse_response
from clip_gate.inference.prompts import GatePromptBuilder
from clip_gate.media.snapshots import Clip
from clip_gate.media.toolkit import OverlaySpec
from clip_gate.thresholds import BodyCamSubType, CamFormat

# Frames sampled for overlay verification
OVERLAY_FRAME_COUNT = 3


def build_overlay_spec(
    fmt: CamFormat | str,
    settings: OverlaySettings | None = None,
    title: str | None = None,
    sub_type: str | None = None,
    timestamp: datetime | None = None,
    rng: random.Random | None = None,
) -> OverlaySpec:
    """Build the camera chrome for one scene.

    Ring cams label the camera with the scene title (first 20 characters).
    Body cams show GPS for security patrols and a speed readout for dashcams.

    Args:
        fmt: Camera format
        settings: Overlay defaults from configuration
        title: Scene title
        sub_type: Body cam sub-type
        timestamp: Time shown in the HUD (defaults to now)
        rng: Random source for the dashcam speed readout

    Returns:
        OverlaySpec reused for every application in this scene
    """
    fmt = CamFormat(fmt)
    settings = settings or OverlaySettings()
    rng = rng or random.Random()
    timestamp = timestamp or datetime.now()

    if fmt == CamFormat.RING_CAM:
        return OverlaySpec(
            format=fmt,
            timestamp=timestamp,
            camera_name=(title or settings.ring_camera_name)[:20],
            brand=settings.ring_brand,
            font_file=settings.font_file,
        )

    return OverlaySpec(
        format=fmt,
        timestamp=timestamp,
        unit_id=settings.body_unit_id,
        sub_type=sub_type,
        show_gps=sub_type == BodyCamSubType.POLICE_SECURITY.value,
        speed_mph=rng.randint(25, 69) if sub_type == BodyCamSubType.DASHCAM.value else None,
        font_file=settings.font_file,
    )


def overlay_template_path(overlay_dir: Path, fmt: CamFormat | str, sub_type: str | None = None) -> Path:
    """Template PNG for a format: ``<overlay_dir>/<format>/<sub_type or default>.png``."""
    return Path(overlay_dir) / CamFormat(fmt).value / f"{sub_type or 'default'}.png"


@dataclass(frozen=True)
class OverlayCheck:
    """Parsed overlay-verification answer."""

    overlay_detected: bool
    timestamp_readable: bool
    format_correct: bool
    details: str = ""
    path: str = "structured"

    @property
    def passed(self) -> bool:
        return self.overlay_detected and self.timestamp_readable and self.format_correct

    def problems(self, fmt: CamFormat) -> list[str]:
        problems = []
        if not self.overlay_detected:
            problems.append("no UI overlay detected")
        if not self.timestamp_readable:
            problems.append("timestamp not readable")
        if not self.format_correct:
            problems.append(f"overlay does not match {fmt.value} format")
        return problems


def parse_overlay_check(text: str) -> OverlayCheck:
    """Parse an overlay answer, structured first, then keywords."""
    parsed = parse_response(text, required_key="overlayDetected")
    if isinstance(parsed, FreeformText):
        lower = text.lower()
        return OverlayCheck(
            overlay_detected="overlay" in lower and any(w in lower for w in ("visible", "present", "yes")),
            timestamp_readable="timestamp" in lower and any(w in lower for w in ("readable", "visible", "legible")),
            format_correct=any(w in lower for w in ("match", "correct", "appropriate")),
            path="freeform",
        )

    data = parsed.data
    return OverlayCheck(
        overlay_detected=coerce_bool(data.get("overlayDetected", False)),
        timestamp_readable=coerce_bool(data.get("timestampReadable", False)),
        format_correct=coerce_bool(data.get("formatCorrect", False)),
        details=str(data.get("details") or ""),
    )


class OverlayVerificationGate(Gate):
    """Composites the camera chrome and verifies it."""

    index = 6
    name = "overlay"
    classification = Classification.SOFT

    async def stage(self, clip: Clip, context: GateContext) -> Clip:
        """Composite the overlay onto the working snapshot.

        Always starts from ``clip.working()`` so a reapplication never
        stacks a second overlay on the first.
        """
        if context.overlay_spec is None:
            raise ConfigurationError("No overlay configured for this scene")
        base = clip.working()
        overlaid = await context.toolkit.apply_overlay(
            base,
            context.overlay_template,
            context.overlay_spec,
            context.scope.path_for("overlaid"),
        )
        return replace(overlaid, staged=True)

    async def evaluate(self, clip: Clip, context: GateContext) -> GateVerdict:
        if context.inference is None:
            raise ConfigurationError("Overlay verification requires an inference provider")

        frames = await context.frames.keyframes(clip, OVERLAY_FRAME_COUNT)
        instruction = GatePromptBuilder(CamFormat(context.fmt)).build_overlay_prompt(len(frames))
        response = await context.inference.classify_frames(frames, instruction)

        check = parse_overlay_check(response.text)
        context.logger.info(
            f"Overlay check parsed via {check.path} path",
            extra={"gate": self.index, "parse_path": check.path},
        )
        measurements = {
            "overlay_detected": check.overlay_detected,
            "timestamp_readable": check.timestamp_readable,
            "format_correct": check.format_correct,
            "frames_analyzed": len(frames),
            "parse_path": check.path,
        }
        if check.details:
            measurements["details"] = check.details

        if check.passed:
            return self.make_pass(measurements, output_clip=clip)

        return self.make_fail(
            "; ".join(check.problems(context.fmt)),
            measurements,
            action=corrective_action_for(self.index, context.fmt, FailureKind.OVERLAY_MISSING),
        )

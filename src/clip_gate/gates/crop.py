"""Gate 5: crop safety.

Decides whether the key action survives a 9:16 center crop. Never blocks;
the ``crop_safe`` measurement only restricts output formats downstream.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Any

from clip_gate.errors import ConfigurationError
from clip_gate.gates.base import Gate, GateContext
from clip_gate.gates.verdict import Classification, GateVerdict
from clip_gate.inference.base import FreeformText, parse_response
from clip_gate.inference.prompts import GatePromptBuilder
from clip_gate.media.snapshots import Clip
from clip_gate.thresholds import CamFormat, OFF_CENTER_THRESHOLD

_OFF_CENTER_MENTION = re.compile(r"off.center|outer zone|edge|cropped")

# Freeform fallback: this many off-center mentions reads as "mostly off-center"
_FREEFORM_MENTION_LIMIT = 3
_FREEFORM_OFF_CENTER = 0.5


def off_center_from_structured(data: dict[str, Any], frames_sent: int) -> float:
    """Read the off-center fraction from a structured crop answer.

    Falls back to framesWithOffCenterAction / framesAnalyzed when the
    fraction is missing, and accepts percentages given as 0-100.
    """
    fraction = data.get("offCenterPercent")
    if fraction is None:
        analyzed = data.get("framesAnalyzed") or frames_sent
        off_center = data.get("framesWithOffCenterAction") or 0
        fraction = float(off_center) / float(analyzed) if analyzed else 0.0
    fraction = float(fraction)
    if fraction > 1.0:
        fraction = fraction / 100.0
    return min(max(fraction, 0.0), 1.0)


def off_center_from_freeform(text: str) -> float:
    """Keyword heuristic: many off-center mentions means half the frames are off."""
    mentions = len(_OFF_CENTER_MENTION.findall(text.lower()))
    return _FREEFORM_OFF_CENTER if mentions > _FREEFORM_MENTION_LIMIT else 0.0


class CropSafetyGate(Gate):
    """Attaches ``crop_safe`` for the vertical crop. Always passes."""

    index = 5
    name = "crop_safety"
    classification = Classification.TRANSFORM

    async def evaluate(self, clip: Clip, context: GateContext) -> GateVerdict:
        if context.inference is None:
            raise ConfigurationError("Crop analysis requires an inference provider")

        frames = await context.frames.keyframes(clip, context.keyframe_count)
        if not frames:
            return self.make_pass(
                {"crop_safe": True, "off_center_fraction": 0.0, "frames_analyzed": 0},
                reason="No frames sampled; assuming crop-safe",
            )

        instruction = GatePromptBuilder(CamFormat(context.fmt)).build_crop_prompt(len(frames))
        response = await context.inference.classify_frames(frames, instruction)

        parsed = parse_response(response.text, required_key="offCenterPercent")
        if isinstance(parsed, FreeformText):
            # Older answers sometimes omit the fraction but carry the counts
            parsed = parse_response(response.text, required_key="framesAnalyzed")

        if isinstance(parsed, FreeformText):
            fraction = off_center_from_freeform(parsed.text)
        else:
            fraction = off_center_from_structured(parsed.data, len(frames))

        crop_safe = fraction <= OFF_CENTER_THRESHOLD
        context.logger.info(
            f"Crop analysis parsed via {parsed.path} path",
            extra={"gate": self.index, "parse_path": parsed.path, "off_center_fraction": fraction},
        )
        measurements = {
            "crop_safe": crop_safe,
            "off_center_fraction": round(fraction, 4),
            "threshold": OFF_CENTER_THRESHOLD,
            "frames_analyzed": len(frames),
            "parse_path": parsed.path,
            "recommendation": "all_formats" if crop_safe else "landscape_only",
        }
        reason = None
        if not crop_safe:
            reason = (
                f"{fraction * 100:.1f}% of frames have off-center action; "
                "key content may be lost in a 9:16 crop"
            )
        return self.make_pass(measurements, reason=reason)

    def on_error(self, error: Exception, fmt: CamFormat) -> GateVerdict:
        verdict = super().on_error(error, fmt)
        return replace(verdict, measurements={**verdict.measurements, "crop_safe": False})

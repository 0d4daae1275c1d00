"""Gate 7: AI disclosure watermark.

The disclosure is burned into the bottom-right corner right before this
gate runs. A missing watermark is always terminal: nothing after this gate
can add it back, and the clip must not ship without it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from clip_gate.errors import ConfigurationError
from clip_gate.gates.base import Gate, GateContext
from clip_gate.gates.verdict import Classification, GateVerdict
from clip_gate.inference.base import FreeformText, coerce_bool, parse_response
from clip_gate.inference.prompts import WATERMARK_PROMPT
from clip_gate.media.snapshots import Clip

_WATERMARK_TEXT = re.compile(r'"AI\s*GENERATED"|"AI Generated"|"AI"', re.IGNORECASE)


@dataclass(frozen=True)
class WatermarkCheck:
    """Parsed watermark answer."""

    detected: bool
    text: str | None = None
    confidence: str | None = None
    location: str | None = None
    path: str = "structured"


def parse_watermark_check(text: str) -> WatermarkCheck:
    """Parse a watermark answer, structured first, then keywords."""
    parsed = parse_response(text, required_key="watermarkDetected")
    if isinstance(parsed, FreeformText):
        lower = text.lower()
        mentions = any(w in lower for w in ("ai generated", '"ai"', "watermark"))
        affirmed = any(w in lower for w in ("visible", "detected", "present", "true"))
        match = _WATERMARK_TEXT.search(text)
        return WatermarkCheck(
            detected=mentions and affirmed,
            text=match.group(0).replace('"', "") if match else None,
            path="freeform",
        )

    data = parsed.data
    return WatermarkCheck(
        detected=coerce_bool(data.get("watermarkDetected", False)),
        text=data.get("watermarkText") or None,
        confidence=data.get("confidence"),
        location=data.get("location"),
    )


class DisclosureGate(Gate):
    """Burns the disclosure and verifies it on the final frame."""

    index = 7
    name = "disclosure"
    classification = Classification.HARD

    async def stage(self, clip: Clip, context: GateContext) -> Clip:
        """Burn the disclosure onto the snapshot that passed gate 6."""
        disclosed = await context.toolkit.burn_disclosure(clip, context.scope.path_for("disclosed"))
        return replace(disclosed, staged=True)

    async def evaluate(self, clip: Clip, context: GateContext) -> GateVerdict:
        if context.inference is None:
            raise ConfigurationError("Disclosure verification requires an inference provider")

        frame = await context.frames.final_frame(clip)
        response = await context.inference.classify_frames([frame], WATERMARK_PROMPT)

        check = parse_watermark_check(response.text)
        context.logger.info(
            f"Watermark check parsed via {check.path} path",
            extra={"gate": self.index, "parse_path": check.path},
        )
        measurements = {
            "watermark_detected": check.detected,
            "watermark_text": check.text,
            "parse_path": check.path,
        }
        if check.confidence:
            measurements["confidence"] = check.confidence
        if check.location:
            measurements["location"] = check.location

        if check.detected:
            return self.make_pass(measurements, output_clip=clip)

        context.logger.error(
            "Disclosure watermark not detected in bottom-right corner",
            extra={"event": "gate_hard_fail", "stage": "disclosure", "clip": str(clip.path)},
        )
        return self.make_fail(
            "AI disclosure watermark not detected in bottom-right corner",
            measurements,
            flags=("disclosure_missing",),
        )

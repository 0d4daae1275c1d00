"""Instruction templates for the vision-backed gates.

Each template asks for one JSON object (or one per line for subject
detection) so the strict parse succeeds in the common case.
"""

from __future__ import annotations

from dataclasses import dataclass

from clip_gate.thresholds import CamFormat

SUBJECT_DETECTION_PROMPT = (
    "Analyze these video frames for human faces. For each frame, respond with a JSON "
    'object on one line: {"frame": <index>, "facesFound": <count>, "faceRegions": '
    '[{"x": <percent_from_left>, "y": <percent_from_top>, "w": <width_percent>, '
    '"h": <height_percent>}]}. If no faces, set facesFound to 0 and faceRegions to []. '
    "Output one JSON line per frame."
)

WATERMARK_PROMPT = """You are performing a compliance check on a video frame.

Look carefully at the BOTTOM-RIGHT CORNER of this image (roughly the last 15-20% of width and last 15-20% of height).

Search for any disclosure text or watermark that says:
- "AI GENERATED"
- "AI Generated"
- "AI" (as a standalone label)
- Any similar AI disclosure text

The watermark may be semi-transparent, very small, or faint. Look carefully even for subtle text overlays.

Respond with this exact JSON format:
{
  "watermarkDetected": <true|false>,
  "watermarkText": "<exact text you see, or null if not found>",
  "confidence": "<high|medium|low>",
  "location": "<description of where in the frame you see it, or 'not found'>"
}"""


@dataclass
class GatePromptBuilder:
    """Builds format-aware instructions for gates 4, 5 and 6.

    Attributes:
        fmt: Camera format of the clip under review
    """

    fmt: CamFormat

    @property
    def _is_ring(self) -> bool:
        return self.fmt == CamFormat.RING_CAM

    def build_content_review_prompt(self, concept: str, frame_count: int) -> str:
        """Build the Stage B content-safety instruction.

        Args:
            concept: Scene description the clip was generated from
            frame_count: Number of frames attached

        Returns:
            Instruction text
        """
        format_description = (
            "Ring cam (static doorbell/porch security camera, should be outdoors or at entrance)"
            if self._is_ring
            else "Body cam (first-person POV walking camera, should show natural environment)"
        )
        return f"""You are a content moderation reviewer for an AI video generation platform.

Review these {frame_count} video frames from a clip described as: "{concept}"
Format: {format_description}

Check each frame carefully for the following and assign a severity:
1. FACES - visible human faces (flag as "faces_present"; medium severity)
2. VIOLENCE - blood, injury, fighting, physical harm (high severity)
3. LAW ENFORCEMENT RESEMBLANCE - looks like real police footage (high severity)
4. WEAPONS - guns, knives, clubs, or any weapon (critical severity)
5. PANIC-INDUCING CONTENT - extreme distress, screaming, dangerous emergency scenes (medium severity)
6. INDOOR SCENES - for ring cam format, indoor scenes are not appropriate (low severity)
7. BRANDED LOGOS - visible brand names, trademarks, real company logos (low severity)

After reviewing all frames, respond with this exact JSON format:
{{
  "severity": "<none|low|medium|high|critical>",
  "flags": ["<flag1>", "<flag2>"],
  "summary": "<one sentence summary>"
}}

Use the highest severity found across all frames. If nothing concerning is found, use severity "none"."""

    def build_crop_prompt(self, frame_count: int) -> str:
        """Build the crop-safety instruction for a 9:16 center crop."""
        format_context = (
            "Ring cam (static security camera; subjects should appear in the center third of the frame)"
            if self._is_ring
            else "Body cam (first-person POV; subjects ahead of the wearer should be roughly centered)"
        )
        return f"""You are analyzing video frames for crop safety. The video will be cropped to 9:16 vertical format.

The SAFE ZONE is the center 56.25% of the frame width. The OUTER ZONES are the left and right 21.875% margins; these get cropped off in vertical format.

Format context: {format_context}

For each frame, identify where the KEY ACTION or MAIN SUBJECT is located: the CENTER ZONE (safe) or the OUTER ZONES (will be cropped).

Analyze all {frame_count} frames and respond with this JSON:
{{
  "framesAnalyzed": <count>,
  "framesWithOffCenterAction": <count>,
  "offCenterPercent": <0.0 to 1.0>,
  "summary": "<brief description>"
}}

Count a frame as off-center if more than half the key action is in the outer 21.875% on either side."""

    def build_overlay_prompt(self, frame_count: int) -> str:
        """Build the overlay-verification instruction."""
        expectation = (
            "doorbell/porch camera UI (camera name, date/time stamp in a corner, recording indicator)"
            if self._is_ring
            else "first-person body cam or dash cam UI (unit ID, date/time stamp, recording indicator)"
        )
        return f"""You are inspecting security camera video frames for UI overlay quality control.

Examine {frame_count} frame(s) carefully and answer these three questions:
1. OVERLAY PRESENT: Is a security camera UI overlay visible (timestamp, REC indicator, camera name/ID, HUD elements)?
2. TIMESTAMP READABLE: Is there a legible date and/or time display?
3. FORMAT MATCH: Does the overlay style match the expected format: {expectation}?

Respond with this exact JSON format:
{{
  "overlayDetected": <true|false>,
  "timestampReadable": <true|false>,
  "formatCorrect": <true|false>,
  "details": "<brief description of what you see>"
}}

Be strict: if there is no visible UI overlay at all, set overlayDetected to false."""

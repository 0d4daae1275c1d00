"""Gate 2: subject detection and blur.

Real security footage routinely blurs faces, so detected faces trigger a
blur pass instead of a rejection. This gate never blocks.
"""

from __future__ import annotations

from clip_gate.gates.base import Gate, GateContext
from clip_gate.gates.verdict import Classification, GateVerdict
from clip_gate.media.snapshots import Clip
from clip_gate.media.toolkit import Region

# Distinct blur zones applied to one clip
MAX_BLUR_REGIONS = 4

BLURRED_LABEL = "blurred"


def select_blur_regions(regions_by_frame: list[list[Region]], limit: int = MAX_BLUR_REGIONS) -> list[Region]:
    """Pick the regions to blur across all sampled frames.

    Regions are taken in frame order, skipping exact duplicates, up to ``limit``.
    """
    selected: list[Region] = []
    for regions in regions_by_frame:
        for region in regions:
            if region.w <= 0 or region.h <= 0 or region in selected:
                continue
            selected.append(region)
            if len(selected) >= limit:
                return selected
    return selected


class SubjectBlurGate(Gate):
    """Blurs detected faces. Always passes."""

    index = 2
    name = "subject_blur"
    classification = Classification.TRANSFORM

    async def evaluate(self, clip: Clip, context: GateContext) -> GateVerdict:
        if BLURRED_LABEL in clip.lineage():
            # Carried over from an earlier attempt
            return self.make_pass({"blurred": True, "already_blurred": True})

        regions_by_frame = await context.toolkit.detect_subjects(clip)
        total = sum(len(regions) for regions in regions_by_frame)
        frames_with_subjects = sum(1 for regions in regions_by_frame if regions)
        measurements = {
            "subjects_detected": total,
            "frames_sampled": len(regions_by_frame),
            "frames_with_subjects": frames_with_subjects,
            "blurred": False,
        }

        regions = select_blur_regions(regions_by_frame)
        if not regions:
            return self.make_pass(measurements)

        blurred = await context.toolkit.apply_blur(clip, regions, context.scope.path_for(BLURRED_LABEL))
        measurements["blurred"] = True
        measurements["regions"] = [r.to_dict() for r in regions]
        return self.make_pass(
            measurements,
            reason=f"Blurred {len(regions)} subject region(s)",
            output_clip=blurred,
        )

"""Gate 1: camera motion.

A static doorbell camera must not move; a first-person body camera must.
The toolkit measures motion-vector magnitudes; this gate only thresholds them.
"""

from __future__ import annotations

from clip_gate.gates.base import Gate, GateContext
from clip_gate.gates.transitions import FailureKind, corrective_action_for
from clip_gate.gates.verdict import Classification, GateVerdict
from clip_gate.media.snapshots import Clip
from clip_gate.media.toolkit import MotionStats
from clip_gate.thresholds import MotionBounds


def check_motion(stats: MotionStats, bounds: MotionBounds) -> list[str]:
    """Compare motion statistics against format bounds.

    Args:
        stats: Measured motion magnitudes
        bounds: Format motion bounds

    Returns:
        List of violation reasons, empty when within bounds
    """
    problems = []
    if bounds.max_mean is not None and stats.mean_magnitude >= bounds.max_mean:
        problems.append(
            f"Too much motion: mean {stats.mean_magnitude:.2f}px >= {bounds.max_mean}px"
        )
    if bounds.max_peak is not None and stats.peak_magnitude >= bounds.max_peak:
        problems.append(
            f"Motion spike: peak {stats.peak_magnitude:.2f}px >= {bounds.max_peak}px"
        )
    if bounds.min_mean is not None and stats.mean_magnitude < bounds.min_mean:
        problems.append(
            f"Too little motion: mean {stats.mean_magnitude:.2f}px < {bounds.min_mean}px"
        )
    return problems


class MotionGate(Gate):
    """Checks camera motion against the format's bounds."""

    index = 1
    name = "motion"
    classification = Classification.SOFT

    async def evaluate(self, clip: Clip, context: GateContext) -> GateVerdict:
        stats = await context.toolkit.analyze_motion(clip)
        bounds = context.policy.motion
        measurements = {
            "mean_magnitude": round(stats.mean_magnitude, 4),
            "peak_magnitude": round(stats.peak_magnitude, 4),
            "frames_analyzed": stats.frames_analyzed,
            "bounds": bounds.model_dump(exclude_none=True),
        }

        problems = check_motion(stats, bounds)
        if not problems:
            return self.make_pass(measurements)

        action = corrective_action_for(self.index, context.fmt, FailureKind.MOTION_OUT_OF_BOUNDS)
        return self.make_fail("; ".join(problems), measurements, action=action)

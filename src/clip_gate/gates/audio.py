"""Gate 3: audio level."""

from __future__ import annotations

from clip_gate.gates.base import Gate, GateContext
from clip_gate.gates.transitions import FailureKind, corrective_action_for
from clip_gate.gates.verdict import Classification, GateVerdict
from clip_gate.media.snapshots import Clip
from clip_gate.thresholds import SILENCE_FLOOR_DB, AudioBounds


def classify_volume(mean_db: float, bounds: AudioBounds) -> FailureKind | None:
    """Classify a mean volume against the silence floor and format bounds.

    Bounds are inclusive. The silence floor applies to every format and is
    checked first.

    Returns:
        The failure kind, or None when the level is acceptable
    """
    if mean_db < SILENCE_FLOOR_DB:
        return FailureKind.SILENCE
    if bounds.floor is not None and mean_db < bounds.floor:
        return FailureKind.BELOW_FLOOR
    if bounds.ceiling is not None and mean_db > bounds.ceiling:
        return FailureKind.ABOVE_CEILING
    return None


_REASONS = {
    FailureKind.SILENCE: "Effectively silent: {db:.1f}dB < {limit}dB",
    FailureKind.BELOW_FLOOR: "Too quiet: {db:.1f}dB < {limit}dB",
    FailureKind.ABOVE_CEILING: "Too loud: {db:.1f}dB > {limit}dB",
}


class AudioGate(Gate):
    """Checks mean volume against the format's audio bounds."""

    index = 3
    name = "audio"
    classification = Classification.SOFT

    async def evaluate(self, clip: Clip, context: GateContext) -> GateVerdict:
        mean_db = await context.toolkit.probe_mean_volume(clip)
        bounds = context.policy.audio
        measurements = {
            "mean_volume_db": round(mean_db, 2),
            "silence_floor_db": SILENCE_FLOOR_DB,
            "floor_db": bounds.floor,
            "ceiling_db": bounds.ceiling,
        }

        kind = classify_volume(mean_db, bounds)
        if kind is None:
            return self.make_pass(measurements)

        limit = {
            FailureKind.SILENCE: SILENCE_FLOOR_DB,
            FailureKind.BELOW_FLOOR: bounds.floor,
            FailureKind.ABOVE_CEILING: bounds.ceiling,
        }[kind]
        measurements["failure_kind"] = kind.value
        return self.make_fail(
            _REASONS[kind].format(db=mean_db, limit=limit),
            measurements,
            action=corrective_action_for(self.index, context.fmt, kind),
        )

"""Corrective-action transition table.

Maps (gate index, format, failure kind) to the remedy the producer applies.
Gates look their remedy up here instead of branching on format themselves.
"""

from __future__ import annotations

from enum import Enum

from clip_gate.gates.verdict import CorrectiveAction
from clip_gate.thresholds import CamFormat


class FailureKind(str, Enum):
    """Why a soft gate failed."""

    MOTION_OUT_OF_BOUNDS = "motion_out_of_bounds"
    SILENCE = "silence"
    BELOW_FLOOR = "below_floor"
    ABOVE_CEILING = "above_ceiling"
    CONTENT_FLAGGED = "content_flagged"
    OVERLAY_MISSING = "overlay_missing"
    GATE_ERROR = "gate_error"


# None in the format slot matches every format
TRANSITIONS: dict[tuple[int, CamFormat | None, FailureKind], CorrectiveAction | None] = {
    # Static camera has no in-place motion fix
    (1, CamFormat.RING_CAM, FailureKind.MOTION_OUT_OF_BOUNDS): CorrectiveAction.REGENERATE,
    (1, CamFormat.BODY_CAM, FailureKind.MOTION_OUT_OF_BOUNDS): CorrectiveAction.INJECT_SHAKE,
    (1, None, FailureKind.GATE_ERROR): CorrectiveAction.REGENERATE,
    (3, None, FailureKind.SILENCE): CorrectiveAction.REGENERATE,
    (3, None, FailureKind.BELOW_FLOOR): CorrectiveAction.MIX_AUDIO_BED,
    (3, None, FailureKind.ABOVE_CEILING): CorrectiveAction.REPLACE_AUDIO,
    (3, None, FailureKind.GATE_ERROR): CorrectiveAction.REGENERATE,
    # Medium/low content flags need a human, not a remedy
    (4, None, FailureKind.CONTENT_FLAGGED): None,
    (6, None, FailureKind.OVERLAY_MISSING): CorrectiveAction.REAPPLY_OVERLAY,
    (6, None, FailureKind.GATE_ERROR): CorrectiveAction.REAPPLY_OVERLAY,
}

# Remedies whose target gate is re-checked alone before the sequence resumes
RECHECK_GATE: dict[CorrectiveAction, int] = {
    CorrectiveAction.INJECT_SHAKE: 1,
    CorrectiveAction.MIX_AUDIO_BED: 3,
    CorrectiveAction.REPLACE_AUDIO: 3,
    CorrectiveAction.REAPPLY_OVERLAY: 6,
}


def corrective_action_for(
    gate_index: int,
    fmt: CamFormat | str,
    kind: FailureKind,
) -> CorrectiveAction | None:
    """Look up the remedy for a soft failure.

    Args:
        gate_index: Failing gate (1-7)
        fmt: Clip format
        kind: Failure kind reported by the gate

    Returns:
        The corrective action, or None when no remedy is defined
    """
    fmt = CamFormat(fmt)
    key = (gate_index, fmt, kind)
    if key in TRANSITIONS:
        return TRANSITIONS[key]
    return TRANSITIONS.get((gate_index, None, kind))


def recheck_gate_for(action: CorrectiveAction | None) -> int | None:
    """Gate re-run in isolation after ``action``, or None if the attempt simply fails."""
    if action is None:
        return None
    return RECHECK_GATE.get(action)

"""Gate verdict data structures.

Defines the core types produced by the gates and the runner:
- GateOutcome / Classification / CorrectiveAction enums
- GateVerdict: result of one gate evaluation
- AggregatedResult: result of one pass through the gate sequence
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from clip_gate.errors import (
    ClipGateError,
    CorrectableQuality,
    HardPolicyViolation,
    UncorrectableQuality,
)
from clip_gate.media.snapshots import Clip


class GateOutcome(str, Enum):
    """Outcome of one gate evaluation."""

    PASS = "pass"
    FAIL = "fail"


class Classification(str, Enum):
    """How a gate's failure is treated.

    HARD failures are terminal, SOFT failures may be corrected and retried,
    TRANSFORM gates never fail.
    """

    HARD = "hard"
    SOFT = "soft"
    TRANSFORM = "transform"


class CorrectiveAction(str, Enum):
    """Remedies the producer knows how to apply."""

    REGENERATE = "regenerate"
    INJECT_SHAKE = "inject_shake"
    MIX_AUDIO_BED = "mix_audio_bed"
    REPLACE_AUDIO = "replace_audio"
    REAPPLY_OVERLAY = "reapply_overlay"


class RunnerState(str, Enum):
    """Terminal state of one runner invocation."""

    PASSED = "passed"
    HARD_FAILED = "hard_failed"
    SOFT_FAILED = "soft_failed"


@dataclass(frozen=True)
class GateVerdict:
    """Result of evaluating one gate.

    Attributes:
        gate_index: Position in the sequence (1-7)
        gate_name: Short gate name (motion, audio, ...)
        outcome: Pass or fail
        classification: Hard, soft or transform
        measurements: Signals and derived values used to decide
        corrective_action: Remedy hint for soft failures
        reason: Human-readable explanation of a failure or notable pass
        flags: Labels attached by the gate (policy flags, gate_error, ...)
        output_clip: New snapshot produced by the gate, if any
    """

    gate_index: int
    gate_name: str
    outcome: GateOutcome
    classification: Classification
    measurements: dict[str, Any] = field(default_factory=dict)
    corrective_action: CorrectiveAction | None = None
    reason: str | None = None
    flags: tuple[str, ...] = ()
    output_clip: Clip | None = None

    @property
    def passed(self) -> bool:
        """Check if the gate passed."""
        return self.outcome == GateOutcome.PASS

    @property
    def failed(self) -> bool:
        """Check if the gate failed."""
        return self.outcome == GateOutcome.FAIL

    @property
    def is_hard_fail(self) -> bool:
        """Failed on a hard-classified gate."""
        return self.failed and self.classification == Classification.HARD

    @property
    def is_soft_fail(self) -> bool:
        """Failed on a soft-classified gate."""
        return self.failed and self.classification == Classification.SOFT

    def describe(self) -> str:
        """One-line summary used in failure listings."""
        text = f"gate {self.gate_index} ({self.gate_name})"
        if self.reason:
            text += f": {self.reason}"
        if self.corrective_action is not None:
            text += f" [{self.corrective_action.value}]"
        return text

    def to_error(self) -> ClipGateError | None:
        """Map a failed verdict onto the error taxonomy."""
        if self.passed:
            return None
        if self.is_hard_fail:
            return HardPolicyViolation(self.describe(), self.gate_index, {"flags": list(self.flags)})
        if self.corrective_action not in (None, CorrectiveAction.REGENERATE):
            return CorrectableQuality(self.describe(), self.gate_index, self.corrective_action.value)
        return UncorrectableQuality(self.describe(), self.gate_index)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "gate_index": self.gate_index,
            "gate_name": self.gate_name,
            "outcome": self.outcome.value,
            "classification": self.classification.value,
            "measurements": self.measurements,
            "corrective_action": self.corrective_action.value if self.corrective_action else None,
            "reason": self.reason,
            "flags": list(self.flags),
            "output_clip": str(self.output_clip.path) if self.output_clip else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GateVerdict":
        """Create from dictionary."""
        action = data.get("corrective_action")
        output = data.get("output_clip")
        return cls(
            gate_index=data["gate_index"],
            gate_name=data["gate_name"],
            outcome=GateOutcome(data["outcome"]),
            classification=Classification(data["classification"]),
            measurements=data.get("measurements", {}),
            corrective_action=CorrectiveAction(action) if action else None,
            reason=data.get("reason"),
            flags=tuple(data.get("flags", [])),
            output_clip=Clip(path=Path(output), label="restored") if output else None,
        )


@dataclass
class AggregatedResult:
    """Result of one runner invocation over the gate sequence.

    Attributes:
        state: Passed, hard failed or soft failed
        verdicts: Every verdict produced, in gate order
        clip: Snapshot after the last evaluated gate
        hard_fail_gate_index: Index of the hard-failing gate
        corrective_action: Remedy hint of the soft-failing gate
        crop_safe: Set once gate 5 has run
    """

    state: RunnerState
    verdicts: list[GateVerdict]
    clip: Clip
    hard_fail_gate_index: int | None = None
    corrective_action: CorrectiveAction | None = None
    crop_safe: bool | None = None

    @property
    def overall_pass(self) -> bool:
        """Check if every gate passed."""
        return self.state == RunnerState.PASSED

    @property
    def hard_fail(self) -> bool:
        """Check if a hard gate failed."""
        return self.state == RunnerState.HARD_FAILED

    @property
    def failing_verdict(self) -> GateVerdict | None:
        """The verdict that ended the run, if it did not pass."""
        if self.overall_pass or not self.verdicts:
            return None
        return self.verdicts[-1]

    @property
    def failure_reasons(self) -> list[str]:
        """Get list of reasons for failed gates."""
        return [v.describe() for v in self.verdicts if v.failed]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "state": self.state.value,
            "overall_pass": self.overall_pass,
            "hard_fail": self.hard_fail,
            "hard_fail_gate_index": self.hard_fail_gate_index,
            "corrective_action": self.corrective_action.value if self.corrective_action else None,
            "crop_safe": self.crop_safe,
            "clip": self.clip.to_dict(),
            "verdicts": [v.to_dict() for v in self.verdicts],
        }

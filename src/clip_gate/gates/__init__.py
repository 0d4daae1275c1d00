"""The seven publish gates and the runner that sequences them.

Gate order:
1. Motion (soft)
2. Subject blur (transform)
3. Audio (soft)
4. Content policy (hard; Stage A prompt screening lives here too)
5. Crop safety (transform)
6. Overlay verification (soft, one nested retry)
7. Disclosure watermark (hard)
"""

from clip_gate.gates.base import CancellationToken, FrameCache, Gate, GateContext
from clip_gate.gates.policy import SanitizeResult, Severity, sanitize_prompt
from clip_gate.gates.runner import GateRunner, default_gates
from clip_gate.gates.transitions import FailureKind, corrective_action_for, recheck_gate_for
from clip_gate.gates.verdict import (
    AggregatedResult,
    Classification,
    CorrectiveAction,
    GateOutcome,
    GateVerdict,
    RunnerState,
)

__all__ = [
    "CancellationToken",
    "FrameCache",
    "Gate",
    "GateContext",
    "SanitizeResult",
    "Severity",
    "sanitize_prompt",
    "GateRunner",
    "default_gates",
    "FailureKind",
    "corrective_action_for",
    "recheck_gate_for",
    "AggregatedResult",
    "Classification",
    "CorrectiveAction",
    "GateOutcome",
    "GateVerdict",
    "RunnerState",
]

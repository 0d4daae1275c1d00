"""Gate runner.

Walks the ordered gate sequence once per invocation:

    pending[i] -> pass / transform -> pending[i+1]
    pending[i] -> hard fail        -> hard_failed (terminal, nothing after i runs)
    pending[i] -> soft fail        -> soft_failed (carries the remedy hint)
    pending[N] ->                     passed

The runner never retries; the producer owns retry accounting. Gate errors
never escape: each is converted into the failing gate's most conservative
verdict.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from clip_gate.errors import ProductionCancelled
from clip_gate.gates.audio import AudioGate
from clip_gate.gates.base import Gate, GateContext
from clip_gate.gates.crop import CropSafetyGate
from clip_gate.gates.disclosure import DisclosureGate
from clip_gate.gates.motion import MotionGate
from clip_gate.gates.overlay import OverlayVerificationGate
from clip_gate.gates.policy import ContentPolicyGate
from clip_gate.gates.subject_blur import SubjectBlurGate
from clip_gate.gates.verdict import AggregatedResult, GateVerdict, RunnerState
from clip_gate.logging import log_gate_verdict
from clip_gate.media.snapshots import Clip

CROP_GATE_INDEX = 5


def default_gates() -> list[Gate]:
    """The seven gates in evaluation order."""
    return [
        MotionGate(),
        SubjectBlurGate(),
        AudioGate(),
        ContentPolicyGate(),
        CropSafetyGate(),
        OverlayVerificationGate(),
        DisclosureGate(),
    ]


def _crop_safe_from(verdicts: Iterable[GateVerdict]) -> bool | None:
    for verdict in verdicts:
        if verdict.gate_index == CROP_GATE_INDEX:
            return bool(verdict.measurements.get("crop_safe", False))
    return None


class GateRunner:
    """Runs the gate sequence against one snapshot.

    Attributes:
        gates: Gates in evaluation order, indexed 1..N
    """

    def __init__(self, gates: list[Gate] | None = None):
        self.gates = gates if gates is not None else default_gates()
        indices = [g.index for g in self.gates]
        if indices != sorted(set(indices)):
            raise ValueError(f"Gate indices must be unique and ascending: {indices}")

    def gate(self, index: int) -> Gate:
        """Look up a gate by index."""
        for gate in self.gates:
            if gate.index == index:
                return gate
        raise KeyError(f"No gate with index {index}")

    async def _evaluate(self, gate: Gate, clip: Clip, context: GateContext) -> GateVerdict:
        """Stage and evaluate one gate, converting any error into a verdict."""
        try:
            staged = await gate.stage(clip, context)
            verdict = await gate.evaluate(staged, context)
        except ProductionCancelled:
            raise
        except Exception as e:
            context.logger.warning(
                f"Gate {gate.index} ({gate.name}) raised; using its error path",
                extra={"gate": gate.index, "error_type": type(e).__name__, "error": str(e)},
            )
            verdict = gate.on_error(e, context.fmt)
        else:
            if staged is not clip and verdict.output_clip is None:
                verdict = replace(verdict, output_clip=staged)

        log_gate_verdict(context.logger, verdict)
        return verdict

    async def run_single(self, index: int, clip: Clip, context: GateContext) -> GateVerdict:
        """Re-check one gate in isolation.

        Staging gates restage from ``clip`` first, so re-running gate 6 on a
        snapshot reapplies the overlay from its working base.

        Args:
            index: Gate to run
            clip: Snapshot to check
            context: Evaluation context

        Returns:
            The gate's verdict
        """
        context.cancel_token.raise_if_cancelled(f"gate {index}")
        return await self._evaluate(self.gate(index), clip, context)

    async def run(
        self,
        clip: Clip,
        context: GateContext,
        start_at: int = 1,
        prior_verdicts: Iterable[GateVerdict] = (),
    ) -> AggregatedResult:
        """Run the gate sequence once.

        Args:
            clip: Snapshot entering gate ``start_at``
            context: Evaluation context for this attempt
            start_at: First gate to evaluate; earlier gates are taken from
                ``prior_verdicts``
            prior_verdicts: Verdicts already produced for gates before
                ``start_at`` in this pass

        Returns:
            AggregatedResult in exactly one of passed, hard_failed or soft_failed

        Raises:
            ProductionCancelled: If the cancel token fires between gates
        """
        verdicts = [v for v in prior_verdicts if v.gate_index < start_at]
        crop_safe = _crop_safe_from(verdicts)
        current = clip

        for gate in self.gates:
            if gate.index < start_at:
                continue
            context.cancel_token.raise_if_cancelled(f"gate {gate.index}")

            verdict = await self._evaluate(gate, current, context)
            verdicts.append(verdict)
            if verdict.output_clip is not None:
                current = verdict.output_clip
            if gate.index == CROP_GATE_INDEX:
                crop_safe = bool(verdict.measurements.get("crop_safe", False))

            if verdict.is_hard_fail:
                return AggregatedResult(
                    state=RunnerState.HARD_FAILED,
                    verdicts=verdicts,
                    clip=current,
                    hard_fail_gate_index=gate.index,
                    crop_safe=crop_safe,
                )
            if verdict.failed:
                return AggregatedResult(
                    state=RunnerState.SOFT_FAILED,
                    verdicts=verdicts,
                    clip=current,
                    corrective_action=verdict.corrective_action,
                    crop_safe=crop_safe,
                )

        return AggregatedResult(
            state=RunnerState.PASSED,
            verdicts=verdicts,
            clip=current,
            crop_safe=crop_safe,
        )

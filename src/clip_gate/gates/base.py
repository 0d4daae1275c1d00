"""Gate interface and the per-attempt evaluation context."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from clip_gate.errors import ProductionCancelled, ToolchainError
from clip_gate.gates.transitions import FailureKind, corrective_action_for
from clip_gate.gates.verdict import Classification, CorrectiveAction, GateOutcome, GateVerdict
from clip_gate.inference.base import InferenceProvider
from clip_gate.logging import ClipGateLogger, get_logger
from clip_gate.media.snapshots import Clip, SnapshotScope
from clip_gate.media.toolkit import FrameImage, MediaToolkit, OverlaySpec
from clip_gate.thresholds import CamFormat, FormatPolicy, get_policy


class CancellationToken:
    """Cooperative abort signal checked between gates and producer steps."""

    def __init__(self) -> None:
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    def cancel(self, reason: str = "cancelled by operator") -> None:
        if self._reason is None:
            self._reason = reason

    def raise_if_cancelled(self, where: str = "") -> None:
        """Raise ProductionCancelled if an abort was requested."""
        if self._reason is not None:
            context = {"at": where} if where else None
            raise ProductionCancelled(self._reason, context)


class FrameCache:
    """Memoizes frame extraction for one production attempt.

    Keyed by snapshot path so two gates reading the same snapshot share the
    frames, while a new snapshot always gets fresh ones.
    """

    def __init__(self, toolkit: MediaToolkit, scope: SnapshotScope):
        self._toolkit = toolkit
        self._scope = scope
        self._keyframes: dict[tuple[Path, int], list[FrameImage]] = {}
        self._final: dict[Path, FrameImage] = {}

    async def keyframes(self, clip: Clip, count: int) -> list[FrameImage]:
        """Evenly spaced frames from a snapshot."""
        key = (clip.path, count)
        if key not in self._keyframes:
            frames_dir = self._scope.dir_for(f"keyframes_{clip.label}")
            self._keyframes[key] = await self._toolkit.extract_keyframes(clip, count, frames_dir)
        return self._keyframes[key]

    async def final_frame(self, clip: Clip) -> FrameImage:
        """Last frame of a snapshot."""
        if clip.path not in self._final:
            output = self._scope.path_for(f"final_frame_{clip.label}", ext="jpg")
            self._final[clip.path] = await self._toolkit.extract_final_frame(clip, output)
        return self._final[clip.path]

    def __len__(self) -> int:
        return len(self._keyframes) + len(self._final)


@dataclass
class GateContext:
    """Everything a gate needs besides the clip.

    Created fresh for each production attempt so the frame cache never
    outlives the snapshots it refers to.

    Attributes:
        fmt: Camera format
        toolkit: Media operations
        scope: Temp directory owner for this scene
        inference: Vision provider for gates 4-7 (and subject detection)
        sub_type: Body cam sub-type
        concept: Scene description, shown to the content reviewer
        keyframe_count: Frames sampled for the vision gates
        overlay_spec: Camera UI chrome staged before gate 6
        overlay_template: Optional PNG under the chrome
        scene_id: Identifier used in logs
        cancel_token: Abort signal checked between gates
    """

    fmt: CamFormat
    toolkit: MediaToolkit
    scope: SnapshotScope
    inference: InferenceProvider | None = None
    sub_type: str | None = None
    concept: str = ""
    keyframe_count: int = 5
    overlay_spec: OverlaySpec | None = None
    overlay_template: Path | None = None
    scene_id: str = ""
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    frames: FrameCache = field(init=False)

    def __post_init__(self):
        self.fmt = CamFormat(self.fmt)
        self.frames = FrameCache(self.toolkit, self.scope)

    @property
    def policy(self) -> FormatPolicy:
        return get_policy(self.fmt)

    @property
    def logger(self) -> ClipGateLogger:
        return get_logger("clip_gate.gates").with_context(scene_id=self.scene_id, format=self.fmt.value)


class Gate(ABC):
    """One check in the gate sequence.

    Subclasses set ``index``, ``name`` and ``classification`` and implement
    :meth:`evaluate`. Gates that need a prepared snapshot (overlay,
    disclosure) override :meth:`stage`.
    """

    index: int
    name: str
    classification: Classification

    async def stage(self, clip: Clip, context: GateContext) -> Clip:
        """Prepare the snapshot this gate checks. Default: unchanged."""
        return clip

    @abstractmethod
    async def evaluate(self, clip: Clip, context: GateContext) -> GateVerdict:
        """Evaluate the clip and return a verdict."""

    def make_pass(
        self,
        measurements: dict[str, Any] | None = None,
        reason: str | None = None,
        output_clip: Clip | None = None,
        flags: tuple[str, ...] = (),
    ) -> GateVerdict:
        return GateVerdict(
            gate_index=self.index,
            gate_name=self.name,
            outcome=GateOutcome.PASS,
            classification=self.classification,
            measurements=measurements or {},
            reason=reason,
            flags=tuple(flags),
            output_clip=output_clip,
        )

    def make_fail(
        self,
        reason: str,
        measurements: dict[str, Any] | None = None,
        action: CorrectiveAction | None = None,
        flags: tuple[str, ...] = (),
        classification: Classification | None = None,
    ) -> GateVerdict:
        return GateVerdict(
            gate_index=self.index,
            gate_name=self.name,
            outcome=GateOutcome.FAIL,
            classification=classification or self.classification,
            measurements=measurements or {},
            corrective_action=action,
            reason=reason,
            flags=tuple(flags),
        )

    def on_error(self, error: Exception, fmt: CamFormat) -> GateVerdict:
        """Convert an exception into this gate's most conservative verdict.

        Hard gates fail hard with a ``gate_error`` flag, soft gates take their
        error remedy from the transition table, transform gates pass with the
        error recorded.
        """
        prefix = "toolkit error" if isinstance(error, ToolchainError) else "gate error"
        reason = f"{prefix}: {error}"
        measurements = {"error": str(error), "error_type": type(error).__name__}

        if self.classification == Classification.HARD:
            return self.make_fail(reason, measurements, flags=("gate_error",))
        if self.classification == Classification.SOFT:
            action = corrective_action_for(self.index, fmt, FailureKind.GATE_ERROR)
            return self.make_fail(reason, measurements, action=action, flags=("gate_error",))
        return self.make_pass(measurements, reason=reason)

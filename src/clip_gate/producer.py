"""Scene producer.

Orchestrates one scene end to end:

    prompt -> Stage A screening -> generation -> degradation
        -> gate runner (with corrective retries) -> crop -> export

Retry accounting lives here and nowhere else. Each full pass through the
gates is one attempt; a soft failure with a cheap remedy is corrected and
its gate re-checked in place before the sequence resumes. Hard failures
end the scene immediately.
"""

from __future__ import annotations

import asyncio
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from clip_gate.alerts import AlertLevel, LoggingAlerter, OperatorAlerter, get_alerter
from clip_gate.config import PipelineConfig
from clip_gate.errors import (
    ClipGateError,
    ConfigurationError,
    HardPolicyViolation,
    ProductionCancelled,
    PromptBlockedError,
    ToolchainError,
    UncorrectableQuality,
)
from clip_gate.gates.base import CancellationToken, GateContext
from clip_gate.gates.overlay import build_overlay_spec, overlay_template_path
from clip_gate.gates.policy import SanitizeResult, sanitize_prompt
from clip_gate.gates.runner import GateRunner
from clip_gate.gates.transitions import recheck_gate_for
from clip_gate.gates.verdict import (
    AggregatedResult,
    CorrectiveAction,
    GateVerdict,
    RunnerState,
)
from clip_gate.inference.base import InferenceConfig, InferenceProvider, get_inference_provider
from clip_gate.logging import (
    ClipGateLogger,
    get_logger,
    log_corrective_action,
    log_scene_finished,
    log_scene_started,
)
from clip_gate.media.snapshots import Clip, SnapshotScope
from clip_gate.media.toolkit import MediaToolkit, OverlaySpec
from clip_gate.review.queue import RejectedScene, ReviewQueue
from clip_gate.thresholds import BodyCamSubType, CamFormat, audio_bed_for

logger = get_logger(__name__)

DISCLOSURE_GATE_INDEX = 7

_BODY_CAM_CONTEXT = {
    BodyCamSubType.POLICE_SECURITY.value: "Security patrol person walking slowly on patrol.",
    BodyCamSubType.HIKER_TRAIL.value: "Trail hiker moving through outdoor terrain.",
    BodyCamSubType.DASHCAM.value: "Dashboard-mounted camera in a moving vehicle.",
    BodyCamSubType.HELMET_ACTION.value: "Helmet-mounted camera during active sport.",
}


@dataclass
class SceneRequest:
    """One scene to produce.

    Attributes:
        scene_id: Unique identifier used in logs, file names and the review queue
        format: Camera format
        scenario: What happens in the clip
        title: Short title; labels the ring cam HUD
        time_of_day: Lighting cue (night, dusk, ...)
        camera_position: Ring cam mounting position
        sub_type: Body cam sub-type
        movement_notes: Body cam motion cues
        audio_notes: Audio cues for the generator
    """

    scene_id: str
    format: CamFormat
    scenario: str
    title: str = ""
    time_of_day: str = "night"
    camera_position: str = "Doorbell camera facing the front porch"
    sub_type: str | None = None
    movement_notes: str = ""
    audio_notes: str = ""

    def __post_init__(self):
        self.format = CamFormat(self.format)
        if self.sub_type is not None:
            self.sub_type = BodyCamSubType(self.sub_type).value

    @property
    def concept(self) -> str:
        """Scene description shown to the content reviewer."""
        return f"{self.title}: {self.scenario}" if self.title else self.scenario

    def build_prompt(self) -> str:
        """Build the generation prompt for this scene's format."""
        if self.format == CamFormat.RING_CAM:
            parts = [
                f"Ring doorbell camera footage. {self.camera_position}.",
                f"{self.time_of_day} lighting. Static fixed camera. Slight fisheye distortion.",
                f"Scene: {self.scenario}",
                f"Audio cues: {self.audio_notes}." if self.audio_notes else "",
                "Authentic-looking security camera footage. No camera movement.",
            ]
        else:
            parts = [
                "First-person body camera POV footage.",
                _BODY_CAM_CONTEXT.get(self.sub_type or "", ""),
                f"{self.time_of_day} lighting. Handheld camera motion with natural sway.",
                f"Scene: {self.scenario}",
                f"Camera motion: {self.movement_notes}." if self.movement_notes else "",
                f"Audio: {self.audio_notes}." if self.audio_notes else "",
                "Authentic body camera found footage style.",
            ]
        return " ".join(p for p in parts if p)


@dataclass
class GeneratedClip:
    """A freshly generated clip on local disk."""

    path: Path
    prompt: str
    duration_seconds: int
    model: str = ""
    cost: float = 0.0


class ClipGenerator(ABC):
    """Text-to-video generation service."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        fmt: CamFormat,
        destination: Path,
        duration_seconds: int,
    ) -> GeneratedClip:
        """Generate a clip and write it to ``destination``."""


class LocalClipGenerator(ClipGenerator):
    """Serves a pre-rendered file instead of calling a generation service.

    Used by the CLI to push an existing clip through the full producer.

    Args:
        source: Video file to hand out for every request
    """

    def __init__(self, source: Path | str):
        self.source = Path(source)

    async def generate(
        self,
        prompt: str,
        fmt: CamFormat,
        destination: Path,
        duration_seconds: int,
    ) -> GeneratedClip:
        if not self.source.exists():
            raise ToolchainError(f"Source clip not found: {self.source}", recoverable=False)
        destination = destination.with_suffix(self.source.suffix or ".mp4")
        await asyncio.to_thread(shutil.copy2, self.source, destination)
        return GeneratedClip(
            path=destination,
            prompt=prompt,
            duration_seconds=duration_seconds,
            model="local",
        )


class ProductionStatus(str, Enum):
    """Final status of one scene."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RejectionKind(str, Enum):
    """Why a scene was rejected.

    PROMPT_BLOCKED and HARD_POLICY mean the content itself is unsafe and a
    similar prompt should not be retried. BUDGET_EXHAUSTED only means
    automated correction ran out of attempts and a human should look.
    """

    PROMPT_BLOCKED = "prompt_blocked"
    HARD_POLICY = "hard_policy"
    BUDGET_EXHAUSTED = "budget_exhausted"
    TOOLCHAIN = "toolchain"
    CANCELLED = "cancelled"


@dataclass
class ProductionOutcome:
    """What the producer hands back for one scene.

    Attributes:
        scene_id: Scene identifier
        status: Accepted or rejected
        scene: Exported clip for accepted scenes
        crop_safe: Gate 5 result, once known
        rejection_reason: Human-readable rejection summary
        hard_fail: True for hard policy violations
        gate_trail: Verdicts of the last attempt, in gate order
        rejection_kind: Category of rejection
        hard_fail_gate_index: Gate that hard-failed
        attempts: Full passes through the gate sequence
        corrective_actions: Remedies applied, in order
        failure_reasons: Every gate failure across attempts
        sanitize_result: Stage A outcome
    """

    scene_id: str
    status: ProductionStatus
    scene: Path | None = None
    crop_safe: bool | None = None
    rejection_reason: str | None = None
    hard_fail: bool = False
    gate_trail: list[GateVerdict] = field(default_factory=list)
    rejection_kind: RejectionKind | None = None
    hard_fail_gate_index: int | None = None
    attempts: int = 0
    corrective_actions: list[str] = field(default_factory=list)
    failure_reasons: list[str] = field(default_factory=list)
    sanitize_result: SanitizeResult | None = None

    @property
    def accepted(self) -> bool:
        return self.status == ProductionStatus.ACCEPTED

    @property
    def failing_verdict(self) -> GateVerdict | None:
        """Last failed verdict of the final attempt."""
        return next((v for v in reversed(self.gate_trail) if v.failed), None)

    def raise_for_status(self) -> None:
        """Raise the matching error for a rejected scene.

        Hard policy rejections raise the failing gate's own error. Budget
        exhaustion raises UncorrectableQuality chained to the error of the
        last gate that failed.
        """
        if self.accepted:
            return
        reason = self.rejection_reason or "scene rejected"
        failing = self.failing_verdict
        cause = failing.to_error() if failing is not None else None

        if self.rejection_kind == RejectionKind.PROMPT_BLOCKED and self.sanitize_result is not None:
            raise PromptBlockedError(reason, self.sanitize_result.blocked_terms)
        if self.rejection_kind == RejectionKind.HARD_POLICY:
            if isinstance(cause, HardPolicyViolation):
                cause.context["scene_id"] = self.scene_id
                raise cause
            raise HardPolicyViolation(reason, self.hard_fail_gate_index or 0, {"scene_id": self.scene_id})
        if self.rejection_kind == RejectionKind.CANCELLED:
            raise ProductionCancelled(reason, {"scene_id": self.scene_id})
        if self.rejection_kind == RejectionKind.TOOLCHAIN:
            raise ToolchainError(reason, {"scene_id": self.scene_id}, recoverable=False)
        raise UncorrectableQuality(
            reason,
            failing.gate_index if failing is not None else None,
            {"scene_id": self.scene_id, "attempts": self.attempts},
        ) from cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "scene_id": self.scene_id,
            "status": self.status.value,
            "scene": str(self.scene) if self.scene else None,
            "crop_safe": self.crop_safe,
            "rejection_reason": self.rejection_reason,
            "rejection_kind": self.rejection_kind.value if self.rejection_kind else None,
            "hard_fail": self.hard_fail,
            "hard_fail_gate_index": self.hard_fail_gate_index,
            "attempts": self.attempts,
            "corrective_actions": self.corrective_actions,
            "failure_reasons": self.failure_reasons,
            "gate_trail": [v.to_dict() for v in self.gate_trail],
            "sanitize_result": self.sanitize_result.to_dict() if self.sanitize_result else None,
        }


@dataclass
class _AttemptLog:
    """Bookkeeping shared across the attempts of one scene."""

    failure_reasons: list[str] = field(default_factory=list)
    corrective_actions: list[str] = field(default_factory=list)


class Producer:
    """Produces scenes through the gate sequence with bounded correction.

    Attributes:
        config: Pipeline configuration
        toolkit: Media operations
        generator: Clip generation service
        inference: Vision provider for gates 4-7
        alerter: Operator alert channel
        review_queue: Destination for budget-exhausted scenes (optional)
        runner: Gate runner
    """

    def __init__(
        self,
        config: PipelineConfig,
        toolkit: MediaToolkit,
        generator: ClipGenerator,
        inference: InferenceProvider | None = None,
        alerter: OperatorAlerter | None = None,
        review_queue: ReviewQueue | None = None,
        runner: GateRunner | None = None,
    ):
        self.config = config
        self.toolkit = toolkit
        self.generator = generator
        self.inference = inference
        self.alerter = alerter or LoggingAlerter()
        self.review_queue = review_queue
        self.runner = runner or GateRunner()

    async def produce_many(
        self,
        requests: list[SceneRequest],
        cancel_token: CancellationToken | None = None,
    ) -> list[ProductionOutcome]:
        """Produce several scenes concurrently.

        Scenes share nothing but the collaborators; at most
        ``max_concurrent_scenes`` run at once. A scene that fails
        unexpectedly is reported as a toolchain rejection and the others
        carry on.

        Returns:
            Outcomes in request order
        """
        semaphore = asyncio.Semaphore(self.config.max_concurrent_scenes)

        async def bounded(request: SceneRequest) -> ProductionOutcome:
            async with semaphore:
                try:
                    return await self.produce(request, cancel_token)
                except Exception as e:
                    logger.error(
                        "Scene production crashed",
                        exc_info=True,
                        extra={"scene_id": request.scene_id, "error_type": type(e).__name__},
                    )
                    return _toolchain_rejection(request, f"Production crashed: {e}")

        return list(await asyncio.gather(*(bounded(r) for r in requests)))

    async def produce(
        self,
        request: SceneRequest,
        cancel_token: CancellationToken | None = None,
    ) -> ProductionOutcome:
        """Produce one scene.

        Never raises for gate, remedy or toolchain failures; every ending is
        reported through the returned outcome.

        Args:
            request: Scene to produce
            cancel_token: Abort signal checked between steps

        Returns:
            ProductionOutcome
        """
        log = logger.with_context(scene_id=request.scene_id, format=request.format.value)
        token = cancel_token or CancellationToken()
        started = time.monotonic()
        prompt = request.build_prompt()
        log_scene_started(log, prompt)

        sanitized = sanitize_prompt(prompt)
        if not sanitized.passed:
            blocked = ", ".join(sorted(sanitized.blocked_terms))
            return self._finish(log, started, ProductionOutcome(
                scene_id=request.scene_id,
                status=ProductionStatus.REJECTED,
                rejection_kind=RejectionKind.PROMPT_BLOCKED,
                rejection_reason=f"Prompt blocked before generation: {blocked}",
                sanitize_result=sanitized,
            ))

        try:
            with SnapshotScope(self.config.temp_dir, prefix=request.scene_id) as scope:
                outcome = await self._produce_in_scope(request, sanitized, scope, token, log)
        except ProductionCancelled as e:
            log.warning("Production cancelled", extra={"event": "production_cancelled", "reason": str(e)})
            outcome = ProductionOutcome(
                scene_id=request.scene_id,
                status=ProductionStatus.REJECTED,
                rejection_kind=RejectionKind.CANCELLED,
                rejection_reason=str(e),
                sanitize_result=sanitized,
            )
        except Exception as e:
            log.error(
                "Scene production crashed",
                exc_info=True,
                extra={"event": "production_crashed", "error_type": type(e).__name__},
            )
            outcome = _toolchain_rejection(request, f"Production crashed: {e}", sanitized)
        return self._finish(log, started, outcome)

    def _finish(self, log: ClipGateLogger, started: float, outcome: ProductionOutcome) -> ProductionOutcome:
        log_scene_finished(
            log,
            outcome.status.value,
            time.monotonic() - started,
            rejection_kind=outcome.rejection_kind.value if outcome.rejection_kind else None,
            attempts=outcome.attempts,
        )
        return outcome

    async def _produce_in_scope(
        self,
        request: SceneRequest,
        sanitized: SanitizeResult,
        scope: SnapshotScope,
        token: CancellationToken,
        log: ClipGateLogger,
    ) -> ProductionOutcome:
        fmt = request.format
        try:
            token.raise_if_cancelled("generation")
            generated = await self.generator.generate(
                sanitized.sanitized_text or "",
                fmt,
                scope.path_for("raw"),
                self.config.generation_duration,
            )
            log.info("Clip generated", extra={"model": generated.model, "cost": generated.cost})

            token.raise_if_cancelled("degradation")
            clip = await self.toolkit.degrade(
                Clip(path=generated.path, label="raw"),
                fmt,
                scope.path_for("degraded"),
                sub_type=request.sub_type,
            )
        except ProductionCancelled:
            raise
        except Exception as e:
            log.error(
                "Generation failed",
                exc_info=not isinstance(e, ClipGateError),
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            return _toolchain_rejection(request, f"Generation failed: {e}", sanitized)

        overlay_spec = build_overlay_spec(
            fmt, self.config.overlay, title=request.title, sub_type=request.sub_type
        )
        template = overlay_template_path(self.config.overlay_dir, fmt, request.sub_type)
        attempt_log = _AttemptLog()
        current = clip
        result: AggregatedResult | None = None

        for attempt in range(1, self.config.retry_budget + 1):
            attempt_logger = log.with_context(attempt=attempt)
            attempt_logger.info(f"Running gates (attempt {attempt}/{self.config.retry_budget})")
            context = self._context(request, scope, token, overlay_spec, template)

            result = await self._run_attempt(current, context, attempt_log, attempt, attempt_logger)

            if result.overall_pass:
                return await self._finalize(request, sanitized, result, scope, attempt, attempt_log, log)
            if result.hard_fail:
                return await self._reject_hard(request, sanitized, result, attempt, attempt_log, log)

            # Corrective work already applied is carried into the next attempt
            current = result.clip.working()
            attempt_logger.warning(
                "Attempt failed",
                extra={"event": "attempt_failed", "failing_gate": result.failing_verdict.gate_index
                       if result.failing_verdict else None},
            )

        assert result is not None
        return self._reject_exhausted(request, sanitized, result, scope, attempt_log, log)

    def _context(
        self,
        request: SceneRequest,
        scope: SnapshotScope,
        token: CancellationToken,
        overlay_spec: OverlaySpec,
        template: Path,
    ) -> GateContext:
        return GateContext(
            fmt=request.format,
            toolkit=self.toolkit,
            scope=scope,
            inference=self.inference,
            sub_type=request.sub_type,
            concept=request.concept,
            keyframe_count=self.config.keyframe_count,
            overlay_spec=overlay_spec,
            overlay_template=template,
            scene_id=request.scene_id,
            cancel_token=token,
        )

    async def _run_attempt(
        self,
        clip: Clip,
        context: GateContext,
        attempt_log: _AttemptLog,
        attempt: int,
        log: ClipGateLogger,
    ) -> AggregatedResult:
        """One full pass, including in-place corrections and their re-checks."""
        result = await self.runner.run(clip, context)
        overlay_retry_used = False

        while result.state == RunnerState.SOFT_FAILED:
            failing = result.failing_verdict
            if failing is not None:
                attempt_log.failure_reasons.append(f"attempt {attempt}: {failing.describe()}")

            action = result.corrective_action
            target = recheck_gate_for(action)
            if action == CorrectiveAction.REGENERATE:
                log_corrective_action(
                    log, action.value, succeeded=False, reason="regeneration is not performed in place"
                )
            if target is None:
                break
            if action == CorrectiveAction.REAPPLY_OVERLAY:
                if overlay_retry_used:
                    break
                overlay_retry_used = True

            context.cancel_token.raise_if_cancelled(f"corrective action {action.value}")
            try:
                remedied = await self._apply_remedy(action, result.clip, context)
            except ProductionCancelled:
                raise
            except Exception as e:
                log_corrective_action(
                    log, action.value, succeeded=False, error=str(e), error_type=type(e).__name__
                )
                attempt_log.failure_reasons.append(f"attempt {attempt}: remedy {action.value} failed: {e}")
                break

            log_corrective_action(log, action.value, succeeded=True, gate=target, clip=remedied.label)
            attempt_log.corrective_actions.append(action.value)

            recheck = await self.runner.run_single(target, remedied, context)
            prior = [v for v in result.verdicts if v.gate_index < target]
            checked_clip = recheck.output_clip or remedied

            if recheck.failed:
                attempt_log.failure_reasons.append(f"attempt {attempt}: re-check {recheck.describe()}")
                return AggregatedResult(
                    state=RunnerState.HARD_FAILED if recheck.is_hard_fail else RunnerState.SOFT_FAILED,
                    verdicts=prior + [recheck],
                    clip=checked_clip,
                    hard_fail_gate_index=target if recheck.is_hard_fail else None,
                    corrective_action=recheck.corrective_action,
                    crop_safe=result.crop_safe,
                )

            result = await self.runner.run(
                checked_clip, context, start_at=target + 1, prior_verdicts=prior + [recheck]
            )

        return result

    async def _apply_remedy(self, action: CorrectiveAction, clip: Clip, context: GateContext) -> Clip:
        """Apply one corrective action to the working snapshot."""
        base = clip.working()
        scope = context.scope

        if action == CorrectiveAction.INJECT_SHAKE:
            return await self.toolkit.inject_shake(base, scope.path_for("shaken"))
        if action == CorrectiveAction.MIX_AUDIO_BED:
            return await self.toolkit.mix_audio_bed(
                base,
                audio_bed_for(context.sub_type),
                self.config.bed_attenuation_db,
                scope.path_for("bed_mixed"),
            )
        if action == CorrectiveAction.REPLACE_AUDIO:
            if self.config.ambient_audio_asset is None:
                raise ConfigurationError("No ambient audio asset configured for audio replacement")
            return await self.toolkit.replace_audio(
                base, self.config.ambient_audio_asset, scope.path_for("audio_replaced")
            )
        if action == CorrectiveAction.REAPPLY_OVERLAY:
            # Gate 6 restages the overlay from the working snapshot when re-run
            return base
        raise ValueError(f"No in-place remedy for {action.value}")

    async def _finalize(
        self,
        request: SceneRequest,
        sanitized: SanitizeResult,
        result: AggregatedResult,
        scope: SnapshotScope,
        attempt: int,
        attempt_log: _AttemptLog,
        log: ClipGateLogger,
    ) -> ProductionOutcome:
        """Crop (when safe) and export an accepted clip."""
        final = result.clip
        crop_safe = bool(result.crop_safe)
        if crop_safe:
            try:
                final = await self.toolkit.crop_to_vertical(final, scope.path_for("vertical"))
            except ToolchainError as e:
                log.warning(
                    "Vertical crop failed; exporting landscape only",
                    extra={"error": str(e)},
                )
                crop_safe = False

        try:
            exported = scope.export(
                final, Path(self.config.output_dir), f"{request.scene_id}_{request.format.value}"
            )
        except OSError as e:
            log.error("Export failed", extra={"event": "export_failed", "error": str(e)})
            return _toolchain_rejection(
                request,
                f"Export failed: {e}",
                sanitized,
                crop_safe=crop_safe,
                gate_trail=result.verdicts,
                attempts=attempt,
                corrective_actions=attempt_log.corrective_actions,
                failure_reasons=attempt_log.failure_reasons,
            )
        log.info(
            "Scene accepted",
            extra={"event": "scene_accepted", "path": str(exported), "crop_safe": crop_safe,
                   "lineage": final.lineage()},
        )
        return ProductionOutcome(
            scene_id=request.scene_id,
            status=ProductionStatus.ACCEPTED,
            scene=exported,
            crop_safe=crop_safe,
            gate_trail=result.verdicts,
            attempts=attempt,
            corrective_actions=attempt_log.corrective_actions,
            failure_reasons=attempt_log.failure_reasons,
            sanitize_result=sanitized,
        )

    async def _reject_hard(
        self,
        request: SceneRequest,
        sanitized: SanitizeResult,
        result: AggregatedResult,
        attempt: int,
        attempt_log: _AttemptLog,
        log: ClipGateLogger,
    ) -> ProductionOutcome:
        """Permanent rejection for a hard policy violation."""
        verdict = result.failing_verdict
        reason = verdict.describe() if verdict else "hard policy violation"
        attempt_log.failure_reasons.append(f"attempt {attempt}: {reason}")
        log.error(
            "Scene permanently rejected",
            extra={"event": "scene_rejected", "rejection_kind": RejectionKind.HARD_POLICY.value,
                   "gate": result.hard_fail_gate_index, "reason": reason},
        )

        if result.hard_fail_gate_index == DISCLOSURE_GATE_INDEX:
            await self.alerter.alert(
                AlertLevel.CRITICAL,
                f"Scene {request.scene_id} passed every other gate but its AI disclosure "
                "could not be verified; it will not ship.",
                {"scene_id": request.scene_id, "format": request.format.value, "reason": reason},
            )

        return ProductionOutcome(
            scene_id=request.scene_id,
            status=ProductionStatus.REJECTED,
            crop_safe=result.crop_safe,
            rejection_reason=reason,
            hard_fail=True,
            gate_trail=result.verdicts,
            rejection_kind=RejectionKind.HARD_POLICY,
            hard_fail_gate_index=result.hard_fail_gate_index,
            attempts=attempt,
            corrective_actions=attempt_log.corrective_actions,
            failure_reasons=attempt_log.failure_reasons,
            sanitize_result=sanitized,
        )

    def _reject_exhausted(
        self,
        request: SceneRequest,
        sanitized: SanitizeResult,
        result: AggregatedResult,
        scope: SnapshotScope,
        attempt_log: _AttemptLog,
        log: ClipGateLogger,
    ) -> ProductionOutcome:
        """Rejection after the retry budget ran out; queued for a human."""
        budget = self.config.retry_budget
        reason = f"Retry budget exhausted after {budget} attempts"
        if attempt_log.failure_reasons:
            reason += ": " + "; ".join(attempt_log.failure_reasons)
        log.warning(
            "Scene rejected",
            extra={"event": "scene_rejected", "rejection_kind": RejectionKind.BUDGET_EXHAUSTED.value,
                   "failure_reasons": attempt_log.failure_reasons},
        )

        if self.review_queue is not None:
            try:
                kept = scope.export(
                    result.clip.working(), self.review_queue.clips_dir, request.scene_id
                )
                self.review_queue.add(RejectedScene(
                    scene_id=request.scene_id,
                    format=request.format.value,
                    prompt=sanitized.sanitized_text or "",
                    clip_path=str(kept),
                    rejection_kind=RejectionKind.BUDGET_EXHAUSTED.value,
                    rejection_reasons=list(attempt_log.failure_reasons),
                    gate_trail=[v.to_dict() for v in result.verdicts],
                    attempts=budget,
                ))
            except OSError as e:
                log.error("Review queue write failed", extra={"event": "review_queue_failed", "error": str(e)})
                return _toolchain_rejection(
                    request,
                    f"Review queue write failed: {e} ({reason})",
                    sanitized,
                    crop_safe=result.crop_safe,
                    gate_trail=result.verdicts,
                    attempts=budget,
                    corrective_actions=attempt_log.corrective_actions,
                    failure_reasons=attempt_log.failure_reasons,
                )

        return ProductionOutcome(
            scene_id=request.scene_id,
            status=ProductionStatus.REJECTED,
            crop_safe=result.crop_safe,
            rejection_reason=reason,
            gate_trail=result.verdicts,
            rejection_kind=RejectionKind.BUDGET_EXHAUSTED,
            attempts=budget,
            corrective_actions=attempt_log.corrective_actions,
            failure_reasons=attempt_log.failure_reasons,
            sanitize_result=sanitized,
        )


def _toolchain_rejection(
    request: SceneRequest,
    reason: str,
    sanitized: SanitizeResult | None = None,
    **fields: Any,
) -> ProductionOutcome:
    return ProductionOutcome(
        scene_id=request.scene_id,
        status=ProductionStatus.REJECTED,
        rejection_kind=RejectionKind.TOOLCHAIN,
        rejection_reason=reason,
        sanitize_result=sanitized,
        **fields,
    )


def create_inference_provider(config: PipelineConfig) -> InferenceProvider:
    """Build the vision provider described by the pipeline config."""
    settings = config.inference
    return get_inference_provider(InferenceConfig(
        provider=settings.provider,
        model=settings.model,
        max_tokens=settings.max_tokens,
        timeout=config.inference_timeout,
        max_attempts=settings.max_attempts,
    ))


def create_producer(config: PipelineConfig, generator: ClipGenerator) -> Producer:
    """Wire a producer with the FFmpeg toolkit and the configured services."""
    from clip_gate.media.ffmpeg import FFmpegToolkit

    inference = create_inference_provider(config)
    if not inference.is_available():
        raise ConfigurationError(
            f"{inference.provider_name} API key not configured",
            {"provider": config.inference.provider},
        )
    toolkit = FFmpegToolkit(
        timeout=config.toolkit_timeout,
        audio_bed_dir=config.audio_bed_dir,
        subject_detector=inference,
    )
    return Producer(
        config=config,
        toolkit=toolkit,
        generator=generator,
        inference=inference,
        alerter=get_alerter(config.alert_webhook_url),
        review_queue=ReviewQueue(config.review_dir) if config.review_dir else None,
    )

"""Shared fakes for the gate and producer tests.

The fakes stand in for FFmpeg and the vision API. Every transforming call
writes a small file so snapshots and exports behave like the real thing.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from clip_gate.alerts import AlertLevel, OperatorAlerter
from clip_gate.config import PipelineConfig
from clip_gate.gates.base import GateContext
from clip_gate.gates.overlay import build_overlay_spec
from clip_gate.inference.base import InferenceConfig, InferenceProvider, InferenceResponse
from clip_gate.media.snapshots import Clip, SnapshotScope
from clip_gate.media.toolkit import FrameImage, MediaToolkit, MotionStats, OverlaySpec, Region
from clip_gate.producer import ClipGenerator, GeneratedClip, Producer
from clip_gate.review.queue import ReviewQueue
from clip_gate.thresholds import CamFormat

STATIC_MOTION = MotionStats(mean_magnitude=0.1, peak_magnitude=0.5, frames_analyzed=48)
HANDHELD_MOTION = MotionStats(mean_magnitude=2.5, peak_magnitude=6.0, frames_analyzed=48)

CLEAN_REVIEW = '{"severity": "none", "flags": [], "summary": "Empty porch at night"}'
CENTERED = '{"framesAnalyzed": 5, "framesWithOffCenterAction": 0, "offCenterPercent": 0.1, "summary": "centered"}'
OVERLAY_OK = '{"overlayDetected": true, "timestampReadable": true, "formatCorrect": true, "details": "HUD visible"}'
OVERLAY_MISSING = '{"overlayDetected": false, "timestampReadable": false, "formatCorrect": false, "details": "no UI"}'
WATERMARK_OK = (
    '{"watermarkDetected": true, "watermarkText": "AI GENERATED", '
    '"confidence": "high", "location": "bottom right"}'
)
WATERMARK_MISSING = '{"watermarkDetected": false, "watermarkText": null, "confidence": "high", "location": "not found"}'

# Phrase in each instruction that identifies the asking gate
_ROUTES = (
    ("content moderation", "content"),
    ("crop safety", "crop"),
    ("UI overlay", "overlay"),
    ("watermarkDetected", "watermark"),
    ("human faces", "subjects"),
)


def _resolve(value: Any, clip: Clip) -> Any:
    return value(clip) if callable(value) else value


class FakeToolkit(MediaToolkit):
    """In-memory media toolkit.

    ``motion`` and ``volume_db`` may be callables of the clip, so a test can
    make a remedy fix the measurement (``"shaken" in clip.lineage()``).
    ``fail`` maps an operation name to the exception it raises.
    """

    def __init__(
        self,
        motion: MotionStats | Callable[[Clip], MotionStats] = STATIC_MOTION,
        volume_db: float | Callable[[Clip], float] = -20.0,
        subjects: list[list[Region]] | None = None,
        fail: dict[str, Exception] | None = None,
    ):
        self.motion = motion
        self.volume_db = volume_db
        self.subjects = subjects or []
        self.fail = dict(fail or {})
        self.calls: list[str] = []

    def _call(self, op: str) -> None:
        self.calls.append(op)
        if op in self.fail:
            raise self.fail[op]

    def count(self, op: str) -> int:
        return self.calls.count(op)

    @staticmethod
    def _derive(clip: Clip, output: Path, label: str) -> Clip:
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(label.encode())
        return clip.derive(output, label)

    async def analyze_motion(self, clip: Clip) -> MotionStats:
        self._call("analyze_motion")
        return _resolve(self.motion, clip)

    async def probe_mean_volume(self, clip: Clip) -> float:
        self._call("probe_mean_volume")
        return _resolve(self.volume_db, clip)

    async def detect_subjects(self, clip: Clip) -> list[list[Region]]:
        self._call("detect_subjects")
        return self.subjects

    async def apply_blur(self, clip: Clip, regions: list[Region], output: Path) -> Clip:
        self._call("apply_blur")
        return self._derive(clip, output, "blurred")

    async def inject_shake(self, clip: Clip, output: Path) -> Clip:
        self._call("inject_shake")
        return self._derive(clip, output, "shaken")

    async def mix_audio_bed(self, clip: Clip, bed_id: str, attenuation_db: float, output: Path) -> Clip:
        self._call("mix_audio_bed")
        return self._derive(clip, output, f"bed_{bed_id}")

    async def replace_audio(self, clip: Clip, audio_asset: Path, output: Path) -> Clip:
        self._call("replace_audio")
        return self._derive(clip, output, "audio_replaced")

    async def apply_overlay(self, clip: Clip, template: Path | None, spec: OverlaySpec, output: Path) -> Clip:
        self._call("apply_overlay")
        return self._derive(clip, output, "overlaid")

    async def burn_disclosure(self, clip: Clip, output: Path) -> Clip:
        self._call("burn_disclosure")
        return self._derive(clip, output, "disclosed")

    async def crop_to_vertical(self, clip: Clip, output: Path) -> Clip:
        self._call("crop_to_vertical")
        return self._derive(clip, output, "vertical")

    async def extract_keyframes(self, clip: Clip, count: int, output_dir: Path) -> list[FrameImage]:
        self._call("extract_keyframes")
        frames = []
        for i in range(count):
            path = Path(output_dir) / f"frame_{i:02d}.jpg"
            path.write_bytes(b"jpg")
            frames.append(FrameImage(path=path, index=i))
        return frames

    async def extract_final_frame(self, clip: Clip, output: Path) -> FrameImage:
        self._call("extract_final_frame")
        Path(output).write_bytes(b"jpg")
        return FrameImage(path=Path(output))

    async def degrade(self, clip: Clip, fmt: CamFormat, output: Path, sub_type: str | None = None) -> Clip:
        self._call("degrade")
        return self._derive(clip, output, "degraded")


class FakeInference(InferenceProvider):
    """Vision provider answering from a per-gate table.

    A table value may be a response string, an exception to raise, or a
    list consumed one entry per call (the last entry repeats).
    """

    def __init__(self, **responses: Any):
        super().__init__(InferenceConfig(max_attempts=1, timeout=5.0))
        self.responses = {
            "content": CLEAN_REVIEW,
            "crop": CENTERED,
            "overlay": OVERLAY_OK,
            "watermark": WATERMARK_OK,
            "subjects": "",
            **responses,
        }
        self.calls: list[str] = []

    @property
    def provider_name(self) -> str:
        return "Fake"

    def is_available(self) -> bool:
        return True

    def count(self, route: str) -> int:
        return self.calls.count(route)

    async def _classify_once(self, frames: list[FrameImage], instruction: str) -> InferenceResponse:
        route = next((name for phrase, name in _ROUTES if phrase in instruction), "unknown")
        self.calls.append(route)

        answer = self.responses.get(route, "")
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if isinstance(answer, Exception):
            raise answer
        return InferenceResponse(text=answer, model="fake")


class FakeGenerator(ClipGenerator):
    """Writes a placeholder file instead of calling a generation service."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str, fmt: CamFormat, destination: Path, duration_seconds: int) -> GeneratedClip:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        destination.write_bytes(b"raw")
        return GeneratedClip(path=destination, prompt=prompt, duration_seconds=duration_seconds, model="fake")


class RecordingAlerter(OperatorAlerter):
    """Keeps alerts in memory."""

    def __init__(self):
        self.alerts: list[tuple[AlertLevel, str, dict]] = []

    async def alert(self, level: AlertLevel, message: str, context: dict | None = None) -> None:
        self.alerts.append((level, message, context or {}))


@pytest.fixture
def scope(tmp_path):
    with SnapshotScope(tmp_path / "scope", prefix="test") as s:
        yield s


@pytest.fixture
def raw_clip(tmp_path):
    path = tmp_path / "input.mp4"
    path.write_bytes(b"raw")
    return Clip(path=path, label="degraded")


@pytest.fixture
def make_context(scope):
    """Build a GateContext around the fakes."""

    def _make(
        fmt: CamFormat = CamFormat.RING_CAM,
        toolkit: MediaToolkit | None = None,
        inference: InferenceProvider | None = None,
        **kwargs: Any,
    ) -> GateContext:
        kwargs.setdefault("overlay_spec", build_overlay_spec(fmt, title="Front Porch"))
        kwargs.setdefault("concept", "A quiet porch at night")
        kwargs.setdefault("scene_id", "scene_test")
        return GateContext(
            fmt=fmt,
            toolkit=toolkit or FakeToolkit(),
            scope=scope,
            inference=inference if inference is not None else FakeInference(),
            **kwargs,
        )

    return _make


@pytest.fixture
def pipeline_config(tmp_path):
    ambient = tmp_path / "ambient.m4a"
    ambient.write_bytes(b"audio")
    return PipelineConfig(
        temp_dir=tmp_path / "tmp",
        output_dir=tmp_path / "output",
        review_dir=tmp_path / "review",
        overlay_dir=tmp_path / "overlays",
        ambient_audio_asset=ambient,
    )


@pytest.fixture
def make_producer(pipeline_config):
    """Build a Producer around the fakes; returns (producer, toolkit, inference, generator, alerter)."""

    def _make(
        toolkit: FakeToolkit | None = None,
        inference: FakeInference | None = None,
        generator: FakeGenerator | None = None,
        config: PipelineConfig | None = None,
    ):
        toolkit = toolkit or FakeToolkit()
        inference = inference or FakeInference()
        generator = generator or FakeGenerator()
        alerter = RecordingAlerter()
        config = config or pipeline_config
        producer = Producer(
            config=config,
            toolkit=toolkit,
            generator=generator,
            inference=inference,
            alerter=alerter,
            review_queue=ReviewQueue(config.review_dir),
        )
        return producer, toolkit, inference, generator, alerter

    return _make

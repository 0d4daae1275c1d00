"""FFmpeg implementation of the media toolkit.

Every call runs FFmpeg/FFprobe as an asyncio subprocess with a timeout; a
process that overruns is killed and reported as ToolkitTimeoutError so the
calling gate can take its fail path instead of hanging.
"""

from __future__ import annotations

import asyncio
import json
import math
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from clip_gate.errors import MediaToolkitError, ToolkitTimeoutError
from clip_gate.inference.base import parse_json_lines
from clip_gate.inference.prompts import SUBJECT_DETECTION_PROMPT
from clip_gate.logging import get_logger
from clip_gate.media.ffmpeg_binary import FFmpegConfig, get_ffmpeg_path, get_ffprobe_path
from clip_gate.media.snapshots import Clip
from clip_gate.media.toolkit import FrameImage, MediaToolkit, MotionStats, OverlaySpec, Region
from clip_gate.thresholds import CamFormat

if TYPE_CHECKING:
    from clip_gate.inference.base import InferenceProvider

logger = get_logger(__name__)

# Reported when a clip has no audio or loudness could not be measured
SILENT_DB = -99.0

MAX_BLUR_REGIONS = 4

DISCLOSURE_TEXT = "AI GENERATED"

DEGRADATION_FILTERS: dict[CamFormat, tuple[str, list[str]]] = {
    # Barrel distortion, soft lens, desaturated security-cam profile, sensor grain
    CamFormat.RING_CAM: (
        ",".join([
            "lenscorrection=k1=-0.22:k2=0.02",
            "unsharp=luma_msize_x=3:luma_msize_y=3:luma_amount=-0.5",
            "scale=1920:1080:flags=lanczos",
            "eq=saturation=0.75:contrast=1.1",
            "noise=alls=8:allf=t",
        ]),
        ["-c:v", "libx264", "-crf", "28", "-preset", "fast", "-c:a", "aac", "-b:a", "96k"],
    ),
    # Milder lens, auto-exposure S-curve, heavier small-sensor grain
    CamFormat.BODY_CAM: (
        ",".join([
            "lenscorrection=k1=-0.12:k2=0.01",
            "curves=preset=none:master='0/0 0.2/0.25 0.8/0.75 1/1'",
            "noise=alls=12:allf=t",
        ]),
        ["-c:v", "libx264", "-crf", "26", "-preset", "fast", "-c:a", "aac", "-b:a", "128k"],
    ),
}

# Sinusoidal sway at walking cadence; the 20px crop hides rotation fill
SHAKE_FILTER = ",".join([
    "rotate='0.005*sin(2*PI*t*1.8)':fillcolor=none",
    "crop=iw-20:ih-20:10+5*sin(2*PI*t*0.7):10+3*sin(2*PI*t*1.1)",
])

VERTICAL_CROP_FILTER = "crop=ih*9/16:ih:(iw-ih*9/16)/2:0,scale=1080:1920"

_H264 = ["-c:v", "libx264", "-preset", "fast", "-crf", "23"]

_MEAN_VOLUME = re.compile(r"mean_volume:\s*([-\d.]+)\s*dB")
# ffmpeg messages for an input with nothing left once video is dropped
_NO_AUDIO_MARKERS = (
    "does not contain any stream",
    "matches no streams",
    "Output file is empty",
)
_LOCAL_MOTION = re.compile(r"\(LM\s+(-?\d+(?:\.\d+)?)\s+(-?\d+(?:\.\d+)?)")
_DURATION = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
_DIMENSIONS = re.compile(r"Video:.*?,\s*(\d{2,5})x(\d{2,5})")


@dataclass
class VideoInfo:
    """Basic stream information about a clip."""

    duration: float
    width: int
    height: int
    has_audio: bool


def parse_trf(content: str) -> list[float]:
    """Per-frame motion magnitudes from a vidstabdetect result file.

    Handles both the ``Frame N (List ... [(LM dx dy ...)...])`` layout and
    plain ``frame dx dy ...`` columns.
    """
    magnitudes = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        local = _LOCAL_MOTION.findall(line)
        if local:
            dx = sum(float(v[0]) for v in local) / len(local)
            dy = sum(float(v[1]) for v in local) / len(local)
            magnitudes.append(math.hypot(dx, dy))
            continue

        parts = line.split()
        if len(parts) >= 3:
            try:
                magnitudes.append(math.hypot(float(parts[1]), float(parts[2])))
            except ValueError:
                continue
    return magnitudes


def parse_mean_volume(output: str) -> float:
    """Extract the mean volume from volumedetect output, SILENT_DB if absent."""
    match = _MEAN_VOLUME.search(output)
    if not match:
        return SILENT_DB
    try:
        return float(match.group(1))
    except ValueError:
        return SILENT_DB


def escape_drawtext(text: str) -> str:
    """Escape text for a drawtext ``text=`` value inside a filtergraph."""
    return re.sub(r"([\\:'\[\]{},;%])", r"\\\1", text)


class FFmpegToolkit(MediaToolkit):
    """Media toolkit backed by FFmpeg subprocesses.

    Args:
        config: FFmpeg binary configuration
        timeout: Seconds before any single subprocess is killed
        audio_bed_dir: Directory holding ``<bed_id>.mp3`` ambient beds
        subject_detector: Vision provider used to locate faces; without one
            no subjects are ever reported
        max_subject_frames: Upper bound on frames sent for subject detection
    """

    def __init__(
        self,
        config: FFmpegConfig | None = None,
        timeout: float = 180.0,
        audio_bed_dir: Path = Path("assets/audio_beds"),
        subject_detector: InferenceProvider | None = None,
        max_subject_frames: int = 12,
    ) -> None:
        self._config = config or FFmpegConfig()
        ffmpeg_path = get_ffmpeg_path(self._config)
        if ffmpeg_path is None:
            raise MediaToolkitError(
                "FFmpeg not found. Please install imageio-ffmpeg or add FFmpeg to PATH."
            )
        self._ffmpeg_path = ffmpeg_path
        self._ffprobe_path = get_ffprobe_path(self._config)
        self.timeout = timeout
        self.audio_bed_dir = Path(audio_bed_dir)
        self.subject_detector = subject_detector
        self.max_subject_frames = max_subject_frames

    async def _run(
        self,
        cmd: list[str],
        check: bool = True,
    ) -> tuple[int, str, str]:
        """Run a command with the toolkit timeout.

        Returns:
            (returncode, stdout, stderr)

        Raises:
            ToolkitTimeoutError: If the process overruns (it is killed first)
            MediaToolkitError: If it cannot start, or exits non-zero with check=True
        """
        logger.debug("Running media command", extra={"command": " ".join(cmd)})
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MediaToolkitError(f"Failed to run {Path(cmd[0]).name}: {e}", command=cmd) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ToolkitTimeoutError(
                f"{Path(cmd[0]).name} timed out after {self.timeout} seconds",
                timeout=self.timeout,
                command=cmd,
            ) from e
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")

        if check and process.returncode != 0:
            tail = "\n".join(err.strip().splitlines()[-5:]) or "Unknown error"
            raise MediaToolkitError(
                f"{Path(cmd[0]).name} failed: {tail}",
                command=cmd,
                stderr=err,
            )
        return process.returncode, out, err

    async def _run_ffmpeg(self, args: list[str], check: bool = True) -> tuple[int, str, str]:
        return await self._run([self._ffmpeg_path, "-hide_banner", "-y", *args], check=check)

    async def _encode(self, clip: Clip, args: list[str], output: Path, label: str) -> Clip:
        """Run an encode that must produce ``output`` and wrap it as a snapshot."""
        output.parent.mkdir(parents=True, exist_ok=True)
        await self._run_ffmpeg(args + [str(output)])
        if not output.exists():
            raise MediaToolkitError(f"{label}: output was not created", context={"output": str(output)})
        logger.info(f"Media step complete: {label}", extra={"input": clip.path.name, "output": output.name})
        return clip.derive(output, label)

    async def get_video_info(self, path: Path) -> VideoInfo:
        """Probe duration, dimensions and audio presence.

        Uses ffprobe when available, otherwise parses ``ffmpeg -i`` output.
        """
        if not path.exists():
            raise MediaToolkitError(f"Video file not found: {path}")

        if self._ffprobe_path:
            _, out, _ = await self._run([
                self._ffprobe_path,
                "-v", "quiet",
                "-print_format", "json",
                "-show_format",
                "-show_streams",
                str(path),
            ])
            try:
                data = json.loads(out)
            except json.JSONDecodeError as e:
                raise MediaToolkitError(f"Failed to parse video info: {e}") from e

            streams = data.get("streams", [])
            video = next((s for s in streams if s.get("codec_type") == "video"), None)
            if video is None:
                raise MediaToolkitError(f"No video stream found in: {path}")
            return VideoInfo(
                duration=float(data.get("format", {}).get("duration", 0) or 0),
                width=int(video.get("width", 0)),
                height=int(video.get("height", 0)),
                has_audio=any(s.get("codec_type") == "audio" for s in streams),
            )

        # ffmpeg -i with no output always exits non-zero
        _, _, err = await self._run_ffmpeg(["-i", str(path)], check=False)
        duration_match = _DURATION.search(err)
        dims_match = _DIMENSIONS.search(err)
        if dims_match is None:
            raise MediaToolkitError(f"No video stream found in: {path}")
        duration = 0.0
        if duration_match:
            h, m, s = duration_match.groups()
            duration = int(h) * 3600 + int(m) * 60 + float(s)
        return VideoInfo(
            duration=duration,
            width=int(dims_match.group(1)),
            height=int(dims_match.group(2)),
            has_audio="Audio:" in err,
        )

    async def analyze_motion(self, clip: Clip) -> MotionStats:
        with tempfile.TemporaryDirectory(prefix="clip_gate_motion_") as tmp:
            trf_path = Path(tmp) / "motion.trf"
            # vidstabdetect with the null muxer can exit non-zero after writing results
            await self._run_ffmpeg([
                "-i", str(clip.path),
                "-vf", f"vidstabdetect=result={trf_path}:shakiness=10:accuracy=15",
                "-f", "null", "-",
            ], check=False)

            if not trf_path.exists():
                raise MediaToolkitError("vidstabdetect did not produce motion vectors")
            magnitudes = parse_trf(trf_path.read_text(encoding="utf-8", errors="replace"))

        if not magnitudes:
            return MotionStats(mean_magnitude=0.0, peak_magnitude=0.0, frames_analyzed=0)

        return MotionStats(
            mean_magnitude=sum(magnitudes) / len(magnitudes),
            peak_magnitude=max(magnitudes),
            frames_analyzed=len(magnitudes),
        )

    async def probe_mean_volume(self, clip: Clip) -> float:
        """Mean volume in dB; SILENT_DB for a clip without audio.

        Raises:
            MediaToolkitError: If ffmpeg fails for any reason other than a
                missing audio stream
        """
        cmd = [
            "-i", str(clip.path),
            "-vn",
            "-af", "volumedetect",
            "-f", "null", "-",
        ]
        code, _, err = await self._run_ffmpeg(cmd, check=False)
        if code != 0:
            if any(marker in err for marker in _NO_AUDIO_MARKERS):
                logger.warning("Clip has no audio stream", extra={"clip": clip.path.name})
                return SILENT_DB
            tail = err.strip().splitlines()[-1] if err.strip() else f"exit code {code}"
            raise MediaToolkitError(
                f"Volume measurement failed: {tail}",
                command=[self._ffmpeg_path, *cmd],
                stderr=err,
            )
        volume = parse_mean_volume(err)
        if volume == SILENT_DB:
            logger.warning("Could not read mean volume; treating clip as silent", extra={"clip": clip.path.name})
        return volume

    async def detect_subjects(self, clip: Clip) -> list[list[Region]]:
        if self.subject_detector is None:
            return []

        with tempfile.TemporaryDirectory(prefix="clip_gate_subjects_") as tmp:
            await self._run_ffmpeg([
                "-i", str(clip.path),
                "-vf", r"select=not(mod(n\,5))",
                "-vsync", "vfr",
                "-frames:v", str(self.max_subject_frames),
                "-q:v", "2",
                f"{tmp}/frame_%04d.jpg",
            ])
            frame_paths = sorted(Path(tmp).glob("frame_*.jpg"))
            if not frame_paths:
                return []
            frames = [FrameImage(path=p, index=i) for i, p in enumerate(frame_paths)]
            response = await self.subject_detector.classify_frames(frames, SUBJECT_DETECTION_PROMPT)

        by_frame: list[list[Region]] = [[] for _ in frame_paths]
        for record in parse_json_lines(response.text):
            try:
                index = int(record.get("frame", -1))
            except (TypeError, ValueError):
                continue
            if not 0 <= index < len(by_frame):
                continue
            regions = record.get("faceRegions") or []
            by_frame[index] = [Region.from_dict(r) for r in regions if isinstance(r, dict)]
        return by_frame

    async def apply_blur(self, clip: Clip, regions: list[Region], output: Path) -> Clip:
        regions = regions[:MAX_BLUR_REGIONS]
        if not regions:
            raise MediaToolkitError("apply_blur called without regions")

        info = await self.get_video_info(clip.path)
        boxes = [r.to_pixels(info.width, info.height, pad=10) for r in regions]

        count = len(boxes)
        graph = [f"[0:v]split={count + 1}[base]" + "".join(f"[s{i}]" for i in range(count))]
        for i, (x, y, w, h) in enumerate(boxes):
            # boxblur radius is limited by the (subsampled) chroma plane size
            radius = max(1, min(20, min(w, h) // 4 - 1))
            graph.append(f"[s{i}]crop={w}:{h}:{x}:{y},boxblur={radius}:5[b{i}]")
        previous = "base"
        for i, (x, y, _, _) in enumerate(boxes):
            label = "out" if i == count - 1 else f"v{i}"
            graph.append(f"[{previous}][b{i}]overlay={x}:{y}[{label}]")
            previous = label

        return await self._encode(clip, [
            "-i", str(clip.path),
            "-filter_complex", ";".join(graph),
            "-map", "[out]", "-map", "0:a?",
            "-c:a", "copy", *_H264,
        ], output, "blurred")

    async def inject_shake(self, clip: Clip, output: Path) -> Clip:
        return await self._encode(clip, [
            "-i", str(clip.path),
            "-vf", SHAKE_FILTER,
            "-c:v", "libx264", "-crf", "26", "-preset", "fast",
            "-c:a", "copy",
        ], output, "shaken")

    async def mix_audio_bed(
        self,
        clip: Clip,
        bed_id: str,
        attenuation_db: float,
        output: Path,
    ) -> Clip:
        bed_path = self.audio_bed_dir / f"{bed_id}.mp3"
        if not bed_path.exists():
            raise MediaToolkitError(f"Audio bed not found: {bed_path}")

        return await self._encode(clip, [
            "-i", str(clip.path),
            "-stream_loop", "-1", "-i", str(bed_path),
            "-filter_complex",
            f"[1:a]volume={attenuation_db}dB[bed];"
            "[0:a][bed]amix=inputs=2:duration=first:dropout_transition=2[out]",
            "-map", "0:v", "-map", "[out]",
            "-c:v", "copy", "-c:a", "aac", "-b:a", "128k",
        ], output, "bed_mixed")

    async def replace_audio(self, clip: Clip, audio_asset: Path, output: Path) -> Clip:
        if not audio_asset.exists():
            raise MediaToolkitError(f"Audio asset not found: {audio_asset}")

        return await self._encode(clip, [
            "-i", str(clip.path),
            "-i", str(audio_asset),
            "-map", "0:v", "-map", "1:a",
            "-c:v", "copy", "-c:a", "aac", "-b:a", "128k",
            "-shortest",
        ], output, "audio_replaced")

    def _drawtext(self, spec: OverlaySpec, text: str, options: str) -> str:
        font = f"fontfile='{spec.font_file}':" if Path(spec.font_file).exists() else ""
        return (
            f"drawtext={font}text='{escape_drawtext(text)}':{options}:"
            "shadowcolor=black:shadowx=1:shadowy=1"
        )

    def _overlay_chain(self, spec: OverlaySpec) -> str:
        if spec.format == CamFormat.RING_CAM:
            elements = [
                self._drawtext(spec, spec.timestamp.strftime("%m/%d/%Y %H:%M:%S"),
                               "fontsize=18:fontcolor=white:x=12:y=10"),
                self._drawtext(spec, spec.camera_name, "fontsize=14:fontcolor=white@0.85:x=12:y=34"),
                "drawbox=x=iw-28:y=10:w=14:h=14:color=red@0.85:t=fill",
                self._drawtext(spec, "REC", "fontsize=12:fontcolor=white:x=w-50:y=28"),
            ]
        else:
            elements = [
                self._drawtext(spec, spec.timestamp.strftime("%Y%m%d %H:%M:%S"),
                               "fontsize=16:fontcolor=white:x=10:y=8"),
                self._drawtext(spec, f"UNIT {spec.unit_id}", "fontsize=14:fontcolor=white@0.9:x=10:y=30"),
                self._drawtext(spec, "● REC", "fontsize=14:fontcolor=red:x=w-80:y=8"),
            ]
            if spec.show_gps:
                elements.append(self._drawtext(
                    spec, "GPS 38.8977 N 77.0365 W", "fontsize=11:fontcolor=white@0.75:x=10:y=h-28"
                ))
            if spec.speed_mph is not None:
                elements.append(self._drawtext(
                    spec, f"{spec.speed_mph} MPH", "fontsize=14:fontcolor=white:x=w-90:y=h-28"
                ))
        return ",".join(elements)

    async def apply_overlay(
        self,
        clip: Clip,
        template: Path | None,
        spec: OverlaySpec,
        output: Path,
    ) -> Clip:
        chain = self._overlay_chain(spec)
        inputs = ["-i", str(clip.path)]
        if template is not None and template.exists():
            inputs += ["-i", str(template)]
            graph = f"[0:v][1:v]overlay=0:0[base];[base]{chain}[out]"
        else:
            if template is not None:
                logger.warning(f"Overlay template not found, drawing HUD only: {template}")
            graph = f"[0:v]{chain}[out]"

        return await self._encode(clip, [
            *inputs,
            "-filter_complex", graph,
            "-map", "[out]", "-map", "0:a?",
            "-c:a", "copy", *_H264,
        ], output, "overlaid")

    async def burn_disclosure(self, clip: Clip, output: Path) -> Clip:
        font_file = "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf"
        font = f"fontfile='{font_file}':" if Path(font_file).exists() else ""
        drawtext = (
            f"drawtext={font}text='{DISCLOSURE_TEXT}':fontsize=11:fontcolor=white@0.4:"
            "shadowcolor=black@0.3:shadowx=1:shadowy=1:x=w-tw-10:y=h-th-10"
        )
        return await self._encode(clip, [
            "-i", str(clip.path),
            "-vf", drawtext,
            *_H264, "-c:a", "copy",
        ], output, "disclosed")

    async def crop_to_vertical(self, clip: Clip, output: Path) -> Clip:
        return await self._encode(clip, [
            "-i", str(clip.path),
            "-vf", VERTICAL_CROP_FILTER,
            *_H264, "-c:a", "copy",
        ], output, "cropped")

    async def extract_keyframes(self, clip: Clip, count: int, output_dir: Path) -> list[FrameImage]:
        info = await self.get_video_info(clip.path)
        if info.duration <= 0:
            raise MediaToolkitError(f"Cannot sample frames from zero-length clip: {clip.path}")

        output_dir.mkdir(parents=True, exist_ok=True)
        frames = []
        for i in range(1, count + 1):
            timestamp = info.duration * i / (count + 1)
            frame_path = output_dir / f"frame_{i:03d}.jpg"
            await self._run_ffmpeg([
                "-ss", f"{timestamp:.3f}",
                "-i", str(clip.path),
                "-frames:v", "1",
                "-q:v", "2",
                str(frame_path),
            ])
            if frame_path.exists():
                frames.append(FrameImage(path=frame_path, index=i - 1))

        if not frames:
            raise MediaToolkitError(f"No keyframes extracted from {clip.path}")
        return frames

    async def extract_final_frame(self, clip: Clip, output: Path) -> FrameImage:
        output.parent.mkdir(parents=True, exist_ok=True)
        await self._run_ffmpeg([
            "-sseof", "-3",
            "-i", str(clip.path),
            "-update", "1",
            "-q:v", "1",
            str(output),
        ], check=False)

        if not output.exists():
            info = await self.get_video_info(clip.path)
            await self._run_ffmpeg([
                "-ss", f"{max(0.0, info.duration - 1):.3f}",
                "-i", str(clip.path),
                "-frames:v", "1",
                str(output),
            ])

        if not output.exists():
            raise MediaToolkitError(f"Could not extract final frame from {clip.path}")
        return FrameImage(path=output)

    async def degrade(
        self,
        clip: Clip,
        fmt: CamFormat,
        output: Path,
        sub_type: str | None = None,
    ) -> Clip:
        video_filter, codec_args = DEGRADATION_FILTERS[CamFormat(fmt)]
        logger.info(
            "Applying degradation chain",
            extra={"format": CamFormat(fmt).value, "sub_type": sub_type},
        )
        return await self._encode(clip, [
            "-i", str(clip.path),
            "-vf", video_filter,
            *codec_args,
        ], output, "degraded")

"""Tests for the FFmpeg toolkit helpers and binary discovery."""

import subprocess
import sys
from datetime import datetime

import pytest

from clip_gate.errors import MediaToolkitError, ToolkitTimeoutError
from clip_gate.media import ffmpeg_binary
from clip_gate.media.ffmpeg import (
    SILENT_DB,
    FFmpegToolkit,
    escape_drawtext,
    parse_mean_volume,
    parse_trf,
)
from clip_gate.media.ffmpeg_binary import (
    FFmpegConfig,
    get_ffmpeg_path,
    get_ffprobe_path,
    missing_filters,
    verify_ffmpeg,
)
from clip_gate.media.snapshots import Clip
from clip_gate.media.toolkit import OverlaySpec, Region
from clip_gate.thresholds import CamFormat


@pytest.fixture
def toolkit(tmp_path):
    fake_ffmpeg = tmp_path / "ffmpeg"
    fake_ffmpeg.write_text("")
    return FFmpegToolkit(config=FFmpegConfig(custom_ffmpeg_path=str(fake_ffmpeg)), timeout=0.5)


class TestParsers:
    """Tests for parsing FFmpeg output."""

    def test_mean_volume(self):
        output = "[Parsed_volumedetect_0 @ 0x1] mean_volume: -23.4 dB\n[Parsed_volumedetect_0] max_volume: -4.0 dB"

        assert parse_mean_volume(output) == -23.4

    def test_mean_volume_missing(self):
        """Test a clip with no audio stream reads as silent."""
        assert parse_mean_volume("Output file is empty, nothing was encoded") == SILENT_DB

    def test_trf_local_motion(self):
        content = "\n".join([
            "VID.STAB 1",
            "# accuracy = 15",
            "Frame 1 (List 2 [(LM 3 4 16 16 32 1.0 0.1),(LM 3 4 48 16 32 1.0 0.1)])",
            "Frame 2 (List 1 [(LM 0 0 16 16 32 1.0 0.1)])",
        ])

        assert parse_trf(content) == [5.0, 0.0]

    def test_trf_columns(self):
        assert parse_trf("1 3.0 4.0 0.0\n2 0.0 0.0 0.0\nbad row here") == [5.0, 0.0]

    def test_escape_drawtext(self):
        assert escape_drawtext("12:30 [REC]") == r"12\:30 \[REC\]"


class TestRegion:
    """Tests for percent-to-pixel conversion."""

    def test_to_pixels_clamped(self):
        region = Region(x=90, y=90, w=20, h=20)

        x, y, w, h = region.to_pixels(1000, 500, pad=10)

        assert (x, y) == (890, 440)
        assert x + w <= 1000
        assert y + h <= 500


class TestOverlayChain:
    """Tests for HUD filter construction."""

    def test_ring_hud(self, toolkit):
        spec = OverlaySpec(format=CamFormat.RING_CAM, timestamp=datetime(2026, 1, 2, 3, 4, 5), camera_name="Back Yard")

        chain = toolkit._overlay_chain(spec)

        assert r"01/02/2026 03\:04\:05" in chain
        assert "Back Yard" in chain
        assert "REC" in chain

    def test_body_hud_extras(self, toolkit):
        spec = OverlaySpec(
            format=CamFormat.BODY_CAM,
            timestamp=datetime(2026, 1, 2, 3, 4, 5),
            unit_id="UNIT-9",
            show_gps=True,
            speed_mph=42,
        )

        chain = toolkit._overlay_chain(spec)

        assert "UNIT UNIT-9" in chain
        assert "GPS" in chain
        assert "42 MPH" in chain


class TestSubprocess:
    """Tests for subprocess handling."""

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, toolkit):
        with pytest.raises(ToolkitTimeoutError) as exc_info:
            await toolkit._run([sys.executable, "-c", "import time; time.sleep(10)"])
        assert exc_info.value.timeout == 0.5

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, toolkit):
        with pytest.raises(MediaToolkitError) as exc_info:
            await toolkit._run([sys.executable, "-c", "import sys; sys.stderr.write('bad input'); sys.exit(1)"])
        assert "bad input" in exc_info.value.stderr

    @pytest.mark.asyncio
    async def test_nonzero_exit_unchecked(self, toolkit):
        code, _, _ = await toolkit._run([sys.executable, "-c", "import sys; sys.exit(3)"], check=False)

        assert code == 3

    @pytest.mark.asyncio
    async def test_missing_binary(self, toolkit, tmp_path):
        with pytest.raises(MediaToolkitError):
            await toolkit._run([str(tmp_path / "no-such-binary")])

    @pytest.mark.asyncio
    async def test_missing_audio_bed(self, toolkit, tmp_path):
        clip = Clip(path=tmp_path / "in.mp4", label="degraded")

        with pytest.raises(MediaToolkitError, match="Audio bed not found"):
            await toolkit.mix_audio_bed(clip, "helmet_wind", -15.0, tmp_path / "out.mp4")

    @pytest.mark.asyncio
    async def test_blur_needs_regions(self, toolkit, tmp_path):
        with pytest.raises(MediaToolkitError):
            await toolkit.apply_blur(Clip(path=tmp_path / "in.mp4", label="x"), [], tmp_path / "out.mp4")

    @pytest.mark.asyncio
    async def test_no_detector_no_subjects(self, toolkit, tmp_path):
        assert await toolkit.detect_subjects(Clip(path=tmp_path / "in.mp4", label="x")) == []


class TestMeanVolume:
    """Tests for volume measurement exit handling."""

    @staticmethod
    def answer(monkeypatch, toolkit, code, stderr):
        async def fake_run_ffmpeg(args, check=True):
            return code, "", stderr

        monkeypatch.setattr(toolkit, "_run_ffmpeg", fake_run_ffmpeg)

    @pytest.mark.asyncio
    async def test_reads_mean_volume(self, toolkit, tmp_path, monkeypatch):
        self.answer(monkeypatch, toolkit, 0, "[Parsed_volumedetect_0 @ 0x1] mean_volume: -24.5 dB")

        assert await toolkit.probe_mean_volume(Clip(path=tmp_path / "in.mp4", label="x")) == -24.5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stderr", [
        "Output #0, null, to 'pipe:':\nOutput file #0 does not contain any stream",
        "Stream map '0:a' matches no streams.",
        "Output file is empty, nothing was encoded",
    ])
    async def test_no_audio_stream_is_silent(self, toolkit, tmp_path, monkeypatch, stderr):
        self.answer(monkeypatch, toolkit, 1, stderr)

        assert await toolkit.probe_mean_volume(Clip(path=tmp_path / "in.mp4", label="x")) == SILENT_DB

    @pytest.mark.asyncio
    async def test_other_failure_raises(self, toolkit, tmp_path, monkeypatch):
        """Test a broken input is a toolkit error, not a silent clip."""
        self.answer(monkeypatch, toolkit, 1, "in.mp4: Invalid data found when processing input")

        with pytest.raises(MediaToolkitError, match="Invalid data found") as exc_info:
            await toolkit.probe_mean_volume(Clip(path=tmp_path / "in.mp4", label="x"))

        assert "Invalid data" in exc_info.value.stderr


class TestBinaryDiscovery:
    """Tests for FFmpeg binary discovery."""

    def test_custom_path_wins(self, tmp_path):
        custom = tmp_path / "ffmpeg"
        custom.write_text("")

        assert get_ffmpeg_path(FFmpegConfig(custom_ffmpeg_path=str(custom))) == str(custom)

    def test_prefer_system(self, monkeypatch):
        monkeypatch.setattr(ffmpeg_binary.shutil, "which", lambda name: f"/usr/bin/{name}")

        assert get_ffmpeg_path(FFmpegConfig(prefer_system=True)) == "/usr/bin/ffmpeg"

    def test_ffprobe_beside_ffmpeg(self, tmp_path, monkeypatch):
        monkeypatch.setattr(ffmpeg_binary.platform, "system", lambda: "Linux")
        (tmp_path / "ffmpeg").write_text("")
        (tmp_path / "ffprobe").write_text("")

        assert get_ffprobe_path(FFmpegConfig(custom_ffmpeg_path=str(tmp_path / "ffmpeg"))) == str(tmp_path / "ffprobe")

    def test_verify_not_found(self, monkeypatch):
        monkeypatch.setattr(ffmpeg_binary, "get_ffmpeg_path", lambda config=None: None)

        ok, message = verify_ffmpeg()

        assert ok is False
        assert "not found" in message

    def test_toolkit_requires_ffmpeg(self, monkeypatch):
        monkeypatch.setattr("clip_gate.media.ffmpeg.get_ffmpeg_path", lambda config=None: None)

        with pytest.raises(MediaToolkitError):
            FFmpegToolkit()

    def test_missing_filters(self, monkeypatch):
        listing = "\n".join([
            "Filters:",
            "  T.. = Timeline support",
            " ... boxblur           V->V       Blur the input.",
            " ... drawtext          V->V       Draw text on top of video frames.",
            " ... volumedetect      A->A       Detect audio volume.",
            " ... amix              N->A       Audio mixing.",
        ])
        monkeypatch.setattr(
            ffmpeg_binary.subprocess,
            "run",
            lambda *args, **kwargs: subprocess.CompletedProcess(args, 0, stdout=listing, stderr=""),
        )

        assert missing_filters("/usr/bin/ffmpeg") == ["vidstabdetect"]

    def test_verify_reports_missing_filter(self, monkeypatch):
        def fake_run(command, **kwargs):
            if "-version" in command:
                return subprocess.CompletedProcess(command, 0, stdout="ffmpeg version 7.0\n", stderr="")
            return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

        monkeypatch.setattr(ffmpeg_binary, "get_ffmpeg_path", lambda config=None: "/usr/bin/ffmpeg")
        monkeypatch.setattr(ffmpeg_binary.subprocess, "run", fake_run)

        ok, message = verify_ffmpeg()

        assert ok is False
        assert "lacks filters" in message
        assert "vidstabdetect" in message

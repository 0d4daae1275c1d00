"""Tests for the clip-gate CLI."""

import json
from unittest.mock import patch

from typer.testing import CliRunner

from clip_gate.cli import app
from clip_gate.producer import Producer
from clip_gate.review.queue import RejectedScene, ReviewQueue

from conftest import WATERMARK_MISSING, FakeInference, FakeToolkit, RecordingAlerter

runner = CliRunner()


def add_scene(queue, scene_id, **kwargs):
    kwargs.setdefault("rejection_reasons", ["attempt 1: gate 1 (motion): too much motion"])
    queue.add(RejectedScene(
        scene_id=scene_id,
        format=kwargs.pop("format", "ring_cam"),
        prompt="Ring doorbell camera footage. Scene: a fox",
        clip_path=None,
        rejection_kind="budget_exhausted",
        attempts=3,
        **kwargs,
    ))


class TestSanitizeCommand:
    """Tests for 'clip-gate sanitize'."""

    def test_clean_prompt(self):
        result = runner.invoke(app, ["sanitize", "A fox crosses the porch"])

        assert result.exit_code == 0
        assert "Sanitized prompt" in result.output

    def test_blocked_prompt_exit_code(self):
        """Test a blocked prompt exits with status 2."""
        result = runner.invoke(app, ["sanitize", "a suspect with a gun"])

        assert result.exit_code == 2
        assert "Prompt blocked" in result.output
        assert "suspect" in result.output

    def test_json_output(self):
        result = runner.invoke(app, ["sanitize", "a ghost at the door", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["passed"] is True
        assert data["rewrites"][0]["original"] == "ghost"


class TestPolicyCommand:
    """Tests for 'clip-gate policy'."""

    def test_ring_policy(self):
        result = runner.invoke(app, ["policy", "ring_cam"])

        assert result.exit_code == 0
        assert "Static camera:" in result.output
        assert "True" in result.output

    def test_unknown_format(self):
        result = runner.invoke(app, ["policy", "drone_cam"])

        assert result.exit_code != 0


class TestProduceCommand:
    """Tests for 'clip-gate produce' with the media stack faked out."""

    def _invoke(self, tmp_path, pipeline_config, inference=None):
        source = tmp_path / "render.mp4"
        source.write_bytes(b"video")

        def fake_producer(config, generator):
            return Producer(
                config=pipeline_config,
                toolkit=FakeToolkit(),
                generator=generator,
                inference=inference or FakeInference(),
                alerter=RecordingAlerter(),
            )

        with patch("clip_gate.cli.create_producer", side_effect=fake_producer):
            return runner.invoke(app, [
                "produce", str(source),
                "--format", "ring_cam",
                "--scenario", "A fox trots across the porch",
                "--scene-id", "fox",
            ])

    def test_accepted(self, tmp_path, pipeline_config):
        result = self._invoke(tmp_path, pipeline_config)

        assert result.exit_code == 0
        assert "Accepted" in result.output
        assert (pipeline_config.output_dir / "fox_ring_cam.mp4").exists()

    def test_hard_fail_exit_code(self, tmp_path, pipeline_config):
        """Test a hard policy rejection exits with status 2."""
        result = self._invoke(tmp_path, pipeline_config, FakeInference(watermark=WATERMARK_MISSING))

        assert result.exit_code == 2
        assert "Rejected" in result.output
        assert "hard_policy" in result.output


class TestCheckDepsCommand:
    """Tests for 'clip-gate check-deps'."""

    def test_reports_missing_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        with patch("clip_gate.cli.verify_ffmpeg", return_value=(True, "ffmpeg version 7.0")):
            result = runner.invoke(app, ["check-deps"])

        assert result.exit_code == 1
        assert "No API key" in result.output

    def test_all_available(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")

        with patch("clip_gate.cli.verify_ffmpeg", return_value=(True, "ffmpeg version 7.0")):
            result = runner.invoke(app, ["check-deps"])

        assert result.exit_code == 0
        assert "Available" in result.output


class TestReviewListCommand:
    """Tests for 'clip-gate review list'."""

    def test_list_empty_queue(self, tmp_path):
        (tmp_path / "review").mkdir()

        with patch("clip_gate.cli.Path.cwd", return_value=tmp_path):
            result = runner.invoke(app, ["review", "list"])

        assert result.exit_code == 0
        assert "empty" in result.output.lower()

    def test_list_no_queue_directory(self, tmp_path):
        with patch("clip_gate.cli.Path.cwd", return_value=tmp_path):
            result = runner.invoke(app, ["review", "list"])

        assert result.exit_code == 0
        assert "No review queue found" in result.output

    def test_list_with_scenes(self, tmp_path):
        queue = ReviewQueue(tmp_path / "review")
        add_scene(queue, "porch_1")
        add_scene(queue, "trail_2", format="body_cam")

        result = runner.invoke(app, ["review", "list", "--dir", str(tmp_path / "review")])

        assert result.exit_code == 0
        assert "porch_1" in result.output
        assert "trail_2" in result.output
        assert "2 scenes" in result.output

    def test_list_with_limit(self, tmp_path):
        queue = ReviewQueue(tmp_path / "review")
        for i in range(5):
            add_scene(queue, f"scene_{i}")

        result = runner.invoke(app, ["review", "list", "--dir", str(tmp_path / "review"), "--limit", "2"])

        assert result.exit_code == 0
        assert "Showing 2 of 5" in result.output


class TestReviewShowCommand:
    """Tests for 'clip-gate review show'."""

    def test_show_scene(self, tmp_path):
        queue = ReviewQueue(tmp_path / "review")
        add_scene(
            queue,
            "porch_1",
            gate_trail=[{
                "gate_index": 1,
                "gate_name": "motion",
                "outcome": "fail",
                "classification": "soft",
                "reason": "too much motion",
                "corrective_action": "regenerate",
            }],
        )

        result = runner.invoke(app, ["review", "show", "porch_1", "--dir", str(tmp_path / "review")])

        assert result.exit_code == 0
        assert "Rejection Reasons" in result.output
        assert "gate 1 (motion)" in result.output
        assert "regenerate" in result.output

    def test_show_missing(self, tmp_path):
        ReviewQueue(tmp_path / "review")

        result = runner.invoke(app, ["review", "show", "nope", "--dir", str(tmp_path / "review")])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestReviewMutations:
    """Tests for 'clip-gate review remove/clear/summary'."""

    def test_remove(self, tmp_path):
        queue = ReviewQueue(tmp_path / "review")
        add_scene(queue, "porch_1")

        result = runner.invoke(app, ["review", "remove", "porch_1", "--dir", str(tmp_path / "review")])

        assert result.exit_code == 0
        assert queue.count() == 0

    def test_clear_with_confirmation_declined(self, tmp_path):
        queue = ReviewQueue(tmp_path / "review")
        add_scene(queue, "porch_1")

        result = runner.invoke(app, ["review", "clear", "--dir", str(tmp_path / "review")], input="n\n")

        assert "Cancelled" in result.output
        assert queue.count() == 1

    def test_clear_yes(self, tmp_path):
        queue = ReviewQueue(tmp_path / "review")
        add_scene(queue, "porch_1")
        add_scene(queue, "porch_2")

        result = runner.invoke(app, ["review", "clear", "--yes", "--dir", str(tmp_path / "review")])

        assert result.exit_code == 0
        assert "Cleared 2 scenes" in result.output
        assert queue.count() == 0

    def test_summary(self, tmp_path):
        queue = ReviewQueue(tmp_path / "review")
        add_scene(queue, "porch_1")
        add_scene(queue, "trail_2", format="body_cam",
                  rejection_reasons=["attempt 1: gate 3 (audio): too quiet"])

        result = runner.invoke(app, ["review", "summary", "--dir", str(tmp_path / "review")])

        assert result.exit_code == 0
        assert "Total Scenes:" in result.output
        assert "gate 1 (motion)" in result.output
        assert "body_cam" in result.output

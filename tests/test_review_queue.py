"""Tests for review queue system."""

import json

from clip_gate.review.queue import RejectedScene, ReviewQueue


def make_scene(scene_id="scene_01", **kwargs):
    kwargs.setdefault("format", "ring_cam")
    kwargs.setdefault("prompt", "Ring doorbell camera footage. Scene: a fox on the porch")
    kwargs.setdefault("clip_path", None)
    kwargs.setdefault("rejection_kind", "budget_exhausted")
    kwargs.setdefault("rejection_reasons", ["attempt 1: gate 1 (motion): mean motion too high [regenerate]"])
    return RejectedScene(scene_id=scene_id, **kwargs)


class TestRejectedScene:
    """Tests for RejectedScene dataclass."""

    def test_basic_creation(self):
        """Test basic scene creation."""
        scene = make_scene(attempts=3)

        assert scene.scene_id == "scene_01"
        assert scene.format == "ring_cam"
        assert scene.attempts == 3
        assert scene.rejected_at != ""  # Auto-set

    def test_ffplay_command(self, tmp_path):
        """Test ffplay command generation."""
        scene = make_scene(clip_path=str(tmp_path / "scene_01.mp4"))

        cmd = scene.ffplay_command
        assert cmd.startswith("ffplay")
        assert "scene_01.mp4" in cmd

    def test_no_clip_no_command(self):
        assert make_scene().ffplay_command is None

    def test_serialization_roundtrip(self):
        """Test to_dict and from_dict maintain data."""
        original = make_scene(
            clip_path="/review/clips/scene_01.mp4",
            rejection_reasons=["attempt 1: gate 3 (audio): too quiet", "attempt 2: remedy mix_audio_bed failed: x"],
            gate_trail=[{"gate_index": 1, "outcome": "pass"}],
            attempts=3,
        )

        data = original.to_dict()

        assert data["scene_id"] == "scene_01"
        assert "ffplay" in data["ffplay_command"]

        loaded = RejectedScene.from_dict(data)

        assert loaded.scene_id == original.scene_id
        assert loaded.clip_path == original.clip_path
        assert loaded.rejection_reasons == original.rejection_reasons
        assert loaded.gate_trail == original.gate_trail
        assert loaded.attempts == 3
        assert loaded.rejected_at == original.rejected_at


class TestReviewQueueAdd:
    """Tests for adding scenes to the queue."""

    def test_add_scene(self, tmp_path):
        """Test adding a scene to the queue."""
        queue = ReviewQueue(tmp_path / "review")

        filepath = queue.add(make_scene())

        assert filepath.exists()
        assert filepath.suffix == ".json"
        assert "scene_01" in filepath.name

    def test_creates_directories(self, tmp_path):
        review_dir = tmp_path / "new_review_dir"
        queue = ReviewQueue(review_dir)

        assert review_dir.exists()
        assert queue.clips_dir == review_dir / "clips"
        assert queue.clips_dir.is_dir()

    def test_add_file_content(self, tmp_path):
        """Test that added file contains correct JSON."""
        queue = ReviewQueue(tmp_path / "review")

        filepath = queue.add(make_scene(prompt="A fox on the porch"))

        with open(filepath, "r", encoding="utf-8") as f:
            data = json.load(f)

        assert data["scene_id"] == "scene_01"
        assert data["prompt"] == "A fox on the porch"
        assert data["rejection_kind"] == "budget_exhausted"


class TestReviewQueueList:
    """Tests for listing scenes in the queue."""

    def test_list_all_empty(self, tmp_path):
        queue = ReviewQueue(tmp_path / "review")

        assert queue.list_all() == []

    def test_list_sorted_by_time(self, tmp_path):
        """Test that list is sorted by rejection time (newest first)."""
        queue = ReviewQueue(tmp_path / "review")
        queue.add(make_scene("scene_01", rejected_at="2024-01-01T10:00:00"))
        queue.add(make_scene("scene_02", rejected_at="2024-01-01T12:00:00"))

        scenes = queue.list_all()

        assert [s.scene_id for s in scenes] == ["scene_02", "scene_01"]

    def test_malformed_file_skipped(self, tmp_path):
        """Test a corrupt review file does not break listing."""
        queue = ReviewQueue(tmp_path / "review")
        queue.add(make_scene())
        (queue.review_dir / "broken_1.json").write_text("{not json", encoding="utf-8")

        scenes = queue.list_all()

        assert [s.scene_id for s in scenes] == ["scene_01"]


class TestReviewQueueGetRemove:
    """Tests for getting and removing scenes."""

    def test_get_existing(self, tmp_path):
        queue = ReviewQueue(tmp_path / "review")
        queue.add(make_scene())

        found = queue.get("scene_01")

        assert found is not None
        assert found.scene_id == "scene_01"

    def test_get_matches_exact_id(self, tmp_path):
        """Test an ID that prefixes another scene's ID does not match it."""
        queue = ReviewQueue(tmp_path / "review")
        queue.add(make_scene("porch_1"))

        assert queue.get("porch") is None
        assert queue.remove("porch") is False
        assert queue.count() == 1

    def test_get_nonexistent(self, tmp_path):
        assert ReviewQueue(tmp_path / "review").get("nonexistent") is None

    def test_remove_deletes_kept_clip(self, tmp_path):
        """Test removing a scene also deletes its kept snapshot."""
        queue = ReviewQueue(tmp_path / "review")
        clip = queue.clips_dir / "scene_01.mp4"
        clip.write_bytes(b"video")
        queue.add(make_scene(clip_path=str(clip)))

        assert queue.remove("scene_01") is True
        assert queue.get("scene_01") is None
        assert not clip.exists()

    def test_remove_nonexistent(self, tmp_path):
        assert ReviewQueue(tmp_path / "review").remove("nonexistent") is False


class TestReviewQueueSummary:
    """Tests for queue summary."""

    def test_get_summary_empty(self, tmp_path):
        summary = ReviewQueue(tmp_path / "review").get_summary()

        assert summary["total_scenes"] == 0
        assert summary["by_reason"] == {}
        assert summary["by_format"] == {}

    def test_get_summary(self, tmp_path):
        """Test failures are grouped by gate, ignoring the attempt prefix."""
        queue = ReviewQueue(tmp_path / "review")
        queue.add(make_scene("scene_01", rejection_reasons=[
            "attempt 1: gate 1 (motion): mean motion 1.50 above 0.5",
            "attempt 2: gate 1 (motion): mean motion 1.40 above 0.5",
        ]))
        queue.add(make_scene("scene_02", format="body_cam", rejection_reasons=[
            "attempt 1: gate 3 (audio): mean volume -38.0 dB below floor",
            "attempt 1: remedy mix_audio_bed failed: amix failed",
        ]))

        summary = queue.get_summary()

        assert summary["total_scenes"] == 2
        assert summary["by_reason"]["gate 1 (motion)"] == 2
        assert summary["by_reason"]["gate 3 (audio)"] == 1
        assert summary["by_reason"]["remedy failed"] == 1
        assert summary["by_format"] == {"ring_cam": 1, "body_cam": 1}

    def test_count(self, tmp_path):
        queue = ReviewQueue(tmp_path / "review")

        assert queue.count() == 0
        queue.add(make_scene())
        assert queue.count() == 1


class TestReviewQueueClear:
    """Tests for clearing the queue."""

    def test_clear(self, tmp_path):
        """Test clearing all scenes and kept clips."""
        queue = ReviewQueue(tmp_path / "review")
        for i in range(5):
            queue.add(make_scene(f"scene_{i:02d}"))
        (queue.clips_dir / "scene_00.mp4").write_bytes(b"video")

        assert queue.count() == 5

        removed = queue.clear()

        assert removed == 5
        assert queue.count() == 0
        assert list(queue.clips_dir.iterdir()) == []


class TestReviewQueueFilesystem:
    """Integration tests for filesystem operations."""

    def test_persists_across_instances(self, tmp_path):
        """Test full filesystem workflow."""
        review_dir = tmp_path / "review"
        ReviewQueue(review_dir).add(make_scene(
            rejection_reasons=["attempt 1: gate 6 (overlay): overlay not detected"],
            attempts=3,
        ))

        loaded = ReviewQueue(review_dir).get("scene_01")

        assert loaded is not None
        assert loaded.rejection_reasons == ["attempt 1: gate 6 (overlay): overlay not detected"]
        assert loaded.attempts == 3

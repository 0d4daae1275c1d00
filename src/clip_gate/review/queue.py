"""Review queue for rejected scenes.

Provides file-based storage for scenes whose automated correction ran out
of attempts, so a human can inspect the last snapshot and the gate trail.
Hard policy violations are not queued: they are not to be retried.
"""

from __future__ import annotations

import json
import os
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from clip_gate.logging import get_logger

logger = get_logger(__name__)

_GATE_LABEL = re.compile(r"gate \d+ \([a-z_]+\)")


@dataclass
class RejectedScene:
    """A scene that exhausted its retry budget and needs human review.

    Attributes:
        scene_id: Unique identifier for the scene
        format: Camera format value
        prompt: Prompt the clip was generated from
        clip_path: Copy of the last working snapshot, if one was kept
        rejection_kind: Why the scene was rejected (budget_exhausted, ...)
        rejection_reasons: Every gate failure reason across attempts
        gate_trail: Serialized verdicts of the last attempt
        attempts: Full passes through the gate sequence
        rejected_at: ISO timestamp of when the scene was rejected
    """

    scene_id: str
    format: str
    prompt: str
    clip_path: str | None
    rejection_kind: str
    rejection_reasons: list[str]
    gate_trail: list[dict[str, Any]] = field(default_factory=list)
    attempts: int = 0
    rejected_at: str = ""

    def __post_init__(self):
        """Set rejected_at timestamp if not provided."""
        if not self.rejected_at:
            self.rejected_at = datetime.now().isoformat()

    @property
    def ffplay_command(self) -> str | None:
        """ffplay command to preview the kept snapshot."""
        if not self.clip_path:
            return None
        return f'ffplay -autoexit "{self.clip_path}"'

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "scene_id": self.scene_id,
            "format": self.format,
            "prompt": self.prompt,
            "clip_path": self.clip_path,
            "rejection_kind": self.rejection_kind,
            "rejection_reasons": self.rejection_reasons,
            "gate_trail": self.gate_trail,
            "attempts": self.attempts,
            "rejected_at": self.rejected_at,
            "ffplay_command": self.ffplay_command,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RejectedScene":
        """Create from dictionary."""
        return cls(
            scene_id=data["scene_id"],
            format=data["format"],
            prompt=data.get("prompt", ""),
            clip_path=data.get("clip_path"),
            rejection_kind=data["rejection_kind"],
            rejection_reasons=data["rejection_reasons"],
            gate_trail=data.get("gate_trail", []),
            attempts=data.get("attempts", 0),
            rejected_at=data.get("rejected_at", ""),
        )


class ReviewQueue:
    """Manages the review queue for rejected scenes.

    Each rejected scene is saved as a separate JSON file in the review
    directory; kept snapshots go under ``clips/``.

    Attributes:
        review_dir: Path to the review directory
    """

    def __init__(self, review_dir: Path | str):
        """Initialize the review queue.

        Args:
            review_dir: Path to directory for storing review files
        """
        self.review_dir = Path(review_dir)
        self.review_dir.mkdir(parents=True, exist_ok=True)

    @property
    def clips_dir(self) -> Path:
        """Directory holding snapshots kept for review."""
        path = self.review_dir / "clips"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def add(self, scene: RejectedScene) -> Path:
        """Add a rejected scene to the queue.

        Args:
            scene: The rejected scene to add

        Returns:
            Path to the saved JSON file
        """
        safe_timestamp = scene.rejected_at.replace(":", "-").replace(".", "-")
        filepath = self.review_dir / f"{scene.scene_id}_{safe_timestamp}.json"
        self._write_json(filepath, scene.to_dict())
        logger.info(
            "Scene queued for review",
            extra={"scene_id": scene.scene_id, "rejection_kind": scene.rejection_kind, "path": str(filepath)},
        )
        return filepath

    def _write_json(self, filepath: Path, data: dict) -> None:
        """Write JSON atomically, retrying on file locking issues.

        Args:
            filepath: Path to write to
            data: Dictionary to serialize
        """
        temp_path = filepath.with_suffix(".tmp")
        max_retries = 5

        for attempt in range(max_retries):
            try:
                with open(temp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False, default=str)
                if os.name == "nt" and filepath.exists():
                    filepath.unlink()
                temp_path.replace(filepath)
                return
            except PermissionError:
                if attempt == max_retries - 1:
                    raise
                time.sleep(0.1 * (2 ** attempt))

    def _entries(self):
        """Yield (path, scene) for every readable review file."""
        for filepath in sorted(self.review_dir.glob("*.json")):
            try:
                with open(filepath, "r", encoding="utf-8") as f:
                    scene = RejectedScene.from_dict(json.load(f))
            except (json.JSONDecodeError, KeyError):
                logger.warning(f"Skipping malformed review file: {filepath.name}")
                continue
            yield filepath, scene

    def get(self, scene_id: str) -> RejectedScene | None:
        """Get a rejected scene by exact ID, or None."""
        for _, scene in self._entries():
            if scene.scene_id == scene_id:
                return scene
        return None

    def remove(self, scene_id: str) -> bool:
        """Remove a scene and its kept snapshot.

        Returns:
            True if the scene was removed, False if not found
        """
        for filepath, scene in self._entries():
            if scene.scene_id != scene_id:
                continue
            filepath.unlink()
            if scene.clip_path:
                Path(scene.clip_path).unlink(missing_ok=True)
            return True
        return False

    def list_all(self) -> list[RejectedScene]:
        """List all scenes in the review queue.

        Returns:
            List of RejectedScene objects, newest first
        """
        scenes = [scene for _, scene in self._entries()]
        return sorted(scenes, key=lambda s: s.rejected_at, reverse=True)

    def count(self) -> int:
        """Get count of scenes in review queue."""
        return len(list(self.review_dir.glob("*.json")))

    def get_summary(self) -> dict[str, Any]:
        """Get summary of review queue.

        Returns:
            Dictionary with queue statistics
        """
        scenes = self.list_all()
        return {
            "total_scenes": len(scenes),
            "by_reason": self._group_by_reason(scenes),
            "by_format": self._group_by_format(scenes),
        }

    def _group_by_reason(self, scenes: list[RejectedScene]) -> dict[str, int]:
        """Count failures per gate ("gate 1 (motion)", ...)."""
        labels = Counter()
        for scene in scenes:
            for reason in scene.rejection_reasons:
                match = _GATE_LABEL.search(reason)
                labels[match.group(0) if match else "remedy failed"] += 1
        return dict(labels)

    def _group_by_format(self, scenes: list[RejectedScene]) -> dict[str, int]:
        return dict(Counter(scene.format for scene in scenes))

    def clear(self) -> int:
        """Clear all scenes from the review queue.

        Returns:
            Number of scenes removed
        """
        count = 0
        for filepath in self.review_dir.glob("*.json"):
            filepath.unlink()
            count += 1
        for clip in self.review_dir.glob("clips/*"):
            clip.unlink()
        return count

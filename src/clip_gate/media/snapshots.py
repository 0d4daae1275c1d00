"""Immutable clip snapshots and the per-scene temp directory that holds them.

Every media step takes a :class:`Clip` and returns a new one pointing at a
fresh file. Snapshots are never modified in place, so a failed attempt can
hand its latest snapshot to the next attempt without touching earlier ones.
"""

from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from clip_gate.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Clip:
    """One snapshot in a clip's processing chain.

    Attributes:
        path: Media file for this snapshot
        label: Step that produced it (raw, degraded, shaken, blurred, ...)
        generation: Number of steps since the raw clip
        parent: Snapshot this one was derived from
        staged: True for overlay/disclosure snapshots made only for checking
    """

    path: Path
    label: str = "raw"
    generation: int = 0
    parent: Clip | None = None
    staged: bool = False

    def derive(self, path: Path, label: str, staged: bool = False) -> Clip:
        """Create the next snapshot in the chain."""
        return Clip(
            path=Path(path),
            label=label,
            generation=self.generation + 1,
            parent=self,
            staged=staged,
        )

    def working(self) -> Clip:
        """Latest snapshot not produced by a staging step.

        Retries carry this forward so overlays and watermarks are never
        stacked on top of each other.
        """
        clip = self
        while clip.staged and clip.parent is not None:
            clip = clip.parent
        return clip

    def lineage(self) -> list[str]:
        """Labels from the raw clip to this snapshot."""
        labels = []
        clip: Clip | None = self
        while clip is not None:
            labels.append(clip.label)
            clip = clip.parent
        return list(reversed(labels))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (parent chain flattened to labels)."""
        return {
            "path": str(self.path),
            "label": self.label,
            "generation": self.generation,
            "staged": self.staged,
            "lineage": self.lineage(),
        }


class SnapshotScope:
    """Owns the temp directory for one scene.

    Every snapshot and extracted frame lives under :attr:`root`. Leaving the
    ``with`` block removes the whole directory, whether the scene was
    accepted, rejected or cancelled. Only files passed through
    :meth:`export` survive.

    Example:
        with SnapshotScope(temp_dir, scene_id) as scope:
            degraded = scope.path_for("degraded")
    """

    def __init__(self, parent_dir: Path | None = None, prefix: str = "scene"):
        self._parent_dir = parent_dir
        self._prefix = prefix
        self._counter = 0
        self.root: Path | None = None

    def __enter__(self) -> SnapshotScope:
        self.open()
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: Any) -> bool:
        self.close()
        return False

    def open(self) -> Path:
        """Create the scope directory."""
        if self.root is None:
            if self._parent_dir is not None:
                self._parent_dir.mkdir(parents=True, exist_ok=True)
            self.root = Path(tempfile.mkdtemp(
                prefix=f"clip_gate_{self._prefix}_",
                dir=str(self._parent_dir) if self._parent_dir else None,
            ))
            logger.debug(f"Opened snapshot scope: {self.root}")
        return self.root

    def close(self) -> None:
        """Delete every artifact in the scope."""
        if self.root is not None and self.root.exists():
            shutil.rmtree(self.root, ignore_errors=True)
            logger.debug(f"Removed snapshot scope: {self.root}")
        self.root = None

    def path_for(self, label: str, ext: str = "mp4") -> Path:
        """Return a fresh, unique file path inside the scope."""
        root = self.open()
        self._counter += 1
        return root / f"{self._counter:03d}_{label}.{ext}"

    def dir_for(self, label: str) -> Path:
        """Return a fresh, empty directory inside the scope."""
        path = self.path_for(label, ext="d")
        path.mkdir(parents=True)
        return path

    def export(self, clip: Clip, output_dir: Path, name: str) -> Path:
        """Copy a snapshot out of the scope so it survives cleanup.

        Args:
            clip: Snapshot to keep
            output_dir: Destination directory
            name: File stem for the exported clip

        Returns:
            Path of the exported file
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        destination = output_dir / f"{name}{clip.path.suffix or '.mp4'}"
        shutil.copy2(clip.path, destination)
        logger.info(f"Exported clip: {destination}")
        return destination

"""
On-disk management of the test case under reduction.

The store owns the live fixture path, its one-time backup, the per-generation
seed snapshots handed to reducers, and the temp files candidates are
materialized into.
"""

import itertools
import logging
import os
import shutil
import stat
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from ..errors import ArtifactIOError
from .candidate import Artifact, Candidate


logger = logging.getLogger('parashrink.reduction')


class ArtifactStore:
    """
    Single writer of the live test case.

    Only accept() mutates the live path, and it does so with one rename, so
    readers observe either the previous generation or the next one.
    """

    def __init__(self, fixture_path: Path, backup_path: Optional[Path] = None,
                 work_parent: Optional[Path] = None):
        """Initialize store."""
        self.fixture_path = Path(fixture_path)
        self.backup_path = backup_path or self.fixture_path.with_name(
            self.fixture_path.name + ".orig"
        )
        self.work_parent = work_parent

        self.work_dir: Optional[Path] = None
        self._counter = itertools.count()
        self._lock = threading.Lock()
        self._snapshots: Dict[int, Path] = {}

    def open(self) -> None:
        """Create the private work directory."""
        if self.work_dir is not None:
            return
        try:
            if self.work_parent is not None:
                self.work_parent.mkdir(parents=True, exist_ok=True)
            self.work_dir = Path(tempfile.mkdtemp(
                prefix="parashrink-",
                dir=str(self.work_parent) if self.work_parent else None,
            ))
        except OSError as e:
            raise ArtifactIOError(f"Cannot create work directory: {e}") from e
        logger.debug(f"Work directory: {self.work_dir}")

    def close(self) -> None:
        """Remove every temp file and snapshot; live path and backup stay."""
        if self.work_dir is None:
            return
        try:
            shutil.rmtree(self.work_dir)
        except OSError as e:
            raise ArtifactIOError(f"Cannot remove work directory {self.work_dir}: {e}") from e
        self.work_dir = None
        self._snapshots.clear()

    def __enter__(self) -> 'ArtifactStore':
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def backup(self) -> None:
        """Copy the original test case to its .orig sibling."""
        if self.backup_path.exists():
            logger.warning(f"Overwriting existing backup {self.backup_path}")
        logger.info(f"Backing up initial test case from {self.fixture_path} "
                    f"to {self.backup_path}")
        try:
            shutil.copyfile(self.fixture_path, self.backup_path)
        except OSError as e:
            raise ArtifactIOError(f"Cannot back up test case: {e}") from e

    def current(self, generation: int = 0) -> Artifact:
        """Describe the live test case."""
        try:
            return Artifact.from_file(self.fixture_path, generation)
        except OSError as e:
            raise ArtifactIOError(f"Cannot read test case: {e}") from e

    def new_candidate_path(self, session_id: int, generation: int) -> Path:
        """Allocate a fresh path for a reducer to write a candidate to."""
        self._require_open()
        with self._lock:
            serial = next(self._counter)
        path = self.work_dir / f"candidate-g{generation}-s{session_id}-{serial}{self.fixture_path.suffix}"
        # Reducers create the file themselves; only reserve the name.
        if path.exists():
            raise ArtifactIOError(f"Candidate path already in use: {path}")
        return path

    def snapshot(self, artifact: Artifact) -> Path:
        """
        Return a read-only copy of the live test case for reducers to seed from.

        One snapshot exists per generation and lives until prune_snapshots()
        drops its generation, so a reducer that is slow to start can still
        open it.
        """
        self._require_open()
        path = self._snapshots.get(artifact.generation)
        if path is not None:
            return path

        path = self.work_dir / f"seed-g{artifact.generation}{self.fixture_path.suffix}"
        try:
            shutil.copyfile(artifact.path, path)
            os.chmod(path, stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
        except OSError as e:
            raise ArtifactIOError(f"Cannot snapshot generation {artifact.generation}: {e}") from e

        self._snapshots[artifact.generation] = path
        return path

    def prune_snapshots(self, oldest_in_use: int) -> None:
        """Remove snapshots of generations no running reducer was seeded from."""
        for generation in [g for g in self._snapshots if g < oldest_in_use]:
            self.discard(self._snapshots.pop(generation))

    def accept(self, candidate: Candidate, generation: int) -> Artifact:
        """
        Atomically replace the live test case with the candidate's content.

        Args:
            candidate: Candidate judged interesting
            generation: Generation number the new content becomes

        Returns:
            Artifact describing the new live content
        """
        directory = self.fixture_path.parent
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.fixture_path.name}.", suffix=".tmp", dir=str(directory)
            )
        except OSError as e:
            raise ArtifactIOError(f"Cannot allocate replacement file in {directory}: {e}") from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out, open(candidate.path, "rb") as src:
                shutil.copyfileobj(src, out)
                out.flush()
                os.fsync(out.fileno())
            shutil.copymode(self.fixture_path, tmp_path)
            os.replace(tmp_path, self.fixture_path)
        except OSError as e:
            raise ArtifactIOError(f"Cannot replace test case: {e}") from e
        finally:
            # Gone after a successful replace; otherwise an abandoned copy
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                logger.error(f"Could not remove {tmp_path}")

        self.discard(candidate.path)
        return self.current(generation)

    def discard(self, path: Path) -> None:
        """Delete a rejected, stale or superseded file."""
        try:
            if path.is_dir() and not path.is_symlink():
                # A misbehaving reducer may leave a directory at a candidate path
                shutil.rmtree(path)
            else:
                path.unlink(missing_ok=True)
        except OSError as e:
            raise ArtifactIOError(f"Cannot remove {path}: {e}") from e

    def _require_open(self) -> None:
        if self.work_dir is None:
            raise ArtifactIOError("Artifact store is not open")

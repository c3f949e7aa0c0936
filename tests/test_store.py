"""
Tests for the artifact store.
"""

import os

import pytest

from parashrink.errors import ArtifactIOError
from parashrink.reduction.candidate import Artifact, Candidate
from parashrink.reduction.store import ArtifactStore


class TestArtifactStore:
    """Test on-disk management of the test case."""

    @pytest.fixture
    def fixture_path(self, tmp_path):
        path = tmp_path / "case.txt"
        path.write_bytes(b"one\ntwo\nthree\n")
        return path

    @pytest.fixture
    def store(self, fixture_path, tmp_path):
        store = ArtifactStore(fixture_path, work_parent=tmp_path / "work")
        store.open()
        yield store
        store.close()

    def _candidate(self, store, content, generation=0):
        candidate = Candidate(
            session_id=0,
            generation=generation,
            path=store.new_candidate_path(0, generation),
        )
        candidate.path.write_bytes(content)
        candidate.load()
        return candidate

    def test_backup_copies_original(self, store, fixture_path):
        """Test the .orig backup."""
        store.backup()

        assert store.backup_path == fixture_path.with_name("case.txt.orig")
        assert store.backup_path.read_bytes() == b"one\ntwo\nthree\n"

    def test_backup_of_missing_fixture_fails(self, tmp_path):
        """Test backing up a missing test case."""
        store = ArtifactStore(tmp_path / "missing.txt")

        with pytest.raises(ArtifactIOError):
            store.backup()

    def test_current_describes_live_content(self, store):
        """Test describing the live test case."""
        artifact = store.current(generation=0)

        assert artifact.size == 14
        assert artifact.generation == 0
        assert artifact == Artifact.from_file(store.fixture_path, 0)

    def test_candidate_paths_are_unique(self, store):
        """Test candidate path allocation."""
        paths = {store.new_candidate_path(0, 0) for _ in range(20)}
        paths |= {store.new_candidate_path(1, 0) for _ in range(20)}

        assert len(paths) == 40
        assert all(p.parent == store.work_dir for p in paths)
        assert all(p.suffix == ".txt" for p in paths)

    def test_candidate_path_requires_open_store(self, fixture_path):
        """Test that paths are only handed out by an open store."""
        store = ArtifactStore(fixture_path)

        with pytest.raises(ArtifactIOError):
            store.new_candidate_path(0, 0)

    def test_accept_replaces_live_content(self, store, fixture_path):
        """Test accepting a candidate."""
        store.backup()
        candidate = self._candidate(store, b"two\n")

        artifact = store.accept(candidate, generation=1)

        assert fixture_path.read_bytes() == b"two\n"
        assert artifact.generation == 1
        assert artifact.size == 4
        assert artifact.digest == candidate.digest
        assert not candidate.path.exists()
        assert store.backup_path.read_bytes() == b"one\ntwo\nthree\n"

    def test_accept_leaves_no_temp_files_beside_fixture(self, store, fixture_path):
        """Test that accept cleans up its replacement file."""
        candidate = self._candidate(store, b"one\n")
        store.accept(candidate, generation=1)

        siblings = sorted(p.name for p in fixture_path.parent.iterdir())
        assert siblings == ["case.txt", "work"]

    def test_accept_keeps_file_mode(self, store, fixture_path):
        """Test that accept preserves permissions."""
        os.chmod(fixture_path, 0o640)
        candidate = self._candidate(store, b"one\n")

        store.accept(candidate, generation=1)

        assert fixture_path.stat().st_mode & 0o777 == 0o640

    def test_accept_missing_candidate_leaves_live_untouched(self, store, fixture_path):
        """A failed accept leaves the live content as it was."""
        candidate = Candidate(session_id=0, generation=0,
                              path=store.new_candidate_path(0, 0))

        with pytest.raises(ArtifactIOError):
            store.accept(candidate, generation=1)

        assert fixture_path.read_bytes() == b"one\ntwo\nthree\n"
        assert sorted(p.name for p in fixture_path.parent.iterdir()) == ["case.txt", "work"]

    def test_interrupted_accept_leaves_no_temp_files(self, store, fixture_path, monkeypatch):
        """An interrupt mid-copy keeps the live content and removes the partial copy."""
        candidate = self._candidate(store, b"one\n")

        def interrupt(_fd):
            raise KeyboardInterrupt

        monkeypatch.setattr(os, "fsync", interrupt)
        with pytest.raises(KeyboardInterrupt):
            store.accept(candidate, generation=1)

        assert fixture_path.read_bytes() == b"one\ntwo\nthree\n"
        assert sorted(p.name for p in fixture_path.parent.iterdir()) == ["case.txt", "work"]

    def test_snapshot_is_read_only_copy(self, store):
        """Test seed snapshots."""
        artifact = store.current(0)
        seed = store.snapshot(artifact)

        assert seed.read_bytes() == b"one\ntwo\nthree\n"
        assert not os.access(seed, os.W_OK) or os.geteuid() == 0
        assert store.snapshot(artifact) == seed

    def test_prune_snapshots(self, store):
        """Test removal of snapshots no session uses."""
        first = store.snapshot(store.current(0))
        candidate = self._candidate(store, b"one\n")
        second = store.snapshot(store.accept(candidate, generation=1))

        store.prune_snapshots(oldest_in_use=1)

        assert not first.exists()
        assert second.exists()

    def test_discard_is_idempotent(self, store):
        """Test discarding a candidate twice."""
        candidate = self._candidate(store, b"x")

        store.discard(candidate.path)
        store.discard(candidate.path)

        assert not candidate.path.exists()

    def test_discard_removes_directory_left_at_candidate_path(self, store):
        """A reducer may leave a directory where a candidate file belongs."""
        path = store.new_candidate_path(0, 0)
        path.mkdir()
        (path / "junk").write_bytes(b"x")

        store.discard(path)

        assert not path.exists()

    def test_close_removes_work_dir(self, fixture_path, tmp_path):
        """Test work directory cleanup."""
        store = ArtifactStore(fixture_path)
        with store:
            work_dir = store.work_dir
            store.snapshot(store.current(0))
            store.new_candidate_path(0, 0).write_bytes(b"x")

        assert not work_dir.exists()
        assert fixture_path.exists()


def test_improves_on_requires_smaller_different_content(tmp_path):
    """Test the shrink rule for candidates."""
    base = tmp_path / "base"
    base.write_bytes(b"abcd")
    baseline = Artifact.from_file(base, 0)

    def candidate(content):
        path = tmp_path / f"c{len(content)}{content[:1].decode() or 'e'}"
        path.write_bytes(content)
        c = Candidate(session_id=0, generation=0, path=path)
        c.load()
        return c

    assert candidate(b"abc").improves_on(baseline)
    assert not candidate(b"abcd").improves_on(baseline)
    assert not candidate(b"abcd").improves_on(baseline, allow_equal_size=True)
    assert not candidate(b"wxyz").improves_on(baseline)
    assert candidate(b"wxyz").improves_on(baseline, allow_equal_size=True)
    assert not candidate(b"abcde").improves_on(baseline, allow_equal_size=True)

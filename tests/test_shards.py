# Copyright (c) Syntropy Systems
"""Tests for the control clone and shard working copies."""

from pathlib import Path

import pytest

from bipolar.errors import CloneError, RevisionError, ShardError
from bipolar.git import GitRepo
from bipolar.shards import (
    ShardRegistry,
    clone_control,
    control_dir,
    ensure_shard,
    shard_dir,
)

from conftest import git


class TestCloneControl:
    """Tests for cloning the control revision."""

    def test_clone_branch(self, upstream: Path, temp_dir: Path) -> None:
        """A local branch name leaves HEAD on that branch."""
        dest = control_dir(temp_dir / ".bipolar")

        _ = clone_control(str(upstream), "main", dest)

        repo = GitRepo(dest)
        assert repo.head() == git(upstream, "rev-parse", "main")
        assert repo.symbolic_name("HEAD") == "refs/heads/main"

    def test_clone_remote_only_branch(self, upstream: Path, temp_dir: Path) -> None:
        """A branch that only exists on the remote gets a local branch."""
        dest = temp_dir / "control"

        _ = clone_control(str(upstream), "control", dest)

        repo = GitRepo(dest)
        assert repo.head() == git(upstream, "rev-parse", "control")
        assert repo.symbolic_name("HEAD") == "refs/heads/control"
        assert (dest / "app.txt").read_text() == "line1\nours\nline3\n"

    def test_clone_commit_detaches(self, upstream: Path, temp_dir: Path) -> None:
        dest = temp_dir / "control"
        commit = git(upstream, "rev-parse", "feature")

        _ = clone_control(str(upstream), commit, dest)

        repo = GitRepo(dest)
        assert repo.head() == commit
        assert repo.symbolic_name("HEAD") is None
        assert (dest / "feature.txt").exists()

    def test_clone_bad_url(self, temp_dir: Path) -> None:
        with pytest.raises(CloneError, match="Could not clone"):
            _ = clone_control(str(temp_dir / "missing"), "main", temp_dir / "control")

    def test_clone_bad_revision(self, upstream: Path, temp_dir: Path) -> None:
        with pytest.raises(RevisionError, match="no-such-branch"):
            _ = clone_control(str(upstream), "no-such-branch", temp_dir / "control")


class TestEnsureShard:
    """Tests for creating and reopening shard copies."""

    def test_copies_control(self, upstream: Path, temp_dir: Path) -> None:
        build_dir = temp_dir / ".bipolar"
        control = clone_control(str(upstream), "main", control_dir(build_dir))

        shard = ensure_shard(control, build_dir, 3)

        assert shard.shard_id == 3
        assert shard.path == shard_dir(build_dir, 3)
        assert shard.path.name == "shard_3"
        assert (shard.path / "README").read_text() == "hello\n"
        assert shard.repo.head() == GitRepo(control).head()

    def test_reuses_existing(self, upstream: Path, temp_dir: Path) -> None:
        """An existing shard is left exactly as it is."""
        build_dir = temp_dir / ".bipolar"
        control = clone_control(str(upstream), "main", control_dir(build_dir))
        first = ensure_shard(control, build_dir, 0)
        _ = (first.path / "local.txt").write_text("keep me\n")

        second = ensure_shard(control, build_dir, 0)

        assert (second.path / "local.txt").read_text() == "keep me\n"

    def test_not_a_repo(self, temp_dir: Path) -> None:
        build_dir = temp_dir / ".bipolar"
        shard_dir(build_dir, 0).mkdir(parents=True)

        with pytest.raises(ShardError, match="not a git working copy"):
            _ = ensure_shard(control_dir(build_dir), build_dir, 0)


class TestShardRegistry:
    """Tests for the per-build shard map."""

    def test_registry(self, upstream: Path, temp_dir: Path) -> None:
        build_dir = temp_dir / ".bipolar"
        control = clone_control(str(upstream), "main", control_dir(build_dir))

        with ShardRegistry() as registry:
            for shard_id in (2, 0, 1):
                registry[shard_id] = ensure_shard(control, build_dir, shard_id)

            assert list(registry) == [0, 1, 2]
            assert len(registry) == 3
            assert 1 in registry
            assert 5 not in registry

            with pytest.raises(ValueError, match="registered under id"):
                registry[4] = registry[0]

        assert len(registry) == 0

# Copyright (c) Syntropy Systems
"""Control clone and per-shard working copies."""
from __future__ import annotations

import logging
from collections.abc import Iterator, MutableMapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bipolar.errors import CloneError, GitCommandError, RevisionError, ShardError
from bipolar.fsutil import copy_tree
from bipolar.git import GitRepo

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

logger = logging.getLogger(__name__)

CONTROL_DIR = ".control"


def control_dir(build_dir: Path) -> Path:
    """Directory holding the control clone."""
    return build_dir / CONTROL_DIR


def shard_dir(build_dir: Path, shard_id: int) -> Path:
    """Working directory of one shard."""
    return build_dir / f"shard_{shard_id}"


@dataclass
class ShardRepo:
    """An open shard working copy."""

    shard_id: int
    repo: GitRepo

    @property
    def path(self) -> Path:
        return self.repo.path


def clone_control(repo_url: str, base_revision: str, dest: Path) -> Path:
    """Clone ``repo_url`` into ``dest`` and check out ``base_revision``.

    A branch name leaves HEAD on a local branch of that name; any other
    revision leaves HEAD detached.
    """
    logger.info("Cloning control repo from %s", repo_url)
    try:
        repo = GitRepo.clone(repo_url, dest)
    except GitCommandError as e:
        msg = f"Could not clone {repo_url}: {e.stderr or e}"
        raise CloneError(msg) from e

    commit = repo.resolve_commit(base_revision)
    remote_branch = f"refs/remotes/origin/{base_revision}"
    if commit is None and repo.resolve_commit(remote_branch) is not None:
        # Branch that only exists on the remote: create a local one.
        _ = repo.git("checkout", "--quiet", "--force", "-B", base_revision, remote_branch)
        logger.info("Control at branch %s (%s)", base_revision, repo.head()[:12])
        return dest
    if commit is None:
        msg = f"Cannot resolve base revision '{base_revision}' in {repo_url}"
        raise RevisionError(msg)

    ref = repo.symbolic_name(base_revision)
    if ref is not None and ref.startswith("refs/heads/"):
        _ = repo.git("checkout", "--quiet", "--force", ref[len("refs/heads/") :])
    else:
        _ = repo.git("checkout", "--quiet", "--force", "--detach", commit)

    logger.info("Control at %s (%s)", base_revision, commit[:12])
    return dest


def ensure_shard(control_path: Path, build_dir: Path, shard_id: int) -> ShardRepo:
    """Open shard ``shard_id``, copying it from the control clone if missing.

    An existing shard directory is reused exactly as it is.
    """
    path = shard_dir(build_dir, shard_id)
    if not path.exists():
        logger.info("Copying control to %s", path)
        copy_tree(control_path, path)
    else:
        logger.debug("Reusing shard %d at %s", shard_id, path)

    repo = GitRepo(path)
    if not repo.is_work_tree():
        msg = f"Shard {shard_id} at {path} is not a git working copy"
        raise ShardError(msg)
    return ShardRepo(shard_id=shard_id, repo=repo)


class ShardRegistry(MutableMapping[int, ShardRepo]):
    """Open shards keyed by id, valid for one build invocation.

    Use as a context manager; every handle is dropped on exit.
    """

    def __init__(self) -> None:
        self._shards: dict[int, ShardRepo] = {}

    def __getitem__(self, shard_id: int) -> ShardRepo:
        return self._shards[shard_id]

    def __setitem__(self, shard_id: int, shard: ShardRepo) -> None:
        if shard.shard_id != shard_id:
            msg = f"Shard {shard.shard_id} registered under id {shard_id}"
            raise ValueError(msg)
        self._shards[shard_id] = shard

    def __delitem__(self, shard_id: int) -> None:
        del self._shards[shard_id]

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._shards))

    def __len__(self) -> int:
        return len(self._shards)

    def __enter__(self) -> ShardRegistry:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._shards.clear()

# Copyright (c) Syntropy Systems
"""Persisted build state and the reuse-or-nuke decision."""
from __future__ import annotations

import logging
import os
import tempfile
import tomllib
from pathlib import Path

import tomli_w
from pydantic import ValidationError

from bipolar.models.lockfile import LockFile

logger = logging.getLogger(__name__)

LOCKFILE_NAME = "lockfile.toml"


def get_lockfile_path(build_dir: Path) -> Path:
    """Path of the lockfile inside the build directory."""
    return build_dir / LOCKFILE_NAME


def compatible(persisted: LockFile, desired: LockFile) -> bool:
    """Whether a build can resume from ``persisted`` to reach ``desired``.

    Everything that shapes the shard orderings must be unchanged, and
    splits may only grow. A treatment whose split disappeared counts as
    shrunk; treatments that are new in ``desired`` do not matter.
    """
    if persisted.base != desired.base:
        return False
    if persisted.repo != desired.repo:
        return False
    if persisted.shard_count != desired.shard_count:
        return False
    if tuple(persisted.minmax) != tuple(desired.minmax):
        return False
    if persisted.assignment.strategy != desired.assignment.strategy:
        return False

    desired_split = desired.assignment.split
    for name, percent in persisted.assignment.split.items():
        if name not in desired_split:
            return False
        if percent > desired_split[name]:
            return False

    return True


def load_lockfile(path: Path) -> LockFile | None:
    """Read the lockfile, or None if it is missing or unreadable."""
    if not path.exists():
        return None

    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
        return LockFile.model_validate(data)
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError, ValidationError) as e:
        logger.warning("Ignoring unreadable lockfile %s: %s", path, e)
        return None


def resolve_lockfile(
    path: Path,
    desired: LockFile,
    nuclear: bool = False,
) -> tuple[LockFile, bool]:
    """Pick the lockfile a build continues from.

    Returns ``(lockfile, nuke)``. When ``nuke`` is False the persisted
    lockfile comes back as is, ``applied`` included, with the desired
    assignment so newly added splits are visible.
    """
    if nuclear:
        logger.info("Nuclear build requested")
        return desired, True

    persisted = load_lockfile(path)
    if persisted is None:
        logger.info("No usable lockfile, starting from scratch")
        return desired, True

    if not compatible(persisted, desired):
        logger.info("Lockfile is incompatible with the current config")
        return desired, True

    persisted.assignment = desired.assignment.model_copy(deep=True)
    return persisted, False


def persist_lockfile(lockfile: LockFile, path: Path) -> None:
    """Atomically write the lockfile."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = lockfile.model_dump(mode="json")

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".lockfile-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(data, f)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.debug("Wrote lockfile %s", path)

# Copyright (c) Syntropy Systems
"""Apply a treatment (branch, commit or patch) to one shard."""
from __future__ import annotations

import logging
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from typing_extensions import assert_never

from bipolar.errors import GitCommandError, MergeError, PatchApplyError, RevisionError
from bipolar.models.config import BranchTreatment, CommitTreatment, PatchTreatment

if TYPE_CHECKING:
    from bipolar.models.config import Treatment
    from bipolar.shards import ShardRepo

logger = logging.getLogger(__name__)

SIGNATURE_NAME = "bipolar"
SIGNATURE_EMAIL = "bipolar@localhost"

_SIGNATURE_ENV = {
    "GIT_AUTHOR_NAME": SIGNATURE_NAME,
    "GIT_AUTHOR_EMAIL": SIGNATURE_EMAIL,
    "GIT_COMMITTER_NAME": SIGNATURE_NAME,
    "GIT_COMMITTER_EMAIL": SIGNATURE_EMAIL,
}

_NULL_OID = "0" * 40
_OID_RE = re.compile(r"^[0-9a-fA-F]{4,40}$")

OURS_STAGE = 2
THEIRS_STAGE = 3


@dataclass(frozen=True)
class ConflictEntry:
    """One index stage of a conflicted path."""

    mode: str
    oid: str
    stage: int
    path: str


def apply_treatment(shard: ShardRepo, treatment: Treatment, project_root: Path) -> None:
    """Apply ``treatment`` to ``shard``'s working copy.

    Branches and commits are merged with a two-parent commit; patches are
    applied to the working tree only. Any failure is raised and aborts the
    build.
    """
    if isinstance(treatment, BranchTreatment):
        target = _resolve_branch(shard, treatment)
        merge_commit(shard, target, treatment.name)
    elif isinstance(treatment, CommitTreatment):
        target = _resolve_commit(shard, treatment)
        merge_commit(shard, target, treatment.name)
    elif isinstance(treatment, PatchTreatment):
        patch_path = Path(treatment.patch)
        if not patch_path.is_absolute():
            patch_path = project_root / patch_path
        apply_patch(shard, patch_path, treatment.name)
    else:
        assert_never(treatment)


def _resolve_branch(shard: ShardRepo, treatment: BranchTreatment) -> str:
    ref = f"refs/remotes/origin/{treatment.ref}"
    target = shard.repo.resolve_commit(ref)
    if target is None:
        msg = (
            f"Treatment '{treatment.name}': branch '{treatment.ref}' "
            f"({ref}) not found in shard {shard.shard_id}"
        )
        raise RevisionError(msg)
    return target


def _resolve_commit(shard: ShardRepo, treatment: CommitTreatment) -> str:
    if not _OID_RE.match(treatment.ref):
        msg = f"Treatment '{treatment.name}': '{treatment.ref}' is not a commit id"
        raise RevisionError(msg)
    target = shard.repo.resolve_commit(treatment.ref)
    if target is None:
        msg = (
            f"Treatment '{treatment.name}': commit {treatment.ref} "
            f"not found in shard {shard.shard_id}"
        )
        raise RevisionError(msg)
    return target


def merge_commit(shard: ShardRepo, target: str, treatment_name: str) -> str:
    """Merge ``target`` into the shard's HEAD and check out the result.

    Conflicts are settled by :func:`resolve_conflicts`. Returns the new
    HEAD commit.
    """
    repo = shard.repo
    try:
        head = repo.resolve_commit("HEAD")
        if head is None:
            msg = f"Treatment '{treatment_name}': shard {shard.shard_id} has no HEAD commit"
            raise MergeError(msg)

        if repo.is_ancestor(target, head):
            logger.info(
                "Shard %d already contains %s, skipping merge of '%s'",
                shard.shard_id, target[:12], treatment_name,
            )
            return head

        base = repo.merge_base(head, target)
        if base is None:
            msg = (
                f"Treatment '{treatment_name}': {target[:12]} shares no history "
                f"with HEAD of shard {shard.shard_id}"
            )
            raise RevisionError(msg)
        logger.debug("Merge base of %s and %s is %s", head[:12], target[:12], base[:12])

        tree, conflicts = _merge_trees(shard, head, target)
        if conflicts:
            logger.warning(
                "Shard %d: resolving %d conflicted path(s) for '%s' (ours, else theirs)",
                shard.shard_id, len({c.path for c in conflicts}), treatment_name,
            )
            tree = _write_resolved_tree(shard, tree, resolve_conflicts(conflicts))

        message = f"bipolar: apply treatment '{treatment_name}' ({target})"
        commit = repo.git(
            "commit-tree", tree, "-p", head, "-p", target, "-m", message,
            env=_SIGNATURE_ENV,
        ).stdout.strip()

        _ = repo.git("reset", "--quiet", "--hard", commit)
    except GitCommandError as e:
        msg = (
            f"Treatment '{treatment_name}': merge into shard "
            f"{shard.shard_id} failed: {e}"
        )
        raise MergeError(msg) from e

    logger.info(
        "Merged '%s' into shard %d (%s)", treatment_name, shard.shard_id, commit[:12]
    )
    return commit


def _merge_trees(shard: ShardRepo, ours: str, theirs: str) -> tuple[str, list[ConflictEntry]]:
    """Three-way merge two commits over their merge base without touching disk."""
    argv = ["merge-tree", "--write-tree", "-z", "--no-messages", ours, theirs]
    result = shard.repo.git(*argv, check=False)
    # 0: clean, 1: conflicts, anything else: the merge could not run
    if result.returncode not in (0, 1):
        raise GitCommandError(argv, result.returncode, result.stderr)
    return parse_merge_tree(result.stdout)


def parse_merge_tree(output: str) -> tuple[str, list[ConflictEntry]]:
    """Parse ``git merge-tree --write-tree -z --no-messages`` output."""
    fields = output.split("\0")
    tree = fields[0].strip()
    conflicts: list[ConflictEntry] = []
    for field in fields[1:]:
        if not field:
            break
        info, _, path = field.partition("\t")
        mode, oid, stage = info.split(" ")
        conflicts.append(ConflictEntry(mode=mode, oid=oid, stage=int(stage), path=path))
    return tree, conflicts


def resolve_conflicts(conflicts: list[ConflictEntry]) -> dict[str, ConflictEntry | None]:
    """Pick a side for every conflicted path: ours if present, else theirs.

    This is a fixed, content-unaware policy. A path with neither side is
    mapped to None (deleted).
    """
    by_path: dict[str, dict[int, ConflictEntry]] = {}
    for entry in conflicts:
        by_path.setdefault(entry.path, {})[entry.stage] = entry

    resolved: dict[str, ConflictEntry | None] = {}
    for path, stages in by_path.items():
        if OURS_STAGE in stages:
            resolved[path] = stages[OURS_STAGE]
        elif THEIRS_STAGE in stages:
            resolved[path] = stages[THEIRS_STAGE]
        else:
            resolved[path] = None
    return resolved


def _write_resolved_tree(
    shard: ShardRepo,
    merged_tree: str,
    resolved: dict[str, ConflictEntry | None],
) -> str:
    """Overlay the chosen entries on the merged tree and write it."""
    lines: list[str] = []
    for path, entry in sorted(resolved.items()):
        if entry is None:
            lines.append(f"0 {_NULL_OID}\t{path}")
        else:
            lines.append(f"{entry.mode} {entry.oid}\t{path}")

    # Scratch index so the shard's own index and working tree stay untouched.
    with tempfile.TemporaryDirectory(prefix="bipolar-index-") as tmp:
        env = {"GIT_INDEX_FILE": str(Path(tmp) / "index")}
        _ = shard.repo.git("read-tree", merged_tree, env=env)
        _ = shard.repo.git(
            "update-index", "--index-info",
            env=env,
            input="".join(f"{line}\n" for line in lines),
        )
        return shard.repo.git("write-tree", env=env).stdout.strip()


def apply_patch(shard: ShardRepo, patch_path: Path, treatment_name: str) -> None:
    """Apply a unified diff to the shard's working tree, tolerating whitespace."""
    repo = shard.repo
    patch = str(patch_path)
    if not patch_path.is_file():
        raise PatchApplyError(
            treatment_name, patch, shard.shard_id, "patch file not found"
        )

    result = repo.git("apply", "--ignore-whitespace", patch, check=False)
    if result.returncode == 0:
        logger.info("Applied patch '%s' to shard %d", treatment_name, shard.shard_id)
        return

    reverse = repo.git(
        "apply", "--ignore-whitespace", "--reverse", "--check", patch, check=False
    )
    if reverse.returncode == 0:
        logger.info(
            "Shard %d already has patch '%s', skipping",
            shard.shard_id, treatment_name,
        )
        return

    raise PatchApplyError(treatment_name, patch, shard.shard_id, result.stderr.strip())

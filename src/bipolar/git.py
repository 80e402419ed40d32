# Copyright (c) Syntropy Systems
"""Thin wrapper around the git command line."""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path

from bipolar.errors import BipolarError, GitCommandError

logger = logging.getLogger(__name__)

# Never block on credential prompts; a failed auth must surface as an error.
_BASE_ENV = {"GIT_TERMINAL_PROMPT": "0"}


def git_executable() -> str:
    """Locate the git binary."""
    path = shutil.which("git")
    if path is None:
        msg = "git executable not found on PATH"
        raise BipolarError(msg)
    return path


def run_git(
    argv: list[str],
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    input: str | None = None,  # noqa: A002
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Run ``git <argv>`` and capture its output.

    Raises GitCommandError on a non-zero exit unless ``check`` is False.
    """
    full_env = os.environ.copy()
    full_env.update(_BASE_ENV)
    if env:
        full_env.update(env)

    logger.debug("git %s (cwd=%s)", " ".join(argv), cwd)
    try:
        result = subprocess.run(  # noqa: S603
            [git_executable(), *argv],
            cwd=str(cwd) if cwd is not None else None,
            env=full_env,
            input=input,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise GitCommandError(argv, -1, str(e)) from e

    if check and result.returncode != 0:
        raise GitCommandError(argv, result.returncode, result.stderr)
    return result


class GitRepo:
    """A git working copy on disk."""

    path: Path

    def __init__(self, path: Path) -> None:
        self.path = path

    def __repr__(self) -> str:
        return f"GitRepo({str(self.path)!r})"

    @classmethod
    def clone(cls, url: str, dest: Path) -> GitRepo:
        """Clone ``url`` into ``dest``."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        _ = run_git(["clone", "--quiet", url, str(dest)])
        return cls(dest)

    @classmethod
    def discover(cls, start: Path | None = None) -> GitRepo | None:
        """Open the repository containing ``start`` (default: cwd)."""
        result = run_git(
            ["rev-parse", "--show-toplevel"],
            cwd=start or Path.cwd(),
            check=False,
        )
        if result.returncode != 0:
            return None
        return cls(Path(result.stdout.strip()))

    def git(
        self,
        *argv: str,
        env: dict[str, str] | None = None,
        input: str | None = None,  # noqa: A002
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command inside this repository."""
        return run_git(list(argv), cwd=self.path, env=env, input=input, check=check)

    def is_work_tree(self) -> bool:
        """Whether ``path`` is the top level of a git working copy."""
        if not self.path.is_dir():
            return False
        result = self.git("rev-parse", "--show-toplevel", check=False)
        if result.returncode != 0:
            return False
        return Path(result.stdout.strip()).resolve() == self.path.resolve()

    def rev_parse(self, spec: str) -> str | None:
        """Resolve ``spec`` to an object id, or None if it does not resolve."""
        result = self.git("rev-parse", "--verify", "--quiet", spec, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def resolve_commit(self, spec: str) -> str | None:
        """Resolve ``spec`` and peel it to a commit id."""
        return self.rev_parse(f"{spec}^{{commit}}")

    def head(self) -> str:
        """Commit id of HEAD."""
        oid = self.resolve_commit("HEAD")
        if oid is None:
            msg = f"{self.path} has no HEAD commit"
            raise BipolarError(msg)
        return oid

    def symbolic_name(self, spec: str) -> str | None:
        """Full ref name ``spec`` refers to (refs/heads/...), if it is a ref."""
        result = self.git(
            "rev-parse", "--symbolic-full-name", spec, check=False
        )
        name = result.stdout.strip()
        if result.returncode != 0 or not name.startswith("refs/"):
            return None
        return name

    def merge_base(self, a: str, b: str) -> str | None:
        """Best common ancestor of two commits, or None if unrelated."""
        result = self.git("merge-base", a, b, check=False)
        if result.returncode == 1:
            return None
        if result.returncode != 0:
            raise GitCommandError(
                ["merge-base", a, b], result.returncode, result.stderr
            )
        return result.stdout.strip()

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Whether ``ancestor`` is reachable from ``descendant``."""
        argv = ["merge-base", "--is-ancestor", ancestor, descendant]
        result = self.git(*argv, check=False)
        if result.returncode in (0, 1):
            return result.returncode == 0
        raise GitCommandError(argv, result.returncode, result.stderr)

    def parents(self, commit: str) -> list[str]:
        """Parent ids of ``commit``."""
        result = self.git("rev-list", "--parents", "-n", "1", commit)
        return result.stdout.split()[1:]

    def tree_of(self, commit: str) -> str:
        """Tree id of ``commit``."""
        return self.git("rev-parse", f"{commit}^{{tree}}").stdout.strip()

    def remote_url(self, remote: str) -> str | None:
        """URL configured for ``remote``."""
        result = self.git("remote", "get-url", remote, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

# Copyright (c) Syntropy Systems
"""Exception hierarchy for bipolar."""

from __future__ import annotations


class BipolarError(Exception):
    """Base class for every error bipolar reports to the user."""


class ConfigError(BipolarError):
    """Missing or malformed bipolar.yaml."""


class GitCommandError(BipolarError):
    """A git subprocess exited with an unexpected status."""

    def __init__(self, argv: list[str], returncode: int, stderr: str) -> None:
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr.strip()
        msg = f"git {' '.join(argv)} failed with exit code {returncode}"
        if self.stderr:
            msg = f"{msg}: {self.stderr}"
        super().__init__(msg)


class CloneError(BipolarError):
    """The control repository could not be cloned."""


class RevisionError(BipolarError):
    """A branch, commit or revision spec could not be resolved."""


class MergeError(BipolarError):
    """A treatment merge could not be written."""


class PatchApplyError(BipolarError):
    """A patch treatment did not apply."""

    def __init__(
        self, treatment: str, patch_file: str, shard_id: int, detail: str = ""
    ) -> None:
        self.treatment = treatment
        self.patch_file = patch_file
        self.shard_id = shard_id
        msg = (
            f"Treatment '{treatment}': failed to apply patch {patch_file} "
            f"to shard {shard_id}"
        )
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ShardError(BipolarError):
    """A shard directory exists but is not a usable working copy."""


class HookError(BipolarError):
    """A synchronous hook exited non-zero."""

    def __init__(self, hook: str, command: str, cwd: str, returncode: int) -> None:
        self.hook = hook
        self.command = command
        self.cwd = cwd
        self.returncode = returncode
        super().__init__(
            f"{hook} hook '{command}' failed in {cwd} (exit code {returncode})"
        )


class MissingHookError(BipolarError):
    """A required hook is not configured."""


class TemplateRenderError(BipolarError):
    """A template could not be rendered into a shard."""


class ProcessError(BipolarError):
    """A run process could not be spawned or terminated."""

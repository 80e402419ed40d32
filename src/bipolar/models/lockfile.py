# Copyright (c) Syntropy Systems
"""Pydantic model for the persisted build state (.bipolar/lockfile.toml)."""

from __future__ import annotations

from pydantic import Field

from .base import BipolarBaseModel
from .config import Assignment, ExperimentConfig


class LockFile(BipolarBaseModel):
    """Snapshot of the config a build ran with, plus per-treatment progress.

    ``applied`` maps a treatment name to the shard ids it has been applied
    to, in application order. Lists only grow until a nuke replaces the
    whole lockfile.
    """

    assignment: Assignment
    base: str
    repo: str
    shard_count: int
    minmax: tuple[int, int]
    applied: dict[str, list[int]] = Field(default_factory=dict)

    @classmethod
    def from_config(cls, config: ExperimentConfig) -> LockFile:
        """Desired state for a config, with nothing applied yet."""
        return cls(
            assignment=config.assignment.model_copy(deep=True),
            base=config.base,
            repo=config.repo,
            shard_count=config.shard_count,
            minmax=config.minmax,
        )

    def applied_to(self, name: str) -> list[int]:
        """Shard ids already treated by ``name`` (created on first use)."""
        return self.applied.setdefault(name, [])

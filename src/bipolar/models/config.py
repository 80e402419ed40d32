# Copyright (c) Syntropy Systems
"""Pydantic models for the experiment configuration (bipolar.yaml)."""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import Field, model_validator
from typing_extensions import Self, TypeAlias, assert_never

from .base import BipolarBaseModel

MAX_SEED = 2**64 - 1


class BranchTreatment(BipolarBaseModel):
    """Merge a remote branch (refs/remotes/origin/<ref>) into the shard."""

    type: Literal["branch"] = "branch"
    name: str
    ref: str


class CommitTreatment(BipolarBaseModel):
    """Merge a specific commit into the shard."""

    type: Literal["commit"] = "commit"
    name: str
    ref: str


class PatchTreatment(BipolarBaseModel):
    """Apply a unified diff to the shard's working tree."""

    type: Literal["patch"] = "patch"
    name: str
    patch: str


Treatment: TypeAlias = Annotated[
    Union[BranchTreatment, CommitTreatment, PatchTreatment],
    Field(discriminator="type"),
]


def describe_treatment(treatment: Treatment) -> str:
    """Short human-readable description of what a treatment applies."""
    if isinstance(treatment, BranchTreatment):
        return f"branch origin/{treatment.ref}"
    if isinstance(treatment, CommitTreatment):
        return f"commit {treatment.ref}"
    if isinstance(treatment, PatchTreatment):
        return f"patch {treatment.patch}"
    assert_never(treatment)


class ProxyStrategy(BipolarBaseModel):
    """Identity ordering of the local shard range."""

    type: Literal["proxy"] = "proxy"


class RandomStrategy(BipolarBaseModel):
    """Seeded, reproducible shuffle of the full shard space."""

    type: Literal["random"] = "random"
    seed: int = Field(default=0, ge=0, le=MAX_SEED)


Strategy: TypeAlias = Annotated[
    Union[ProxyStrategy, RandomStrategy],
    Field(discriminator="type"),
]


class Assignment(BipolarBaseModel):
    """Per-treatment split percentages and the ordering strategy."""

    split: dict[str, Annotated[int, Field(ge=0, le=100)]] = Field(
        default_factory=dict
    )
    strategy: Strategy = Field(default_factory=RandomStrategy)


class Hooks(BipolarBaseModel):
    """Shell commands run at the various build/run stages."""

    control_build: Optional[str] = None
    build: Optional[str] = None
    run: Optional[str] = None


class Templating(BipolarBaseModel):
    """Template directory rendered into every shard."""

    path: str
    config: dict[str, str] = Field(default_factory=dict)


class Symlinks(BipolarBaseModel):
    """Paths linked from every shard into a shared source directory."""

    source: str
    paths: list[str] = Field(default_factory=list)


class ExperimentConfig(BipolarBaseModel):
    """Configuration for one experiment."""

    name: str
    repo: str
    base: str
    treatments: list[Treatment] = Field(default_factory=list)
    assignment: Assignment = Field(default_factory=Assignment)
    hooks: Hooks = Field(default_factory=Hooks)
    templating: Optional[Templating] = None
    symlinks: Optional[Symlinks] = None
    environment: dict[str, str] = Field(default_factory=dict)

    # Several hosts can share one experiment: every instance agrees on
    # shard_count but only materializes the shards in [min, max).
    shard_count: int = Field(default=1, ge=0)
    minmax: tuple[int, int] = (0, 0)

    @model_validator(mode="after")
    def _check_ranges(self) -> Self:
        lo, hi = self.minmax
        if not 0 <= lo <= hi <= self.shard_count:
            msg = (
                f"minmax {list(self.minmax)} must satisfy "
                f"0 <= min <= max <= shard_count ({self.shard_count})"
            )
            raise ValueError(msg)

        seen: set[str] = set()
        for treatment in self.treatments:
            if treatment.name in seen:
                msg = f"Duplicate treatment name: {treatment.name}"
                raise ValueError(msg)
            seen.add(treatment.name)
        return self

    @property
    def shard_ids(self) -> range:
        """Shard ids materialized by this instance."""
        return range(*self.minmax)

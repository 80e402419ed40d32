# Copyright (c) Syntropy Systems
"""Build orchestration: control clone, shards, treatments, per-shard setup."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from bipolar.assignment import treatment_plan
from bipolar.config import get_build_dir
from bipolar.fsutil import remove_tree, replace_symlink
from bipolar.hooks import hook_env, run_hook
from bipolar.lockfile import get_lockfile_path, persist_lockfile, resolve_lockfile
from bipolar.models.config import ExperimentConfig, Treatment
from bipolar.models.lockfile import LockFile
from bipolar.shards import ShardRegistry, clone_control, control_dir, ensure_shard
from bipolar.templating import render_templates, template_context
from bipolar.treatment import apply_treatment

logger = logging.getLogger(__name__)


@dataclass
class BuildReport:
    """What a build invocation did."""

    nuked: bool
    shards: list[int] = field(default_factory=list)
    newly_applied: dict[str, list[int]] = field(default_factory=dict)
    skipped_treatments: list[str] = field(default_factory=list)
    lockfile: LockFile | None = None


class Builder:
    """Runs one build of an experiment config.

    The lockfile on disk is only rewritten when every step succeeds, so a
    failed build resumes from the previous successful one.
    """

    config: ExperimentConfig
    root: Path
    build_dir: Path

    def __init__(self, config: ExperimentConfig, root: Path) -> None:
        self.config = config
        self.root = root
        self.build_dir = get_build_dir(root)

    @property
    def lockfile_path(self) -> Path:
        return get_lockfile_path(self.build_dir)

    @property
    def control_path(self) -> Path:
        return control_dir(self.build_dir)

    def build(self, nuclear: bool = False) -> BuildReport:
        """Bring the build directory up to date with the config."""
        desired = LockFile.from_config(self.config)
        lockfile, nuke = resolve_lockfile(self.lockfile_path, desired, nuclear)
        report = BuildReport(nuked=nuke, shards=list(self.config.shard_ids))

        if nuke:
            self.nuke()
        elif not self.control_path.exists():
            # Lockfile survived but the control clone did not.
            self.clone()

        with ShardRegistry() as registry:
            for shard_id in self.config.shard_ids:
                registry[shard_id] = ensure_shard(
                    self.control_path, self.build_dir, shard_id
                )

            for treatment in self.config.treatments:
                applied = self.apply(registry, treatment, lockfile)
                if applied is None:
                    report.skipped_treatments.append(treatment.name)
                else:
                    report.newly_applied[treatment.name] = applied

            for shard in registry.values():
                self.prepare_shard(shard.shard_id, shard.path)

        persist_lockfile(lockfile, self.lockfile_path)
        report.lockfile = lockfile
        return report

    def nuke(self) -> None:
        """Delete all build state and clone the control revision afresh."""
        logger.warning("Nuking build directory %s", self.build_dir)
        remove_tree(self.build_dir)
        self.clone()

    def clone(self) -> None:
        """Clone the control revision and run the control_build hook."""
        self.build_dir.mkdir(parents=True, exist_ok=True)
        _ = clone_control(self.config.repo, self.config.base, self.control_path)

        hook = self.config.hooks.control_build
        if hook:
            env = hook_env(None, self.config.shard_count, self.config.environment)
            run_hook("control_build", hook, self.control_path, env)

    def apply(
        self,
        registry: ShardRegistry,
        treatment: Treatment,
        lockfile: LockFile,
    ) -> list[int] | None:
        """Apply one treatment to the shards that are due for it.

        Returns the shard ids treated by this call, or None when the
        treatment has no split and was skipped.
        """
        config = self.config
        plan = treatment_plan(
            config.assignment, treatment.name, config.shard_count, config.minmax
        )
        if plan is None:
            logger.warning("No split for treatment %s, skipping", treatment.name)
            return None

        done = lockfile.applied_to(treatment.name)
        already = set(done)
        treated: list[int] = []
        # Resume after the prefix the previous builds consumed.
        for shard_id in plan[len(done):]:
            if shard_id not in registry:
                # Owned by another instance of the fleet; not recorded.
                logger.debug(
                    "Shard %d is outside %s, skipping %s",
                    shard_id, list(config.minmax), treatment.name,
                )
                continue
            if shard_id in already:
                continue

            logger.info("Applying treatment %s to shard %d", treatment.name, shard_id)
            apply_treatment(registry[shard_id], treatment, self.root)
            done.append(shard_id)
            already.add(shard_id)
            treated.append(shard_id)

        return treated

    def prepare_shard(self, shard_id: int, path: Path) -> None:
        """Build hook, templates and symlinks; re-run on every build."""
        config = self.config

        if config.hooks.build:
            env = hook_env(shard_id, config.shard_count, config.environment)
            run_hook("build", config.hooks.build, path, env)

        if config.templating is not None:
            context = template_context(
                shard_id, config.shard_count, config.templating.config
            )
            _ = render_templates(self.root / config.templating.path, path, context)

        if config.symlinks is not None:
            source = self.root / config.symlinks.source
            for rel in config.symlinks.paths:
                replace_symlink(path / rel, (source / rel).resolve())


def build(config: ExperimentConfig, root: Path, nuclear: bool = False) -> BuildReport:
    """Build ``config`` under ``root``/.bipolar."""
    return Builder(config, root).build(nuclear=nuclear)

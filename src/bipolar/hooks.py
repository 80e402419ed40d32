# Copyright (c) Syntropy Systems
"""Hook execution: shell commands run in the control clone or a shard."""
from __future__ import annotations

import logging
import os
import subprocess
from typing import TYPE_CHECKING

from bipolar.errors import HookError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def hook_env(
    shard_id: int | None,
    shard_count: int,
    extra: dict[str, str] | None = None,
) -> dict[str, str]:
    """Environment for a hook process: ours, the configured extras, and shard info."""
    env = os.environ.copy()
    if extra:
        env.update(extra)
    env["BIPOLAR_SHARD_COUNT"] = str(shard_count)
    if shard_id is not None:
        env["BIPOLAR_SHARD_ID"] = str(shard_id)
    return env


def run_hook(hook: str, command: str, cwd: Path, env: dict[str, str]) -> None:
    """Run a hook to completion; a non-zero exit raises HookError."""
    logger.info("Running %s hook in %s: %s", hook, cwd, command)
    result = subprocess.run(  # noqa: S602
        command,
        shell=True,
        cwd=str(cwd),
        env=env,
        check=False,
    )
    if result.returncode != 0:
        raise HookError(hook, command, str(cwd), result.returncode)

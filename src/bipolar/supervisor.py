# Copyright (c) Syntropy Systems
"""Run phase: one long-lived process per shard, killed together on cancel."""
from __future__ import annotations

import ctypes
import ctypes.util
import logging
import os
import signal
import subprocess
import sys
import time
from threading import Event
from typing import TYPE_CHECKING

from bipolar.errors import MissingHookError, ProcessError
from bipolar.hooks import hook_env
from bipolar.shards import shard_dir

if TYPE_CHECKING:
    from pathlib import Path
    from types import FrameType

    from bipolar.models.config import ExperimentConfig

logger = logging.getLogger(__name__)

# Gap between consecutive spawns, so shards don't race for ports at startup.
SPAWN_DELAY = 0.5
POLL_INTERVAL = 0.1

LOGS_DIR = "logs"

_PR_SET_PDEATHSIG = 1


def die_with_parent() -> None:
    """Have the kernel SIGKILL the calling process when its parent exits.

    Used as ``preexec_fn`` so a crashed supervisor leaves no shard
    processes behind. No-op outside Linux.
    """
    if not sys.platform.startswith("linux"):
        return
    try:
        libc = ctypes.CDLL(ctypes.util.find_library("c") or "libc.so.6", use_errno=True)
        _ = libc.prctl(_PR_SET_PDEATHSIG, int(signal.SIGKILL))
    except (AttributeError, OSError):
        return


class CancellationToken:
    """One-way flag set by a signal handler and polled by the supervisor."""

    def __init__(self) -> None:
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Block for up to ``timeout`` seconds; True once cancelled."""
        return self._event.wait(timeout=timeout)


def install_signal_handlers(token: CancellationToken) -> None:
    """Cancel ``token`` on SIGINT and SIGTERM."""

    def _handler(signum: int, frame: FrameType | None) -> None:
        _ = frame
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        token.cancel()

    _ = signal.signal(signal.SIGINT, _handler)
    _ = signal.signal(signal.SIGTERM, _handler)


class ShardProcess:
    """Run hook of one shard, started in a session of its own.

    stdout and stderr go to ``output_path``. The process group id equals
    the shell's pid, so :meth:`kill` also reaches whatever the hook forked.
    """

    shard_id: int
    command: str
    workdir: Path
    output_path: Path
    env: dict[str, str]
    started_at: float | None

    def __init__(
        self,
        shard_id: int,
        command: str,
        workdir: Path,
        output_path: Path,
        env: dict[str, str],
    ) -> None:
        self.shard_id = shard_id
        self.command = command
        self.workdir = workdir
        self.output_path = output_path
        self.env = env
        self.started_at = None
        self._popen: subprocess.Popen[bytes] | None = None
        self._returncode: int | None = None

    def start(self) -> None:
        """Spawn the hook and return immediately."""
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        # The child keeps its own copy of the descriptor.
        with self.output_path.open("wb") as log:
            try:
                self._popen = subprocess.Popen(  # noqa: S602
                    self.command,
                    shell=True,
                    cwd=str(self.workdir),
                    env=self.env,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                    preexec_fn=die_with_parent,  # noqa: PLW1509
                )
            except OSError as e:
                msg = f"Could not start run hook for shard {self.shard_id}: {e}"
                raise ProcessError(msg) from e

        self.started_at = time.monotonic()

    def poll(self) -> int | None:
        """Exit status once the process has finished, else None."""
        if self._popen is not None and self._returncode is None:
            self._returncode = self._popen.poll()
        return self._returncode

    def kill(self) -> int:
        """SIGKILL the process group and reap the shell.

        A process that already exited counts as killed; any other failure
        to deliver the signal raises ProcessError. Returns the exit status
        (``-9`` when killed here), or 0 if the process was never started.
        """
        if self._popen is None:
            return 0

        code = self.poll()
        if code is None:
            try:
                os.killpg(self._popen.pid, signal.SIGKILL)
            except ProcessLookupError:
                logger.debug("Shard %d exited before it was killed", self.shard_id)
            except OSError as e:
                msg = (
                    f"Could not kill run hook of shard {self.shard_id} "
                    f"(pid {self._popen.pid}): {e}"
                )
                raise ProcessError(msg) from e
            code = self._popen.wait()
            self._returncode = code
        return code

    @property
    def pid(self) -> int | None:
        return self._popen.pid if self._popen is not None else None

    @property
    def exit_code(self) -> int | None:
        return self._returncode

    @property
    def is_running(self) -> bool:
        return self._popen is not None and self.poll() is None


class Supervisor:
    """Starts every local shard's run hook and kills them all on cancel."""

    config: ExperimentConfig
    command: str
    build_dir: Path
    token: CancellationToken
    spawn_delay: float
    poll_interval: float
    processes: list[ShardProcess]

    def __init__(
        self,
        config: ExperimentConfig,
        build_dir: Path,
        token: CancellationToken | None = None,
        spawn_delay: float = SPAWN_DELAY,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        if not config.hooks.run:
            msg = "No run hook configured (hooks.run in bipolar.yaml)"
            raise MissingHookError(msg)

        self.config = config
        self.command = config.hooks.run
        self.build_dir = build_dir
        self.token = token or CancellationToken()
        self.spawn_delay = spawn_delay
        self.poll_interval = poll_interval
        self.processes = []

    def log_path(self, shard_id: int) -> Path:
        """Where a shard's run output is written."""
        return self.build_dir / LOGS_DIR / f"shard_{shard_id}.log"

    def start(self) -> list[ShardProcess]:
        """Spawn the run hook for each shard, ``spawn_delay`` apart.

        Stops early if the token is cancelled during startup.
        """
        for index, shard_id in enumerate(self.config.shard_ids):
            if index and self.token.wait(self.spawn_delay):
                logger.info("Cancelled during startup")
                break

            workdir = shard_dir(self.build_dir, shard_id)
            if not workdir.is_dir():
                msg = f"Shard {shard_id} has not been built ({workdir}); run 'bipolar build'"
                raise ProcessError(msg)

            process = ShardProcess(
                shard_id=shard_id,
                command=self.command,
                workdir=workdir,
                output_path=self.log_path(shard_id),
                env=hook_env(shard_id, self.config.shard_count, self.config.environment),
            )
            logger.info("Starting shard %d", shard_id)
            process.start()
            self.processes.append(process)

        return self.processes

    def wait(self) -> None:
        """Block until the token is cancelled."""
        while not self.token.wait(self.poll_interval):
            pass

    def shutdown(self) -> None:
        """Kill every spawned process."""
        logger.info("Killing %d shard process(es)", len(self.processes))
        for process in self.processes:
            exit_code = process.kill()
            logger.debug("Shard %d exited with %s", process.shard_id, exit_code)

    def run(self) -> None:
        """Start all shards, wait for cancellation, then kill them."""
        try:
            _ = self.start()
            self.wait()
        finally:
            self.shutdown()

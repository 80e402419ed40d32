# Copyright (c) Syntropy Systems
"""Filesystem helpers: recursive copy, symlinks, teardown."""
from __future__ import annotations

import logging
import os
import shutil
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def copy_tree(src: Path, dst: Path) -> None:
    """Recursively copy ``src`` to ``dst``, keeping symlinks as links."""
    logger.debug("Copying %s -> %s", src, dst)
    _ = shutil.copytree(src, dst, symlinks=True)


def remove_tree(path: Path) -> None:
    """Delete ``path`` and everything under it, if it exists."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


def replace_symlink(link: Path, target: Path) -> None:
    """Point ``link`` at ``target``, replacing whatever is at ``link``."""
    if link.is_symlink() or link.is_file():
        link.unlink()
    elif link.is_dir():
        shutil.rmtree(link)
    link.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(target, link, target_is_directory=target.is_dir())

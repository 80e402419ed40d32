# Copyright (c) Syntropy Systems
"""Render a directory of Jinja2 templates into a shard."""
from __future__ import annotations

import logging
import os
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from bipolar.errors import TemplateRenderError

logger = logging.getLogger(__name__)


def template_context(
    shard_id: int,
    shard_count: int,
    custom: dict[str, str],
) -> dict[str, object]:
    """Variables available to templates.

    Custom keys are exposed both at top level and under ``config``;
    ``shard_id`` and ``shard_count`` always win.
    """
    context: dict[str, object] = dict(custom)
    context["config"] = dict(custom)
    context["shard_id"] = shard_id
    context["shard_count"] = shard_count
    return context


def iter_templates(source: Path) -> list[str]:
    """Relative POSIX paths of every non-hidden file under ``source``."""
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(source):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        rel_dir = Path(dirpath).relative_to(source)
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            found.append((rel_dir / filename).as_posix())
    return found


def render_templates(source: Path, dest: Path, context: dict[str, object]) -> list[Path]:
    """Render every template under ``source`` to the same path under ``dest``.

    Returns the written paths.
    """
    if not source.is_dir():
        msg = f"Template directory not found: {source}"
        raise TemplateRenderError(msg)

    env = Environment(  # noqa: S701
        loader=FileSystemLoader(str(source)),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )

    written: list[Path] = []
    for name in iter_templates(source):
        target = dest / name
        try:
            rendered = env.get_template(name).render(context)
        except (TemplateError, UnicodeDecodeError) as e:
            msg = f"Failed to render template {name} into {dest}: {e}"
            raise TemplateRenderError(msg) from e

        target.parent.mkdir(parents=True, exist_ok=True)
        _ = target.write_text(rendered)
        written.append(target)

    logger.debug("Rendered %d template(s) into %s", len(written), dest)
    return written

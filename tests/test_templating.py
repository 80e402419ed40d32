# Copyright (c) Syntropy Systems
"""Tests for per-shard template rendering and filesystem helpers."""

import os
from pathlib import Path

import pytest

from bipolar.errors import HookError, TemplateRenderError
from bipolar.fsutil import copy_tree, remove_tree, replace_symlink
from bipolar.hooks import hook_env, run_hook
from bipolar.templating import iter_templates, render_templates, template_context


class TestTemplateContext:
    """Tests for the variables exposed to templates."""

    def test_context(self) -> None:
        context = template_context(3, 10, {"region": "eu"})
        assert context["shard_id"] == 3
        assert context["shard_count"] == 10
        assert context["region"] == "eu"
        assert context["config"] == {"region": "eu"}

    def test_builtins_win(self) -> None:
        """Custom keys cannot shadow the shard variables."""
        context = template_context(3, 10, {"shard_id": "x"})
        assert context["shard_id"] == 3
        assert context["config"] == {"shard_id": "x"}


class TestRenderTemplates:
    """Tests for rendering a template directory into a shard."""

    def test_render(self, temp_dir: Path) -> None:
        source = temp_dir / "templates"
        (source / "conf").mkdir(parents=True)
        _ = (source / "app.env").write_text("SHARD={{ shard_id }}/{{ shard_count }}\n")
        _ = (source / "conf" / "region.txt").write_text("{{ config.region }}-{{ region }}")
        _ = (source / ".hidden").write_text("{{ nope }}")
        dest = temp_dir / "shard_3"
        dest.mkdir()

        written = render_templates(source, dest, template_context(3, 10, {"region": "eu"}))

        assert written == [dest / "app.env", dest / "conf" / "region.txt"]
        assert (dest / "app.env").read_text() == "SHARD=3/10\n"
        assert (dest / "conf" / "region.txt").read_text() == "eu-eu"
        assert not (dest / ".hidden").exists()

    def test_iter_templates_skips_hidden(self, temp_dir: Path) -> None:
        (temp_dir / ".git").mkdir()
        _ = (temp_dir / ".git" / "config").write_text("")
        (temp_dir / "b").mkdir()
        _ = (temp_dir / "b" / "z.txt").write_text("")
        _ = (temp_dir / "a.txt").write_text("")

        assert iter_templates(temp_dir) == ["a.txt", "b/z.txt"]

    def test_undefined_variable(self, temp_dir: Path) -> None:
        source = temp_dir / "templates"
        source.mkdir()
        _ = (source / "bad.txt").write_text("{{ missing }}")

        with pytest.raises(TemplateRenderError, match="bad.txt"):
            _ = render_templates(source, temp_dir, template_context(0, 1, {}))

    def test_missing_directory(self, temp_dir: Path) -> None:
        with pytest.raises(TemplateRenderError, match="not found"):
            _ = render_templates(temp_dir / "nope", temp_dir, template_context(0, 1, {}))


class TestHooks:
    """Tests for synchronous hook execution."""

    def test_hook_env(self) -> None:
        env = hook_env(2, 8, {"PORT": "9000"})
        assert env["BIPOLAR_SHARD_ID"] == "2"
        assert env["BIPOLAR_SHARD_COUNT"] == "8"
        assert env["PORT"] == "9000"
        assert "BIPOLAR_SHARD_ID" not in os.environ

    def test_hook_env_control(self) -> None:
        env = hook_env(None, 8)
        assert "BIPOLAR_SHARD_ID" not in env
        assert env["BIPOLAR_SHARD_COUNT"] == "8"

    def test_run_hook(self, temp_dir: Path) -> None:
        run_hook("build", 'echo "$BIPOLAR_SHARD_ID" > out.txt', temp_dir, hook_env(5, 8))
        assert (temp_dir / "out.txt").read_text() == "5\n"

    def test_run_hook_failure(self, temp_dir: Path) -> None:
        with pytest.raises(HookError, match="exit code 3") as exc_info:
            run_hook("build", "exit 3", temp_dir, hook_env(0, 1))

        assert exc_info.value.hook == "build"
        assert exc_info.value.returncode == 3


class TestFsutil:
    """Tests for copy, symlink and teardown helpers."""

    def test_copy_tree_keeps_symlinks(self, temp_dir: Path) -> None:
        src = temp_dir / "src"
        src.mkdir()
        _ = (src / "file.txt").write_text("x")
        (src / "link").symlink_to("file.txt")

        copy_tree(src, temp_dir / "dst")

        assert (temp_dir / "dst" / "link").is_symlink()
        assert os.readlink(temp_dir / "dst" / "link") == "file.txt"

    def test_replace_symlink(self, temp_dir: Path) -> None:
        target = temp_dir / "shared"
        target.mkdir()
        link = temp_dir / "shard" / "node_modules"
        link.mkdir(parents=True)
        _ = (link / "stale").write_text("x")

        replace_symlink(link, target)
        replace_symlink(link, target)

        assert link.is_symlink()
        assert link.resolve() == target

    def test_remove_tree(self, temp_dir: Path) -> None:
        tree = temp_dir / "tree"
        (tree / "a").mkdir(parents=True)
        _ = (tree / "a" / "f").write_text("x")

        remove_tree(tree)
        remove_tree(tree)

        assert not tree.exists()

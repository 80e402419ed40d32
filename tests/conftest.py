# Copyright (c) Syntropy Systems
"""Pytest fixtures for bipolar tests."""

import os
import subprocess
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from bipolar.models.config import ExperimentConfig

# Store original cwd at module load time
_original_cwd = Path.cwd()

GIT_IDENTITY = [
    "-c", "user.name=Test User",
    "-c", "user.email=test@example.com",
    "-c", "commit.gpgsign=false",
    "-c", "init.defaultBranch=main",
]

APP_TXT = "line1\nline2\nline3\n"

GREETING_PATCH = """\
diff --git a/README b/README
--- a/README
+++ b/README
@@ -1 +1,2 @@
 hello
+patched
"""


def git(cwd: Path, *args: str) -> str:
    """Run git in ``cwd`` with a fixed identity and return stdout."""
    result = subprocess.run(
        ["git", *GIT_IDENTITY, *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def commit_all(repo: Path, message: str) -> str:
    """Stage everything in ``repo``, commit, and return the commit id."""
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()
        # Tests may chdir into the directory; leave it before it is deleted
        os.chdir(_original_cwd)


@pytest.fixture
def upstream(temp_dir: Path) -> Path:
    """Source repository with a few branches to use as treatments.

    - main: README, app.txt
    - feature: main + feature.txt
    - conflict: main with app.txt line2 -> "theirs"
    - control: main with app.txt line2 -> "ours"
    """
    repo = temp_dir / "upstream"
    repo.mkdir()
    git(repo, "init", "-q")

    (repo / "README").write_text("hello\n")
    (repo / "app.txt").write_text(APP_TXT)
    _ = commit_all(repo, "base")

    git(repo, "checkout", "-q", "-b", "feature")
    (repo / "feature.txt").write_text("feature\n")
    _ = commit_all(repo, "add feature")

    git(repo, "checkout", "-q", "-b", "conflict", "main")
    (repo / "app.txt").write_text("line1\ntheirs\nline3\n")
    _ = commit_all(repo, "theirs change")

    git(repo, "checkout", "-q", "-b", "control", "main")
    (repo / "app.txt").write_text("line1\nours\nline3\n")
    _ = commit_all(repo, "ours change")

    git(repo, "checkout", "-q", "main")
    return repo


@pytest.fixture
def project(temp_dir: Path) -> Generator[Path, None, None]:
    """Empty project root (cwd for the duration of the test)."""
    root = temp_dir / "project"
    root.mkdir()
    (root / "patches").mkdir()
    (root / "patches" / "greeting.patch").write_text(GREETING_PATCH)

    os.chdir(root)
    yield root

    # Always return to original cwd
    os.chdir(_original_cwd)


@pytest.fixture
def make_config(upstream: Path):
    """Factory for experiment configs pointing at the upstream fixture."""

    def _make(**overrides) -> ExperimentConfig:
        data = {
            "name": "test-experiment",
            "repo": str(upstream),
            "base": "main",
            "shard_count": 10,
            "minmax": (0, 10),
            "treatments": [
                {"type": "patch", "name": "A", "patch": "patches/greeting.patch"},
            ],
            "assignment": {
                "strategy": {"type": "random", "seed": 42},
                "split": {"A": 50},
            },
        }
        data.update(overrides)
        return ExperimentConfig.model_validate(data)

    return _make

# Copyright (c) Syntropy Systems
"""Configuration management for bipolar."""
from __future__ import annotations

from pathlib import Path
from typing import cast

import yaml
from pydantic import ValidationError

from bipolar.errors import ConfigError
from bipolar.git import GitRepo
from bipolar.models.config import ExperimentConfig

CONFIG_FILE = "bipolar.yaml"
BUILD_DIR = ".bipolar"


def find_project_root(start_path: Path | None = None) -> Path | None:
    """Find the nearest directory holding a bipolar.yaml, walking up.

    Returns None if no config file is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        if (current / CONFIG_FILE).is_file():
            return current
        current = current.parent

    # Check root
    if (current / CONFIG_FILE).is_file():
        return current

    return None


def require_project_root() -> Path:
    """Get the project root or raise an error if not found."""
    root = find_project_root()
    if root is None:
        msg = f"No {CONFIG_FILE} found. Run 'bipolar init' first."
        raise ConfigError(msg)
    return root


def get_config_path(root: Path) -> Path:
    """Get the path to the experiment config."""
    return root / CONFIG_FILE


def get_build_dir(root: Path) -> Path:
    """Get the build state directory (.bipolar)."""
    return root / BUILD_DIR


def load_config(root: Path) -> ExperimentConfig:
    """Load and validate bipolar.yaml from the project root."""
    config_path = get_config_path(root)
    if not config_path.exists():
        msg = f"Config file not found: {config_path}"
        raise ConfigError(msg)

    try:
        with config_path.open() as f:
            data = cast("dict[str, object]", yaml.safe_load(f) or {})
    except yaml.YAMLError as e:
        msg = f"Could not parse {config_path}: {e}"
        raise ConfigError(msg) from e

    try:
        return ExperimentConfig.model_validate(data)
    except ValidationError as e:
        msg = f"Invalid config {config_path}:\n{e}"
        raise ConfigError(msg) from e


def save_config(config: ExperimentConfig, root: Path) -> Path:
    """Write the config to bipolar.yaml and return its path."""
    config_path = get_config_path(root)
    data = config.model_dump(mode="json")
    with config_path.open("w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    return config_path


def default_config(repo: GitRepo, name: str | None = None) -> ExperimentConfig:
    """Config for the repository at ``repo``: its origin URL at its HEAD commit."""
    url = repo.remote_url("origin")
    if url is None:
        msg = f"Repository {repo.path} has no 'origin' remote"
        raise ConfigError(msg)

    repo_name = url.rstrip("/").split("/")[-1]
    if repo_name.endswith(".git"):
        repo_name = repo_name[: -len(".git")]

    return ExperimentConfig(
        name=name or repo_name or "experiment",
        repo=url,
        base=repo.head(),
    )

"""
bipolar - A/B experiments over a git codebase.

Clone a control revision into shards, merge or patch treatments into a
deterministic subset of them, run every shard side by side.
"""

from bipolar.build import BuildReport, build
from bipolar.supervisor import CancellationToken, Supervisor

__version__ = "0.1.0"
__all__ = ["BuildReport", "CancellationToken", "Supervisor", "build", "__version__"]

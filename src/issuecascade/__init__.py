"""issuecascade - bulk field updates for GitHub Projects (v2).

High-level public API:

from issuecascade import MoveCommand, MoveOptions, GitHubProjectsClient, load_config

cfg = load_config('.issuecascade.yml')
client = GitHubProjectsClient(token=...)
MoveCommand(cfg, client).run(MoveOptions(issues=['42'], status='in_progress', yes=True))

The CLI (``issuecascade move``) is a thin layer over this library.
"""

from __future__ import annotations

from .config import CascadeConfig, load_config
from .github_client import GitHubProjectsClient, TrackerClient
from .move import MoveCommand, MoveOptions, MoveResult

__version__ = "0.1.0"

__all__ = [
    "CascadeConfig",
    "GitHubProjectsClient",
    "MoveCommand",
    "MoveOptions",
    "MoveResult",
    "TrackerClient",
    "__version__",
    "load_config",
]

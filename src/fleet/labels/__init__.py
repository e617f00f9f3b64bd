"""Ticket store collaborators.

The engine depends on the LabelStore, IssueRepository and QaInspector
protocols; BeadsClient implements them on top of the `bd` CLI.
"""

from src.fleet.labels.beads import BeadsClient, BeadsCommandError
from src.fleet.labels.store import (
    Cache,
    CollaboratorError,
    IssueRepository,
    LabelStore,
    QaInspector,
    resolve_epic_repo,
)

__all__ = [
    "BeadsClient",
    "BeadsCommandError",
    "Cache",
    "CollaboratorError",
    "IssueRepository",
    "LabelStore",
    "QaInspector",
    "resolve_epic_repo",
]

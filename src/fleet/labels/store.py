"""Collaborator protocols for the ticket store.

The orchestration engine never talks to the ticket backend directly. It
depends on these protocols, which the beads CLI adapter in beads.py (or a
test double) implements.
"""

from typing import List, Optional, Protocol, Sequence, runtime_checkable


class CollaboratorError(Exception):
    """Raised when the ticket store fails to serve a request.

    Attributes:
        operation: Name of the failed operation (e.g., "add_labels").
        message: Human-readable error message.
    """

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(message)


@runtime_checkable
class LabelStore(Protocol):
    """Label and status mutations on an epic."""

    async def add_labels(
        self, epic_id: str, labels: Sequence[str], repo_path: str
    ) -> None:
        ...

    async def remove_labels(
        self, epic_id: str, labels: Sequence[str], repo_path: str
    ) -> None:
        ...

    async def remove_all_pipeline_labels(
        self, epic_id: str, current_labels: Sequence[str], repo_path: str
    ) -> None:
        ...

    async def close_epic(self, epic_id: str, reason: str, repo_path: str) -> None:
        ...

    async def update_status(self, epic_id: str, status: str, repo_path: str) -> None:
        ...


@runtime_checkable
class IssueRepository(Protocol):
    """Read-side lookups for epics."""

    async def resolve_repo_path(self, epic_id: str) -> Optional[str]:
        """Return the repository that owns the epic, or None if unknown."""
        ...

    async def get_labels(self, epic_id: str, repo_path: str) -> List[str]:
        ...


@runtime_checkable
class QaInspector(Protocol):
    """Queries backing the QA branch of the transition resolver."""

    async def count_open_bugs(self, repo_path: str) -> int:
        """Count open bug-typed issues filed in the app repository."""
        ...

    async def current_qa_round(self, epic_id: str, repo_path: str) -> Optional[int]:
        """Return the epic's current `qa:round-<N>` number, if any."""
        ...


@runtime_checkable
class Cache(Protocol):
    def invalidate_all(self) -> None:
        ...


async def resolve_epic_repo(
    issues: IssueRepository, epic_id: str, fallback_repo_path: str
) -> str:
    """Return the repository holding the epic's labels.

    Falls back to the given path (the factory repository) when the
    issue repository does not know the epic.

    Raises:
        CollaboratorError: If the lookup itself fails.
    """
    repo_path = await issues.resolve_repo_path(epic_id)
    return repo_path or fallback_repo_path

"""Beads CLI adapter for label, status and issue interactions.

This module wraps the `bd` command-line tool for:
- Adding and removing labels on an epic
- Updating status and closing epics
- Reading an epic's labels and locating the repository that owns it
- Counting open bug issues filed by the QA agent

Every call runs `bd` as an async subprocess with an argument vector (no
shell) inside the target repository. Reads go through an optional TTL
cache which the orchestrator invalidates after each mutating action.
"""

import asyncio
import json
import logging
from typing import Any, List, Optional, Sequence

from src.fleet.cache import TTLCache
from src.fleet.labels.store import CollaboratorError
from src.fleet.state.models import current_qa_round, pipeline_labels


logger = logging.getLogger(__name__)


class BeadsCommandError(CollaboratorError):
    """Raised when a `bd` invocation fails.

    Attributes:
        args_list: The arguments passed to `bd`.
        returncode: Process exit code (-1 for timeouts and OS errors).
        stderr: Captured standard error.
    """

    def __init__(
        self,
        operation: str,
        args_list: Sequence[str],
        returncode: int,
        stderr: str,
    ):
        self.args_list = list(args_list)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(operation, f"bd {' '.join(args_list)} failed: {detail}")


class BeadsClient:
    """Async client for the beads issue tracker CLI.

    Implements the LabelStore, IssueRepository and QaInspector protocols.

    Attributes:
        bd_path: Path to the `bd` executable.
        repo_paths: Repositories searched when resolving an epic's owner.
        timeout: Per-command timeout in seconds.

    Example:
        >>> client = BeadsClient("bd", ["/srv/factory"])
        >>> await client.add_labels("fac-12", ["pipeline:research"], "/srv/factory")
    """

    def __init__(
        self,
        bd_path: str,
        repo_paths: Sequence[str],
        timeout: float = 30.0,
        cache: Optional[TTLCache] = None,
    ):
        self.bd_path = bd_path
        self.repo_paths = list(repo_paths)
        self.timeout = timeout
        self._cache = cache

    async def _run(self, operation: str, args: Sequence[str], cwd: str) -> str:
        """Run `bd` with the given arguments and return its stdout.

        Raises:
            BeadsCommandError: On non-zero exit, timeout or OS error.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.bd_path,
                *args,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise BeadsCommandError(operation, args, -1, str(exc)) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            raise BeadsCommandError(
                operation, args, -1, f"timed out after {self.timeout}s"
            ) from exc

        if process.returncode != 0:
            error_text = stderr.decode("utf-8", errors="replace")
            logger.error(
                "bd command failed",
                extra={
                    "operation": operation,
                    "returncode": process.returncode,
                    "stderr": error_text[:500],
                    "cwd": cwd,
                },
            )
            raise BeadsCommandError(operation, args, process.returncode, error_text)

        return stdout.decode("utf-8", errors="replace")

    # ------------------------------------------------------------------
    # LabelStore
    # ------------------------------------------------------------------

    async def add_labels(
        self, epic_id: str, labels: Sequence[str], repo_path: str
    ) -> None:
        for label in labels:
            await self._run("add_labels", ["label", "add", epic_id, label], repo_path)
        if labels:
            logger.info(
                "Labels added to epic",
                extra={"epic_id": epic_id, "labels": list(labels)},
            )

    async def remove_labels(
        self, epic_id: str, labels: Sequence[str], repo_path: str
    ) -> None:
        for label in labels:
            await self._run(
                "remove_labels", ["label", "remove", epic_id, label], repo_path
            )
        if labels:
            logger.info(
                "Labels removed from epic",
                extra={"epic_id": epic_id, "labels": list(labels)},
            )

    async def remove_all_pipeline_labels(
        self, epic_id: str, current_labels: Sequence[str], repo_path: str
    ) -> None:
        await self.remove_labels(epic_id, pipeline_labels(current_labels), repo_path)

    async def close_epic(self, epic_id: str, reason: str, repo_path: str) -> None:
        await self._run("close_epic", ["close", epic_id, "--reason", reason], repo_path)
        logger.info("Epic closed", extra={"epic_id": epic_id, "reason": reason})

    async def update_status(self, epic_id: str, status: str, repo_path: str) -> None:
        await self._run(
            "update_status", ["update", epic_id, "--status", status], repo_path
        )

    # ------------------------------------------------------------------
    # IssueRepository
    # ------------------------------------------------------------------

    async def get_labels(self, epic_id: str, repo_path: str) -> List[str]:
        cache_key = f"labels:{repo_path}:{epic_id}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return list(cached)

        output = await self._run("get_labels", ["show", epic_id, "--json"], repo_path)
        issue = self._first_issue(self._parse_json("get_labels", output))
        labels = [
            label for label in issue.get("labels") or [] if isinstance(label, str)
        ]
        self._cache_set(cache_key, labels)
        return labels

    async def resolve_repo_path(self, epic_id: str) -> Optional[str]:
        cache_key = f"repo:{epic_id}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached

        for repo_path in self.repo_paths:
            try:
                await self._run("resolve_repo_path", ["show", epic_id, "--json"], repo_path)
            except BeadsCommandError:
                continue
            self._cache_set(cache_key, repo_path)
            return repo_path

        logger.warning(
            "Epic not found in any configured repository",
            extra={"epic_id": epic_id, "repo_count": len(self.repo_paths)},
        )
        return None

    # ------------------------------------------------------------------
    # QaInspector
    # ------------------------------------------------------------------

    async def count_open_bugs(self, repo_path: str) -> int:
        output = await self._run(
            "count_open_bugs",
            ["list", "--status=open", "--type=bug", "--json"],
            repo_path,
        )
        issues = self._parse_json("count_open_bugs", output)
        return len(issues) if isinstance(issues, list) else 0

    async def current_qa_round(self, epic_id: str, repo_path: str) -> Optional[int]:
        return current_qa_round(await self.get_labels(epic_id, repo_path))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _parse_json(self, operation: str, output: str) -> Any:
        if not output.strip():
            return []
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise CollaboratorError(
                operation, f"bd returned invalid JSON: {exc}"
            ) from exc

    def _first_issue(self, data: Any) -> dict:
        if isinstance(data, list):
            data = data[0] if data else {}
        return data if isinstance(data, dict) else {}

    def _cache_get(self, key: str) -> Optional[Any]:
        return self._cache.get(key) if self._cache is not None else None

    def _cache_set(self, key: str, value: Any) -> None:
        if self._cache is not None:
            self._cache.set(key, value)

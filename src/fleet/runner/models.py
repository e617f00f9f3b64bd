"""Agent runner data models.

This module defines:
- LaunchSpec: What to run and where
- AgentSession: Value record of the single running agent
- AgentStatus / StopResult: Results of status and stop calls
- AlreadyRunningError: Raised when the worker slot is occupied
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AlreadyRunningError(Exception):
    """Raised when launching while another agent holds the worker slot.

    Attributes:
        pid: Process id of the running agent.
        repo_name: Repository the running agent works in.
    """

    def __init__(self, pid: int, repo_name: str):
        self.pid = pid
        self.repo_name = repo_name
        super().__init__(
            f"Agent already running (PID {pid}) in {repo_name}. Stop it first."
        )


class LaunchSpec(BaseModel):
    """Launch request for the agent process manager.

    Unset model, max_turns and allowed_tools fall back to the manager's
    configured defaults. epic_id and pipeline_stage are set only for
    pipeline launches; ad hoc launches leave them empty.
    """

    model_config = ConfigDict(populate_by_name=True)

    repo_path: str = Field(..., min_length=1, alias="repoPath")
    prompt: str = Field(..., min_length=1)
    repo_name: Optional[str] = Field(default=None, alias="repoName")
    model: Optional[str] = None
    max_turns: Optional[int] = Field(default=None, gt=0, alias="maxTurns")
    allowed_tools: Optional[str] = Field(default=None, alias="allowedTools")
    epic_id: Optional[str] = Field(default=None, alias="epicId")
    pipeline_stage: Optional[str] = Field(default=None, alias="pipelineStage")


class AgentSession(BaseModel):
    """The single running agent.

    Sessions are immutable values; the manager hands out copies and keeps
    the only registered reference in its slot.
    """

    model_config = ConfigDict(frozen=True)

    pid: int
    repo_path: str
    repo_name: str
    prompt: str
    model: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    log_file: str
    epic_id: Optional[str] = None
    pipeline_stage: Optional[str] = None

    @property
    def is_pipeline_session(self) -> bool:
        return bool(self.epic_id and self.pipeline_stage)

    def to_response(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys the fleet board reads."""
        body: Dict[str, Any] = {
            "pid": self.pid,
            "repoPath": self.repo_path,
            "repoName": self.repo_name,
            "prompt": self.prompt,
            "model": self.model,
            "startedAt": self.started_at.isoformat(),
            "logFile": self.log_file,
        }
        if self.epic_id is not None:
            body["epicId"] = self.epic_id
        if self.pipeline_stage is not None:
            body["pipelineStage"] = self.pipeline_stage
        return body


class AgentStatus(BaseModel):
    running: bool
    session: Optional[AgentSession] = None
    recent_log: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "running": self.running,
            "session": self.session.to_response() if self.session else None,
        }
        if self.recent_log is not None:
            body["recentLog"] = self.recent_log
        return body


class StopResult(BaseModel):
    stopped: bool
    pid: Optional[int] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"stopped": self.stopped}
        if self.pid is not None:
            body["pid"] = self.pid
        return body

"""Agent process runner.

This module manages the single fleet agent:
- Launch of the claude CLI in its own process group
- stream-json event parsing into a readable transcript
- Exit handling guarded by the registered pid
- Status with transcript tail, and process group termination
"""

from src.fleet.runner.agent import AgentProcessManager, AgentSlot, ExitHook
from src.fleet.runner.formatting import format_agent_event, parse_event_line
from src.fleet.runner.models import (
    AgentSession,
    AgentStatus,
    AlreadyRunningError,
    LaunchSpec,
    StopResult,
)

__all__ = [
    # Models
    "AgentSession",
    "AgentStatus",
    "AlreadyRunningError",
    "LaunchSpec",
    "StopResult",
    # Manager
    "AgentProcessManager",
    "AgentSlot",
    "ExitHook",
    # Formatting
    "format_agent_event",
    "parse_event_line",
]

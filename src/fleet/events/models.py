"""Pipeline event models for observability.

This module defines the data models for fleet pipeline events, including:
- EventType: Enum of all event types emitted by the orchestrator
- PipelineEvent: Structured event with the epic, repository and details

Events are emitted for monitoring, alerting, and debugging purposes.
They are the only record of background work (exit transitions and
chained actions) that has no HTTP caller to report to.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the fleet pipeline.

    Event Categories:
        ACTION_EXECUTED: A board action applied its label mutations.
        AGENT_LAUNCHED: A worker was started for an epic.
        AGENT_EXITED: A pipeline worker exited and its exit was handled.
        STATE_TRANSITION: An epic's `pipeline:*` label moved on.
        CHAIN_ACTION: An exit transition invoked a follow-up action.
        NEEDS_REVIEW: The QA loop hit its round limit.
        ERROR: Background work failed (labels, chain, bug query).
    """

    ACTION_EXECUTED = "action_executed"
    AGENT_LAUNCHED = "agent_launched"
    AGENT_EXITED = "agent_exited"
    STATE_TRANSITION = "state_transition"
    CHAIN_ACTION = "chain_action"
    NEEDS_REVIEW = "needs_review"
    ERROR = "error"


class PipelineEvent(BaseModel):
    """Structured event emitted by the fleet pipeline.

    Attributes:
        event_type: The category of event.
        epic_id: The epic the event concerns.
        repository: Repository name or path the work ran against.
        timestamp: When the event occurred (UTC timezone).
        details: Additional context specific to the event type.

    Details Field Conventions:
        For ACTION_EXECUTED events:
            - action: Action id
            - launched: Whether an agent was started
        For AGENT_LAUNCHED / AGENT_EXITED events:
            - stage: Agent stage
            - pid: Worker process id
            - exit_code: Exit code (AGENT_EXITED only)
            - duration_seconds: Run time (AGENT_EXITED only)
        For STATE_TRANSITION events:
            - from_stage / to_stage: Stage names
        For CHAIN_ACTION events:
            - action: The chained action id
            - from_stage: Stage whose exit triggered it
        For NEEDS_REVIEW events:
            - qa_round / bug_count
        For ERROR events:
            - operation: What failed
            - error_message / error_type
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    epic_id: str = Field(
        ...,
        min_length=1,
        description="Epic identifier the event concerns",
    )

    repository: str = Field(
        default="",
        description="Repository name or path the work ran against",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert event to a flat dictionary for structured logging.

        Example:
            >>> event = PipelineEvent(
            ...     event_type=EventType.ERROR,
            ...     epic_id="fac-3",
            ...     details={"error_message": "bd timed out"},
            ... )
            >>> event.to_log_dict()["event_type"]
            'error'
        """
        return {
            "event_type": self.event_type.value,
            "epic_id": self.epic_id,
            "repository": self.repository,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }

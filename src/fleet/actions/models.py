"""Pipeline action models.

This module defines the data models for fleet board actions:
- ActionId: Closed enumeration of every action the pipeline accepts
- TargetRepo: Where an action's agent runs (factory or per-app repo)
- AgentTemplate: Launch recipe for an action's agent
- PipelineAction: Immutable label-mutation recipe for an action
- ActionRequest: Validated inbound action request
- ActionResult: Outcome returned to the caller

The models use Pydantic for request validation, consistent with the
settings in config.py, and frozen dataclasses for the static recipes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from src.fleet.runner.models import AgentSession
from src.fleet.state.models import AgentStage


class ActionId(str, Enum):
    """Every action accepted by the fleet action endpoint.

    QA_FIX_AND_RETEST is internal: it is only invoked by the transition
    resolver after a QA round files bugs, never by a board button.
    """

    START_RESEARCH = "start-research"
    MORE_RESEARCH = "more-research"
    DEPRIORITISE = "deprioritise"
    SEND_FOR_DEVELOPMENT = "send-for-development"
    GENERATE_PLAN = "generate-plan"
    APPROVE_PLAN = "approve-plan"
    APPROVE_AND_BUILD = "approve-and-build"
    REVISE_PLAN = "revise-plan"
    SKIP_TO_PLAN = "skip-to-plan"
    REVISE_PLAN_FROM_LAUNCH = "revise-plan-from-launch"
    APPROVE_SUBMISSION = "approve-submission"
    SEND_BACK_TO_DEV = "send-back-to-dev"
    SEND_FOR_QA = "send-for-qa"
    QA_FIX_AND_RETEST = "qa-fix-and-retest"
    MARK_AS_LIVE = "mark-as-live"
    STOP_AGENT = "stop-agent"


class TargetRepo(str, Enum):
    """Repository an action operates in.

    FACTORY: the shared factory repository.
    APP: the per-app repository named by the app name resolver.
    NONE: no working directory (stop-agent).
    """

    FACTORY = "factory"
    APP = "app"
    NONE = "none"


class EpicStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


@dataclass(frozen=True)
class AgentTemplate:
    """Launch recipe for the agent an action starts.

    The prompt is a str.format template receiving title, epic_id,
    app_name, factory_path and feedback. feedback_suffix, when set, is
    formatted with the request feedback and substituted for {feedback};
    otherwise {feedback} becomes an empty string.

    Attributes:
        stage: Pipeline stage recorded on the session.
        prompt: Prompt template.
        model: Worker model identifier.
        max_turns: Worker turn budget.
        allowed_tools: Comma-separated capability list.
        target_repo: Repository the worker runs in.
        feedback_suffix: Optional template wrapping user feedback.
    """

    stage: AgentStage
    prompt: str
    model: str
    max_turns: int
    allowed_tools: str
    target_repo: TargetRepo
    feedback_suffix: Optional[str] = None

    def render_prompt(
        self,
        title: str,
        epic_id: str,
        app_name: str,
        factory_path: str,
        feedback: Optional[str] = None,
    ) -> str:
        """Fill the prompt template for one epic.

        Feedback is only included when the template defines a suffix for
        it and the feedback is non-blank.
        """
        feedback_text = ""
        if self.feedback_suffix and feedback and feedback.strip():
            feedback_text = self.feedback_suffix.format(feedback=feedback.strip())
        return self.prompt.format(
            title=title,
            epic_id=epic_id,
            app_name=app_name,
            factory_path=factory_path,
            feedback=feedback_text,
        )


@dataclass(frozen=True)
class PipelineAction:
    """Immutable label-mutation recipe for one action.

    Removals are always applied before additions. Dynamic removals are
    declared by flag and expanded against the epic's current labels.

    Attributes:
        action_id: The action this recipe belongs to.
        target_repo: Repository the label mutations and agent target.
        labels_to_remove: Fixed labels removed first.
        labels_to_add: Fixed labels added after removals.
        agent: Launch recipe, or None for label-only actions.
        status_update: Epic status set after the label mutations.
        remove_all_pipeline_labels: Strip every `pipeline:*` label.
        remove_submission_labels: Strip `pipeline:submitted` and
            every `submission:*` label.
        advance_qa_round: Replace `qa:round-*` labels with the next round.
        close_epic: Close the epic with the feedback or default reason.
        stops_agent: Stop the running agent after the label mutations.
        internal: Invoked only by chain transitions.
    """

    action_id: ActionId
    target_repo: TargetRepo
    labels_to_remove: Tuple[str, ...] = ()
    labels_to_add: Tuple[str, ...] = ()
    agent: Optional[AgentTemplate] = None
    status_update: Optional[EpicStatus] = None
    remove_all_pipeline_labels: bool = False
    remove_submission_labels: bool = False
    advance_qa_round: bool = False
    close_epic: bool = False
    stops_agent: bool = False
    internal: bool = False

    @property
    def launches_agent(self) -> bool:
        return self.agent is not None


class ActionRequest(BaseModel):
    """Validated fleet action request.

    Field aliases match the JSON body sent by the fleet board.
    """

    model_config = ConfigDict(populate_by_name=True)

    epic_id: str = Field(..., min_length=1, alias="epicId")
    epic_title: str = Field(..., min_length=1, alias="epicTitle")
    action: ActionId
    feedback: Optional[str] = None
    current_labels: Optional[List[str]] = Field(default=None, alias="currentLabels")

    @property
    def feedback_text(self) -> Optional[str]:
        """Feedback with surrounding whitespace removed, or None if blank."""
        if self.feedback is None or not self.feedback.strip():
            return None
        return self.feedback.strip()


@dataclass
class ActionResult:
    """Outcome of a successfully executed action.

    Attributes:
        action: The executed action.
        epic_id: The epic the action ran against.
        session: The launched agent session, if any.
        stopped: For stop-agent, whether a running agent was signalled.
        pid: For stop-agent, the signalled process id.
    """

    action: ActionId
    epic_id: str
    session: Optional[AgentSession] = None
    stopped: Optional[bool] = None
    pid: Optional[int] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": True,
            "action": self.action.value,
            "epicId": self.epic_id,
        }
        if self.session is not None:
            body["session"] = self.session.to_response()
        if self.stopped is not None:
            body["stopped"] = self.stopped
        if self.pid is not None:
            body["pid"] = self.pid
        return body

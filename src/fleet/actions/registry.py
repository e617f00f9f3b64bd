"""Static action table for the fleet board.

Every ActionId maps to one immutable PipelineAction recipe: which labels
to remove and add, whether an agent is launched and with what prompt,
model and budget. The table is checked for completeness at import time,
so adding an ActionId without a row fails fast.
"""

from typing import Dict, Union

from src.fleet.actions.models import (
    ActionId,
    AgentTemplate,
    EpicStatus,
    PipelineAction,
    TargetRepo,
)
from src.fleet.state.models import (
    AGENT_RUNNING,
    PLAN_APPROVED,
    PLAN_PENDING,
    AgentStage,
    PipelineStage,
)


class UnknownActionError(Exception):
    """Raised when a request names an action outside the closed set.

    Attributes:
        action: The rejected action value.
    """

    def __init__(self, action: object):
        self.action = action
        super().__init__(f"Invalid action: {action}")


# Legacy button names still sent by older boards
ACTION_ALIASES: Dict[str, str] = {
    "send-to-development": ActionId.SEND_FOR_DEVELOPMENT.value,
    "send-back-to-development": ActionId.SEND_BACK_TO_DEV.value,
}

RESEARCH_TOOLS = "Bash,Read,Write,Edit,Glob,Grep,Task,WebSearch"
BUILD_TOOLS = "Bash,Read,Write,Edit,Glob,Grep,Task"
SUBMISSION_TOOLS = "Bash,Read,Write,Edit,Glob,Grep"

_RESEARCH_REPORT = "Research report is at {factory_path}/apps/{app_name}/research/report.md."
_FACTORY_WORKFLOW = "Follow the {workflow} workflow instructions in {{factory_path}}/CLAUDE.md."


def _workflow(name: str) -> str:
    return _FACTORY_WORKFLOW.format(workflow=name)


# -----------------------------------------------------------------------------
# Agent templates
# -----------------------------------------------------------------------------

_RESEARCH = AgentTemplate(
    stage=AgentStage.RESEARCH,
    prompt=(
        'Research the app idea "{title}" (epic: {epic_id}). '
        "Follow the research workflow instructions in CLAUDE.md."
    ),
    model="opus",
    max_turns=200,
    allowed_tools=RESEARCH_TOOLS,
    target_repo=TargetRepo.FACTORY,
)

_MORE_RESEARCH = AgentTemplate(
    stage=AgentStage.RESEARCH,
    prompt=(
        'Research the app idea "{title}" (epic: {epic_id}). '
        "Previous research exists at apps/{app_name}/research/report.md.{feedback} "
        "Follow the research workflow instructions in CLAUDE.md."
    ),
    model="opus",
    max_turns=200,
    allowed_tools=RESEARCH_TOOLS,
    target_repo=TargetRepo.FACTORY,
    feedback_suffix=' Feedback: "{feedback}". Revise and extend the research.',
)

_DEVELOP = AgentTemplate(
    stage=AgentStage.DEVELOPMENT,
    prompt=(
        'Develop the app "{title}" (epic: {epic_id}). '
        + _workflow("development") + " " + _RESEARCH_REPORT + "{feedback}"
    ),
    model="opus",
    max_turns=500,
    allowed_tools=BUILD_TOOLS,
    target_repo=TargetRepo.APP,
    feedback_suffix=' Feedback on the current build: "{feedback}". Address these issues.',
)

_PLAN = AgentTemplate(
    stage=AgentStage.PLANNING,
    prompt=(
        'Plan the app "{title}" (epic: {epic_id}). '
        + _workflow("planning") + " " + _RESEARCH_REPORT
    ),
    model="opus",
    max_turns=200,
    allowed_tools=BUILD_TOOLS,
    target_repo=TargetRepo.APP,
)

_PLAN_WITHOUT_RESEARCH = AgentTemplate(
    stage=AgentStage.PLANNING,
    prompt=(
        'Plan the app "{title}" (epic: {epic_id}). '
        "There is no research report, use the epic description as the specification. "
        + _workflow("planning")
    ),
    model="opus",
    max_turns=200,
    allowed_tools=BUILD_TOOLS,
    target_repo=TargetRepo.APP,
)

_REVISE_PLAN = AgentTemplate(
    stage=AgentStage.PLANNING,
    prompt=(
        'Revise the plan for "{title}" (epic: {epic_id}).{feedback} '
        "Review the existing plan and beads in the app repo and revise the plan. "
        + _workflow("planning") + " " + _RESEARCH_REPORT
    ),
    model="opus",
    max_turns=200,
    allowed_tools=BUILD_TOOLS,
    target_repo=TargetRepo.APP,
    feedback_suffix=' Feedback: "{feedback}".',
)

_REVISE_PLAN_FROM_LAUNCH = AgentTemplate(
    stage=AgentStage.PLANNING,
    prompt=(
        'Revise the plan for "{title}" (epic: {epic_id}).{feedback} '
        "Review existing beads in the app repo and revise the plan. "
        + _workflow("planning")
    ),
    model="opus",
    max_turns=200,
    allowed_tools=BUILD_TOOLS,
    target_repo=TargetRepo.APP,
    feedback_suffix=' Feedback: "{feedback}".',
)

_SUBMISSION = AgentTemplate(
    stage=AgentStage.SUBMISSION_PREP,
    prompt=(
        'Prepare submission for "{title}" (epic: {epic_id}). '
        "Follow the submission workflow instructions in CLAUDE.md."
    ),
    model="sonnet",
    max_turns=100,
    allowed_tools=SUBMISSION_TOOLS,
    target_repo=TargetRepo.FACTORY,
)

_QA = AgentTemplate(
    stage=AgentStage.QA,
    prompt=(
        'QA the app "{title}" (epic: {epic_id}). '
        + _workflow("QA")
        + " File every defect you find as a bead of type bug in this repo."
    ),
    model="opus",
    max_turns=300,
    allowed_tools=BUILD_TOOLS,
    target_repo=TargetRepo.APP,
)

_QA_FIXES = AgentTemplate(
    stage=AgentStage.QA_FIXES,
    prompt=(
        'Fix the QA bugs for "{title}" (epic: {epic_id}). '
        "Work through the open beads of type bug in this repo and close each one you fix. "
        + _workflow("development")
    ),
    model="opus",
    max_turns=500,
    allowed_tools=BUILD_TOOLS,
    target_repo=TargetRepo.APP,
)

_KIT_MANAGEMENT = AgentTemplate(
    stage=AgentStage.KIT_MANAGEMENT,
    prompt=(
        'Analyze "{title}" for kit enhancements (epic: {epic_id}). '
        "Follow the kit analysis workflow in CLAUDE.md."
    ),
    model="opus",
    max_turns=200,
    allowed_tools=BUILD_TOOLS,
    target_repo=TargetRepo.FACTORY,
)


# -----------------------------------------------------------------------------
# Action table
# -----------------------------------------------------------------------------

ACTION_TABLE: Dict[ActionId, PipelineAction] = {
    ActionId.START_RESEARCH: PipelineAction(
        action_id=ActionId.START_RESEARCH,
        target_repo=TargetRepo.FACTORY,
        labels_to_add=(PipelineStage.RESEARCH.label, AGENT_RUNNING),
        agent=_RESEARCH,
        status_update=EpicStatus.IN_PROGRESS,
    ),
    ActionId.MORE_RESEARCH: PipelineAction(
        action_id=ActionId.MORE_RESEARCH,
        target_repo=TargetRepo.FACTORY,
        labels_to_remove=(PipelineStage.RESEARCH_COMPLETE.label, PLAN_PENDING, PLAN_APPROVED),
        labels_to_add=(PipelineStage.RESEARCH.label, AGENT_RUNNING),
        agent=_MORE_RESEARCH,
    ),
    ActionId.DEPRIORITISE: PipelineAction(
        action_id=ActionId.DEPRIORITISE,
        target_repo=TargetRepo.FACTORY,
        labels_to_remove=(PLAN_PENDING, PLAN_APPROVED),
        labels_to_add=(PipelineStage.BAD_IDEA.label,),
        remove_all_pipeline_labels=True,
        close_epic=True,
    ),
    ActionId.SEND_FOR_DEVELOPMENT: PipelineAction(
        action_id=ActionId.SEND_FOR_DEVELOPMENT,
        target_repo=TargetRepo.APP,
        labels_to_remove=(PipelineStage.RESEARCH_COMPLETE.label, PLAN_PENDING, PLAN_APPROVED),
        labels_to_add=(PipelineStage.DEVELOPMENT.label, AGENT_RUNNING),
        agent=_DEVELOP,
    ),
    ActionId.GENERATE_PLAN: PipelineAction(
        action_id=ActionId.GENERATE_PLAN,
        target_repo=TargetRepo.APP,
        labels_to_add=(AGENT_RUNNING,),
        agent=_PLAN,
    ),
    ActionId.APPROVE_PLAN: PipelineAction(
        action_id=ActionId.APPROVE_PLAN,
        target_repo=TargetRepo.FACTORY,
        labels_to_remove=(PLAN_PENDING,),
        labels_to_add=(PLAN_APPROVED,),
    ),
    ActionId.APPROVE_AND_BUILD: PipelineAction(
        action_id=ActionId.APPROVE_AND_BUILD,
        target_repo=TargetRepo.APP,
        labels_to_remove=(PipelineStage.RESEARCH_COMPLETE.label, PLAN_PENDING),
        labels_to_add=(PLAN_APPROVED, PipelineStage.DEVELOPMENT.label, AGENT_RUNNING),
        agent=_DEVELOP,
    ),
    ActionId.REVISE_PLAN: PipelineAction(
        action_id=ActionId.REVISE_PLAN,
        target_repo=TargetRepo.APP,
        labels_to_remove=(PLAN_APPROVED, PLAN_PENDING),
        labels_to_add=(AGENT_RUNNING,),
        agent=_REVISE_PLAN,
    ),
    ActionId.SKIP_TO_PLAN: PipelineAction(
        action_id=ActionId.SKIP_TO_PLAN,
        target_repo=TargetRepo.APP,
        labels_to_add=(PipelineStage.RESEARCH_COMPLETE.label, AGENT_RUNNING),
        agent=_PLAN_WITHOUT_RESEARCH,
        status_update=EpicStatus.IN_PROGRESS,
    ),
    ActionId.REVISE_PLAN_FROM_LAUNCH: PipelineAction(
        action_id=ActionId.REVISE_PLAN_FROM_LAUNCH,
        target_repo=TargetRepo.APP,
        labels_to_remove=(PipelineStage.SUBMISSION_PREP.label,),
        labels_to_add=(PipelineStage.RESEARCH_COMPLETE.label, AGENT_RUNNING),
        agent=_REVISE_PLAN_FROM_LAUNCH,
    ),
    ActionId.APPROVE_SUBMISSION: PipelineAction(
        action_id=ActionId.APPROVE_SUBMISSION,
        target_repo=TargetRepo.FACTORY,
        labels_to_add=(AGENT_RUNNING,),
        agent=_SUBMISSION,
    ),
    ActionId.SEND_BACK_TO_DEV: PipelineAction(
        action_id=ActionId.SEND_BACK_TO_DEV,
        target_repo=TargetRepo.APP,
        labels_to_remove=(PipelineStage.SUBMISSION_PREP.label,),
        labels_to_add=(PipelineStage.DEVELOPMENT.label, AGENT_RUNNING),
        agent=_DEVELOP,
    ),
    ActionId.SEND_FOR_QA: PipelineAction(
        action_id=ActionId.SEND_FOR_QA,
        target_repo=TargetRepo.APP,
        labels_to_remove=(PipelineStage.DEVELOPMENT.label,),
        labels_to_add=(PipelineStage.QA.label, AGENT_RUNNING),
        agent=_QA,
        advance_qa_round=True,
    ),
    ActionId.QA_FIX_AND_RETEST: PipelineAction(
        action_id=ActionId.QA_FIX_AND_RETEST,
        target_repo=TargetRepo.APP,
        labels_to_remove=(PipelineStage.QA.label,),
        labels_to_add=(PipelineStage.DEVELOPMENT.label, AGENT_RUNNING),
        agent=_QA_FIXES,
        internal=True,
    ),
    ActionId.MARK_AS_LIVE: PipelineAction(
        action_id=ActionId.MARK_AS_LIVE,
        target_repo=TargetRepo.FACTORY,
        labels_to_add=(PipelineStage.KIT_MANAGEMENT.label, AGENT_RUNNING),
        agent=_KIT_MANAGEMENT,
        remove_submission_labels=True,
    ),
    ActionId.STOP_AGENT: PipelineAction(
        action_id=ActionId.STOP_AGENT,
        target_repo=TargetRepo.NONE,
        labels_to_remove=(AGENT_RUNNING,),
        stops_agent=True,
    ),
}


def _check_table(table: Dict[ActionId, PipelineAction]) -> None:
    missing = [action.value for action in ActionId if action not in table]
    if missing:
        raise RuntimeError(f"Action table has no entry for: {', '.join(missing)}")
    for action_id, action in table.items():
        if action.action_id != action_id:
            raise RuntimeError(
                f"Action table row {action_id.value} describes {action.action_id.value}"
            )


_check_table(ACTION_TABLE)


def normalize_action(value: str) -> str:
    """Map a legacy action name to its current id; other values pass through."""
    return ACTION_ALIASES.get(value, value)


def parse_action_id(value: Union[str, ActionId]) -> ActionId:
    """Parse an action name into an ActionId.

    Raises:
        UnknownActionError: If the value names no action.
    """
    if isinstance(value, ActionId):
        return value
    if not isinstance(value, str):
        raise UnknownActionError(value)
    try:
        return ActionId(normalize_action(value))
    except ValueError:
        raise UnknownActionError(value) from None


def lookup(action: Union[str, ActionId]) -> PipelineAction:
    """Return the recipe for an action.

    Args:
        action: An ActionId or its string value (legacy aliases accepted).

    Returns:
        The immutable PipelineAction.

    Raises:
        UnknownActionError: If the action is not in the closed set.

    Example:
        >>> lookup("approve-plan").labels_to_add
        ('plan:approved',)
    """
    return ACTION_TABLE[parse_action_id(action)]

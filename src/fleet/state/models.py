"""Pipeline stage models and label helpers.

This module defines the data model for the fleet pipeline, including:
- PipelineStage: Enum of the stages an epic moves through on the board
- AgentStage: Enum of the stages an agent session can be launched for
- Label constants and helpers for the `pipeline:*`, `plan:*` and
  `qa:round-*` label families
- NEXT_STAGE / EXIT_LABELS: static completion tables

Pipeline stage is never stored. It is derived from the single
`pipeline:*` label on an epic; an epic without one is still an idea.
"""

import re
from enum import Enum
from typing import Dict, Iterable, List, Optional


PIPELINE_PREFIX = "pipeline:"
QA_ROUND_PREFIX = "qa:round-"
SUBMISSION_PREFIX = "submission:"

AGENT_RUNNING = "agent:running"
PLAN_PENDING = "plan:pending"
PLAN_APPROVED = "plan:approved"
QA_NEEDS_REVIEW = "qa:needs-review"

_QA_ROUND_PATTERN = re.compile(r"^qa:round-(\d+)$")


class PipelineStage(str, Enum):
    """Stages an epic progresses through on the fleet board.

    Stage Flow:
        idea → research → research-complete → [plan-pending ↔ plan-approved]
        → development → qa → [development ↔ qa] → submission-prep
        → submitted → kit-management → completed

    `bad-idea` is reachable from any stage through deprioritisation.
    `plan-pending` and `plan-approved` have no stage label of their own;
    they are `research-complete` carrying the matching `plan:*` label.
    """

    IDEA = "idea"
    RESEARCH = "research"
    RESEARCH_COMPLETE = "research-complete"
    PLAN_PENDING = "plan-pending"
    PLAN_APPROVED = "plan-approved"
    DEVELOPMENT = "development"
    QA = "qa"
    SUBMISSION_PREP = "submission-prep"
    SUBMITTED = "submitted"
    KIT_MANAGEMENT = "kit-management"
    COMPLETED = "completed"
    BAD_IDEA = "bad-idea"

    @property
    def label(self) -> str:
        return f"{PIPELINE_PREFIX}{self.value}"


class AgentStage(str, Enum):
    """Stages an agent session can be launched for.

    These drive the completion-triggered transitions. `planning` happens
    inside research-complete and `qa-fixes` is the development pass that
    follows a QA round which filed bugs.
    """

    RESEARCH = "research"
    PLANNING = "planning"
    DEVELOPMENT = "development"
    QA = "qa"
    QA_FIXES = "qa-fixes"
    SUBMISSION_PREP = "submission-prep"
    KIT_MANAGEMENT = "kit-management"


# Stage label applied when an agent for the given stage exits successfully.
# development, qa-fixes and the bug branch of qa are chained instead.
NEXT_STAGE: Dict[AgentStage, PipelineStage] = {
    AgentStage.RESEARCH: PipelineStage.RESEARCH_COMPLETE,
    AgentStage.QA: PipelineStage.SUBMISSION_PREP,
    AgentStage.SUBMISSION_PREP: PipelineStage.SUBMITTED,
    AgentStage.KIT_MANAGEMENT: PipelineStage.COMPLETED,
}

# Extra labels added on success without renaming the stage label
EXIT_LABELS: Dict[AgentStage, List[str]] = {
    AgentStage.PLANNING: [PLAN_PENDING],
}


def parse_agent_stage(value: Optional[str]) -> Optional[AgentStage]:
    """Parse a session's pipeline stage string.

    Returns:
        The AgentStage, or None for missing or unrecognised values.
    """
    if not value:
        return None
    try:
        return AgentStage(value)
    except ValueError:
        return None


def pipeline_labels(labels: Iterable[str]) -> List[str]:
    """Return every `pipeline:*` label in the given collection."""
    return [label for label in labels if label.startswith(PIPELINE_PREFIX)]


def derive_stage(labels: Iterable[str]) -> PipelineStage:
    """Derive an epic's pipeline stage from its labels.

    Args:
        labels: The epic's current labels.

    Returns:
        The stage named by the `pipeline:*` label, refined to
        plan-pending / plan-approved for research-complete epics with
        a plan label. IDEA when no (recognised) stage label exists.

    Example:
        >>> derive_stage(["pipeline:qa", "qa:round-2"])
        <PipelineStage.QA: 'qa'>
        >>> derive_stage([])
        <PipelineStage.IDEA: 'idea'>
    """
    label_set = set(labels)
    stage = PipelineStage.IDEA
    for label in pipeline_labels(label_set):
        try:
            stage = PipelineStage(label[len(PIPELINE_PREFIX):])
        except ValueError:
            continue
        break

    if stage == PipelineStage.RESEARCH_COMPLETE:
        if PLAN_APPROVED in label_set:
            return PipelineStage.PLAN_APPROVED
        if PLAN_PENDING in label_set:
            return PipelineStage.PLAN_PENDING
    return stage


def qa_round_labels(labels: Iterable[str]) -> List[str]:
    """Return every `qa:round-<N>` label in the given collection."""
    return [label for label in labels if _QA_ROUND_PATTERN.match(label)]


def current_qa_round(labels: Iterable[str]) -> Optional[int]:
    """Return the highest QA round recorded on the labels, if any."""
    rounds = [
        int(match.group(1))
        for match in (_QA_ROUND_PATTERN.match(label) for label in labels)
        if match
    ]
    return max(rounds) if rounds else None


def next_qa_round(labels: Iterable[str]) -> int:
    """Compute the round number for a fresh QA attempt.

    Example:
        >>> next_qa_round(["qa:round-1", "qa:round-2"])
        3
        >>> next_qa_round(["pipeline:development"])
        1
    """
    current = current_qa_round(labels)
    return 1 if current is None else current + 1


def qa_round_label(round_number: int) -> str:
    return f"{QA_ROUND_PREFIX}{round_number}"

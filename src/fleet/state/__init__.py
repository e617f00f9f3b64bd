"""Pipeline stages and label helpers.

Stage is derived from the single `pipeline:*` label on an epic:
- idea → research → research-complete → [plan-pending ↔ plan-approved]
- → development → qa → [development ↔ qa] → submission-prep
- → submitted → kit-management → completed

Transitions are label mutations only; nothing is persisted locally.
The completion-triggered transitions live in src.fleet.state.machine,
which depends on the action models and is imported from there directly.
"""

from src.fleet.state.models import (
    AGENT_RUNNING,
    EXIT_LABELS,
    NEXT_STAGE,
    PLAN_APPROVED,
    PLAN_PENDING,
    QA_NEEDS_REVIEW,
    AgentStage,
    PipelineStage,
    current_qa_round,
    derive_stage,
    next_qa_round,
    parse_agent_stage,
    pipeline_labels,
    qa_round_label,
    qa_round_labels,
)

__all__ = [
    "AGENT_RUNNING",
    "EXIT_LABELS",
    "NEXT_STAGE",
    "PLAN_APPROVED",
    "PLAN_PENDING",
    "QA_NEEDS_REVIEW",
    "AgentStage",
    "PipelineStage",
    "current_qa_round",
    "derive_stage",
    "next_qa_round",
    "parse_agent_stage",
    "pipeline_labels",
    "qa_round_label",
    "qa_round_labels",
]

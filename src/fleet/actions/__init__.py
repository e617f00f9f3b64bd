"""Fleet board actions.

This module defines what each board button does:
- ActionId / PipelineAction: the closed action set and its recipes
- ACTION_TABLE / lookup: the static action registry
- ActionRequestParser: request body validation
- resolve_app_name: per-app directory naming from epic titles
"""

from src.fleet.actions.app_name import resolve_app_name
from src.fleet.actions.handler import ActionRequestParser, RequestValidationError
from src.fleet.actions.models import (
    ActionId,
    ActionRequest,
    ActionResult,
    AgentTemplate,
    EpicStatus,
    PipelineAction,
    TargetRepo,
)
from src.fleet.actions.registry import (
    ACTION_ALIASES,
    ACTION_TABLE,
    UnknownActionError,
    lookup,
    normalize_action,
    parse_action_id,
)

__all__ = [
    # Models
    "ActionId",
    "ActionRequest",
    "ActionResult",
    "AgentTemplate",
    "EpicStatus",
    "PipelineAction",
    "TargetRepo",
    # Registry
    "ACTION_ALIASES",
    "ACTION_TABLE",
    "UnknownActionError",
    "lookup",
    "normalize_action",
    "parse_action_id",
    # Requests
    "ActionRequestParser",
    "RequestValidationError",
    "resolve_app_name",
]

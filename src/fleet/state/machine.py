"""Completion-triggered pipeline transitions.

When a pipeline agent exits, the TransitionResolver decides what happens
to the epic next:

- research, qa (no bugs), submission-prep, kit-management advance to
  the next `pipeline:*` label
- planning adds `plan:pending`
- development and qa-fixes chain into `send-for-qa`
- qa with open bugs chains into `qa-fix-and-retest` until the round
  limit, then flags the epic with `qa:needs-review`

`agent:running` is removed first on every exit. A failed run changes
nothing else. The decision itself is the pure decide_transition(); the
resolver gathers its inputs and applies its result.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional

from src.fleet.actions.models import ActionId
from src.fleet.events.emitter import EventEmitter, NullEventEmitter
from src.fleet.events.models import EventType, PipelineEvent
from src.fleet.labels.store import (
    CollaboratorError,
    IssueRepository,
    LabelStore,
    QaInspector,
    resolve_epic_repo,
)
from src.fleet.runner.models import AgentSession
from src.fleet.state.models import (
    AGENT_RUNNING,
    EXIT_LABELS,
    NEXT_STAGE,
    QA_NEEDS_REVIEW,
    AgentStage,
    PipelineStage,
    parse_agent_stage,
)


logger = logging.getLogger(__name__)

ChainInvoker = Callable[[ActionId, AgentSession], Awaitable[Any]]


class ExitLabelUpdateError(Exception):
    """Raised when label updates after an agent exit fail.

    Attributes:
        epic_id: The epic being updated.
        stage: Agent stage of the exited session.
        message: Human-readable error message.
    """

    def __init__(self, epic_id: str, stage: str, message: str):
        self.epic_id = epic_id
        self.stage = stage
        self.message = message
        super().__init__(
            f"Failed to update labels for {epic_id} after {stage} exit: {message}"
        )


class ChainActionError(Exception):
    """Raised when a chained follow-up action fails.

    Attributes:
        action: The chained action.
        epic_id: The epic it was invoked for.
        message: Human-readable error message.
    """

    def __init__(self, action: ActionId, epic_id: str, message: str):
        self.action = action
        self.epic_id = epic_id
        self.message = message
        super().__init__(f"Chain action {action.value} failed for {epic_id}: {message}")


@dataclass
class TransitionDecision:
    """Label changes and follow-up work decided for one agent exit.

    agent:running is not listed; it is always removed before these
    changes are applied.

    Attributes:
        labels_to_remove: Labels removed first.
        labels_to_add: Labels added after removals.
        chain_action: Action to invoke afterwards, if any.
        needs_review: True when the QA loop hit its round limit.
        next_stage: Stage the epic advances to, for static transitions.
    """

    labels_to_remove: List[str] = field(default_factory=list)
    labels_to_add: List[str] = field(default_factory=list)
    chain_action: Optional[ActionId] = None
    needs_review: bool = False
    next_stage: Optional[PipelineStage] = None

    @property
    def is_noop(self) -> bool:
        return not (
            self.labels_to_remove
            or self.labels_to_add
            or self.chain_action
            or self.needs_review
        )


def _static_transition(stage: AgentStage) -> TransitionDecision:
    next_stage = NEXT_STAGE[stage]
    return TransitionDecision(
        labels_to_remove=[PipelineStage(stage.value).label],
        labels_to_add=[next_stage.label],
        next_stage=next_stage,
    )


def decide_transition(
    stage: Optional[AgentStage],
    exit_code: int,
    bug_count: int = 0,
    current_round: Optional[int] = None,
    max_rounds: int = 3,
) -> TransitionDecision:
    """Decide the epic's next label state after an agent exit.

    Total over every stage: unknown or missing stages and failed runs
    yield an empty decision.

    Args:
        stage: Agent stage of the exited session.
        exit_code: Worker exit code; anything but 0 is a failure.
        bug_count: Open bugs in the app repository (qa stage only).
        current_round: Current QA round; None counts as round 1.
        max_rounds: QA rounds allowed before human review.

    Returns:
        The TransitionDecision to apply.

    Example:
        >>> decide_transition(AgentStage.QA, 0, bug_count=2, current_round=3)
        TransitionDecision(labels_to_remove=[], labels_to_add=['qa:needs-review'], chain_action=None, needs_review=True, next_stage=None)
    """
    if exit_code != 0 or stage is None:
        return TransitionDecision()

    if stage in (AgentStage.DEVELOPMENT, AgentStage.QA_FIXES):
        return TransitionDecision(chain_action=ActionId.SEND_FOR_QA)

    if stage == AgentStage.QA:
        if bug_count <= 0:
            return _static_transition(stage)
        round_number = current_round if current_round is not None else 1
        if round_number >= max_rounds:
            return TransitionDecision(labels_to_add=[QA_NEEDS_REVIEW], needs_review=True)
        return TransitionDecision(chain_action=ActionId.QA_FIX_AND_RETEST)

    if stage in EXIT_LABELS:
        return TransitionDecision(labels_to_add=list(EXIT_LABELS[stage]))

    if stage in NEXT_STAGE:
        return _static_transition(stage)

    return TransitionDecision()


class TransitionResolver:
    """Applies completion-triggered transitions for exited agents.

    Registered as the process manager's exit hook. Everything here runs
    in the background: failures are logged and emitted as ERROR events,
    never raised, and nothing is retried. A label-store failure stops the
    remaining steps for that exit so the epic never carries two stage
    labels.

    Attributes:
        max_qa_rounds: QA rounds allowed before human review.

    Example:
        >>> resolver = TransitionResolver(client, client, client, orchestrator.run_chain_action,
        ...                               factory_repo_path="/srv/factory")
        >>> await resolver.on_agent_exit(session, exit_code=0)
    """

    def __init__(
        self,
        label_store: LabelStore,
        issues: IssueRepository,
        qa_inspector: QaInspector,
        chain_invoker: ChainInvoker,
        factory_repo_path: str,
        max_qa_rounds: int = 3,
        event_emitter: Optional[EventEmitter] = None,
    ):
        self.label_store = label_store
        self.issues = issues
        self.qa_inspector = qa_inspector
        self.chain_invoker = chain_invoker
        self.factory_repo_path = factory_repo_path
        self.max_qa_rounds = max_qa_rounds
        self.event_emitter = event_emitter or NullEventEmitter()

    async def on_agent_exit(
        self, session: AgentSession, exit_code: int
    ) -> Optional[TransitionDecision]:
        """Reconcile an epic's labels after its agent exited.

        Args:
            session: The exited session.
            exit_code: Worker exit code.

        Returns:
            The applied decision, or None when the session has no epic,
            or when a collaborator failed before the decision was applied.
        """
        if not session.is_pipeline_session:
            return None

        epic_id = session.epic_id
        stage_name = session.pipeline_stage or "unknown"
        stage = parse_agent_stage(session.pipeline_stage)

        await self._safe_emit(
            EventType.AGENT_EXITED,
            session,
            {
                "stage": stage_name,
                "pid": session.pid,
                "exit_code": exit_code,
                "duration_seconds": self._run_duration(session),
            },
        )

        try:
            repo_path = await resolve_epic_repo(
                self.issues, epic_id, self.factory_repo_path
            )
            await self.label_store.remove_labels(epic_id, [AGENT_RUNNING], repo_path)

            bug_count = 0
            current_round = None
            if stage == AgentStage.QA and exit_code == 0:
                bug_count = await self.qa_inspector.count_open_bugs(session.repo_path)
                if bug_count > 0:
                    current_round = await self.qa_inspector.current_qa_round(
                        epic_id, repo_path
                    )

            decision = decide_transition(
                stage,
                exit_code,
                bug_count=bug_count,
                current_round=current_round,
                max_rounds=self.max_qa_rounds,
            )

            if decision.labels_to_remove:
                await self.label_store.remove_labels(
                    epic_id, decision.labels_to_remove, repo_path
                )
            if decision.labels_to_add:
                await self.label_store.add_labels(
                    epic_id, decision.labels_to_add, repo_path
                )
        except CollaboratorError as exc:
            error = ExitLabelUpdateError(epic_id, stage_name, exc.message)
            logger.error(
                str(error),
                extra={
                    "epic_id": epic_id,
                    "stage": stage_name,
                    "operation": exc.operation,
                    "exit_code": exit_code,
                },
            )
            await self._emit_error(session, "exit_labels", error)
            return None

        logger.info(
            "Agent exit resolved",
            extra={
                "epic_id": epic_id,
                "stage": stage_name,
                "exit_code": exit_code,
                "next_stage": decision.next_stage.value if decision.next_stage else None,
                "chain_action": decision.chain_action.value if decision.chain_action else None,
                "needs_review": decision.needs_review,
                "bug_count": bug_count,
            },
        )

        if decision.next_stage is not None:
            await self._safe_emit(
                EventType.STATE_TRANSITION,
                session,
                {"from_stage": stage_name, "to_stage": decision.next_stage.value},
            )

        if decision.needs_review:
            await self._safe_emit(
                EventType.NEEDS_REVIEW,
                session,
                {"qa_round": current_round or 1, "bug_count": bug_count},
            )

        if decision.chain_action is not None:
            await self._run_chain(decision.chain_action, session)

        return decision

    async def _run_chain(self, action: ActionId, session: AgentSession) -> None:
        await self._safe_emit(
            EventType.CHAIN_ACTION,
            session,
            {"action": action.value, "from_stage": session.pipeline_stage},
        )
        try:
            await self.chain_invoker(action, session)
        except Exception as exc:
            error = ChainActionError(action, session.epic_id, str(exc))
            logger.exception(
                str(error),
                extra={"epic_id": session.epic_id, "action": action.value},
            )
            await self._emit_error(session, "chain_action", error)

    def _run_duration(self, session: AgentSession) -> float:
        return (datetime.now(timezone.utc) - session.started_at).total_seconds()

    async def _emit_error(
        self, session: AgentSession, operation: str, error: Exception
    ) -> None:
        await self._safe_emit(
            EventType.ERROR,
            session,
            {
                "operation": operation,
                "error_message": str(error),
                "error_type": type(error).__name__,
                "stage": session.pipeline_stage,
            },
        )

    async def _safe_emit(
        self, event_type: EventType, session: AgentSession, details: dict
    ) -> None:
        """Emit an event, logging and discarding emitter failures."""
        try:
            await self.event_emitter.emit(
                PipelineEvent(
                    event_type=event_type,
                    epic_id=session.epic_id or "unknown",
                    repository=session.repo_name,
                    details=details,
                )
            )
        except Exception:
            logger.exception("Failed to emit %s event", event_type.value)

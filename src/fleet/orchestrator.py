"""Fleet orchestrator connecting board actions to agents.

Receives validated action requests and drives them through:
registry lookup → repository resolution → label mutations → agent launch.

Completion is handled later by the TransitionResolver, which the
orchestrator registers as every pipeline agent's exit hook and which
calls back into run_chain_action() for chained follow-ups (development
→ QA, QA with bugs → fixes → QA).

Source:
- src/fleet/actions/registry.py (ACTION_TABLE, lookup)
- src/fleet/actions/app_name.py (resolve_app_name)
- src/fleet/runner/agent.py (AgentProcessManager)
- src/fleet/state/machine.py (TransitionResolver)
- src/fleet/labels/store.py (LabelStore, IssueRepository, QaInspector)
- src/fleet/events/emitter.py (EventEmitter)
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from src.fleet.actions.app_name import resolve_app_name
from src.fleet.actions.models import (
    ActionId,
    ActionRequest,
    ActionResult,
    PipelineAction,
    TargetRepo,
)
from src.fleet.actions.registry import lookup
from src.fleet.events.emitter import EventEmitter, NullEventEmitter
from src.fleet.events.models import EventType, PipelineEvent
from src.fleet.labels.store import (
    Cache,
    IssueRepository,
    LabelStore,
    QaInspector,
    resolve_epic_repo,
)
from src.fleet.runner.agent import AgentProcessManager
from src.fleet.runner.models import AgentSession, LaunchSpec
from src.fleet.state.machine import TransitionResolver
from src.fleet.state.models import (
    SUBMISSION_PREFIX,
    PipelineStage,
    next_qa_round,
    qa_round_label,
    qa_round_labels,
)

logger = logging.getLogger(__name__)

DEFAULT_DEPRIORITISE_REASON = "Deprioritised from fleet board"


class ActionExecutionError(Exception):
    """Raised when a validated action fails part way through.

    Label mutations already applied are not rolled back.

    Attributes:
        action: The failed action.
        epic_id: The epic it ran against.
        message: Underlying error message.
    """

    def __init__(self, action: ActionId, epic_id: str, message: str):
        self.action = action
        self.epic_id = epic_id
        self.message = message
        super().__init__(f"Failed to execute {action.value} on {epic_id}: {message}")


class PipelineOrchestrator:
    """Executes fleet board actions.

    Accepts all dependencies via constructor injection. Owns the
    TransitionResolver so chained actions re-enter execute().

    Attributes:
        label_store: Label and status mutations.
        issues: Epic repository lookups.
        agent_manager: The single-slot agent process manager.
        cache: Read cache invalidated after every mutating action.
        factory_repo_path: Shared factory repository.
        factory_repo_name: Display name for factory sessions.
        apps_base_path: Parent directory of per-app repositories.
        resolver: Exit-time transition resolver.
        event_emitter: Emits pipeline events for observability.
    """

    def __init__(
        self,
        label_store: LabelStore,
        issues: IssueRepository,
        qa_inspector: QaInspector,
        agent_manager: AgentProcessManager,
        factory_repo_path: str,
        factory_repo_name: str,
        apps_base_path: str,
        cache: Optional[Cache] = None,
        max_qa_rounds: int = 3,
        event_emitter: Optional[EventEmitter] = None,
    ):
        self.label_store = label_store
        self.issues = issues
        self.agent_manager = agent_manager
        self.cache = cache
        self.factory_repo_path = factory_repo_path
        self.factory_repo_name = factory_repo_name
        self.apps_base_path = apps_base_path
        self.event_emitter = event_emitter or NullEventEmitter()
        self.resolver = TransitionResolver(
            label_store=label_store,
            issues=issues,
            qa_inspector=qa_inspector,
            chain_invoker=self.run_chain_action,
            factory_repo_path=factory_repo_path,
            max_qa_rounds=max_qa_rounds,
            event_emitter=self.event_emitter,
        )

    async def execute(self, request: ActionRequest) -> ActionResult:
        """Execute one board action.

        Label removals are applied before additions, then status updates,
        then closing. The cache is invalidated before any agent is
        launched or stopped.

        Args:
            request: The validated action request.

        Returns:
            ActionResult with the launched session or stop outcome.

        Raises:
            UnknownActionError: If the action has no registry entry. No
                collaborator has been called at that point.
            ActionExecutionError: If a collaborator or the launch fails.
        """
        action = lookup(request.action)

        logger.info(
            "Executing action",
            extra={"action": action.action_id.value, "epic_id": request.epic_id},
        )

        try:
            result = await self._execute(action, request)
        except Exception as exc:
            logger.exception(
                "Action failed",
                extra={"action": action.action_id.value, "epic_id": request.epic_id},
            )
            await self._emit_action_event(request, action, success=False, error=str(exc))
            raise ActionExecutionError(action.action_id, request.epic_id, str(exc)) from exc

        await self._emit_action_event(request, action, success=True)
        return result

    async def run_chain_action(self, action_id: ActionId, session: AgentSession) -> ActionResult:
        """Invoke a follow-up action for an exited session's epic.

        The session's repo name stands in for the epic title; for per-app
        sessions it is the app name, which resolves to itself.
        """
        logger.info(
            "Running chained action",
            extra={
                "action": action_id.value,
                "epic_id": session.epic_id,
                "from_stage": session.pipeline_stage,
            },
        )
        self._invalidate_cache()
        request = ActionRequest(
            epic_id=session.epic_id,
            epic_title=session.repo_name,
            action=action_id,
        )
        return await self.execute(request)

    async def on_agent_exit(self, session: AgentSession, exit_code: int) -> None:
        """Exit hook registered for every pipeline launch."""
        try:
            await self.resolver.on_agent_exit(session, exit_code)
        finally:
            self._invalidate_cache()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, action: PipelineAction, request: ActionRequest) -> ActionResult:
        epic_id = request.epic_id
        app_name = resolve_app_name(request.epic_title, epic_id)
        epic_repo = await resolve_epic_repo(self.issues, epic_id, self.factory_repo_path)

        labels = await self._current_labels(action, request, epic_repo)
        to_remove, to_add = self._label_changes(action, labels)

        if action.remove_all_pipeline_labels:
            await self.label_store.remove_all_pipeline_labels(epic_id, labels, epic_repo)
        if to_remove:
            await self.label_store.remove_labels(epic_id, to_remove, epic_repo)
        if to_add:
            await self.label_store.add_labels(epic_id, to_add, epic_repo)
        if action.status_update is not None:
            await self.label_store.update_status(
                epic_id, action.status_update.value, epic_repo
            )
        if action.close_epic:
            reason = (
                request.feedback if request.feedback_text else DEFAULT_DEPRIORITISE_REASON
            )
            await self.label_store.close_epic(epic_id, reason, epic_repo)

        self._invalidate_cache()

        if action.stops_agent:
            stop = self.agent_manager.stop()
            return ActionResult(
                action=action.action_id,
                epic_id=epic_id,
                stopped=stop.stopped,
                pid=stop.pid,
            )

        session = None
        if action.agent is not None:
            session = await self._launch(action, request, app_name)

        return ActionResult(action=action.action_id, epic_id=epic_id, session=session)

    async def _current_labels(
        self, action: PipelineAction, request: ActionRequest, epic_repo: str
    ) -> List[str]:
        """Labels needed for dynamic removals.

        Uses the labels sent with the request when present, otherwise
        reads them from the issue repository. Actions without dynamic
        removals never trigger a read.
        """
        needs_labels = (
            action.remove_all_pipeline_labels
            or action.remove_submission_labels
            or action.advance_qa_round
        )
        if not needs_labels:
            return list(request.current_labels or [])
        if request.current_labels is not None:
            return list(request.current_labels)
        return await self.issues.get_labels(request.epic_id, epic_repo)

    def _label_changes(
        self, action: PipelineAction, labels: Sequence[str]
    ) -> Tuple[List[str], List[str]]:
        to_remove = list(action.labels_to_remove)
        to_add = list(action.labels_to_add)

        if action.remove_submission_labels:
            to_remove.extend(
                label
                for label in labels
                if label == PipelineStage.SUBMITTED.label
                or label.startswith(SUBMISSION_PREFIX)
            )

        if action.advance_qa_round:
            to_remove.extend(qa_round_labels(labels))
            to_add.append(qa_round_label(next_qa_round(labels)))

        return _dedupe(to_remove), _dedupe(to_add)

    def _resolve_target(self, action: PipelineAction, app_name: str) -> Tuple[str, str]:
        if action.target_repo == TargetRepo.APP:
            return str(Path(self.apps_base_path) / app_name), app_name
        return self.factory_repo_path, self.factory_repo_name

    async def _launch(
        self, action: PipelineAction, request: ActionRequest, app_name: str
    ) -> AgentSession:
        template = action.agent
        repo_path, repo_name = self._resolve_target(action, app_name)
        prompt = template.render_prompt(
            title=request.epic_title,
            epic_id=request.epic_id,
            app_name=app_name,
            factory_path=self.factory_repo_path,
            feedback=request.feedback_text,
        )
        spec = LaunchSpec(
            repo_path=repo_path,
            repo_name=repo_name,
            prompt=prompt,
            model=template.model,
            max_turns=template.max_turns,
            allowed_tools=template.allowed_tools,
            epic_id=request.epic_id,
            pipeline_stage=template.stage.value,
        )
        session = await self.agent_manager.launch(spec, on_exit=self.on_agent_exit)
        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.AGENT_LAUNCHED,
                epic_id=request.epic_id,
                repository=repo_name,
                details={
                    "stage": template.stage.value,
                    "pid": session.pid,
                    "model": template.model,
                    "action": action.action_id.value,
                },
            )
        )
        return session

    def _invalidate_cache(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_all()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _emit_action_event(
        self,
        request: ActionRequest,
        action: PipelineAction,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        details = {
            "action": action.action_id.value,
            "success": success,
            "launched": success and action.launches_agent,
        }
        if error is not None:
            details["error_message"] = error
        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.ACTION_EXECUTED,
                epic_id=request.epic_id,
                details=details,
            )
        )

    async def _safe_emit(self, event: PipelineEvent) -> None:
        """Emit an event, swallowing exceptions to avoid disrupting the pipeline."""
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit pipeline event",
                extra={
                    "event_type": event.event_type.value,
                    "epic_id": event.epic_id,
                },
            )


def _dedupe(labels: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(labels))

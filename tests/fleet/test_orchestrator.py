"""Tests for the fleet pipeline orchestrator.

Collaborators are the in-memory beads double and a mocked agent manager,
so these tests exercise label sequencing and launch parameters only.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from fleet_fakes import (
    APPS_BASE,
    FACTORY_PATH,
    InMemoryBeads,
    RecordingEmitter,
    make_session,
    run_async,
)
from src.fleet.actions.models import ActionId, ActionRequest
from src.fleet.actions.registry import UnknownActionError
from src.fleet.events.models import EventType
from src.fleet.orchestrator import (
    DEFAULT_DEPRIORITISE_REASON,
    ActionExecutionError,
    PipelineOrchestrator,
)
from src.fleet.runner.models import AlreadyRunningError, StopResult


TITLE = "LensCycle: Contact lens tracker"


@pytest.fixture
def manager():
    agent_manager = MagicMock()
    agent_manager.launch = AsyncMock(return_value=make_session(pid=3001))
    agent_manager.stop = MagicMock(return_value=StopResult(stopped=True, pid=3001))
    return agent_manager


@pytest.fixture
def cache():
    return MagicMock()


@pytest.fixture
def emitter():
    return RecordingEmitter()


def _orchestrator(beads, manager, cache=None, emitter=None):
    return PipelineOrchestrator(
        label_store=beads,
        issues=beads,
        qa_inspector=beads,
        agent_manager=manager,
        factory_repo_path=FACTORY_PATH,
        factory_repo_name="factory",
        apps_base_path=APPS_BASE,
        cache=cache,
        event_emitter=emitter,
    )


def _request(action, **kwargs):
    return ActionRequest(epic_id="fac-1", epic_title=TITLE, action=action, **kwargs)


def _launched_spec(manager):
    return manager.launch.await_args.args[0]


class TestUnknownAction:
    def test_rejected_before_any_collaborator_call(self, beads, manager):
        request = ActionRequest.model_construct(
            epic_id="fac-1", epic_title=TITLE, action="launch-rocket"
        )

        with pytest.raises(UnknownActionError, match="Invalid action: launch-rocket"):
            run_async(_orchestrator(beads, manager).execute(request))

        assert beads.calls == []
        manager.launch.assert_not_awaited()


class TestLaunchingActions:
    def test_start_research(self, beads, manager, cache):
        orchestrator = _orchestrator(beads, manager, cache)

        result = run_async(orchestrator.execute(_request(ActionId.START_RESEARCH)))

        assert beads.calls == [
            ("resolve_repo_path", "fac-1"),
            ("add_labels", "fac-1", ["pipeline:research", "agent:running"], FACTORY_PATH),
            ("update_status", "fac-1", "in_progress", FACTORY_PATH),
        ]
        spec = _launched_spec(manager)
        assert spec.repo_path == FACTORY_PATH
        assert spec.repo_name == "factory"
        assert (spec.model, spec.max_turns) == ("opus", 200)
        assert spec.epic_id == "fac-1"
        assert spec.pipeline_stage == "research"
        assert f'"{TITLE}"' in spec.prompt
        assert manager.launch.await_args.kwargs["on_exit"] == orchestrator.on_agent_exit
        cache.invalidate_all.assert_called()

        body = result.to_response()
        assert body["success"] is True
        assert body["action"] == "start-research"
        assert body["epicId"] == "fac-1"
        assert body["session"]["pid"] == 3001

    def test_app_actions_run_in_app_repository(self, beads, manager):
        run_async(
            _orchestrator(beads, manager).execute(_request(ActionId.SEND_FOR_DEVELOPMENT))
        )

        spec = _launched_spec(manager)
        assert spec.repo_path == f"{APPS_BASE}/LensCycle"
        assert spec.repo_name == "LensCycle"
        assert (spec.model, spec.max_turns) == ("opus", 500)
        assert "/apps/LensCycle/research/report.md" in spec.prompt

    def test_removals_precede_additions(self, beads, manager):
        run_async(
            _orchestrator(beads, manager).execute(_request(ActionId.APPROVE_AND_BUILD))
        )

        assert beads.operations == ["resolve_repo_path", "remove_labels", "add_labels"]
        assert beads.calls[1][2] == ["pipeline:research-complete", "plan:pending"]

    def test_feedback_reaches_prompt(self, beads, manager):
        run_async(
            _orchestrator(beads, manager).execute(
                _request(ActionId.MORE_RESEARCH, feedback="Look at pricing")
            )
        )

        assert 'Feedback: "Look at pricing"' in _launched_spec(manager).prompt

    def test_send_for_qa_advances_round(self, manager):
        beads = InMemoryBeads(labels={"fac-1": ["pipeline:development", "qa:round-1"]})

        run_async(_orchestrator(beads, manager).execute(_request(ActionId.SEND_FOR_QA)))

        assert ("get_labels", "fac-1", FACTORY_PATH) in beads.calls
        assert ("remove_labels", "fac-1", ["pipeline:development", "qa:round-1"], FACTORY_PATH) in beads.calls
        assert (
            "add_labels", "fac-1", ["pipeline:qa", "agent:running", "qa:round-2"], FACTORY_PATH
        ) in beads.calls
        assert _launched_spec(manager).pipeline_stage == "qa"

    def test_first_qa_round(self, beads, manager):
        run_async(
            _orchestrator(beads, manager).execute(
                _request(ActionId.SEND_FOR_QA, current_labels=["pipeline:development"])
            )
        )

        assert "get_labels" not in beads.operations
        assert beads.labels["fac-1"] == ["pipeline:qa", "agent:running", "qa:round-1"]

    def test_mark_as_live_clears_submission_labels(self, beads, manager):
        labels = ["pipeline:submitted", "submission:approved", "platform:ios"]

        run_async(
            _orchestrator(beads, manager).execute(
                _request(ActionId.MARK_AS_LIVE, current_labels=labels)
            )
        )

        assert beads.calls[1] == (
            "remove_labels", "fac-1", ["pipeline:submitted", "submission:approved"], FACTORY_PATH
        )
        assert _launched_spec(manager).pipeline_stage == "kit-management"

    def test_labels_written_to_epic_repository(self, manager):
        beads = InMemoryBeads(repo_path="/srv/apps/LensCycle")

        run_async(_orchestrator(beads, manager).execute(_request(ActionId.APPROVE_PLAN)))

        assert beads.calls[1][-1] == "/srv/apps/LensCycle"


class TestLabelOnlyActions:
    def test_approve_plan(self, beads, manager):
        result = run_async(
            _orchestrator(beads, manager).execute(_request(ActionId.APPROVE_PLAN))
        )

        assert result.session is None
        manager.launch.assert_not_awaited()
        assert beads.labels["fac-1"] == ["plan:approved"]

    def test_deprioritise_with_request_labels(self, beads, manager):
        labels = ["pipeline:research-complete", "plan:pending"]

        run_async(
            _orchestrator(beads, manager).execute(
                _request(ActionId.DEPRIORITISE, current_labels=labels)
            )
        )

        assert beads.operations == [
            "resolve_repo_path",
            "remove_all_pipeline_labels",
            "remove_labels",
            "add_labels",
            "close_epic",
        ]
        assert beads.calls[1][2] == labels
        assert beads.closed["fac-1"] == DEFAULT_DEPRIORITISE_REASON
        manager.launch.assert_not_awaited()

    def test_deprioritise_reads_labels_when_absent(self, manager):
        beads = InMemoryBeads(labels={"fac-1": ["pipeline:idea-ish", "pipeline:research"]})

        run_async(
            _orchestrator(beads, manager).execute(
                _request(ActionId.DEPRIORITISE, feedback="  Market too crowded ")
            )
        )

        assert ("get_labels", "fac-1", FACTORY_PATH) in beads.calls
        assert beads.labels["fac-1"] == ["pipeline:bad-idea"]
        assert beads.closed["fac-1"] == "  Market too crowded "

    def test_blank_feedback_closes_with_default_reason(self, beads, manager):
        run_async(
            _orchestrator(beads, manager).execute(
                _request(ActionId.DEPRIORITISE, current_labels=[], feedback="   ")
            )
        )

        assert beads.closed["fac-1"] == DEFAULT_DEPRIORITISE_REASON

    def test_stop_agent(self, beads, manager):
        result = run_async(
            _orchestrator(beads, manager).execute(_request(ActionId.STOP_AGENT))
        )

        manager.stop.assert_called_once_with()
        manager.launch.assert_not_awaited()
        assert ("remove_labels", "fac-1", ["agent:running"], FACTORY_PATH) in beads.calls
        assert result.to_response() == {
            "success": True,
            "action": "stop-agent",
            "epicId": "fac-1",
            "stopped": True,
            "pid": 3001,
        }


class TestFailures:
    def test_slot_busy(self, beads, manager, emitter):
        manager.launch.side_effect = AlreadyRunningError(12, "factory")

        with pytest.raises(ActionExecutionError) as exc_info:
            run_async(
                _orchestrator(beads, manager, emitter=emitter).execute(
                    _request(ActionId.START_RESEARCH)
                )
            )

        assert str(exc_info.value) == (
            "Failed to execute start-research on fac-1: "
            "Agent already running (PID 12) in factory. Stop it first."
        )
        # Labels are not rolled back
        assert "agent:running" in beads.labels["fac-1"]
        event = emitter.of_type(EventType.ACTION_EXECUTED)[0]
        assert event.details["success"] is False

    def test_collaborator_failure_prevents_launch(self, beads, manager):
        beads.fail_on = "add_labels"

        with pytest.raises(ActionExecutionError, match="add_labels failed"):
            run_async(_orchestrator(beads, manager).execute(_request(ActionId.START_RESEARCH)))

        manager.launch.assert_not_awaited()


class TestEvents:
    def test_launch_events(self, beads, manager, emitter):
        run_async(
            _orchestrator(beads, manager, emitter=emitter).execute(
                _request(ActionId.START_RESEARCH)
            )
        )

        assert emitter.types == [EventType.AGENT_LAUNCHED, EventType.ACTION_EXECUTED]
        launched = emitter.of_type(EventType.AGENT_LAUNCHED)[0]
        assert launched.details["stage"] == "research"
        assert launched.repository == "factory"
        executed = emitter.of_type(EventType.ACTION_EXECUTED)[0]
        assert executed.details == {
            "action": "start-research",
            "success": True,
            "launched": True,
        }


class TestChaining:
    def test_run_chain_action_targets_session_app(self, beads, manager, cache):
        session = make_session("development", repo_name="LensCycle")

        result = run_async(
            _orchestrator(beads, manager, cache).run_chain_action(ActionId.SEND_FOR_QA, session)
        )

        assert result.action == ActionId.SEND_FOR_QA
        assert _launched_spec(manager).repo_path == f"{APPS_BASE}/LensCycle"
        cache.invalidate_all.assert_called()

    def test_internal_fix_action_runs_from_chain(self, manager):
        beads = InMemoryBeads(labels={"fac-1": ["pipeline:qa", "qa:round-1"]})

        run_async(
            _orchestrator(beads, manager).run_chain_action(
                ActionId.QA_FIX_AND_RETEST, make_session("qa")
            )
        )

        assert beads.labels["fac-1"] == ["qa:round-1", "pipeline:development", "agent:running"]
        assert _launched_spec(manager).pipeline_stage == "qa-fixes"

    def test_development_exit_launches_qa(self, manager, cache):
        beads = InMemoryBeads(labels={"fac-1": ["pipeline:development", "agent:running"]})
        orchestrator = _orchestrator(beads, manager, cache)

        run_async(orchestrator.on_agent_exit(make_session("development"), 0))

        manager.launch.assert_awaited_once()
        assert _launched_spec(manager).pipeline_stage == "qa"
        assert beads.labels["fac-1"] == ["pipeline:qa", "agent:running", "qa:round-1"]
        cache.invalidate_all.assert_called()

    def test_failed_chain_launch_is_reported(self, manager, emitter):
        beads = InMemoryBeads(labels={"fac-1": ["pipeline:development", "agent:running"]})
        manager.launch.side_effect = AlreadyRunningError(99, "other")

        run_async(
            _orchestrator(beads, manager, emitter=emitter).on_agent_exit(
                make_session("development"), 0
            )
        )

        errors = emitter.of_type(EventType.ERROR)
        assert errors[0].details["operation"] == "chain_action"
        assert "pipeline:qa" in beads.labels["fac-1"]
        assert "agent:running" in beads.labels["fac-1"]

"""Tests for pipeline event emitters and Prometheus metrics."""

import logging
from unittest.mock import AsyncMock

import pytest
from prometheus_client import CollectorRegistry

from fleet_fakes import RecordingEmitter, run_async
from src.fleet.events.emitter import (
    CompositeEventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from src.fleet.events.metrics import (
    FleetMetrics,
    MetricsEventEmitter,
    generate_metrics_output,
)
from src.fleet.events.models import EventType, PipelineEvent


def _event(event_type, **details):
    return PipelineEvent(
        event_type=event_type, epic_id="fac-1", repository="LensCycle", details=details
    )


class TestPipelineEvent:
    def test_log_dict_flattens_details(self):
        log_dict = _event(EventType.CHAIN_ACTION, action="send-for-qa").to_log_dict()
        assert log_dict["event_type"] == "chain_action"
        assert log_dict["epic_id"] == "fac-1"
        assert log_dict["repository"] == "LensCycle"
        assert log_dict["action"] == "send-for-qa"
        assert "timestamp" in log_dict

    def test_epic_id_required(self):
        with pytest.raises(ValueError):
            PipelineEvent(event_type=EventType.ERROR, epic_id="")


class TestLoggingEventEmitter:
    @pytest.mark.parametrize(
        "event_type, level",
        [
            (EventType.ERROR, logging.ERROR),
            (EventType.NEEDS_REVIEW, logging.WARNING),
            (EventType.STATE_TRANSITION, logging.INFO),
            (EventType.AGENT_LAUNCHED, logging.INFO),
        ],
    )
    def test_log_levels(self, caplog, event_type, level):
        emitter = LoggingEventEmitter(logger_name="fleet.test.events")

        with caplog.at_level(logging.INFO, logger="fleet.test.events"):
            run_async(emitter.emit(_event(event_type, stage="qa")))

        (record,) = caplog.records
        assert record.levelno == level
        assert record.getMessage() == f"Pipeline event: {event_type.value} for fac-1"
        assert record.stage == "qa"


class TestCompositeEventEmitter:
    def test_failing_sink_does_not_block_others(self):
        broken = RecordingEmitter()
        broken.emit = AsyncMock(side_effect=RuntimeError("sink down"))
        healthy = RecordingEmitter()
        composite = CompositeEventEmitter([broken, healthy])

        run_async(composite.emit(_event(EventType.ERROR)))

        assert len(healthy.events) == 1

    def test_add_emitter(self):
        composite = CompositeEventEmitter()
        composite.add_emitter(NullEventEmitter())
        assert len(composite.emitters) == 1


class TestCreateEventEmitter:
    def test_default_is_logging(self):
        assert isinstance(create_event_emitter(), LoggingEventEmitter)

    def test_logging_and_metrics(self):
        emitter = create_event_emitter([EventSinkType.LOGGING, EventSinkType.METRICS])
        assert isinstance(emitter, CompositeEventEmitter)
        kinds = {type(child) for child in emitter.emitters}
        assert kinds == {LoggingEventEmitter, MetricsEventEmitter}


class TestMetricsEventEmitter:
    @pytest.fixture
    def registry(self):
        return CollectorRegistry()

    @pytest.fixture
    def emitter(self, registry):
        return MetricsEventEmitter(metrics=FleetMetrics(registry=registry))

    def test_action_counter(self, registry, emitter):
        run_async(emitter.emit(_event(EventType.ACTION_EXECUTED, action="approve-plan", success=True)))
        run_async(emitter.emit(_event(EventType.ACTION_EXECUTED, action="approve-plan", success=False)))

        assert registry.get_sample_value(
            "fleet_actions_total", {"action": "approve-plan", "result": "success"}
        ) == 1.0
        assert registry.get_sample_value(
            "fleet_actions_total", {"action": "approve-plan", "result": "failure"}
        ) == 1.0

    def test_agent_lifecycle(self, registry, emitter):
        run_async(emitter.emit(_event(EventType.AGENT_LAUNCHED, stage="qa")))

        run_async(
            emitter.emit(
                _event(EventType.AGENT_EXITED, stage="qa", exit_code=0, duration_seconds=420.0)
            )
        )

        assert registry.get_sample_value("fleet_agent_launches_total", {"stage": "qa"}) == 1.0
        assert registry.get_sample_value(
            "fleet_agent_exits_total", {"stage": "qa", "result": "success"}
        ) == 1.0
        assert registry.get_sample_value(
            "fleet_agent_run_duration_seconds_sum", {"stage": "qa"}
        ) == 420.0

    def test_transition_chain_review_and_error_counters(self, registry, emitter):
        run_async(emitter.emit(_event(EventType.STATE_TRANSITION, from_stage="qa", to_stage="submission-prep")))
        run_async(emitter.emit(_event(EventType.CHAIN_ACTION, action="send-for-qa")))
        run_async(emitter.emit(_event(EventType.NEEDS_REVIEW, qa_round=3)))
        run_async(emitter.emit(_event(EventType.ERROR, operation="chain_action")))

        assert registry.get_sample_value(
            "fleet_stage_transitions_total",
            {"from_stage": "qa", "to_stage": "submission-prep"},
        ) == 1.0
        assert registry.get_sample_value(
            "fleet_chain_actions_total", {"action": "send-for-qa"}
        ) == 1.0
        assert registry.get_sample_value("fleet_qa_needs_review_total") == 1.0
        assert registry.get_sample_value(
            "fleet_errors_total", {"operation": "chain_action"}
        ) == 1.0

    def test_bad_details_are_logged_not_raised(self, emitter):
        run_async(emitter.emit(_event(EventType.AGENT_EXITED, exit_code="not-a-number")))

    def test_generate_output(self, registry, emitter):
        run_async(emitter.emit(_event(EventType.CHAIN_ACTION, action="qa-fix-and-retest")))
        output = generate_metrics_output(registry).decode()
        assert 'fleet_chain_actions_total{action="qa-fix-and-retest"} 1.0' in output

    def test_running_gauge_reads_slot(self, registry, emitter):
        slot = {"busy": True}
        emitter.metrics.track_agent_slot(lambda: slot["busy"])
        assert registry.get_sample_value("fleet_agent_running") == 1.0

        slot["busy"] = False
        assert registry.get_sample_value("fleet_agent_running") == 0.0

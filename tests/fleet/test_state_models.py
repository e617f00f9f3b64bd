"""Unit and property tests for pipeline stage derivation and QA rounds."""

from hypothesis import given, settings, strategies as st

from src.fleet.state.models import (
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


class TestDeriveStage:
    def test_no_pipeline_label_is_idea(self):
        assert derive_stage(["agent:running", "priority:high"]) == PipelineStage.IDEA

    def test_stage_from_pipeline_label(self):
        assert derive_stage(["pipeline:qa", "qa:round-2"]) == PipelineStage.QA

    def test_plan_pending_refines_research_complete(self):
        labels = ["pipeline:research-complete", "plan:pending"]
        assert derive_stage(labels) == PipelineStage.PLAN_PENDING

    def test_plan_approved_refines_research_complete(self):
        labels = ["pipeline:research-complete", "plan:approved"]
        assert derive_stage(labels) == PipelineStage.PLAN_APPROVED

    def test_plan_label_outside_research_complete_is_ignored(self):
        assert derive_stage(["pipeline:development", "plan:approved"]) == PipelineStage.DEVELOPMENT

    def test_unknown_pipeline_label_is_idea(self):
        assert derive_stage(["pipeline:launch-party"]) == PipelineStage.IDEA


class TestQaRounds:
    def test_next_round_is_one_without_labels(self):
        assert next_qa_round(["pipeline:development"]) == 1

    def test_next_round_is_max_plus_one(self):
        assert next_qa_round(["qa:round-1", "qa:round-3", "qa:round-2"]) == 4

    def test_current_round_none_without_labels(self):
        assert current_qa_round([]) is None

    def test_round_labels_filter(self):
        labels = ["qa:round-2", "qa:needs-review", "qa:round-x", "pipeline:qa"]
        assert qa_round_labels(labels) == ["qa:round-2"]

    def test_round_label_format(self):
        assert qa_round_label(3) == "qa:round-3"


class TestHelpers:
    def test_pipeline_labels(self):
        labels = ["pipeline:qa", "agent:running", "pipeline:submitted"]
        assert pipeline_labels(labels) == ["pipeline:qa", "pipeline:submitted"]

    def test_parse_agent_stage(self):
        assert parse_agent_stage("qa-fixes") == AgentStage.QA_FIXES
        assert parse_agent_stage("launch") is None
        assert parse_agent_stage(None) is None

    def test_stage_label(self):
        assert PipelineStage.KIT_MANAGEMENT.label == "pipeline:kit-management"


@settings(max_examples=100)
@given(rounds=st.lists(st.integers(min_value=1, max_value=50), max_size=6))
def test_next_round_follows_highest_round(rounds):
    labels = [qa_round_label(n) for n in rounds] + ["pipeline:qa"]
    expected = max(rounds) + 1 if rounds else 1
    assert next_qa_round(labels) == expected

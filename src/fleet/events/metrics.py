"""Prometheus metrics for fleet observability.

Metrics are exposed at the `/metrics` endpoint in Prometheus format.

Metrics Defined:
- fleet_actions_total: Counter of executed board actions
- fleet_agent_launches_total: Counter of agent launches per stage
- fleet_agent_exits_total: Counter of agent exits per stage and result
- fleet_agent_run_duration_seconds: Histogram of agent run time
- fleet_agent_running: Gauge, 1 while the worker slot is occupied (read
  from the agent manager at scrape time, see track_agent_slot)
- fleet_stage_transitions_total: Counter of `pipeline:*` label moves
- fleet_chain_actions_total: Counter of chained follow-up actions
- fleet_qa_needs_review_total: Counter of epics flagged for review
- fleet_errors_total: Counter of background failures per operation

The MetricsEventEmitter updates these from pipeline events.
"""

import logging
from typing import Callable, Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from src.fleet.events.emitter import EventEmitter
from src.fleet.events.models import EventType, PipelineEvent


logger = logging.getLogger(__name__)


# Agent runs last from a minute to several hours
DEFAULT_DURATION_BUCKETS = (
    60.0,     # 1 minute
    300.0,    # 5 minutes
    600.0,    # 10 minutes
    1800.0,   # 30 minutes
    3600.0,   # 1 hour
    7200.0,   # 2 hours
    14400.0,  # 4 hours
)


class FleetMetrics:
    """Container for all fleet Prometheus metrics.

    Supports custom registries for testing.

    Example:
        >>> metrics = FleetMetrics(registry=CollectorRegistry())
        >>> metrics.record_action("start-research", success=True)
        >>> metrics.record_agent_exit("research", exit_code=0, duration_seconds=412.0)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize fleet metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.actions_total = Counter(
            "fleet_actions_total",
            "Total number of board actions executed",
            labelnames=["action", "result"],
            registry=self.registry,
        )

        self.agent_launches_total = Counter(
            "fleet_agent_launches_total",
            "Total number of agent launches",
            labelnames=["stage"],
            registry=self.registry,
        )

        self.agent_exits_total = Counter(
            "fleet_agent_exits_total",
            "Total number of pipeline agent exits",
            labelnames=["stage", "result"],
            registry=self.registry,
        )

        self.agent_run_duration_seconds = Histogram(
            "fleet_agent_run_duration_seconds",
            "Wall-clock run time of pipeline agents in seconds",
            labelnames=["stage"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.agent_running = Gauge(
            "fleet_agent_running",
            "1 while an agent occupies the worker slot",
            registry=self.registry,
        )

        self.stage_transitions_total = Counter(
            "fleet_stage_transitions_total",
            "Total number of pipeline stage transitions",
            labelnames=["from_stage", "to_stage"],
            registry=self.registry,
        )

        self.chain_actions_total = Counter(
            "fleet_chain_actions_total",
            "Total number of chained follow-up actions",
            labelnames=["action"],
            registry=self.registry,
        )

        self.qa_needs_review_total = Counter(
            "fleet_qa_needs_review_total",
            "Total number of epics flagged for human review after QA",
            registry=self.registry,
        )

        self.errors_total = Counter(
            "fleet_errors_total",
            "Total number of background pipeline failures",
            labelnames=["operation"],
            registry=self.registry,
        )

    def record_action(self, action: str, success: bool) -> None:
        result = "success" if success else "failure"
        self.actions_total.labels(action=action, result=result).inc()

    def record_agent_launch(self, stage: str) -> None:
        self.agent_launches_total.labels(stage=stage).inc()

    def track_agent_slot(self, is_occupied: Callable[[], bool]) -> None:
        """Drive fleet_agent_running from the worker slot itself.

        Stops, ad hoc launches and exits of replaced sessions raise no
        pipeline events, so the gauge is sampled from the slot instead.

        Args:
            is_occupied: Returns True while an agent holds the slot.
        """
        self.agent_running.set_function(lambda: 1.0 if is_occupied() else 0.0)

    def record_agent_exit(
        self,
        stage: str,
        exit_code: int,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Record a pipeline agent exit.

        Args:
            stage: Agent stage of the exited session.
            exit_code: Worker exit code; 0 counts as success.
            duration_seconds: Run time, when known.
        """
        result = "success" if exit_code == 0 else "failure"
        self.agent_exits_total.labels(stage=stage, result=result).inc()
        if duration_seconds is not None:
            self.agent_run_duration_seconds.labels(stage=stage).observe(
                duration_seconds
            )


# Global metrics instance for the default registry
_default_metrics: Optional[FleetMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> FleetMetrics:
    """Get or create the fleet metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.

    Returns:
        FleetMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return FleetMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = FleetMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text output for the /metrics endpoint."""
    target_registry = registry or REGISTRY
    return generate_latest(target_registry)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    Attributes:
        metrics: The FleetMetrics instance to update.
    """

    def __init__(
        self,
        metrics: Optional[FleetMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        if metrics is not None:
            self._metrics = metrics
        else:
            self._metrics = get_metrics(registry)

    @property
    def metrics(self) -> FleetMetrics:
        return self._metrics

    async def emit(self, event: PipelineEvent) -> None:
        """Update metrics based on the pipeline event.

        Args:
            event: The pipeline event to process.
        """
        details = event.details
        try:
            if event.event_type == EventType.ACTION_EXECUTED:
                self._metrics.record_action(
                    str(details.get("action", "unknown")),
                    success=bool(details.get("success", True)),
                )
            elif event.event_type == EventType.AGENT_LAUNCHED:
                self._metrics.record_agent_launch(str(details.get("stage", "adhoc")))
            elif event.event_type == EventType.AGENT_EXITED:
                duration = details.get("duration_seconds")
                self._metrics.record_agent_exit(
                    str(details.get("stage", "unknown")),
                    exit_code=int(details.get("exit_code", -1)),
                    duration_seconds=float(duration) if duration is not None else None,
                )
            elif event.event_type == EventType.STATE_TRANSITION:
                self._metrics.stage_transitions_total.labels(
                    from_stage=str(details.get("from_stage", "unknown")),
                    to_stage=str(details.get("to_stage", "unknown")),
                ).inc()
            elif event.event_type == EventType.CHAIN_ACTION:
                self._metrics.chain_actions_total.labels(
                    action=str(details.get("action", "unknown"))
                ).inc()
            elif event.event_type == EventType.NEEDS_REVIEW:
                self._metrics.qa_needs_review_total.inc()
            elif event.event_type == EventType.ERROR:
                self._metrics.errors_total.labels(
                    operation=str(details.get("operation", "unknown"))
                ).inc()
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "epic_id": event.epic_id,
                    "error": str(e),
                },
            )

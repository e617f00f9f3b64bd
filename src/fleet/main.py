"""FastAPI application entry point for the fleet orchestrator.

This module provides the HTTP surface of the fleet pipeline: the board's
action endpoint, agent status/launch/stop, health and Prometheus metrics.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import ValidationError

from .actions.handler import ActionRequestParser, RequestValidationError
from .actions.registry import UnknownActionError
from .cache import TTLCache
from .config import FleetSettings, get_settings
from .events.emitter import EventEmitter, EventSinkType, create_event_emitter
from .events.metrics import generate_metrics_output, get_metrics
from .labels.beads import BeadsClient
from .orchestrator import ActionExecutionError, PipelineOrchestrator
from .runner.agent import AgentProcessManager
from .runner.models import AlreadyRunningError, LaunchSpec
from .tasks import BackgroundTaskRunner

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances, initialized during lifespan startup
settings: FleetSettings
orchestrator: Optional[PipelineOrchestrator] = None
agent_manager: Optional[AgentProcessManager] = None
task_runner: Optional[BackgroundTaskRunner] = None
event_emitter: Optional[EventEmitter] = None
request_parser = ActionRequestParser()


def _log_configuration(settings: FleetSettings) -> None:
    """Log configuration values on startup.

    Args:
        settings: The fleet settings to log.
    """
    logger.info("Fleet configuration:")
    logger.info(f"  Factory Repo Path: {settings.factory_repo_path}")
    logger.info(f"  Factory Repo Name: {settings.factory_repo_name}")
    logger.info(f"  Apps Base Path: {settings.apps_base_path}")
    logger.info(f"  Claude Binary: {settings.claude_bin}")
    logger.info(f"  Agent Log Dir: {settings.log_dir}")
    logger.info(f"  Default Model: {settings.default_model}")
    logger.info(f"  Default Max Turns: {settings.default_max_turns}")
    logger.info(f"  Max QA Rounds: {settings.max_qa_rounds}")
    logger.info(f"  bd Path: {settings.bd_path}")
    logger.info(f"  bd Timeout Seconds: {settings.bd_timeout_seconds}")
    logger.info(f"  Cache TTL Seconds: {settings.cache_ttl_seconds}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and validation
    - Dependency wiring for the orchestrator
    - Cancelling transcript readers on shutdown (agents keep running)
    """
    global settings, orchestrator, agent_manager, task_runner, event_emitter

    logger.info("Fleet orchestrator starting up...")

    settings = get_settings()
    _log_configuration(settings)

    task_runner = BackgroundTaskRunner()
    event_emitter = create_event_emitter(
        [EventSinkType.LOGGING, EventSinkType.METRICS]
    )
    agent_manager = AgentProcessManager.from_settings(settings, task_runner)
    get_metrics().track_agent_slot(agent_manager.is_busy)
    orchestrator = _build_orchestrator(settings, agent_manager, event_emitter)

    logger.info("Fleet orchestrator started successfully")

    yield

    logger.info("Fleet orchestrator shutting down...")

    if task_runner is not None:
        await task_runner.cancel_all()
    if event_emitter is not None:
        await event_emitter.close()

    logger.info("Fleet orchestrator shutdown complete")


def _build_orchestrator(
    cfg: FleetSettings,
    manager: AgentProcessManager,
    emitter: EventEmitter,
) -> PipelineOrchestrator:
    """Wire the beads adapter, cache and agent manager into an orchestrator.

    Args:
        cfg: Validated fleet settings.
        manager: The agent process manager.
        emitter: Event emitter shared with the transition resolver.

    Returns:
        Fully wired PipelineOrchestrator.
    """
    cache = TTLCache(ttl_seconds=cfg.cache_ttl_seconds)
    beads = BeadsClient(
        bd_path=cfg.bd_path,
        repo_paths=[cfg.factory_repo_path],
        timeout=cfg.bd_timeout_seconds,
        cache=cache,
    )

    return PipelineOrchestrator(
        label_store=beads,
        issues=beads,
        qa_inspector=beads,
        agent_manager=manager,
        factory_repo_path=cfg.factory_repo_path,
        factory_repo_name=cfg.factory_repo_name,
        apps_base_path=cfg.apps_base_path,
        cache=cache,
        max_qa_rounds=cfg.max_qa_rounds,
        event_emitter=emitter,
    )


app = FastAPI(
    title="Beads Fleet Orchestrator",
    description="Pipeline orchestration for fleet board epics and their agents",
    version="1.0.0",
    lifespan=lifespan,
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _not_initialized() -> JSONResponse:
    logger.error("Fleet orchestrator not initialized")
    return _error(503, "Fleet orchestrator not initialized")


@app.get("/health")
async def health():
    """Liveness probe endpoint."""
    return {"status": "healthy"}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)


@app.post("/api/fleet/action")
async def fleet_action(request: Request):
    """Execute a pipeline action on an epic.

    Body: {epicId, epicTitle, action, feedback?, currentLabels?}

    Returns:
        200 {success, action, epicId, session?, stopped?, pid?}
        400 {error} for malformed requests and unknown actions
        500 {error: "Failed to execute <action> on <epicId>: <message>"}
    """
    if orchestrator is None:
        return _not_initialized()

    try:
        action_request = request_parser.parse_body(await request.body())
    except RequestValidationError as exc:
        return _error(400, exc.message)

    try:
        result = await orchestrator.execute(action_request)
    except UnknownActionError as exc:
        return _error(400, str(exc))
    except ActionExecutionError as exc:
        return _error(500, str(exc))

    return result.to_response()


@app.get("/api/agent/status")
async def agent_status():
    """Report the running agent and the tail of its transcript."""
    if agent_manager is None:
        return _not_initialized()
    return agent_manager.status().to_response()


@app.post("/api/agent/launch")
async def agent_launch(request: Request):
    """Launch an ad hoc agent with no epic attached.

    Body: {repoPath, prompt, repoName?, model?, maxTurns?, allowedTools?}

    Returns:
        200 {success, session}
        400 {error} for invalid bodies
        409 {error} when an agent is already running
        500 {error} when the worker cannot be started
    """
    if agent_manager is None:
        return _not_initialized()

    try:
        payload = await request.json()
        spec = LaunchSpec.model_validate(payload)
    except ValidationError as exc:
        message = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        return _error(400, f"Invalid launch request: {message}")
    except ValueError:
        return _error(400, "Invalid JSON body")

    # Ad hoc sessions never drive pipeline transitions
    spec = spec.model_copy(update={"epic_id": None, "pipeline_stage": None})

    try:
        session = await agent_manager.launch(spec)
    except AlreadyRunningError as exc:
        return _error(409, str(exc))
    except OSError as exc:
        return _error(500, f"Failed to launch agent: {exc}")

    get_metrics().record_agent_launch("adhoc")

    return {"success": True, "session": session.to_response()}


@app.post("/api/agent/stop")
async def agent_stop():
    """Terminate the running agent's process group."""
    if agent_manager is None:
        return _not_initialized()
    return agent_manager.stop().to_response()


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.fleet.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
    )

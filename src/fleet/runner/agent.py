"""Single-slot agent process manager.

Launches the claude CLI as a detached subprocess in its own process
group, turns its stream-json output into a readable transcript, and
reports back through an exit hook when the worker finishes. Exactly one
agent runs at a time; the slot is test-and-set under an asyncio lock.
"""

import asyncio
import logging
import os
import re
import signal
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Awaitable, Callable, List, Optional

from src.fleet.config import FleetSettings
from src.fleet.runner.formatting import format_agent_event, parse_event_line
from src.fleet.runner.models import (
    AgentSession,
    AgentStatus,
    AlreadyRunningError,
    LaunchSpec,
    StopResult,
)
from src.fleet.tasks import BackgroundTaskRunner

logger = logging.getLogger(__name__)

ExitHook = Callable[[AgentSession, int], Awaitable[None]]

# stream-json events carry whole tool results on one line
STREAM_LIMIT_BYTES = 16 * 1024 * 1024
STREAM_READ_CHUNK_BYTES = 64 * 1024
PROMPT_PREVIEW_LENGTH = 200

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.-]")


def _clock_time() -> str:
    return datetime.now().strftime("%H:%M:%S")


class AgentSlot:
    """Holds the single running agent and its process handle.

    Attributes:
        session: The registered session, or None when the slot is empty.
        process: The subprocess backing the session.
    """

    def __init__(self) -> None:
        self.session: Optional[AgentSession] = None
        self.process: Optional[asyncio.subprocess.Process] = None
        self.watcher: Optional[asyncio.Task] = None

    @property
    def occupied(self) -> bool:
        return self.session is not None

    def try_acquire(
        self, session: AgentSession, process: asyncio.subprocess.Process
    ) -> bool:
        """Register a session if the slot is empty.

        Returns:
            True if the session now owns the slot.
        """
        if self.session is not None:
            return False
        self.session = session
        self.process = process
        return True

    def release(self, pid: Optional[int] = None) -> Optional[AgentSession]:
        """Empty the slot.

        Args:
            pid: When given, release only if the registered session has
                this pid. Exits of replaced sessions are ignored this way.

        Returns:
            The released session, or None if nothing was released.
        """
        session = self.session
        if session is None:
            return None
        if pid is not None and session.pid != pid:
            return None
        self.session = None
        self.process = None
        self.watcher = None
        return session


class AgentProcessManager:
    """Launches, observes and stops the single fleet agent.

    Attributes:
        claude_bin: Worker executable.
        log_dir: Directory receiving one transcript file per launch.
        default_model: Model used when a launch does not name one.
        default_max_turns: Turn budget used when a launch does not set one.
        default_allowed_tools: Capability list used by default.
        status_log_tail_bytes: Transcript bytes returned by status().

    Example:
        >>> manager = AgentProcessManager("claude", "/tmp/agent-logs", BackgroundTaskRunner())
        >>> session = await manager.launch(LaunchSpec(repo_path="/srv/app", prompt="..."))
        >>> manager.stop()
    """

    def __init__(
        self,
        claude_bin: str,
        log_dir: str,
        task_runner: BackgroundTaskRunner,
        default_model: str = "sonnet",
        default_max_turns: int = 200,
        default_allowed_tools: str = "Bash,Read,Write,Edit,Glob,Grep",
        status_log_tail_bytes: int = 8192,
    ):
        self.claude_bin = claude_bin
        self.log_dir = Path(log_dir)
        self.default_model = default_model
        self.default_max_turns = default_max_turns
        self.default_allowed_tools = default_allowed_tools
        self.status_log_tail_bytes = status_log_tail_bytes
        self._task_runner = task_runner
        self._slot = AgentSlot()
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: FleetSettings, task_runner: BackgroundTaskRunner
    ) -> "AgentProcessManager":
        return cls(
            claude_bin=settings.claude_bin,
            log_dir=settings.log_dir,
            task_runner=task_runner,
            default_model=settings.default_model,
            default_max_turns=settings.default_max_turns,
            default_allowed_tools=settings.default_allowed_tools,
            status_log_tail_bytes=settings.status_log_tail_bytes,
        )

    @property
    def current_session(self) -> Optional[AgentSession]:
        return self._slot.session

    def is_busy(self) -> bool:
        """True while an agent holds the worker slot."""
        return self._slot.occupied

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    async def launch(
        self, spec: LaunchSpec, on_exit: Optional[ExitHook] = None
    ) -> AgentSession:
        """Start an agent if the slot is free.

        Creates the working directory if needed, opens a fresh transcript,
        spawns the worker in a new process group and starts a background
        reader for its event stream.

        Args:
            spec: What to run and where.
            on_exit: Awaited once with (session, exit_code) after the worker
                exits, unless the session was stopped or replaced first.

        Returns:
            A copy of the registered session.

        Raises:
            AlreadyRunningError: If another agent holds the slot.
            OSError: If the working directory, transcript or worker
                process cannot be created.
        """
        async with self._lock:
            running = self._slot.session
            if running is not None:
                raise AlreadyRunningError(running.pid, running.repo_name)

            model = spec.model or self.default_model
            max_turns = spec.max_turns or self.default_max_turns
            allowed_tools = spec.allowed_tools or self.default_allowed_tools
            repo_name = spec.repo_name or Path(spec.repo_path).name

            Path(spec.repo_path).mkdir(parents=True, exist_ok=True)
            log_path = self._new_log_path(repo_name)
            log_handle = self._open_log(log_path, model, repo_name, spec.prompt)

            argv = self._build_argv(spec.prompt, allowed_tools, max_turns, model)
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=spec.repo_path,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.DEVNULL,
                    env=self._worker_env(),
                    start_new_session=True,
                    limit=STREAM_LIMIT_BYTES,
                )
            except OSError as exc:
                log_handle.write(f"Failed to start agent: {exc}\n")
                log_handle.close()
                logger.error(
                    "Failed to start agent: %s",
                    exc,
                    extra={"claude_bin": self.claude_bin, "repo_path": spec.repo_path},
                )
                raise

            session = AgentSession(
                pid=process.pid,
                repo_path=spec.repo_path,
                repo_name=repo_name,
                prompt=spec.prompt,
                model=model,
                log_file=str(log_path),
                epic_id=spec.epic_id,
                pipeline_stage=spec.pipeline_stage,
            )
            self._slot.try_acquire(session, process)
            self._slot.watcher = self._task_runner.spawn(
                self._watch(process, session, log_handle, on_exit),
                name=f"agent-watch-{process.pid}",
                pid=process.pid,
                epic_id=session.epic_id,
            )

        logger.info(
            "Agent launched",
            extra={
                "pid": session.pid,
                "repo_name": repo_name,
                "model": model,
                "max_turns": max_turns,
                "epic_id": session.epic_id,
                "pipeline_stage": session.pipeline_stage,
                "log_file": session.log_file,
            },
        )
        return session.model_copy()

    def _build_argv(
        self, prompt: str, allowed_tools: str, max_turns: int, model: str
    ) -> List[str]:
        return [
            self.claude_bin,
            "-p",
            prompt,
            "--allowedTools",
            allowed_tools,
            "--output-format",
            "stream-json",
            "--verbose",
            "--max-turns",
            str(max_turns),
            "--model",
            model,
        ]

    def _worker_env(self) -> dict:
        # A nested CLAUDECODE makes the worker refuse to start
        env = {key: value for key, value in os.environ.items() if key != "CLAUDECODE"}
        env["NO_COLOR"] = "1"
        return env

    def _new_log_path(self, repo_name: str) -> Path:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        stamp = re.sub(r"[:.]", "-", datetime.now(timezone.utc).isoformat())
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", repo_name)
        return self.log_dir / f"agent-{safe_name}-{stamp}.log"

    def _open_log(self, log_path: Path, model: str, repo_name: str, prompt: str) -> IO[str]:
        handle = open(log_path, "w", encoding="utf-8")
        started = datetime.now(timezone.utc).isoformat()
        handle.write(f"[{started}] Agent started: {model} in {repo_name}\n")
        handle.write(f"[{started}] Prompt: {prompt[:PROMPT_PREVIEW_LENGTH]}...\n\n")
        handle.flush()
        return handle

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    async def _watch(
        self,
        process: asyncio.subprocess.Process,
        session: AgentSession,
        log_handle: IO[str],
        on_exit: Optional[ExitHook],
    ) -> None:
        exit_code: Optional[int] = None
        try:
            try:
                await self._stream_events(process.stdout, log_handle)
            except Exception:
                logger.exception(
                    "Transcript reader failed; discarding remaining output",
                    extra={"pid": session.pid, "epic_id": session.epic_id},
                )
                await self._discard_stream(process.stdout)
            exit_code = await process.wait()
            self._handle_exit(session, exit_code, on_exit)
        finally:
            self._finalize_log(log_handle, exit_code)

    async def _stream_events(
        self, stream: Optional[asyncio.StreamReader], log_handle: IO[str]
    ) -> None:
        if stream is None:
            return

        while True:
            try:
                raw_line = await stream.readline()
            except (ValueError, asyncio.LimitOverrunError):
                # Line over STREAM_LIMIT_BYTES; the reader has dropped the chunk
                logger.warning(
                    "Skipped oversized agent output line",
                    extra={"limit_bytes": STREAM_LIMIT_BYTES},
                )
                continue
            if not raw_line:
                break
            event = parse_event_line(raw_line.decode("utf-8", errors="replace"))
            if event is None:
                continue
            for line in format_agent_event(event, _clock_time()):
                log_handle.write(line + "\n")
            log_handle.flush()

    async def _discard_stream(self, stream: Optional[asyncio.StreamReader]) -> None:
        # Keeps the worker from blocking on a full stdout pipe
        if stream is None:
            return
        while await stream.read(STREAM_READ_CHUNK_BYTES):
            pass

    def _handle_exit(
        self, session: AgentSession, exit_code: int, on_exit: Optional[ExitHook]
    ) -> None:
        """Clear the slot and schedule the exit hook for a finished worker.

        The hook runs only if the exiting pid is still the registered one;
        a stopped or replaced session exits silently.
        """
        if self._slot.release(session.pid) is None:
            logger.info(
                "Ignoring exit of unregistered agent",
                extra={"pid": session.pid, "exit_code": exit_code},
            )
            return

        logger.info(
            "Agent exited",
            extra={
                "pid": session.pid,
                "exit_code": exit_code,
                "epic_id": session.epic_id,
                "pipeline_stage": session.pipeline_stage,
            },
        )
        if on_exit is not None:
            self._task_runner.spawn(
                on_exit(session, exit_code),
                name=f"agent-exit-{session.pid}",
                pid=session.pid,
                epic_id=session.epic_id,
                pipeline_stage=session.pipeline_stage,
            )

    def _finalize_log(self, log_handle: IO[str], exit_code: Optional[int]) -> None:
        try:
            code = "unknown" if exit_code is None else exit_code
            log_handle.write(f"\n[{_clock_time()}] Agent exited (code {code})\n")
        finally:
            log_handle.close()

    # ------------------------------------------------------------------
    # Status and stop
    # ------------------------------------------------------------------

    def status(self) -> AgentStatus:
        """Report the running agent with the tail of its transcript.

        An agent counts as running for as long as it holds the slot, so
        status agrees with launch. A slot whose process has exited and
        whose reader task is gone is cleared here.
        """
        session = self._slot.session
        process = self._slot.process
        if session is None or process is None:
            return AgentStatus(running=False)

        watcher = self._slot.watcher
        if process.returncode is not None and (watcher is None or watcher.done()):
            self._slot.release(session.pid)
            logger.warning(
                "Cleared slot of exited agent",
                extra={"pid": session.pid, "exit_code": process.returncode},
            )
            return AgentStatus(running=False)

        return AgentStatus(
            running=True,
            session=session.model_copy(),
            recent_log=self._read_log_tail(session.log_file),
        )

    def _read_log_tail(self, log_file: str) -> Optional[str]:
        try:
            with open(log_file, "rb") as handle:
                handle.seek(0, os.SEEK_END)
                size = handle.tell()
                handle.seek(max(0, size - self.status_log_tail_bytes))
                return handle.read().decode("utf-8", errors="replace")
        except OSError:
            return None

    def stop(self) -> StopResult:
        """Terminate the running agent's process group.

        The slot is cleared immediately; the worker's later exit is then
        ignored, so no completion transition runs for a stopped agent.
        """
        session = self._slot.session
        process = self._slot.process
        if session is None:
            return StopResult(stopped=False)

        try:
            os.killpg(session.pid, signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            if process is not None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass

        self._slot.release(session.pid)
        logger.info(
            "Agent stopped",
            extra={"pid": session.pid, "epic_id": session.epic_id},
        )
        return StopResult(stopped=True, pid=session.pid)

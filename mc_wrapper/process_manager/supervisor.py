"""Server Supervisor: spawns, watches and restarts the Minecraft server process."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from mc_wrapper.errors import SpawnError, WriteError
from mc_wrapper.models import (
    EulaRequired,
    ExitInfo,
    ProcessNotice,
    ProcessSnapshot,
    ProcessState,
    ServerEvent,
)
from mc_wrapper.parse import parse
from mc_wrapper.process_manager.line_reader import STREAM_LIMIT, read_lines
from mc_wrapper.process_manager.restart import RestartPolicy

log = logging.getLogger(__name__)

EULA_FILENAME = "eula.txt"
STOP_COMMAND = "stop"
# How long a killed process group gets to disappear
KILL_GRACE = 5.0


def build_command(
    java: str,
    server_path: str | Path,
    memory_mb: int,
    jvm_flags: str | Sequence[str] | None = None,
) -> list[str]:
    """Build the JVM argument vector.  Runs with cwd set to the jar's folder."""
    if isinstance(jvm_flags, str):
        extra = shlex.split(jvm_flags)
    else:
        extra = list(jvm_flags or [])

    return [
        java,
        f"-Xmx{memory_mb}M",
        f"-Xms{memory_mb}M",
        *extra,
        "-jar",
        Path(server_path).name,
        "nogui",
    ]


def ensure_eula(server_path: str | Path) -> bool:
    """Create eula.txt next to the jar if it's missing.  Returns True if written.

    An existing file is left alone, whatever it says.
    """
    eula = Path(server_path).with_name(EULA_FILENAME)
    if eula.exists():
        return False
    eula.write_text("eula=true\n", encoding="utf-8")
    log.info("Wrote %s", eula)
    return True


def accept_eula(server_path: str | Path) -> None:
    """Overwrite eula.txt with an accepted flag."""
    eula = Path(server_path).with_name(EULA_FILENAME)
    eula.write_text("eula=true\n", encoding="utf-8")
    log.info("Agreed to the EULA in %s", eula)


@dataclass
class ServerProcess:
    """Handle to one spawned server process."""

    process: asyncio.subprocess.Process
    pid: int
    started_at: float = field(default_factory=time.monotonic)
    eula_required: bool = False
    _reader_tasks: list[asyncio.Task[None]] = field(default_factory=list, repr=False)

    @property
    def runtime(self) -> float:
        return time.monotonic() - self.started_at


class ServerSupervisor:
    """Owns the server process: spawn, stdin, exit monitoring and restarts.

    Console output is parsed as it arrives and put on ``events`` together with
    ProcessNotices for lifecycle transitions; the router consumes that queue.
    ``run()`` is the exit monitor and the only writer of the process state
    once it is running; everyone else reads ``snapshot()``.
    """

    def __init__(
        self,
        server_path: str | Path,
        memory_mb: int = 1024,
        jvm_flags: str | Sequence[str] | None = None,
        *,
        java: str = "java",
        policy: RestartPolicy | None = None,
        stop_timeout: float = 30.0,
        command: Sequence[str] | None = None,
    ) -> None:
        self.server_path = Path(server_path)
        self.memory_mb = memory_mb
        self.jvm_flags = jvm_flags
        self.java = java
        self.policy = policy or RestartPolicy()
        self.stop_timeout = stop_timeout
        # Overrides the computed JVM command line (used by tests)
        self._command = list(command) if command else None

        self.events: asyncio.Queue[ServerEvent | ProcessNotice] = asyncio.Queue()

        self._snapshot = ProcessSnapshot()
        self._handle: ServerProcess | None = None
        self._stop_requested = asyncio.Event()
        self._stop_command_sent = False
        self._monitoring = False
        self._finished = asyncio.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def snapshot(self) -> ProcessSnapshot:
        return self._snapshot

    @property
    def state(self) -> ProcessState:
        return self._snapshot.state

    @property
    def command(self) -> list[str]:
        if self._command:
            return list(self._command)
        return build_command(self.java, self.server_path, self.memory_mb, self.jvm_flags)

    async def start(self) -> ServerProcess:
        """Spawn the server.  Idempotent: if already running, returns it."""
        if self._handle is not None and self.state in (
            ProcessState.STARTING, ProcessState.RUNNING, ProcessState.STOPPING,
        ):
            return self._handle

        self._set_state(ProcessState.STARTING)

        try:
            ensure_eula(self.server_path)
        except OSError as exc:
            self._set_state(ProcessState.STOPPED)
            raise SpawnError(f"Could not write {EULA_FILENAME}: {exc}") from exc

        argv = self.command
        cwd = self.server_path.parent
        log.info("Starting server: %s (cwd=%s)", " ".join(argv), cwd)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                limit=STREAM_LIMIT,
                # New process group so we can kill the JVM and anything it forked
                start_new_session=True,
            )
        except OSError as exc:
            self._set_state(ProcessState.STOPPED)
            raise SpawnError(f"Failed to start {argv[0]}: {exc}") from exc

        handle = ServerProcess(process=process, pid=process.pid)
        handle._reader_tasks = [
            asyncio.create_task(
                self._pump_output(handle, process.stdout, "stdout"),  # type: ignore[arg-type]
                name="server-stdout",
            ),
            asyncio.create_task(
                self._pump_output(handle, process.stderr, "stderr"),  # type: ignore[arg-type]
                name="server-stderr",
            ),
        ]
        self._handle = handle
        self._stop_command_sent = False
        self._set_state(ProcessState.RUNNING, pid=process.pid)
        log.info("Server running (pid=%s)", process.pid)
        return handle

    async def send_command(self, text: str) -> None:
        """Write one line to the server's stdin.

        Raises WriteError if the server is not RUNNING or the pipe is gone.
        """
        handle = self._handle
        if handle is None or self.state != ProcessState.RUNNING:
            raise WriteError(f"Server is not running ({self.state.value})")

        line = text.replace("\r", " ").replace("\n", " ")
        if line.strip().lstrip("/") == STOP_COMMAND:
            self._stop_command_sent = True
        await self._write_line(handle, line)

    async def run(self) -> ProcessSnapshot:
        """Start the server and keep it alive until stopped or out of retries.

        Returns the final snapshot (STOPPED, or CRASHED once the restart
        policy gives up).
        """
        self._monitoring = True
        self._finished.clear()
        eula_retried = False
        handle: ServerProcess | None = None

        try:
            while not self._stop_requested.is_set():
                try:
                    handle = await self.start()
                except SpawnError as exc:
                    log.exception("Could not start the server")
                    await self._notify(ProcessState.STOPPED, detail=str(exc))
                    return self._snapshot

                exit_info = await self._wait_for_exit(handle)
                handle = None

                if self._stop_requested.is_set() or (
                    exit_info.code == 0 and self._stop_command_sent
                ):
                    if exit_info.code != 0:
                        log.warning("Server exited with %s while stopping", exit_info.describe())
                    self._set_state(ProcessState.STOPPED, exit_info=exit_info)
                    log.info("Server stopped (%s)", exit_info.describe())
                    await self._notify(ProcessState.STOPPED, exit_info=exit_info)
                    return self._snapshot

                self._set_state(ProcessState.CRASHED, exit_info=exit_info)

                if exit_info.eula_required and not eula_retried:
                    eula_retried = True
                    try:
                        accept_eula(self.server_path)
                    except OSError as exc:
                        log.error("Failed to agree to the EULA: %s", exc)
                        await self._notify(ProcessState.CRASHED, exit_info=exit_info, detail=str(exc))
                        return self._snapshot
                    await self._notify(
                        ProcessState.CRASHED, exit_info=exit_info,
                        restart_delay=0.0, detail="agreed to the EULA",
                    )
                    continue

                self.policy.record_run(exit_info.runtime)
                delay = self.policy.next_delay()
                if delay is None:
                    log.error(
                        "Server crashed (%s); giving up after %d restart attempts",
                        exit_info.describe(), self.policy.attempt_count,
                    )
                    await self._notify(ProcessState.CRASHED, exit_info=exit_info)
                    return self._snapshot

                log.warning(
                    "Server crashed (%s); restarting in %gs (attempt %d)",
                    exit_info.describe(), delay, self.policy.attempt_count,
                )
                await self._notify(
                    ProcessState.CRASHED, exit_info=exit_info,
                    restart_delay=delay, attempt=self.policy.attempt_count,
                )
                if await self._sleep_unless_stopped(delay):
                    break

            # Stop requested between runs (e.g. during a backoff)
            self._set_state(ProcessState.STOPPED, exit_info=self._snapshot.exit_info)
            await self._notify(ProcessState.STOPPED, exit_info=self._snapshot.exit_info)
            return self._snapshot
        finally:
            if handle is not None and handle.process.returncode is None:
                # Cancelled while the server was up
                self._kill(handle)
            self._monitoring = False
            self._finished.set()

    async def stop(self) -> ProcessSnapshot:
        """Stop the server: `stop` command, wait stop_timeout, then SIGKILL."""
        self._stop_requested.set()
        if self._monitoring:
            await self._finished.wait()
        elif self._handle is not None and self._handle.process.returncode is None:
            exit_info = await self._wait_for_exit(self._handle)
            self._set_state(ProcessState.STOPPED, exit_info=exit_info)
        return self._snapshot

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_state(
        self,
        state: ProcessState,
        *,
        exit_info: ExitInfo | None = None,
        pid: int | None = None,
    ) -> None:
        self._snapshot = ProcessSnapshot(state=state, exit_info=exit_info, pid=pid)

    async def _notify(self, state: ProcessState, **kwargs) -> None:
        await self.events.put(ProcessNotice(state=state, **kwargs))

    async def _pump_output(
        self,
        handle: ServerProcess,
        stream: asyncio.StreamReader,
        name: str,
    ) -> None:
        """Parse each output line and hand it to the router."""
        async for raw in read_lines(stream, name):
            event = parse(raw)
            if isinstance(event, EulaRequired):
                handle.eula_required = True
            await self.events.put(event)

    async def _write_line(self, handle: ServerProcess, line: str) -> None:
        stdin = handle.process.stdin
        if stdin is None:
            raise WriteError("Server stdin is not piped")
        try:
            stdin.write((line + "\n").encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise WriteError(f"Server stdin is closed: {exc}") from exc

    async def _wait_for_exit(self, handle: ServerProcess) -> ExitInfo:
        """Wait for the process to exit, or stop it if a stop is requested."""
        proc = handle.process
        exit_task = asyncio.create_task(proc.wait())
        stop_task = asyncio.create_task(self._stop_requested.wait())
        try:
            done, _ = await asyncio.wait(
                {exit_task, stop_task}, return_when=asyncio.FIRST_COMPLETED,
            )
            if exit_task in done or await self._graceful_stop(handle, exit_task):
                code = await exit_task
            else:
                code = None
        finally:
            stop_task.cancel()
            if not exit_task.done():
                exit_task.cancel()

        if code is None:
            # Still holding the pipes open, nothing left worth draining
            for task in handle._reader_tasks:
                task.cancel()
        elif handle._reader_tasks:
            # Let the readers drain whatever the process printed last
            _, pending = await asyncio.wait(handle._reader_tasks, timeout=5.0)
            for task in pending:
                task.cancel()

        return ExitInfo(code=code, runtime=handle.runtime, eula_required=handle.eula_required)

    async def _graceful_stop(self, handle: ServerProcess, exit_task: asyncio.Task[int]) -> bool:
        """Send `stop`, then SIGKILL.  Returns False if the process never went away."""
        self._set_state(ProcessState.STOPPING, pid=handle.pid)
        log.info("Stopping server (pid=%s)", handle.pid)
        self._stop_command_sent = True
        try:
            await self._write_line(handle, STOP_COMMAND)
        except WriteError as exc:
            log.warning("Could not send stop command: %s", exc)

        try:
            await asyncio.wait_for(asyncio.shield(exit_task), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            log.warning("Server did not stop within %gs, killing it", self.stop_timeout)
            self._kill(handle)
            try:
                await asyncio.wait_for(asyncio.shield(exit_task), timeout=KILL_GRACE)
            except asyncio.TimeoutError:
                log.error("Server (pid=%s) survived SIGKILL, giving up on it", handle.pid)
                return False
        return True

    @staticmethod
    def _kill(handle: ServerProcess) -> None:
        try:
            os.killpg(os.getpgid(handle.pid), signal.SIGKILL)
        except (ProcessLookupError, OSError):
            pass

    async def _sleep_unless_stopped(self, delay: float) -> bool:
        """Wait out a backoff.  Returns True if a stop cut it short."""
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

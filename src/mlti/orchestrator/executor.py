"""Task supervisor - spawn, restart-on-spawn-failure, stream, report."""

import asyncio
import time
from typing import Optional
from dataclasses import dataclass

import structlog

from ..core.bus import MessageBus
from ..core.config import RetryConfig
from ..core.errors import SpawnError, ExhaustedRetriesError
from ..core.messages import Message, MessageType, Sender, SenderKind
from ..output.formatter import format_delay
from .process import ProcessLauncher, ProcessSpec, read_lines, terminate_process


logger = structlog.get_logger()

FAILED_TO_START = 1


@dataclass
class TaskOutcome:
    """Result of one supervised task."""
    index: int
    exit_code: int
    launched: bool
    attempts: int
    duration_ms: float = 0


class TaskSupervisor:
    """
    Owns the full lifecycle of one ProcessSpec.

    Features:
    - Restart on spawn failure with a delay (optional backoff)
    - Line-by-line output streaming in arrival order
    - Kill cascades on success or on exhausted restarts
    - Child termination when the supervising task is cancelled

    A process that launches and exits non-zero is never restarted. It only
    triggers the failure cascade when exit_code_failures is enabled.
    """

    def __init__(
        self,
        spec: ProcessSpec,
        bus: MessageBus,
        retry: Optional[RetryConfig] = None,
        kill_others: bool = False,
        kill_others_on_fail: bool = False,
        exit_code_failures: bool = False,
        launcher: Optional[ProcessLauncher] = None,
        kill_signal: str = "SIGTERM",
        kill_timeout: float = 5.0,
    ):
        self.spec = spec
        self.bus = bus
        self.retry = retry or RetryConfig()
        self.kill_others = kill_others
        self.kill_others_on_fail = kill_others_on_fail
        self.exit_code_failures = exit_code_failures
        self.launcher = launcher or ProcessLauncher()
        self.kill_signal = kill_signal
        self.kill_timeout = kill_timeout

        self.exit_code: Optional[int] = None
        self.attempts = 0
        self.outcome: Optional[TaskOutcome] = None

        self._task_sender = Sender(SenderKind.TASK, spec.index, spec.name)
        self._process_sender = Sender(SenderKind.PROCESS, spec.index, spec.name)
        self._process: Optional[asyncio.subprocess.Process] = None

    async def start(self) -> int:
        """
        Run the task to completion.

        Returns the process exit code, or 1 if it never launched.
        """
        start_time = time.monotonic()
        process = await self._launch_with_retry()

        if process is None:
            self.exit_code = FAILED_TO_START
            self.outcome = TaskOutcome(
                index=self.spec.index,
                exit_code=FAILED_TO_START,
                launched=False,
                attempts=self.attempts,
                duration_ms=(time.monotonic() - start_time) * 1000,
            )
            return FAILED_TO_START

        self._process = process
        try:
            exit_code = await self._stream(process)
        except asyncio.CancelledError:
            logger.info("task_cancelled", task=self.spec.name, pid=process.pid)
            await terminate_process(process, self.kill_signal, self.kill_timeout)
            raise
        except Exception as e:
            logger.error("task_stream_failed", task=self.spec.name, pid=process.pid, error=str(e))
            await terminate_process(process, self.kill_signal, self.kill_timeout)
            raise

        self.exit_code = exit_code
        self.outcome = TaskOutcome(
            index=self.spec.index,
            exit_code=exit_code,
            launched=True,
            attempts=self.attempts,
            duration_ms=(time.monotonic() - start_time) * 1000,
        )
        logger.debug("task_finished", task=self.spec.name, exit_code=exit_code)

        self._emit(Message.text(self._task_sender, "Done!", self.spec.color))

        if self.kill_others:
            self.bus.control.send(Message.control(MessageType.KILL_OTHERS, self._task_sender))
        elif exit_code != 0 and self.exit_code_failures and self.kill_others_on_fail:
            self.bus.control.send(Message.control(MessageType.KILL_ALL_ON_ERROR, self._task_sender))

        return exit_code

    async def _launch_with_retry(self) -> Optional[asyncio.subprocess.Process]:
        """Launch the process, retrying spawn failures within the budget."""
        remaining = self.retry.restart_tries

        while True:
            self.attempts += 1
            try:
                process = await self._launch()
                logger.debug(
                    "task_spawned",
                    task=self.spec.name,
                    pid=process.pid,
                    attempt=self.attempts,
                )
                return process
            except SpawnError as e:
                logger.warning("task_spawn_failed", task=self.spec.name, **e.to_dict())
                self._emit(Message.error(
                    self._task_sender,
                    f"Encountered an Error: {e.message}",
                    self.spec.color,
                ))

            if remaining <= 0:
                break

            delay_ms = self.retry.delay_ms(self.attempts)
            self._emit(Message.error(
                self._task_sender,
                f"Process failed to start, retrying in {format_delay(delay_ms)}",
                self.spec.color,
            ))
            logger.info(
                "task_retry_scheduled",
                task=self.spec.name,
                delay_ms=delay_ms,
                remaining=remaining,
            )
            remaining -= 1
            await asyncio.sleep(delay_ms / 1000.0)

        error = ExhaustedRetriesError(
            "Encountered an Error: Could not start process.",
            task_index=self.spec.index,
            attempts=self.attempts,
        )
        logger.error("task_retries_exhausted", task=self.spec.name, **error.to_dict())
        self._emit(Message.error(self._task_sender, error.message, self.spec.color))

        if self.kill_others_on_fail:
            self.bus.control.send(Message.control(MessageType.KILL_ALL_ON_ERROR, self._task_sender))
        return None

    async def _launch(self) -> asyncio.subprocess.Process:
        """
        Launch one attempt.

        The launch runs to completion even if this task is cancelled, so a
        child that was already created is terminated instead of orphaned.
        """
        launch = asyncio.ensure_future(self.launcher.launch(self.spec))
        try:
            return await asyncio.shield(launch)
        except asyncio.CancelledError:
            try:
                process = await launch
            except SpawnError:
                process = None
            if process is not None:
                logger.info("task_cancelled_during_launch", task=self.spec.name, pid=process.pid)
                await terminate_process(process, self.kill_signal, self.kill_timeout)
            raise

    async def _stream(self, process: asyncio.subprocess.Process) -> int:
        """Forward output lines while waiting for exit."""
        waiter = asyncio.ensure_future(process.wait())
        try:
            if process.stdout is not None:
                async for raw in read_lines(process.stdout):
                    line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                    if line and not self.spec.hidden:
                        self._emit(Message.text(self._process_sender, line, self.spec.color))
            return await waiter
        finally:
            if not waiter.done():
                waiter.cancel()

    def _emit(self, message: Message) -> None:
        self.bus.data.send(message)

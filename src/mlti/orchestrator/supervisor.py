"""
Supervisor - root of a run.

Wires the message bus, scheduler, task supervisors and output sequencer,
installs interrupt handling and drives the control channel listener that
triggers cascades and the final shutdown.
"""

import asyncio
import signal
from enum import Enum
from typing import Callable, Optional

import structlog
from rich.console import Console

from ..core.bus import MessageBus
from ..core.config import MltiConfig
from ..core.errors import ChannelClosedError
from ..core.messages import Message, MessageType, MAIN_SENDER
from ..output.formatter import LineRenderer
from ..output.sequencer import OutputSequencer
from .commands import build_specs
from .executor import TaskSupervisor
from .process import ProcessLauncher, ProcessSpec
from .scheduler import Scheduler


logger = structlog.get_logger()


class SupervisorState(Enum):
    """Supervisor lifecycle states."""
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"  # Cascade received, tearing down
    SHUTDOWN = "shutdown"


class Supervisor:
    """
    Root orchestration for one mlti run.

    Responsibilities:
    - Build task supervisors from the config and queue them
    - Run the scheduler and the output sequencer
    - Handle control messages one at a time, in arrival order
    - Turn SIGINT/SIGTERM into a KILL_ALL cascade
    """

    def __init__(
        self,
        config: MltiConfig,
        console: Optional[Console] = None,
        launcher: Optional[ProcessLauncher] = None,
    ):
        self.config = config
        self.launcher = launcher or ProcessLauncher()
        self.renderer = LineRenderer(
            console=console,
            raw=config.output.raw,
            no_color=config.output.no_color,
            timings=config.output.timings,
            timestamp_format=config.output.timestamp_format,
        )

        self._state = SupervisorState.INITIALIZING
        self.bus: Optional[MessageBus] = None
        self.scheduler: Optional[Scheduler] = None
        self.sequencer: Optional[OutputSequencer] = None
        self.tasks: list[TaskSupervisor] = []
        self.control_log: list[MessageType] = []
        self._signals: list[signal.Signals] = []

        self._handlers: dict[MessageType, Callable[[Message], Optional[int]]] = {
            MessageType.KILL_ALL: self._on_kill_all,
            MessageType.KILL_OTHERS: self._on_kill_others,
            MessageType.KILL_ALL_ON_ERROR: self._on_kill_all_on_error,
            MessageType.COMPLETE: self._on_complete,
            MessageType.TEXT: self._relay,
            MessageType.ERROR: self._relay,
            MessageType.KILL: self._relay,
        }

    @property
    def state(self) -> SupervisorState:
        return self._state

    async def run(self) -> int:
        """Run every configured command. Returns the process exit code."""
        specs = build_specs(self.config)
        if not specs:
            self.renderer.banner("No processes to run.")
            self._state = SupervisorState.SHUTDOWN
            return 0

        self.bus = MessageBus()
        self.sequencer = OutputSequencer(self.renderer, grouped=self.config.output.group)
        self.scheduler = Scheduler(
            self.bus,
            total=len(specs),
            max_concurrency=self.config.resolved_max_processes(),
        )

        for spec in specs:
            task = self._build_task(spec)
            self.tasks.append(task)
            self.scheduler.schedule(task)

        logger.info(
            "supervisor_starting",
            tasks=len(specs),
            max_concurrency=self.scheduler.stats()["max_concurrent"],
            grouped=self.config.output.group,
        )

        self._install_signal_handlers()
        self._state = SupervisorState.RUNNING
        sequencer_task = asyncio.create_task(self.sequencer.run(self.bus.data), name="mlti-sequencer")
        scheduler_task = asyncio.create_task(self.scheduler.run(), name="mlti-scheduler")

        try:
            exit_code = await self._listen_control()
            self._state = SupervisorState.DRAINING
            finished = await scheduler_task
            await sequencer_task
        finally:
            self._remove_signal_handlers()
            for task in (scheduler_task, sequencer_task):
                if not task.done():
                    task.cancel()
            self.bus.close()

        self.renderer.banner("All processes finished." if finished else "Processes terminated.")
        self._state = SupervisorState.SHUTDOWN
        logger.info("supervisor_stopped", exit_code=exit_code, **self.scheduler.stats())
        return exit_code

    def _build_task(self, spec: ProcessSpec) -> TaskSupervisor:
        return TaskSupervisor(
            spec,
            self.bus,
            retry=self.config.retry,
            kill_others=self.config.kill_others,
            kill_others_on_fail=self.config.kill_others_on_fail,
            exit_code_failures=self.config.exit_code_failures,
            launcher=self.launcher,
            kill_signal=self.config.kill_signal,
            kill_timeout=self.config.kill_timeout_seconds,
        )

    # ==================== Control Channel ====================

    async def _listen_control(self) -> int:
        """
        Handle control messages strictly one at a time.

        Returns after the first terminating message, so simultaneous
        cascades only shut the run down once.
        """
        while True:
            try:
                message = await self.bus.control.recv()
            except ChannelClosedError:
                logger.error("control_channel_closed")
                self._stop_everything()
                return 1

            self.control_log.append(message.type)
            exit_code = self._handlers[message.type](message)
            if exit_code is not None:
                return exit_code

    def _on_kill_all(self, message: Message) -> int:
        self._cascade(message, "Stopping all processes.")
        return 0

    def _on_kill_others(self, message: Message) -> int:
        self._cascade(message, f"{message.sender.name} exited, stopping other processes.")
        return 0

    def _on_kill_all_on_error(self, message: Message) -> int:
        self._cascade(message, f"{message.sender.name} failed, stopping all processes.", error=True)
        return 1

    def _on_complete(self, message: Message) -> int:
        self._stop_everything()
        return self.scheduler.success_code(self.config.success_terms)

    def _relay(self, message: Message) -> None:
        self.bus.data.send(message)

    def _cascade(self, message: Message, banner: str, error: bool = False) -> None:
        logger.info(
            "cascade_triggered",
            type=message.type.value,
            sender=message.sender.name,
            index=message.sender.index,
        )
        announce = Message.error if error else Message.text
        self.bus.data.send(announce(MAIN_SENDER, banner))
        self._stop_everything()

    def _stop_everything(self) -> None:
        self.bus.data.send(Message.control(MessageType.KILL))
        self.scheduler.abort()

    # ==================== Signals ====================

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
                self._signals.append(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                logger.debug("signal_handler_unavailable", signal=sig.name)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        self.request_shutdown()

    def request_shutdown(self) -> None:
        """Inject a KILL_ALL, as an operator interrupt does."""
        if self.bus is not None:
            self.bus.control.send(Message.control(MessageType.KILL_ALL, MAIN_SENDER))

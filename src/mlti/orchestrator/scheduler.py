"""Bounded-concurrency scheduling of task supervisors."""

import asyncio
import sys
from typing import Any, Optional

import structlog

from ..core.bus import MessageBus
from ..core.messages import Message, MessageType, SCHEDULER_SENDER
from .executor import TaskSupervisor, FAILED_TO_START


logger = structlog.get_logger()

UNBOUNDED = sys.maxsize


class Scheduler:
    """
    Admits queued supervisors up to a concurrency cap.

    Features:
    - FIFO admission in queue order
    - Concurrent task limit (unbounded when no cap is given)
    - Natural completion emits exactly one COMPLETE control message
    - Abort cancels everything in flight and emits nothing

    The counters are only touched from run(), so no lock is needed.
    """

    def __init__(
        self,
        bus: MessageBus,
        total: int,
        max_concurrency: Optional[int] = None,
    ):
        self.bus = bus
        self.total = total
        self.cap = max_concurrency if max_concurrency else UNBOUNDED

        self._pending: asyncio.Queue[TaskSupervisor] = asyncio.Queue()
        self._abort = asyncio.Event()
        self._finished = False

        self.running = 0
        self.completed = 0
        self.max_running = 0
        self.exit_codes: dict[int, int] = {}
        self.completion_order: list[int] = []

    def schedule(self, task: TaskSupervisor) -> None:
        """Queue a supervisor for execution."""
        self._pending.put_nowait(task)

    def abort(self) -> None:
        """Stop admitting work and cancel everything in flight."""
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def queue_size(self) -> int:
        return self._pending.qsize()

    async def run(self) -> bool:
        """
        Run until every task completes or an abort arrives.

        Returns True on natural completion, False when aborted.
        """
        if self._finished:
            raise RuntimeError("Scheduler has already run")

        in_flight: dict[asyncio.Task, TaskSupervisor] = {}
        abort_waiter = asyncio.ensure_future(self._abort.wait())

        try:
            while self.completed < self.total:
                while (
                    self.completed < self.total
                    and self.running < self.cap
                    and self.running + self.completed < self.total
                ):
                    supervisor = await self._next_pending(abort_waiter)
                    if supervisor is None:
                        break
                    task = asyncio.create_task(
                        supervisor.start(),
                        name=f"mlti-task-{supervisor.spec.index}",
                    )
                    in_flight[task] = supervisor
                    self.running += 1
                    self.max_running = max(self.max_running, self.running)
                    logger.debug(
                        "scheduler_task_admitted",
                        task=supervisor.spec.name,
                        running=self.running,
                        completed=self.completed,
                    )

                if abort_waiter.done():
                    await self._cancel_all(in_flight)
                    return False

                done, _ = await asyncio.wait(
                    [*in_flight, abort_waiter],
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if abort_waiter in done:
                    await self._cancel_all(in_flight)
                    return False

                for task in done:
                    supervisor = in_flight.pop(task)
                    self.running -= 1
                    self.completed += 1
                    self.exit_codes[supervisor.spec.index] = self._exit_code(task, supervisor)
                    self.completion_order.append(supervisor.spec.index)

            logger.debug("scheduler_complete", completed=self.completed, total=self.total)
            self.bus.control.send(Message.control(MessageType.COMPLETE, SCHEDULER_SENDER))
            return True
        finally:
            self._finished = True
            if not abort_waiter.done():
                abort_waiter.cancel()

    async def _next_pending(self, abort_waiter: asyncio.Future) -> Optional[TaskSupervisor]:
        """Dequeue the next supervisor, or None if an abort arrives first."""
        try:
            return self._pending.get_nowait()
        except asyncio.QueueEmpty:
            pass

        getter = asyncio.ensure_future(self._pending.get())
        done, _ = await asyncio.wait(
            [getter, abort_waiter],
            return_when=asyncio.FIRST_COMPLETED,
        )
        if getter in done:
            return getter.result()
        getter.cancel()
        return None

    async def _cancel_all(self, in_flight: dict[asyncio.Task, TaskSupervisor]) -> None:
        logger.info("scheduler_aborted", running=self.running, completed=self.completed)
        for task in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        for task, supervisor in in_flight.items():
            if supervisor.exit_code is not None:
                self.exit_codes[supervisor.spec.index] = supervisor.exit_code
        in_flight.clear()
        self.running = 0

    def _exit_code(self, task: asyncio.Task, supervisor: TaskSupervisor) -> int:
        if task.cancelled():
            return FAILED_TO_START
        error = task.exception()
        if error is not None:
            logger.error(
                "scheduler_task_error",
                task=supervisor.spec.name,
                error=str(error),
                type=type(error).__name__,
            )
            return FAILED_TO_START
        return task.result()

    def success_code(self, policy: Optional[str] = None) -> int:
        """
        Exit code of a naturally completed run under a success policy.

        "all" gives the first non-zero code in completion order, "first" and
        "last" the code of the first or last task to finish. Without a policy
        the run succeeds. A signal death (negative code) maps to 128 + signal.
        """
        codes = [self.exit_codes[index] for index in self.completion_order]
        if policy is None or not codes:
            return 0

        if policy == "first":
            code = codes[0]
        elif policy == "last":
            code = codes[-1]
        else:
            code = next((c for c in codes if c != 0), 0)
        return code if code >= 0 else 128 - code

    def stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "queue_size": self.queue_size(),
            "running_count": self.running,
            "completed_count": self.completed,
            "total": self.total,
            "max_concurrent": None if self.cap == UNBOUNDED else self.cap,
            "max_running": self.max_running,
        }

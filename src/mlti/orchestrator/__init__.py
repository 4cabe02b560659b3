"""Orchestration: supervisors, scheduling and process launch."""

from .supervisor import Supervisor
from .scheduler import Scheduler
from .executor import TaskSupervisor, TaskOutcome
from .process import ProcessLauncher, ProcessSpec

__all__ = [
    "Supervisor",
    "Scheduler",
    "TaskSupervisor",
    "TaskOutcome",
    "ProcessLauncher",
    "ProcessSpec",
]

"""End-to-end tests for the supervisor with real child processes."""

import asyncio
import io
import os
import re
import shlex
import time
import pytest

# Add src to path
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from rich.console import Console

from mlti.core.config import MltiConfig
from mlti.core.messages import MessageType
from mlti.orchestrator.supervisor import Supervisor, SupervisorState


MISSING = "/no/such/binary-mlti"


def py(code: str) -> str:
    """Command text running a Python snippet unbuffered."""
    return f"{shlex.quote(sys.executable)} -u -c {shlex.quote(code)}"


def make_supervisor(**kwargs):
    console = Console(file=io.StringIO(), width=200, force_terminal=False, color_system=None)
    kwargs.setdefault("kill_timeout_seconds", 2.0)
    return Supervisor(MltiConfig(**kwargs), console=console), console


def lines_of(console: Console) -> list[str]:
    return console.file.getvalue().splitlines()


class TestNaturalCompletion:
    """Test runs where every task finishes on its own."""

    @pytest.mark.asyncio
    async def test_all_finish(self):
        supervisor, console = make_supervisor(
            commands=[py("print('alpha')"), py("print('beta')")],
            names=["a", "b"],
        )

        assert await supervisor.run() == 0

        lines = lines_of(console)
        assert "[a]: alpha" in lines
        assert "[b]: beta" in lines
        assert "[a]: Done!" in lines
        assert "[b]: Done!" in lines
        assert lines[-1] == "All processes finished."
        assert supervisor.control_log == [MessageType.COMPLETE]
        assert supervisor.state == SupervisorState.SHUTDOWN

    @pytest.mark.asyncio
    async def test_live_output_in_arrival_order(self):
        supervisor, console = make_supervisor(
            commands=[py("import time; time.sleep(0.5); print('A')"), py("print('B')")],
            max_processes=2,
        )

        assert await supervisor.run() == 0

        lines = lines_of(console)
        assert lines.index("[1]: B") < lines.index("[0]: A")
        assert supervisor.control_log.count(MessageType.COMPLETE) == 1

    @pytest.mark.asyncio
    async def test_no_commands(self):
        supervisor, console = make_supervisor()

        assert await supervisor.run() == 0
        assert lines_of(console) == ["No processes to run."]
        assert supervisor.bus is None

    @pytest.mark.asyncio
    async def test_unbounded_runs_everything_at_once(self):
        supervisor, _ = make_supervisor(
            commands=[py("import time; time.sleep(0.2)") for _ in range(5)],
        )

        await supervisor.run()

        assert supervisor.scheduler.max_running == 5
        assert supervisor.scheduler.completed == 5

    @pytest.mark.asyncio
    async def test_cap(self):
        supervisor, _ = make_supervisor(
            commands=[py("import time; time.sleep(0.1)") for _ in range(4)],
            max_processes="2",
        )

        await supervisor.run()

        assert supervisor.scheduler.max_running == 2
        assert supervisor.scheduler.completed == 4

    @pytest.mark.asyncio
    async def test_failed_start_without_cascade(self):
        supervisor, console = make_supervisor(commands=[MISSING, py("print('survivor')")])

        assert await supervisor.run() == 0

        lines = lines_of(console)
        assert f"[0]: Encountered an Error: Command not found: {MISSING}" in lines
        assert "[1]: survivor" in lines
        assert supervisor.control_log == [MessageType.COMPLETE]
        assert supervisor.scheduler.exit_codes == {0: 1, 1: 0}

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_not_a_failure_by_default(self):
        supervisor, _ = make_supervisor(
            commands=[py("import sys; sys.exit(3)"), py("print('ok')")],
            kill_others_on_fail=True,
        )

        assert await supervisor.run() == 0
        assert supervisor.scheduler.exit_codes[0] == 3
        assert supervisor.control_log == [MessageType.COMPLETE]

    @pytest.mark.asyncio
    async def test_success_terms_all(self):
        supervisor, _ = make_supervisor(
            commands=[py("import sys; sys.exit(3)"), py("print('ok')")],
            success_terms="all",
        )

        assert await supervisor.run() == 3
        assert supervisor.control_log == [MessageType.COMPLETE]

    @pytest.mark.asyncio
    async def test_success_terms_first_and_last(self):
        commands = [py("import time, sys; time.sleep(0.5); sys.exit(4)"), py("pass")]

        supervisor, _ = make_supervisor(commands=commands, success_terms="first")
        assert await supervisor.run() == 0

        supervisor, _ = make_supervisor(commands=commands, success_terms="last")
        assert await supervisor.run() == 4

    @pytest.mark.asyncio
    async def test_success_terms_ignored_after_cascade(self):
        supervisor, _ = make_supervisor(
            commands=[py("import sys; sys.exit(5)"), py("import time; time.sleep(30)")],
            kill_others=True,
            success_terms="all",
        )

        assert await supervisor.run() == 0
        assert supervisor.control_log[0] == MessageType.KILL_OTHERS


class TestCascades:
    """Test kill-others and kill-others-on-fail."""

    @pytest.mark.asyncio
    async def test_kill_others(self):
        supervisor, console = make_supervisor(
            commands=[
                py("import time; time.sleep(0.5); print('quick')"),
                py("import time; print('slow'); time.sleep(30)"),
            ],
            kill_others=True,
        )

        started = time.monotonic()
        assert await supervisor.run() == 0
        assert time.monotonic() - started < 15

        lines = lines_of(console)
        assert supervisor.control_log[0] == MessageType.KILL_OTHERS
        assert "0 exited, stopping other processes." in lines
        assert lines[-1] == "Processes terminated."
        assert supervisor.tasks[1]._process.returncode is not None

    @pytest.mark.asyncio
    async def test_simultaneous_exits_cascade_once(self):
        supervisor, console = make_supervisor(
            commands=[py("pass") for _ in range(4)],
            kill_others=True,
        )

        assert await supervisor.run() == 0

        lines = lines_of(console)
        assert supervisor.control_log == [MessageType.KILL_OTHERS]
        assert sum("stopping other processes." in line for line in lines) == 1

    @pytest.mark.asyncio
    async def test_failures_cascade_once(self):
        supervisor, console = make_supervisor(
            commands=[MISSING, MISSING, MISSING],
            kill_others_on_fail=True,
        )

        assert await supervisor.run() == 1

        lines = lines_of(console)
        assert supervisor.control_log == [MessageType.KILL_ALL_ON_ERROR]
        assert sum("failed, stopping all processes." in line for line in lines) == 1

    @pytest.mark.asyncio
    async def test_kill_others_on_fail(self):
        supervisor, console = make_supervisor(
            commands=[MISSING, py("import time; time.sleep(30)")],
            kill_others_on_fail=True,
        )

        started = time.monotonic()
        assert await supervisor.run() == 1
        assert time.monotonic() - started < 15

        lines = lines_of(console)
        assert supervisor.control_log[0] == MessageType.KILL_ALL_ON_ERROR
        assert f"[0]: Encountered an Error: Command not found: {MISSING}" in lines
        assert "0 failed, stopping all processes." in lines
        assert lines[-1] == "Processes terminated."

    @pytest.mark.asyncio
    async def test_no_admission_after_cascade(self):
        supervisor, console = make_supervisor(
            commands=[MISSING, py("import time; time.sleep(30)"), py("print('late')")],
            kill_others_on_fail=True,
            max_processes=1,
        )

        assert await supervisor.run() == 1
        assert not any("late" in line for line in lines_of(console))

    @pytest.mark.asyncio
    async def test_exit_code_failures(self):
        supervisor, console = make_supervisor(
            commands=[py("import sys; sys.exit(3)"), py("import time; time.sleep(30)")],
            kill_others_on_fail=True,
            exit_code_failures=True,
        )

        assert await supervisor.run() == 1
        assert supervisor.control_log[0] == MessageType.KILL_ALL_ON_ERROR

    @pytest.mark.asyncio
    async def test_request_shutdown(self):
        """An interrupt stops everything and exits cleanly."""
        supervisor, console = make_supervisor(commands=[py("import time; time.sleep(30)")])
        asyncio.get_running_loop().call_later(0.3, supervisor.request_shutdown)

        assert await supervisor.run() == 0

        assert supervisor.control_log[0] == MessageType.KILL_ALL
        assert "Stopping all processes." in lines_of(console)
        assert supervisor.tasks[0]._process.returncode is not None


class TestOutputModes:
    """Test grouped, hidden, raw and timed output."""

    @pytest.mark.asyncio
    async def test_grouped(self):
        supervisor, console = make_supervisor(
            commands=[
                py("import time; time.sleep(0.3); print('a1'); print('a2')"),
                py("print('b1'); print('b2')"),
            ],
            output={"group": True},
        )

        assert await supervisor.run() == 0

        assert lines_of(console) == [
            "[0]: a1",
            "[0]: a2",
            "[0]: Done!",
            "[1]: b1",
            "[1]: b2",
            "[1]: Done!",
            "All processes finished.",
        ]

    @pytest.mark.asyncio
    async def test_hidden(self):
        supervisor, console = make_supervisor(
            commands=[py("print('visible-line')"), py("print('hidden-line')")],
            names="shown,secret",
            hide="secret",
        )

        assert await supervisor.run() == 0

        lines = lines_of(console)
        assert "[shown]: visible-line" in lines
        assert not any("hidden-line" in line for line in lines)
        assert "[secret]: Done!" in lines
        assert supervisor.scheduler.completed == 2

    @pytest.mark.asyncio
    async def test_raw(self):
        supervisor, console = make_supervisor(
            commands=[py("print('one'); print('two')")],
            output={"raw": True},
        )

        assert await supervisor.run() == 0
        assert lines_of(console) == ["one", "two"]

    @pytest.mark.asyncio
    async def test_timings(self):
        supervisor, console = make_supervisor(
            commands=[py("print('hello')")],
            output={"timings": True},
        )

        await supervisor.run()

        stamped = r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] \[0\]: hello$"
        assert any(re.match(stamped, line) for line in lines_of(console))

    @pytest.mark.asyncio
    async def test_prefix_template(self):
        supervisor, console = make_supervisor(
            commands=[py("print('hello')")],
            names=["web"],
            output={"prefix": "{index}-{name}"},
        )

        await supervisor.run()

        assert "[0-web]: hello" in lines_of(console)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

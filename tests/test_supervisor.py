"""Tests for the supervision loop (ProcessRunner).

Covers the attach-or-spawn decision, restart after exit, the shutdown
branches of both waits, fatal errors, and handle accounting.
"""

import threading
import time

import pytest

from conftest import FakeLauncher, python_command, wait_until

from procrunner.supervisor.errors import AttachError
from procrunner.supervisor.supervisor import EXIT_FAILURE, EXIT_SUCCESS, ProcessRunner


def _runner(launcher: FakeLauncher, context, **kwargs) -> ProcessRunner:
    kwargs.setdefault("restart_delay", 0.01)
    return ProcessRunner(
        "worker --serve",
        context=context,
        opener=launcher.open,
        spawner=launcher.spawn,
        **kwargs,
    )


def _start(runner: ProcessRunner) -> threading.Thread:
    thread = threading.Thread(target=runner.run, daemon=True)
    thread.start()
    return thread


def _messages(caplog):
    return [r.getMessage() for r in caplog.records]


class TestRestartLoop:
    """Unexpected exits are reported and followed by a restart."""

    def test_restarts_after_exit(self, context, debug_caplog):
        launcher = FakeLauncher(exit_codes=[3])
        runner = _runner(launcher, context)
        thread = _start(runner)

        assert wait_until(lambda: len(launcher.targets) >= 3)
        context.request_shutdown()
        thread.join(5)

        assert not thread.is_alive()
        assert runner.exit_status == EXIT_SUCCESS
        assert context.shutdown_complete
        assert launcher.spawned_commands[0] == "worker --serve"
        assert _messages(debug_caplog).count("Process terminated with code 3.") >= 2
        assert "Starting process" in _messages(debug_caplog)
        assert "Attached to process 1000" in _messages(debug_caplog)

    def test_one_handle_open_at_a_time(self, context):
        launcher = FakeLauncher(exit_codes=[0])
        runner = _runner(launcher, context)
        thread = _start(runner)

        assert wait_until(lambda: len(launcher.targets) >= 5)
        context.request_shutdown()
        thread.join(5)

        assert launcher.max_open == 1
        assert all(not t.is_open for t in launcher.targets)
        assert runner.live_target is None

    def test_unknown_exit_code_is_not_fatal(self, context, debug_caplog):
        launcher = FakeLauncher(exit_codes=[None])
        runner = _runner(launcher, context)
        thread = _start(runner)

        assert wait_until(lambda: len(launcher.targets) >= 2)
        context.request_shutdown()
        thread.join(5)

        assert runner.exit_status == EXIT_SUCCESS
        assert any(
            m.startswith("Process terminated. Could not obtain process exit code. Error ")
            for m in _messages(debug_caplog)
        )

    def test_restarts_real_process(self, context, debug_caplog):
        runner = ProcessRunner(python_command("import sys; sys.exit(3)"), context=context, restart_delay=0.05)
        thread = _start(runner)

        assert wait_until(lambda: _messages(debug_caplog).count("Process terminated with code 3.") >= 2, timeout=20)
        context.request_shutdown()
        thread.join(10)

        assert runner.exit_status == EXIT_SUCCESS


class TestAttach:
    """The initial pid is only used on the first iteration."""

    def test_attaches_first_then_spawns(self, context):
        launcher = FakeLauncher(exit_codes=[0])
        runner = _runner(launcher, context, initial_pid=4242)
        thread = _start(runner)

        assert wait_until(lambda: len(launcher.targets) >= 3)
        context.request_shutdown()
        thread.join(5)

        assert launcher.opened_pids == [4242]
        assert launcher.targets[0].kind == "attached"
        assert all(t.kind == "spawned" for t in launcher.targets[1:])

    def test_attach_failure_is_fatal(self, context, debug_caplog):
        launcher = FakeLauncher()

        def fail_open(pid):
            raise AttachError(pid, 3, "No such process")

        runner = ProcessRunner("worker", initial_pid=99999, context=context, opener=fail_open, spawner=launcher.spawn)

        assert runner.run() == EXIT_FAILURE
        assert launcher.spawned_commands == []
        assert context.shutdown_complete
        assert "Could not attach to process with id: 99999" in _messages(debug_caplog)
        assert "Error 3: No such process" in _messages(debug_caplog)


class TestFatalErrors:
    """Fatal errors end the loop before it ever waits."""

    def test_spawn_failure(self, context, launcher, spawn_failure, debug_caplog):
        launcher.spawn_error = spawn_failure
        runner = _runner(launcher, context)

        assert runner.run() == EXIT_FAILURE
        assert launcher.targets == []
        assert context.shutdown_complete
        assert "Failed to start process" in _messages(debug_caplog)
        assert "Error 2: No such file or directory" in _messages(debug_caplog)

    def test_unexpected_error(self, context, launcher, debug_caplog):
        launcher.spawn_error = RuntimeError("boom")
        runner = _runner(launcher, context)

        assert runner.run() == EXIT_FAILURE
        assert context.shutdown_complete
        assert any("Critical error in supervision loop: boom" in m for m in _messages(debug_caplog))


class TestShutdown:
    """A shutdown request stops the loop from either wait."""

    def test_shutdown_before_start_creates_nothing(self, context, launcher):
        context.request_shutdown()
        runner = _runner(launcher, context, initial_pid=4242)

        assert runner.run() == EXIT_SUCCESS
        assert launcher.targets == []
        assert launcher.opened_pids == []

    def test_shutdown_while_process_running(self, context, debug_caplog):
        launcher = FakeLauncher(auto_exit=False)
        runner = _runner(launcher, context)
        thread = _start(runner)

        assert wait_until(lambda: runner.live_target is not None)
        context.request_shutdown()
        assert context.wait_shutdown_complete(2)
        thread.join(5)

        target = launcher.targets[0]
        assert runner.exit_status == EXIT_SUCCESS
        assert len(launcher.targets) == 1
        assert not target.has_exited()
        assert not target.is_open
        assert not any(m.startswith("Process terminated") for m in _messages(debug_caplog))
        target.finish()

    def test_shutdown_during_restart_delay(self, context):
        launcher = FakeLauncher(exit_codes=[1])
        runner = _runner(launcher, context, restart_delay=30)
        thread = _start(runner)

        assert wait_until(lambda: len(launcher.targets) == 1 and not launcher.targets[0].is_open)
        start = time.monotonic()
        context.request_shutdown()
        thread.join(5)

        assert not thread.is_alive()
        assert time.monotonic() - start < 5
        assert len(launcher.targets) == 1
        assert runner.exit_status == EXIT_SUCCESS

    @pytest.mark.parametrize("iterations", [1, 4])
    def test_no_spawn_after_shutdown(self, context, iterations):
        launcher = FakeLauncher(exit_codes=[0])
        runner = _runner(launcher, context)
        thread = _start(runner)

        assert wait_until(lambda: len(launcher.targets) >= iterations)
        context.request_shutdown()
        thread.join(5)
        count = len(launcher.targets)
        time.sleep(0.1)

        assert len(launcher.targets) == count

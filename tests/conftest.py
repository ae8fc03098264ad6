# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the ProcessRunner test suite.

Provides:
- Controllable in-memory targets that stand in for real child processes
- A launcher that records every attach/spawn and the number of open handles
- Helpers for building real `sys.executable` command lines
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
import threading
import time
from typing import Callable, List, Optional

import pytest

from procrunner.supervisor.context import SupervisorContext
from procrunner.supervisor.errors import SpawnError
from procrunner.supervisor.process_utils import TargetProcess


class FakeTarget(TargetProcess):
    """A target whose "process" exits when the test calls `finish()`."""

    def __init__(self, kind: str, pid: int, code: Optional[int] = 0):
        super().__init__(kind, pid)
        self.code = code
        self._release = threading.Event()

    def finish(self) -> None:
        self._release.set()

    def wait(self) -> Optional[int]:
        self._release.wait()
        return self.code


class FakeLauncher:
    """Records attach/spawn calls and tracks how many targets are open at once."""

    def __init__(self, exit_codes: Optional[List[Optional[int]]] = None, auto_exit: bool = True):
        self.exit_codes = list(exit_codes or [0])
        self.auto_exit = auto_exit
        self.targets: List[FakeTarget] = []
        self.opened_pids: List[int] = []
        self.spawned_commands: List[str] = []
        self.max_open = 0
        self.spawn_error: Optional[Exception] = None
        self._lock = threading.Lock()

    def _create(self, kind: str, pid: int) -> FakeTarget:
        with self._lock:
            open_now = sum(1 for t in self.targets if t.is_open)
            self.max_open = max(self.max_open, open_now + 1)
            code = self.exit_codes[min(len(self.targets), len(self.exit_codes) - 1)]
            target = FakeTarget(kind, pid, code)
            if self.auto_exit:
                target.finish()
            self.targets.append(target)
            return target

    def open(self, pid: int) -> FakeTarget:
        self.opened_pids.append(pid)
        return self._create("attached", pid)

    def spawn(self, command_line: str) -> FakeTarget:
        if self.spawn_error is not None:
            raise self.spawn_error
        self.spawned_commands.append(command_line)
        return self._create("spawned", 1000 + len(self.targets))


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Polls `predicate` until it is true or the timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def python_command(code: str) -> str:
    """Builds a command line that runs `code` with the current interpreter."""
    argv = [sys.executable, "-c", code]
    if sys.platform == "win32":
        return subprocess.list2cmdline(argv)
    return " ".join(shlex.quote(arg) for arg in argv)


@pytest.fixture
def context() -> SupervisorContext:
    return SupervisorContext()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def spawn_failure() -> SpawnError:
    return SpawnError("missing-binary", 2, "No such file or directory")


@pytest.fixture
def debug_caplog(caplog):
    caplog.set_level(logging.DEBUG)
    return caplog

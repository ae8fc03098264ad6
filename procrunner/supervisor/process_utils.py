import sys
import errno
import shlex
import psutil
import logging
import threading
import subprocess
from typing import Callable, List, Optional, Union

from .errors import AttachError, ExitCodeUnavailable, SpawnError, describe_os_error

log = logging.getLogger(__name__)


class TargetProcess:
    """
    The single process under supervision, either attached to by pid or
    spawned from a command line. Owned by the supervision loop for one
    iteration and released with `close()`.
    """

    def __init__(
        self,
        kind: str,
        pid: int,
        popen: Optional[subprocess.Popen] = None,
        proc: Optional[psutil.Process] = None,
        command_line: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.pid = pid
        self.command_line = command_line
        self._popen = popen
        self._proc = proc
        self._exited = threading.Event()
        self._returncode: Optional[int] = None
        self._wait_error: Optional[BaseException] = None
        self._watcher: Optional[threading.Thread] = None
        self._closed = False

    def __repr__(self) -> str:
        return f"TargetProcess(kind={self.kind!r}, pid={self.pid})"

    @property
    def is_open(self) -> bool:
        return not self._closed

    def has_exited(self) -> bool:
        return self._exited.is_set()

    def watch(self, on_exit: Callable[[], None]) -> None:
        """
        Starts a daemon thread that blocks until the process terminates,
        then calls `on_exit`.
        """
        self._watcher = threading.Thread(
            target=self._watch, args=(on_exit,), daemon=True, name=f"ExitWatcher-{self.pid}"
        )
        self._watcher.start()

    def _watch(self, on_exit: Callable[[], None]) -> None:
        try:
            self._returncode = self.wait()
        except (psutil.Error, OSError, RuntimeError, ValueError) as e:
            self._wait_error = e
            log.debug(f"Waiting on process {self.pid} failed: {e}")
        finally:
            self._exited.set()
            on_exit()

    def wait(self) -> Optional[int]:
        """Blocks until the process terminates and returns its exit code if the OS provides one."""
        if self._popen is not None:
            return self._popen.wait()
        if self._proc is not None:
            return self._proc.wait()
        raise RuntimeError(f"Process handle for {self.pid} is already closed.")

    def exit_code(self) -> int:
        """
        Returns the exit code of a terminated process.

        :raises ExitCodeUnavailable: If the OS does not report one.
        """
        if self._popen is not None and self._popen.returncode is not None:
            return self._popen.returncode
        if self._returncode is not None:
            return self._returncode
        if self._wait_error is not None:
            raise ExitCodeUnavailable(*describe_os_error(self._wait_error))
        if not self.has_exited():
            raise ExitCodeUnavailable(errno.EBUSY, "Process is still running")
        # Only a parent may collect a child's status; attached processes are not our children.
        raise ExitCodeUnavailable(errno.ECHILD, "No child processes")

    def close(self) -> None:
        """Releases the handle. A still-running process is left running (detached)."""
        if self._closed:
            return
        self._closed = True
        self._popen = None
        self._proc = None


#* --- Process Status ---
def query_exit_code(target: TargetProcess) -> int:
    """
    Best-effort exit code lookup for a terminated target.

    :raises ExitCodeUnavailable: If the code cannot be obtained.
    """
    return target.exit_code()


#* --- Process Creation ---
def get_spawn_args(command_line: str) -> Union[str, List[str]]:
    """
    Returns the Popen arguments for a command line. Windows receives the
    string unchanged so CreateProcess parses it; elsewhere it is split
    with POSIX shell quoting rules.
    """
    if sys.platform == "win32":
        return command_line
    return shlex.split(command_line)


def open_process(pid: int) -> TargetProcess:
    """
    Attaches to an already running process with wait and limited query rights.

    :param pid: The process id to attach to.
    :raises AttachError: If the process does not exist or cannot be queried.
    """
    if pid <= 0:
        # psutil models the idle/kernel task as pid 0; it can never be waited on.
        raise AttachError(pid, errno.EINVAL, "Invalid process id")
    try:
        proc = psutil.Process(pid)
        proc.status()  # Fails with AccessDenied if we cannot query it.
    except (psutil.Error, ValueError, OverflowError, OSError) as e:
        raise AttachError(pid, *describe_os_error(e)) from e
    return TargetProcess("attached", pid, proc=proc)


def spawn_process(command_line: str, capture_output: bool = False) -> TargetProcess:
    """
    Launches a new process from a command line.

    :param command_line: The full command line to run.
    :param capture_output: Pipe stdout/stderr into the `proc.<pid>` loggers
        instead of sharing the supervisor's console.
    :raises SpawnError: If the process could not be created.
    """
    popen_kwargs = {}
    if capture_output:
        popen_kwargs = {"stdout": subprocess.PIPE, "stderr": subprocess.PIPE, "stdin": subprocess.DEVNULL}

    try:
        args = get_spawn_args(command_line)
        if not args:
            raise ValueError("Command line is empty")
        p = subprocess.Popen(args, **popen_kwargs)
    except (OSError, ValueError) as e:
        raise SpawnError(command_line, *describe_os_error(e)) from e

    if capture_output:
        log_process_output(p, str(p.pid))
    return TargetProcess("spawned", p.pid, popen=p, command_line=command_line)


#* --- Child Output Capture ---
def _read_pipe(pipe, process_name: str, level: int) -> None:
    """Target function for reader threads. Reads and logs lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            proc_logger.log(level, line)
    except (OSError, ValueError) as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()


def log_process_output(process: subprocess.Popen, name: str) -> None:
    """Starts background threads to consume and log a process's stdout/stderr."""
    if process.stdout:
        threading.Thread(
            target=_read_pipe, args=(process.stdout, name, logging.INFO), daemon=True, name=f"StdoutReader-{name}"
        ).start()
    if process.stderr:
        threading.Thread(
            target=_read_pipe, args=(process.stderr, name, logging.ERROR), daemon=True, name=f"StderrReader-{name}"
        ).start()

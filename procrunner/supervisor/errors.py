import os
import errno
import psutil
from typing import Tuple


class ProcessRunnerError(Exception):
    """Base class for supervisor errors. Carries a numeric OS code and its text."""

    def __init__(self, message: str, code: int, description: str) -> None:
        super().__init__(message)
        self.code = code
        self.description = description


class AttachError(ProcessRunnerError):
    """Opening a handle to an existing process failed. Fatal."""

    def __init__(self, pid: int, code: int, description: str) -> None:
        super().__init__(f"Could not attach to process with id: {pid}", code, description)
        self.pid = pid


class SpawnError(ProcessRunnerError):
    """Creating the child process failed. Fatal."""

    def __init__(self, command_line: str, code: int, description: str) -> None:
        super().__init__("Failed to start process", code, description)
        self.command_line = command_line


class ExitCodeUnavailable(ProcessRunnerError):
    """The exit status of a terminated target cannot be read. Logged only."""

    def __init__(self, code: int, description: str) -> None:
        super().__init__("Could not obtain process exit code.", code, description)


def describe_os_error(exc: BaseException) -> Tuple[int, str]:
    """
    Resolves an exception raised by an OS-facing call to a numeric code and
    the system's description of it.

    :param exc: The exception to describe.
    :return: A (code, description) tuple.
    """
    if isinstance(exc, psutil.NoSuchProcess):
        return errno.ESRCH, os.strerror(errno.ESRCH)
    if isinstance(exc, psutil.AccessDenied):
        return errno.EACCES, os.strerror(errno.EACCES)
    if isinstance(exc, OSError):
        code = getattr(exc, "winerror", None) or exc.errno
        if code is not None:
            return code, exc.strerror or os.strerror(code)
        return 0, str(exc)
    if isinstance(exc, ValueError):
        return errno.EINVAL, str(exc) or os.strerror(errno.EINVAL)
    return 0, str(exc)


def format_system_error(code: int, description: str) -> str:
    """Formats an OS error the way it is printed to stderr."""
    return f"Error {code}: {description.strip()}"

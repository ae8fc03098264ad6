"""
Shared state between the supervision loop and the shutdown coordinator.

The two sides never touch each other directly: the coordinator only calls
`request_shutdown` and `wait_shutdown_complete`, the loop only calls the
waits, `create_if_looping` and `signal_shutdown_complete`.
"""
import enum
import threading
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from .process_utils import TargetProcess


class WakeReason(enum.Enum):
    """Which condition ended a dual wait."""
    SHUTDOWN_REQUESTED = "shutdown_requested"
    PROCESS_EXITED = "process_exited"


class SupervisorContext:
    """
    Holds the continuation flag and the two one-shot shutdown signals.

    The flag and the shutdown request share one condition variable, so a
    request wakes whichever wait the loop is currently blocked in. Target
    watcher threads notify the same condition when their process exits.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._looping = True
        self._shutdown_requested = False
        self._shutdown_complete = threading.Event()

    @property
    def is_looping(self) -> bool:
        with self._cond:
            return self._looping

    @property
    def shutdown_requested(self) -> bool:
        with self._cond:
            return self._shutdown_requested

    #* --- Coordinator side ---
    def request_shutdown(self) -> bool:
        """
        Clears the continuation flag and raises the shutdown request.
        Safe to call repeatedly; the flag never goes back to True.

        :return: True on the first call, False on later calls.
        """
        with self._cond:
            first = self._looping
            self._looping = False
            self._shutdown_requested = True
            self._cond.notify_all()
        return first

    def wait_shutdown_complete(self, timeout: Optional[float]) -> bool:
        """Blocks until the loop reports it has finished, or the timeout elapses."""
        return self._shutdown_complete.wait(timeout)

    #* --- Loop side ---
    def notify_process_exit(self) -> None:
        """Called by a target's watcher thread once the process has terminated."""
        with self._cond:
            self._cond.notify_all()

    def create_if_looping(self, factory: Callable[[], "TargetProcess"]) -> Optional["TargetProcess"]:
        """
        Runs `factory` only while the continuation flag is still set.
        The check and the creation happen under the lock a shutdown request
        needs, so no target can be created after the flag has been cleared.

        :param factory: Creates and returns the new target.
        :return: The new target, or None if shutdown was already requested.
        """
        with self._cond:
            if not self._looping:
                return None
            return factory()

    def wait_any(self, target: "TargetProcess") -> WakeReason:
        """
        Blocks without a timeout until the target exits or a shutdown is
        requested. A pending shutdown request wins over a simultaneous exit.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._shutdown_requested or target.has_exited())
            if self._shutdown_requested:
                return WakeReason.SHUTDOWN_REQUESTED
            return WakeReason.PROCESS_EXITED

    def wait_for_shutdown(self, timeout: float) -> bool:
        """
        Sleeps for up to `timeout` seconds, returning early on a shutdown request.

        :return: True if a shutdown was requested.
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._shutdown_requested, timeout)

    def signal_shutdown_complete(self) -> None:
        self._shutdown_complete.set()

    @property
    def shutdown_complete(self) -> bool:
        return self._shutdown_complete.is_set()

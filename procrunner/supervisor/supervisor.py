import logging
from functools import partial
from typing import Callable, Optional

from procrunner.config import effective_settings as config
from .context import SupervisorContext, WakeReason
from .errors import AttachError, ExitCodeUnavailable, SpawnError, format_system_error
from .process_utils import TargetProcess, open_process, query_exit_code, spawn_process

log = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class ProcessRunner:
    """
    Keeps one target process running until a shutdown is requested.

    Each iteration attaches to the initial pid (first iteration only) or
    spawns the command line, waits for either the process to exit or a
    shutdown request, and after an exit sleeps for the restart delay before
    spawning again.
    """

    def __init__(
        self,
        command_line: str,
        initial_pid: Optional[int] = None,
        context: Optional[SupervisorContext] = None,
        restart_delay: Optional[float] = None,
        capture_output: Optional[bool] = None,
        opener: Callable[[int], TargetProcess] = open_process,
        spawner: Optional[Callable[[str], TargetProcess]] = None,
    ) -> None:
        """
        :param command_line: The command line to (re)start.
        :param initial_pid: A running process to supervise before the first spawn.
        :param context: Shared shutdown state; a fresh one is created if omitted.
        :param restart_delay: Seconds to wait after an exit; defaults to RESTART_DELAY_MS.
        :param capture_output: Log the child's output instead of sharing the console.
        :param opener: Attaches to a pid. Replaceable for testing.
        :param spawner: Spawns a command line. Replaceable for testing.
        """
        self.command_line = command_line
        self.initial_pid = initial_pid
        self.context = context or SupervisorContext()
        self.restart_delay = restart_delay if restart_delay is not None else config.RESTART_DELAY_MS / 1000
        if capture_output is None:
            capture_output = config.CAPTURE_CHILD_OUTPUT
        self._opener = opener
        self._spawner = spawner or partial(spawn_process, capture_output=capture_output)

        self.live_target: Optional[TargetProcess] = None
        self.exit_status: Optional[int] = None

    def run(self) -> int:
        """
        Runs the supervision loop to completion. Fatal errors end the loop
        with EXIT_FAILURE. ShutdownComplete is signaled on every path.

        :return: EXIT_SUCCESS after a requested shutdown, EXIT_FAILURE otherwise.
        """
        try:
            self._supervise()
            self.exit_status = EXIT_SUCCESS
        except (AttachError, SpawnError) as e:
            log.error(str(e))
            log.error(format_system_error(e.code, e.description))
            self.exit_status = EXIT_FAILURE
        except Exception as e:
            log.critical(f"Critical error in supervision loop: {e}", exc_info=True)
            self.exit_status = EXIT_FAILURE
        finally:
            self._release_target()
            self.context.signal_shutdown_complete()
        return self.exit_status

    def _supervise(self) -> None:
        initial_pid = self.initial_pid
        while True:
            if initial_pid is not None:
                target = self.context.create_if_looping(partial(self._opener, initial_pid))
                initial_pid = None
            else:
                target = self.context.create_if_looping(self._start)

            if target is None:
                log.debug("Shutdown requested before a new process was created.")
                return

            self.live_target = target
            log.info(f"Attached to process {target.pid}")
            target.watch(self.context.notify_process_exit)

            reason = self.context.wait_any(target)
            if reason is WakeReason.PROCESS_EXITED:
                self._report_exit(target)
            self._release_target()

            if reason is WakeReason.SHUTDOWN_REQUESTED:
                return
            if self.context.wait_for_shutdown(self.restart_delay):
                log.debug("Restart delay interrupted by shutdown request.")
                return

    def _start(self) -> TargetProcess:
        log.info("Starting process")
        return self._spawner(self.command_line)

    def _report_exit(self, target: TargetProcess) -> None:
        """Logs the termination of a target, with its exit code if obtainable."""
        try:
            code = query_exit_code(target)
        except ExitCodeUnavailable as e:
            log.error(f"Process terminated. {e} {format_system_error(e.code, e.description)}")
            return
        log.info(f"Process terminated with code {code}.")

    def _release_target(self) -> None:
        if self.live_target is not None:
            self.live_target.close()
            self.live_target = None

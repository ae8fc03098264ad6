import re
import sys
import logging
import threading
from typing import List, Optional

from procrunner.config import effective_settings as config
from procrunner.log import setup_logging
from procrunner.supervisor import ProcessRunner, ShutdownCoordinator, SupervisorContext
from procrunner.supervisor.supervisor import EXIT_FAILURE, EXIT_SUCCESS

log = logging.getLogger("procrunner")

USAGE = 'Usage: procrunner "command line to run" [optional process id to attach to initially]'
BANNER = "Press Ctrl+C to detach from the running process and terminate this program."

_PID_PATTERN = re.compile(r"\s*[+-]?[0-9]+")


def parse_process_id(value: str) -> Optional[int]:
    """
    Parses a base-10 process id. Leading whitespace and a sign are accepted,
    anything after the digits is not.

    :return: The pid, or None if the value is not a clean integer.
    """
    if not _PID_PATTERN.fullmatch(value):
        return None
    return int(value)


def run_supervision(runner: ProcessRunner, coordinator: ShutdownCoordinator, check_interval: Optional[float] = None) -> int:
    """
    Runs the supervision loop on its own thread and blocks the main thread
    until it finishes or the shutdown coordinator gives up waiting for it.

    :return: The loop's exit status, or EXIT_SUCCESS if the grace period expired first.
    """
    interval = check_interval if check_interval is not None else config.SIGNAL_CHECK_INTERVAL
    loop_thread = threading.Thread(target=runner.run, daemon=True, name="SupervisionLoopThread")
    loop_thread.start()

    # Joined in slices: Windows only delivers Ctrl+C to the main thread between bytecodes.
    while loop_thread.is_alive() and not coordinator.released.is_set():
        loop_thread.join(interval)

    if runner.exit_status is None:
        log.debug("Supervision loop still running after the grace period. Exiting anyway.")
        return EXIT_SUCCESS
    return runner.exit_status


def main(argv: Optional[List[str]] = None) -> int:
    """
    Command-line entry point: `procrunner "<command line>" [processId]`.

    :param argv: Full argument vector including the program name; defaults to sys.argv.
    :return: The process exit status.
    """
    args = (sys.argv if argv is None else argv)[1:]
    if not 1 <= len(args) <= 2:
        print(USAGE)
        return EXIT_SUCCESS

    command_line = args[0]
    setup_logging(logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO)
    config.log_deferred()

    print(BANNER)
    print(f"{command_line}\n")

    context = SupervisorContext()
    coordinator = ShutdownCoordinator(context)
    try:
        coordinator.register()
    except (ValueError, OSError) as e:
        log.error("Internal error: Failed to set console handler")
        log.debug(f"Signal registration failed: {e}")
        return EXIT_FAILURE

    try:
        initial_pid = None
        if len(args) == 2:
            initial_pid = parse_process_id(args[1])
            if initial_pid is None:
                log.error(f"Invalid process id: {args[1]}")
                return EXIT_FAILURE

        runner = ProcessRunner(command_line, initial_pid, context=context)
        return run_supervision(runner, coordinator)
    finally:
        coordinator.unregister()

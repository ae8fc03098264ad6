import sys
import ctypes
import signal
import logging
import threading
from typing import Any, Dict, Iterable, Optional

from procrunner.config import effective_settings as config
from .context import SupervisorContext

log = logging.getLogger(__name__)

# Windows console control events (wincon.h). Closing the console window is
# never translated into a Python signal, so these are handled directly.
CTRL_C_EVENT = 0
CTRL_BREAK_EVENT = 1
CTRL_CLOSE_EVENT = 2
HANDLED_CONSOLE_EVENTS = {CTRL_C_EVENT: "CTRL_C_EVENT", CTRL_CLOSE_EVENT: "CTRL_CLOSE_EVENT"}


class ShutdownCoordinator:
    """
    Turns an interrupt or console-close notification into an orderly stop of
    the supervision loop.

    Python runs signal handlers on the main thread, so the loop itself lives
    on another thread and `handle` can block for the grace period while the
    loop releases its target and reports completion. On Windows a console
    control handler covers Ctrl+C and the console window being closed; the OS
    calls it on a thread of its own.
    """

    def __init__(
        self,
        context: SupervisorContext,
        grace_period: Optional[float] = None,
        signal_names: Optional[Iterable[str]] = None,
    ) -> None:
        """
        :param context: The state shared with the supervision loop.
        :param grace_period: Seconds to wait for ShutdownComplete; defaults to SHUTDOWN_GRACE_PERIOD_MS.
        :param signal_names: Signals to handle; names unknown on this platform are skipped.
        """
        self.context = context
        self.grace_period = grace_period if grace_period is not None else config.SHUTDOWN_GRACE_PERIOD_MS / 1000
        self.signal_names = tuple(signal_names if signal_names is not None else config.HANDLED_SIGNALS)
        self.released = threading.Event()
        self._previous_handlers: Dict[int, Any] = {}
        self._console_handler = None

    @property
    def handled_signals(self) -> Dict[str, int]:
        """Maps the configured signal names available on this platform to their numbers."""
        available = {}
        for name in self.signal_names:
            signum = getattr(signal, name, None)
            if signum is not None:
                available[name] = signum
        return available

    def register(self) -> None:
        """
        Installs `handle` for every handled signal and, on Windows, the
        console control handler. Must run on the main thread.

        :raises ValueError: If called from another thread.
        :raises OSError: If the OS rejects a handler.
        """
        try:
            for name, signum in self.handled_signals.items():
                self._previous_handlers[signum] = signal.signal(signum, self.handle)
                log.debug(f"Registered shutdown handler for {name}.")
            if sys.platform == "win32":
                self._register_console_handler()
        except (ValueError, OSError):
            self.unregister()
            raise

    def _register_console_handler(self) -> None:
        # Kept on self: ctypes does not keep the callback alive on its own.
        handler_type = ctypes.WINFUNCTYPE(ctypes.c_int, ctypes.c_ulong)
        callback = handler_type(self.handle_console_event)
        if not ctypes.windll.kernel32.SetConsoleCtrlHandler(callback, True):
            raise ctypes.WinError()
        self._console_handler = callback
        log.debug("Registered console control handler.")

    def unregister(self) -> None:
        """Restores the handlers that were active before `register`."""
        if self._console_handler is not None:
            ctypes.windll.kernel32.SetConsoleCtrlHandler(self._console_handler, False)
            self._console_handler = None
        while self._previous_handlers:
            signum, previous = self._previous_handlers.popitem()
            if previous is None:
                # Installed from C; the default is the closest Python equivalent.
                previous = signal.SIG_DFL
            signal.signal(signum, previous)

    def handle(self, signum: int, frame=None) -> bool:
        """
        Signal callback. Returning normally keeps Python from raising
        KeyboardInterrupt or terminating the process.

        :param signum: The delivered signal number.
        :param frame: The interrupted stack frame (unused).
        :return: True if the signal is one this coordinator handles.
        """
        if signum not in self.handled_signals.values():
            return False
        self._shutdown(f"signal {signum}")
        return True

    def handle_console_event(self, event_type: int) -> bool:
        """
        Windows console control callback. Ctrl+C and console close are
        handled; any other event is passed on to the next handler.

        :param event_type: The CTRL_*_EVENT code.
        :return: True if the event was handled.
        """
        name = HANDLED_CONSOLE_EVENTS.get(event_type)
        if name is None:
            return False
        self._shutdown(name)
        return True

    def _shutdown(self, source: str) -> None:
        """Requests shutdown, then waits up to the grace period for the loop to confirm it finished."""
        log.info("Exiting")
        if not self.context.request_shutdown():
            log.debug(f"Repeated shutdown request from {source}.")

        if not self.context.wait_shutdown_complete(self.grace_period):
            log.debug(f"Supervision loop did not finish within the {self.grace_period:.1f}s grace period.")
        self.released.set()

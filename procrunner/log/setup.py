import sys
import time
import logging
from typing import Optional

from procrunner.config import effective_settings as config
from procrunner.log.handler import LokiHandler


class BelowLevelFilter(logging.Filter):
    """Passes only records strictly below the given level."""
    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record):
        return record.levelno < self.level


class TimestampFormatter(logging.Formatter):
    """
    Prefixes every supervisor message with a UTC timestamp, e.g.
    `[2023-05-01 12:00:00] Starting process`.
    Raw child output is passed through untouched.
    """
    converter = time.gmtime

    def __init__(self):
        super().__init__(fmt='[%(asctime)s] %(message)s', datefmt=config.LOG_TIMESTAMP_FORMAT)

    def format(self, record):
        # The 'proc.' prefix is used by log_process_output in process_utils.py
        if record.name.startswith('proc.'):
            return record.getMessage()
        return super().format(record)


def setup_logging(console_level: int = logging.INFO, logger: Optional[logging.Logger] = None) -> None:
    """
    Configures the root logger for the supervisor.
    Informational records go to stdout, warnings and errors to stderr.
    Grafana Loki is added when LOKI_ENABLED is set. Previously configured
    handlers are cleared to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param logger: The logger to configure; the root logger by default.
    """
    root_logger = logger if logger is not None else logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    if root_logger.hasHandlers():
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = TimestampFormatter()

    # --- Console Handlers ---
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(console_level)
    stdout_handler.addFilter(BelowLevelFilter(logging.WARNING))
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(max(console_level, logging.WARNING))
    stderr_handler.setFormatter(formatter)
    root_logger.addHandler(stderr_handler)

    # --- Loki Handler (conditional) ---
    if config.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(url=config.LOKI_URL, org_id=config.LOKI_ORG_ID)
            loki_handler.setLevel(logging.INFO)  # Avoid spamming Loki with DEBUG logs
            root_logger.addHandler(loki_handler)
            root_logger.debug(f"Grafana Loki logging handler initialized for {config.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")

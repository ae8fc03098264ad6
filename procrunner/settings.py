"""
This module contains the default configuration settings for ProcessRunner.
It defines the supervision timings, logging options and the signals the
supervisor reacts to. Values can be overridden through environment variables
(or a `.env` file) and, for the keys in MODIFIABLE_SETTINGS, a JSON file.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


# Problems found while reading the environment. Logging is not configured yet
# at import time, so MergedSettings reports them once it is.
env_warnings = []


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        env_warnings.append(f"Invalid integer '{raw}' for {name}. Using default {default}.")
        return default


#* --- Core Paths ---
BASE_DIR = pathlib.Path.cwd()
OVERRIDES_JSON_PATH = pathlib.Path(os.getenv("PROCRUNNER_OVERRIDES", str(BASE_DIR / "procrunner.json")))

#* --- Supervisor Settings ---
RESTART_DELAY_MS = _env_int("PROCRUNNER_RESTART_DELAY_MS", 5000)
SHUTDOWN_GRACE_PERIOD_MS = _env_int("PROCRUNNER_SHUTDOWN_GRACE_MS", 2000)
SIGNAL_CHECK_INTERVAL = 0.5  # seconds the main thread blocks per join slice
PROCESS_TITLE = "ProcessRunner - Supervisor"

# Interrupt first, then terminal hang-up and termination. Names missing on the
# current platform are skipped at registration time. Windows console close is
# handled by ShutdownCoordinator through a console control handler.
HANDLED_SIGNALS = ("SIGINT", "SIGHUP", "SIGTERM")

#* --- Child Process Settings ---
CAPTURE_CHILD_OUTPUT = _env_flag("PROCRUNNER_CAPTURE_OUTPUT")

#* --- Logging ---
VERBOSE_LOGGING = _env_flag("PROCRUNNER_VERBOSE")
LOG_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_BUFFER_FLUSH_INTERVAL = 10

# Grafana Loki (for observability)
LOKI_ENABLED = _env_flag("LOKI_ENABLED")
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")
LOKI_BATCH_SIZE = 200

#* --- MODIFIABLE SETTINGS (may be set in the overrides JSON file) ---
MODIFIABLE_SETTINGS = {
    "RESTART_DELAY_MS", "SHUTDOWN_GRACE_PERIOD_MS",
    "CAPTURE_CHILD_OUTPUT", "VERBOSE_LOGGING",
    "LOKI_ENABLED", "LOKI_URL", "LOKI_ORG_ID", "LOG_BUFFER_FLUSH_INTERVAL",
}

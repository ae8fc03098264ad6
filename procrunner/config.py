import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import procrunner.settings as default_settings

log = logging.getLogger(__name__)


class MergedSettings:
    """
    Merges the default settings with JSON overrides.

    Precedence, lowest first:
    1. Base values from `settings.py`.
    2. Environment variables / `.env` (read by `settings.py` through python-dotenv).
    3. `OVERRIDES_JSON_PATH`, for keys listed in `MODIFIABLE_SETTINGS` only.

    Settings are merged at import time, before logging is configured, so
    problems found while merging are queued and emitted by `log_deferred`.
    """

    def __init__(self, overrides_path: Optional[Path] = None) -> None:
        """
        :param overrides_path: JSON overrides file; defaults to settings.OVERRIDES_JSON_PATH.
        """
        self.OVERRIDES_JSON_PATH: Path = overrides_path or default_settings.OVERRIDES_JSON_PATH
        self._deferred: List[Tuple[int, str]] = [
            (logging.WARNING, message) for message in default_settings.env_warnings
        ]

        self._load_defaults()
        self._load_overrides()

    def _defer(self, level: int, msg: str) -> None:
        self._deferred.append((level, msg))

    def log_deferred(self) -> None:
        """Emits the messages queued while merging. Call once logging is set up."""
        while self._deferred:
            level, msg = self._deferred.pop(0)
            log.log(level, msg)

    def _load_defaults(self) -> None:
        """Loads all uppercase attributes from the settings module as defaults."""
        for key in dir(default_settings):
            if key.isupper() and key != "OVERRIDES_JSON_PATH":
                setattr(self, key, getattr(default_settings, key))

    def _load_overrides(self) -> None:
        """Applies whitelisted settings from the overrides file, if it exists."""
        if not self.OVERRIDES_JSON_PATH.exists():
            return

        try:
            with self.OVERRIDES_JSON_PATH.open('r') as f:
                overrides = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            self._defer(logging.ERROR, f"Failed to load or parse overrides file '{self.OVERRIDES_JSON_PATH}': {e}")
            return

        if not isinstance(overrides, dict):
            self._defer(logging.ERROR, f"Overrides file '{self.OVERRIDES_JSON_PATH}' must contain a JSON object. Ignoring.")
            return

        self._defer(logging.DEBUG, f"Loading configuration overrides from {self.OVERRIDES_JSON_PATH}")
        for key, value in overrides.items():
            if not hasattr(self, key):
                self._defer(logging.WARNING, f"Override setting '{key}' not found in default settings. Ignoring.")
                continue
            if key not in self.MODIFIABLE_SETTINGS:
                self._defer(logging.WARNING, f"Attempted to override non-modifiable setting '{key}'. Ignoring.")
                continue

            try:
                setattr(self, key, self._coerce(getattr(self, key), value))
                self._defer(logging.DEBUG, f"Overridden setting: {key} = {value}")
            except (ValueError, TypeError) as e:
                self._defer(logging.ERROR, f"Could not convert value '{value}' for key '{key}'. Error: {e}")

    @staticmethod
    def _coerce(original_value: Any, value: Any) -> Any:
        """Coerces an override to the type of the default it replaces."""
        if isinstance(original_value, bool):
            return str(value).lower() in ('true', '1', 't', 'yes', 'y')
        if isinstance(original_value, Path):
            return Path(value)
        if original_value is not None:
            return type(original_value)(value)
        return value

    def get(self, item: str, default: Any = None) -> Any:
        """Provides dictionary-like access to settings with a default value."""
        return getattr(self, item, default)

    def as_dict(self) -> Dict[str, Any]:
        """Returns the effective upper-case settings."""
        return {key: value for key, value in vars(self).items() if key.isupper()}


# Create a singleton instance to be imported by other modules
effective_settings = MergedSettings()

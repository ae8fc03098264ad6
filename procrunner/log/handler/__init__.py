"""
Logging handlers for ProcessRunner.
Handlers that ship supervisor logs to remote backends.
"""

from .loki import LokiHandler

__all__ = ["LokiHandler"]

"""
Logging module for ProcessRunner.
This module provides the timestamped console setup and the optional Loki handler.
"""

from .setup import setup_logging

__all__ = ["setup_logging"]

"""
ProcessRunner: launches or attaches to a single process and restarts it
after it exits, until interrupted.
"""

__version__ = "1.0.0"

"""
The Supervisor package.
Keeps a single child process alive across crashes.

ProcessRunner owns the attach-or-spawn loop and the restart delay;
ShutdownCoordinator turns interrupt and close signals into an orderly stop.
Both share state only through SupervisorContext.
"""
from .context import SupervisorContext, WakeReason
from .shutdown import ShutdownCoordinator
from .supervisor import ProcessRunner

__all__ = ['ProcessRunner', 'ShutdownCoordinator', 'SupervisorContext', 'WakeReason']

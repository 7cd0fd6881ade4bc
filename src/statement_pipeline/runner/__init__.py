"""
Job runner and CLI.

Provides:
- JobCoordinator: drives one job through the staged pipeline
- JobSweeper: runs due jobs and recovers stale ones
- UploadPoller: waits for an upload to finish
- CLI commands: init, submit, run-job, worker, status, show
"""

from .coordinator import JobCoordinator
from .heartbeat import Heartbeat
from .main import create_cli, main
from .poller import UploadPoller
from .sweeper import JobSweeper

__all__ = [
    "Heartbeat",
    "JobCoordinator",
    "JobSweeper",
    "UploadPoller",
    "create_cli",
    "main",
]

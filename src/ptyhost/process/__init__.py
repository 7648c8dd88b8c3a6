"""One-shot process execution and process-tree termination."""

from ptyhost.process.kill import terminate_process_tree, terminate_session
from ptyhost.process.runner import (
    CommandError,
    CommandOk,
    CommandResult,
    ProcessRunner,
    TrackedProcess,
    run_sync,
)

__all__ = [
    "CommandError",
    "CommandOk",
    "CommandResult",
    "ProcessRunner",
    "TrackedProcess",
    "run_sync",
    "terminate_process_tree",
    "terminate_session",
]

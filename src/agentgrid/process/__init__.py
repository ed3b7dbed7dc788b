"""Access to external agent processes.

The ProcessController protocol is the only path through which AgentGrid reads
from or writes to a live process; TmuxController is its production implementation.
"""

from agentgrid.process.protocol import ProcessController
from agentgrid.process.result import CommandResult
from agentgrid.process.tmux import (
    TmuxController,
    validate_directory,
    validate_process_name,
)

__all__ = [
    "CommandResult",
    "ProcessController",
    "TmuxController",
    "validate_directory",
    "validate_process_name",
]

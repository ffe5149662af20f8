"""Process manager: runs the Minecraft server as a supervised child process.

  - ServerSupervisor: spawn, stdin writes, exit monitoring, restarts
  - RestartPolicy:    backoff schedule and attempt budget
  - read_lines:       async line reader over a child's output pipe
"""

from mc_wrapper.process_manager.line_reader import read_lines
from mc_wrapper.process_manager.restart import RestartPolicy
from mc_wrapper.process_manager.supervisor import (
    ServerProcess,
    ServerSupervisor,
    accept_eula,
    build_command,
    ensure_eula,
)

__all__ = [
    "RestartPolicy",
    "ServerProcess",
    "ServerSupervisor",
    "accept_eula",
    "build_command",
    "ensure_eula",
    "read_lines",
]

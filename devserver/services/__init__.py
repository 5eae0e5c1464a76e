"""Container lifecycle services."""

from .container_controller import ContainerController
from .docker_network import DockerNetwork
from .output_demux import OutputDemultiplexer, format_label, split_lines
from .restart_policy import (
    MAX_RESTART_ATTEMPTS,
    ExitWatcher,
    decide_restart,
    resolve_exit,
)
from .task_graph import SetupTask, TaskGraph

__all__ = [
    "MAX_RESTART_ATTEMPTS",
    "ContainerController",
    "DockerNetwork",
    "ExitWatcher",
    "OutputDemultiplexer",
    "SetupTask",
    "TaskGraph",
    "decide_restart",
    "format_label",
    "resolve_exit",
    "split_lines",
]

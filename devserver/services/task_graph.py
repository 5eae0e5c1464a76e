"""Dependency task graph executor.

Runs a small set of named async steps, each declaring the steps it depends on.
A step starts as soon as all of its dependencies have succeeded, so independent
steps run concurrently and dependent steps run strictly after their
prerequisites.

The first failure fails the whole run: no further steps are started and the
failing step's exception is re-raised unchanged. Steps already in flight are
left to finish on their own; their results are discarded.

Usage:
    graph = TaskGraph(
        [
            SetupTask("image", pull_image),
            SetupTask("config", load_config),
            SetupTask("create", create, dependencies={"image", "config"}),
        ]
    )
    results = await graph.run()
    results["create"]
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from devserver.core.exceptions import TaskGraphDefinitionError
from devserver.core.logging import get_logger

logger = get_logger(__name__)

# A step receives the results of its dependencies, keyed by step name.
TaskAction = Callable[[Mapping[str, Any]], Awaitable[Any]]


@dataclass(slots=True)
class SetupTask:
    """One node of a task graph.

    Attributes:
        name: Unique step name within the graph
        action: Coroutine function called with the results of its dependencies
        dependencies: Names of the steps that must succeed first
    """

    name: str
    action: TaskAction
    dependencies: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        self.dependencies = frozenset(self.dependencies)


class TaskGraph:
    """Executes a set of SetupTasks respecting their dependencies.

    A graph runs once; build a fresh one for every execution.

    Attributes:
        name: Label used in log messages
        order: Deterministic topological order of the step names
    """

    def __init__(self, tasks: Iterable[SetupTask], name: str = "setup") -> None:
        self.name = name
        self._tasks: dict[str, SetupTask] = {}
        for task in tasks:
            if task.name in self._tasks:
                raise TaskGraphDefinitionError(f"Duplicate task name: {task.name}")
            self._tasks[task.name] = task

        for task in self._tasks.values():
            unknown = task.dependencies - self._tasks.keys()
            if unknown:
                raise TaskGraphDefinitionError(
                    f"Task {task.name} depends on unknown task(s): {', '.join(sorted(unknown))}",
                    details={"task": task.name, "unknown": sorted(unknown)},
                )

        self.order: list[str] = self._topological_order()
        self._started = False
        # Steps still running after the graph failed; referenced until they finish
        self._stragglers: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def _topological_order(self) -> list[str]:
        """Kahn's algorithm, ties broken by declaration order."""
        remaining = {name: set(task.dependencies) for name, task in self._tasks.items()}
        order: list[str] = []
        while remaining:
            ready = [name for name, deps in remaining.items() if not deps]
            if not ready:
                raise TaskGraphDefinitionError(
                    f"Dependency cycle between tasks: {', '.join(sorted(remaining))}",
                    details={"tasks": sorted(remaining)},
                )
            for name in ready:
                order.append(name)
                del remaining[name]
            for deps in remaining.values():
                deps.difference_update(ready)
        return order

    async def run(self) -> dict[str, Any]:
        """Run every step once and return the results keyed by step name.

        Raises:
            Exception: Whatever the first failing step raised.
            TaskGraphDefinitionError: The graph has already been run.
        """
        if self._started:
            raise TaskGraphDefinitionError(f"Task graph {self.name} has already been run")
        self._started = True

        results: dict[str, Any] = {}
        pending = list(self.order)
        running: dict[asyncio.Task[Any], str] = {}

        try:
            while pending or running:
                for name in [n for n in pending if self._tasks[n].dependencies <= results.keys()]:
                    pending.remove(name)
                    running[self._launch(name, results)] = name

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for finished in sorted(done, key=lambda t: self.order.index(running[t])):
                    name = running.pop(finished)
                    error = finished.exception()
                    if error is not None:
                        logger.debug(
                            f"Task graph {self.name} failed at step '{name}': {error}",
                            extra={"graph": self.name, "step": name},
                        )
                        raise error
                    results[name] = finished.result()
        except BaseException:
            self._abandon(running)
            raise

        return results

    def _launch(self, name: str, results: Mapping[str, Any]) -> asyncio.Task[Any]:
        task = self._tasks[name]
        inputs = {dep: results[dep] for dep in task.dependencies}
        logger.debug(f"Task graph {self.name}: starting step '{name}'")
        return asyncio.create_task(task.action(inputs), name=f"{self.name}:{name}")

    def _abandon(self, running: Mapping[asyncio.Task[Any], str]) -> None:
        """Let in-flight steps finish without waiting for them."""
        for task in running:
            self._stragglers.add(task)
            task.add_done_callback(self._discard_straggler)

    def _discard_straggler(self, task: asyncio.Task[Any]) -> None:
        self._stragglers.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Discarded failure of abandoned step {task.get_name()}: {task.exception()}")

"""Container lifecycle controller.

A ContainerController owns one dev server container: it brings the container
up through a dependency-ordered set of setup steps, streams its output,
watches for it to exit and restarts it when the exit was not asked for.

Start cycle (each step waits for the steps listed after the arrow):

    remove_existing
    inspect_image                       (pulls the image when missing)
    container  <- inspect_image, remove_existing
    network    <- container
    output     <- container             (skipped for resource containers)
    start      <- network, output
    watch      <- start                 (returns immediately)

Usage:
    controller = ContainerController(
        runtime=runtime,
        network=network,
        friendly_name="api",
        type="service",
        image="example/api:latest",
    )
    await controller.start()
    ...
    await controller.stop()

Subclasses customise a container kind by overriding get_image() and
get_environment().
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Mapping, Sequence
from functools import partial
from typing import TYPE_CHECKING, Any

from devserver.core.config import DevServerSettings, get_settings
from devserver.core.exceptions import ImagePullError, RuntimeClientError, RuntimeNotFoundError
from devserver.core.logging import get_logger, sanitize_error, set_log_container
from devserver.services.lifecycle import (
    ContainerIdentity,
    CreateOptions,
    ExitState,
    LifecycleState,
)
from devserver.services.output_demux import OutputDemultiplexer
from devserver.services.restart_policy import ExitWatcher, resolve_exit
from devserver.services.task_graph import SetupTask, TaskGraph

if TYPE_CHECKING:
    from devserver.core.protocols import NetworkProtocol, RuntimeClientProtocol

logger = get_logger(__name__)

# Setup step names
REMOVE_EXISTING = "remove_existing"
INSPECT_IMAGE = "inspect_image"
CONTAINER = "container"
NETWORK = "network"
OUTPUT = "output"
START = "start"
WATCH = "watch"


class ContainerController:
    """Controls the lifecycle of a single container.

    start() and stop() are serialized: a stop() issued while a start cycle is
    in flight marks the container as no longer wanted right away, lets the
    cycle finish, then removes the container.

    Attributes:
        identity: Names of the controlled container.
        state: Desired state, restart counter and current handle.
        settings: DevServerSettings in effect.
    """

    def __init__(
        self,
        runtime: RuntimeClientProtocol,
        network: NetworkProtocol,
        friendly_name: str,
        type: str,
        image: str,
        settings: DevServerSettings | None = None,
        environment: Mapping[str, str] | None = None,
        command: Sequence[str] | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            runtime: Container runtime client.
            network: Network the container joins before it starts.
            friendly_name: Short human-chosen name (e.g., "worker-1").
            type: Container kind ("router", "resource" or a service kind).
            image: Image reference to run.
            settings: Settings; defaults to the process-wide settings.
            environment: Environment variables passed to the container.
            command: Overrides the image's default command when given.
        """
        self.settings = settings or get_settings()
        self.runtime = runtime
        self.network = network
        self.identity = ContainerIdentity.create(
            namespace=self.settings.namespace,
            friendly_name=friendly_name,
            type=str(type),
            prefix=self.settings.name_prefix,
            router_name=self.settings.router_name,
        )
        self.image = image
        self.max_restart_attempts = self.settings.max_restart_attempts
        self.state = LifecycleState()
        self._environment = dict(environment or {})
        self._command = list(command or ())
        self._lock = asyncio.Lock()
        # Bumped by every start cycle and every stop, so exits and restarts
        # belonging to an older cycle can be recognised
        self._cycle = 0
        self._watcher: ExitWatcher | None = None
        self._output_task: asyncio.Task[None] | None = None
        self._restart_tasks: set[asyncio.Task[None]] = set()

    def __repr__(self) -> str:
        return (
            f"ContainerController(name={self.identity.runtime_name!r}, "
            f"desired_running={self.state.desired_running})"
        )

    @property
    def _extra(self) -> dict[str, Any]:
        return {"container": self.identity.runtime_name, "type": self.identity.type}

    @property
    def _description(self) -> str:
        return f"{self.identity.type} '{self.identity.friendly_name}' container"

    # Hooks -----------------------------------------------------------------

    def get_image(self) -> str:
        """Image reference the container runs."""
        return self.image

    def get_environment(self) -> dict[str, str]:
        """Environment variables for the container (empty unless configured)."""
        return dict(self._environment)

    def build_create_options(self) -> CreateOptions:
        """Build the runtime creation options for this container."""
        name = self.identity.runtime_name
        options = CreateOptions(
            image=self.get_image(),
            name=name,
            hostname=name,
            environment=[f"{key}={value}" for key, value in self.get_environment().items()],
            command=list(self._command),
        )
        if self.identity.is_router:
            https_port = f"{self.settings.router_internal_port}/tcp"
            http_port = f"{self.settings.router_http_port}/tcp"
            options.port_bindings = {https_port: [{"HostPort": str(self.settings.router_port)}]}
            options.exposed_ports = {https_port: {}, http_port: {}}
        return options

    # Operations ------------------------------------------------------------

    async def start(self) -> dict[str, Any]:
        """Bring the container up.

        Returns:
            Results of the setup steps, keyed by step name.

        Raises:
            RuntimeClientError: A runtime call failed. Steps already done are
                not rolled back.
            ImagePullError: The image was missing and could not be pulled.
        """
        self.state.desired_running = True
        try:
            results = await self._run_start_cycle()
        except Exception as e:
            logger.error(f"Failed to start {self._description}: {sanitize_error(e)}", extra=self._extra)
            raise
        return results or {}

    async def stop(self) -> None:
        """Remove the container and stop restarting it.

        Raises:
            RuntimeClientError: The runtime could not remove the container.
        """
        self.state.desired_running = False
        async with self._lock:
            self._cycle += 1
            await self.runtime.remove_container(self.identity.runtime_name, force=True)
        logger.info(f"Stopped {self._description}", extra=self._extra)

    def restart(self) -> bool:
        """Schedule a new start cycle in the background.

        Returns:
            True if a start cycle was scheduled, False once the attempt
            ceiling has been exceeded.
        """
        self.state.restart_attempts += 1
        attempt = self.state.restart_attempts
        if attempt > self.max_restart_attempts:
            if attempt == self.max_restart_attempts + 1:
                logger.error(
                    f"Giving up on {self._description} after "
                    f"{self.max_restart_attempts} restart attempts",
                    extra=self._extra,
                )
            return False

        logger.info(f"Restarting {self._description} attempt #{attempt}", extra=self._extra)
        task = asyncio.create_task(
            self._restart_in_background(self._cycle),
            name=f"restart:{self.identity.runtime_name}:{attempt}",
        )
        self._restart_tasks.add(task)
        task.add_done_callback(self._restart_tasks.discard)
        return True

    async def handle_exit(self, status_code: int) -> ExitState:
        """React to the container exiting with the given status code."""
        self.state.last_exit_code = status_code
        exit_state = resolve_exit(
            self.state.desired_running,
            self.state.restart_attempts,
            self.max_restart_attempts,
        )
        self.state.exit_state = exit_state
        if exit_state is ExitState.EXITED_EXPECTED:
            return exit_state

        logger.warning(
            f"{self.identity.display_type} container '{self.identity.friendly_name}' "
            f"exited with status code {status_code}",
            extra={**self._extra, "status_code": status_code},
        )
        self.restart()
        return exit_state

    async def pull_image(self) -> None:
        """Pull the container image, discarding progress events.

        Raises:
            ImagePullError: The daemon reported a failed pull or refused
                the pull request.
        """
        image = self.get_image()
        logger.info(f"Pulling container image '{image}'", extra=self._extra)
        try:
            async for _event in self.runtime.pull_image(image):
                pass
        except ImagePullError as e:
            logger.error(f"Error pulling container image {image}: {e.cause}", extra=self._extra)
            raise
        except RuntimeClientError as e:
            # The daemon refused the pull request itself (unknown image, denied access)
            logger.error(
                f"Error pulling container image {image}: {sanitize_error(e)}",
                extra=self._extra,
            )
            raise ImagePullError(image=image, cause=e) from e
        logger.info(f"Completed pull of container image '{image}'", extra=self._extra)

    async def wait_for_restarts(self) -> None:
        """Wait for scheduled restart cycles to settle."""
        while self._restart_tasks:
            await asyncio.gather(*self._restart_tasks, return_exceptions=True)

    async def close(self) -> None:
        """Stop watching and streaming without touching the container."""
        for task in list(self._restart_tasks):
            task.cancel()
        await self.wait_for_restarts()
        await self._cancel_watcher()
        await self._cancel_output()

    def status(self) -> dict[str, Any]:
        """JSON-friendly snapshot of the controller."""
        return {
            "name": self.identity.runtime_name,
            "friendly_name": self.identity.friendly_name,
            "type": self.identity.type,
            "namespace": self.identity.namespace,
            "image": self.get_image(),
            "desired_running": self.state.desired_running,
            "restart_attempts": self.state.restart_attempts,
            "max_restart_attempts": self.max_restart_attempts,
            "exit_state": str(self.state.exit_state),
            "last_exit_code": self.state.last_exit_code,
            "container_id": self.state.container_handle,
        }

    # Start cycle -----------------------------------------------------------

    async def _run_start_cycle(self, scheduled_cycle: int | None = None) -> dict[str, Any] | None:
        async with self._lock:
            if scheduled_cycle is not None and (
                scheduled_cycle != self._cycle or not self.state.desired_running
            ):
                logger.info(
                    f"Skipping restart of {self._description}, it was stopped or started meanwhile",
                    extra=self._extra,
                )
                return None
            self._cycle += 1
            return await self._build_graph(self._cycle).run()

    async def _restart_in_background(self, scheduled_cycle: int) -> None:
        set_log_container(self.identity.runtime_name)
        try:
            await self._run_start_cycle(scheduled_cycle)
        except Exception as e:
            logger.error(
                f"Unable to restart {self._description}: {sanitize_error(e)}",
                extra=self._extra,
            )

    def _build_graph(self, cycle: int) -> TaskGraph:
        return TaskGraph(
            [
                SetupTask(REMOVE_EXISTING, self._remove_existing),
                SetupTask(INSPECT_IMAGE, self._inspect_image),
                SetupTask(CONTAINER, self._create_container, {INSPECT_IMAGE, REMOVE_EXISTING}),
                SetupTask(NETWORK, self._attach_network, {CONTAINER}),
                SetupTask(OUTPUT, self._attach_output, {CONTAINER}),
                SetupTask(START, self._start_container, {CONTAINER, NETWORK, OUTPUT}),
                SetupTask(WATCH, partial(self._watch, cycle), {CONTAINER, START}),
            ],
            name=f"start:{self.identity.runtime_name}",
        )

    async def _remove_existing(self, _results: Mapping[str, Any]) -> bool:
        name = self.identity.runtime_name
        try:
            await self.runtime.inspect_container(name)
        except RuntimeNotFoundError:
            return False
        await self.runtime.remove_container(name, force=True)
        return True

    async def _inspect_image(self, _results: Mapping[str, Any]) -> bool:
        try:
            await self.runtime.inspect_image(self.get_image())
        except RuntimeNotFoundError:
            await self.pull_image()
            return True
        return False

    async def _create_container(self, _results: Mapping[str, Any]) -> str:
        handle = await self.runtime.create_container(self.build_create_options())
        self.state.container_handle = handle
        return handle

    async def _attach_network(self, _results: Mapping[str, Any]) -> None:
        await self.network.attach_container(self.identity.runtime_name)

    async def _attach_output(self, results: Mapping[str, Any]) -> None:
        if self.identity.is_resource:
            return
        await self._cancel_output()
        stream = await self.runtime.attach_output(results[CONTAINER])
        demux = OutputDemultiplexer(
            self.identity,
            label_width=self.settings.output_label_width,
            color=self.settings.output_color,
        )
        self._output_task = asyncio.create_task(
            demux.consume(stream), name=f"output:{self.identity.runtime_name}"
        )
        logger.debug(f"Attached to output of {self._description}", extra=self._extra)

    async def _start_container(self, results: Mapping[str, Any]) -> None:
        logger.info(
            f"Starting '{self.identity.friendly_name}' {self.identity.type} container",
            extra=self._extra,
        )
        await self.runtime.start_container(results[CONTAINER])

    async def _watch(self, cycle: int, results: Mapping[str, Any]) -> None:
        await self._cancel_watcher()
        self._watcher = ExitWatcher(
            self.runtime,
            results[CONTAINER],
            partial(self._on_watched_exit, cycle),
            name=self.identity.runtime_name,
        )
        self._watcher.watch()
        self.state.exit_state = ExitState.WATCHING

    async def _cancel_watcher(self) -> None:
        if self._watcher is not None:
            await self._watcher.cancel()
            self._watcher = None

    async def _cancel_output(self) -> None:
        if self._output_task is not None:
            self._output_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._output_task
            self._output_task = None

    async def _on_watched_exit(self, cycle: int, status_code: int) -> ExitState:
        if cycle != self._cycle:
            # Container of an older cycle, removed by stop() or a newer start
            return ExitState.EXITED_EXPECTED
        return await self.handle_exit(status_code)

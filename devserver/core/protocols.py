"""Protocol definitions for the collaborators a container controller consumes.

Protocol Definitions:
    - RuntimeClientProtocol: Container runtime (inspect, remove, pull, create,
      attach, start, wait)
    - NetworkProtocol: Virtual network the containers are attached to

Usage:
    Collaborators don't need to inherit from these protocols. The docker-backed
    implementations live in devserver.core.docker_client and
    devserver.services.docker_network; tests substitute in-memory fakes.

    controller = ContainerController(
        runtime=DockerRuntimeClient(),
        network=DockerNetwork(client, "noop-dev"),
        friendly_name="api",
        type="service",
        image="example/api:latest",
    )
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from devserver.services.lifecycle import CreateOptions


@runtime_checkable
class RuntimeClientProtocol(Protocol):
    """Protocol for the container runtime client.

    Not-found conditions raise RuntimeNotFoundError; every other failure
    raises RuntimeClientError. pull_image raises ImagePullError while
    iterating when the daemon reports a failed pull.
    """

    async def inspect_container(self, name: str) -> dict[str, Any]: ...

    async def remove_container(self, name: str, force: bool = True) -> None: ...

    async def inspect_image(self, ref: str) -> dict[str, Any]: ...

    def pull_image(self, ref: str) -> AsyncIterator[dict[str, Any]]:
        """Pull an image, yielding progress events until the pull completes."""
        ...

    async def create_container(self, options: CreateOptions) -> str:
        """Create a container and return its handle (container ID)."""
        ...

    async def attach_output(self, handle: str) -> AsyncIterator[bytes]:
        """Attach to stdout/stderr.

        Returns once attached; the returned iterator yields raw multiplexed
        chunks until the stream closes.
        """
        ...

    async def start_container(self, handle: str) -> None: ...

    async def wait_container(self, handle: str) -> int:
        """Block until the container stops and return its exit status code."""
        ...


@runtime_checkable
class NetworkProtocol(Protocol):
    """Protocol for the network containers join before they start."""

    async def attach_container(self, runtime_name: str) -> None: ...

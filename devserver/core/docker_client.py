"""Docker API wrapper implementing the runtime client protocol.

This module provides an async wrapper around docker-py's low-level API client.
Every blocking docker-py call runs in a thread pool via asyncio.to_thread() so
the controller's event loop never blocks on the daemon.

Features:
- Support for both Docker and Podman (they use the same API)
- NotFound mapped to RuntimeNotFoundError, other daemon failures to RuntimeClientError
- Image pulls streamed as progress events, with daemon-side errors raised as ImagePullError
- Raw attach sockets, so output frames reach the demultiplexer with their headers

Usage:
    async with DockerRuntimeClient() as runtime:
        await runtime.inspect_image("redis:7")

    # Or manual connection management:
    runtime = DockerRuntimeClient(docker_host="unix:///var/run/docker.sock")
    await runtime.connect()
    try:
        status_code = await runtime.wait_container(handle)
    finally:
        await runtime.close()
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from docker import DockerClient as BaseDockerClient  # type: ignore[attr-defined]
from docker.errors import APIError, DockerException, NotFound
from docker.utils import socket as socket_utils

from devserver.core.exceptions import ImagePullError, RuntimeClientError, RuntimeNotFoundError
from devserver.core.logging import get_logger

if TYPE_CHECKING:
    from docker.api import APIClient

    from devserver.services.lifecycle import CreateOptions

logger = get_logger(__name__)

T = TypeVar("T")

# Bytes requested per read from an attach socket
ATTACH_READ_SIZE = 4096


class DockerRuntimeClient:
    """Async runtime client backed by docker-py.

    Attributes:
        _docker_host: The Docker host URL (e.g., unix:///var/run/docker.sock)
        _client: The underlying docker-py client instance
    """

    def __init__(
        self,
        docker_host: str | None = None,
        client: BaseDockerClient | None = None,
    ) -> None:
        """Initialize the runtime client.

        Args:
            docker_host: Docker host URL. If None, uses DOCKER_HOST or the
                        standard Docker socket.
            client: Pre-built docker-py client (takes precedence over docker_host).
        """
        self._docker_host = docker_host
        if client is not None:
            self._client: BaseDockerClient | None = client
        elif docker_host:
            self._client = BaseDockerClient(base_url=docker_host)
        else:
            self._client = BaseDockerClient.from_env()

    async def __aenter__(self) -> DockerRuntimeClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    @property
    def client(self) -> BaseDockerClient:
        """The docker-py client, for collaborators sharing the connection."""
        if self._client is None:
            raise RuntimeClientError("Docker client is closed")
        return self._client

    @property
    def _api(self) -> APIClient:
        return self.client.api

    async def _run(
        self,
        operation: str,
        resource: str,
        func: Callable[..., T],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Run a blocking docker-py call in a thread and map its errors."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except NotFound as e:
            raise RuntimeNotFoundError(
                f"Cannot {operation} - not found: {resource}",
                resource=resource,
                cause=e,
            ) from e
        except APIError as e:
            raise RuntimeClientError(
                f"Failed to {operation} {resource}: {e.explanation or e}",
                status_code=e.status_code,
                cause=e,
            ) from e
        except DockerException as e:
            raise RuntimeClientError(f"Failed to {operation} {resource}: {e}", cause=e) from e

    async def connect(self) -> bool:
        """Test connection to the Docker daemon.

        Returns:
            True if the daemon answered a ping, False otherwise.
        """
        try:
            await self._run("ping", "daemon", self._api.ping)
        except RuntimeClientError as e:
            logger.warning(
                f"Failed to connect to Docker daemon: {e}",
                extra={"docker_host": self._docker_host or "default", "error": str(e)},
            )
            return False
        logger.debug(
            "Connected to Docker daemon",
            extra={"docker_host": self._docker_host or "default"},
        )
        return True

    async def inspect_container(self, name: str) -> dict[str, Any]:
        result: dict[str, Any] = await self._run(
            "inspect container", name, self._api.inspect_container, name
        )
        return result

    async def remove_container(self, name: str, force: bool = True) -> None:
        await self._run("remove container", name, self._api.remove_container, name, force=force)
        logger.debug(f"Removed container {name}", extra={"container": name, "force": force})

    async def inspect_image(self, ref: str) -> dict[str, Any]:
        result: dict[str, Any] = await self._run("inspect image", ref, self._api.inspect_image, ref)
        return result

    async def pull_image(self, ref: str) -> AsyncIterator[dict[str, Any]]:
        """Pull an image, yielding decoded progress events.

        Raises:
            RuntimeClientError: The daemon refused the pull request.
            ImagePullError: The daemon reported an error while pulling.
        """
        events = await self._run("pull image", ref, self._api.pull, ref, stream=True, decode=True)
        while True:
            try:
                event = await asyncio.to_thread(next, events, None)
            except (DockerException, OSError) as e:
                raise ImagePullError(image=ref, cause=e) from e
            if event is None:
                return
            if "error" in event:
                raise ImagePullError(image=ref, cause=event["error"])
            yield event

    async def create_container(self, options: CreateOptions) -> str:
        result = await self._run(
            "create container",
            options.name,
            self._api.create_container_from_config,
            options.to_payload(),
            name=options.name,
        )
        for warning in result.get("Warnings") or []:
            logger.warning(f"Runtime warning for {options.name}: {warning}")
        handle: str = result["Id"]
        return handle

    async def attach_output(self, handle: str) -> AsyncIterator[bytes]:
        """Attach to a container's stdout/stderr.

        Returns once the attach request has been accepted. The returned
        iterator yields the raw multiplexed stream, frame headers included.
        """
        sock = await self._run(
            "attach to container",
            handle,
            self._api.attach_socket,
            handle,
            params={"stdout": 1, "stderr": 1, "stream": 1},
        )
        return self._read_socket(sock, handle)

    async def _read_socket(self, sock: Any, handle: str) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk: bytes = await asyncio.to_thread(socket_utils.read, sock, ATTACH_READ_SIZE)
                if not chunk:
                    return
                yield chunk
        except OSError as e:
            logger.debug(f"Attach stream for {handle} closed: {e}")
        finally:
            sock.close()

    async def start_container(self, handle: str) -> None:
        await self._run("start container", handle, self._api.start, handle)

    async def wait_container(self, handle: str) -> int:
        result = await self._run("wait for container", handle, self._api.wait, handle)
        return int(result.get("StatusCode", -1))

    async def close(self) -> None:
        """Close the Docker client connection.

        Safe to call multiple times.
        """
        if self._client is not None:
            try:
                await asyncio.to_thread(self._client.close)
                logger.debug("Docker client connection closed")
            except DockerException as e:
                logger.debug(f"Error closing Docker client: {e}")
            finally:
                self._client = None

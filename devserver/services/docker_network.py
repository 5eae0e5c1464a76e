"""Docker network shared by the dev server's containers.

Every container joins one bridge network per namespace, so services reach
each other by runtime name.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from docker.errors import APIError, NotFound

from devserver.core.exceptions import RuntimeClientError
from devserver.core.logging import get_logger

if TYPE_CHECKING:
    from docker import DockerClient as BaseDockerClient  # type: ignore[attr-defined]

logger = get_logger(__name__)


class DockerNetwork:
    """Bridge network the controllers attach their containers to.

    Attributes:
        name: Docker network name (e.g., "noop-dev")
    """

    def __init__(self, client: BaseDockerClient, name: str, driver: str = "bridge") -> None:
        self._client = client
        self.name = name
        self.driver = driver

    async def ensure(self) -> bool:
        """Create the network unless it already exists.

        Returns:
            True if the network was created, False if it already existed.
        """
        api = self._client.api
        try:
            await asyncio.to_thread(api.inspect_network, self.name)
            logger.debug(f"Network {self.name} already exists")
            return False
        except NotFound:
            pass
        except APIError as e:
            raise RuntimeClientError(
                f"Failed to inspect network {self.name}: {e.explanation or e}",
                status_code=e.status_code,
                cause=e,
            ) from e

        try:
            await asyncio.to_thread(api.create_network, self.name, driver=self.driver)
        except APIError as e:
            raise RuntimeClientError(
                f"Failed to create network {self.name}: {e.explanation or e}",
                status_code=e.status_code,
                cause=e,
            ) from e
        logger.info(f"Created network '{self.name}'", extra={"driver": self.driver})
        return True

    async def attach_container(self, runtime_name: str) -> None:
        """Connect a created container to the network under its runtime name."""
        try:
            await asyncio.to_thread(
                self._client.api.connect_container_to_network,
                runtime_name,
                self.name,
                aliases=[runtime_name],
            )
        except APIError as e:
            raise RuntimeClientError(
                f"Failed to attach {runtime_name} to network {self.name}: {e.explanation or e}",
                status_code=e.status_code,
                cause=e,
            ) from e
        logger.debug(
            f"Attached {runtime_name} to network {self.name}",
            extra={"container": runtime_name},
        )

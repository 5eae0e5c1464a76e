"""Data models for the container lifecycle.

Classes:
    ContainerIdentity: Immutable naming of one controlled container
    LifecycleState: Mutable state owned by a ContainerController
    CreateOptions: Creation options handed to the runtime client
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from devserver.services.lifecycle.enums import ContainerKind, ExitState

DEFAULT_NAME_PREFIX = "noop"
DEFAULT_ROUTER_NAME = "localapp"


def derive_runtime_name(
    namespace: str,
    type: str,
    friendly_name: str,
    prefix: str = DEFAULT_NAME_PREFIX,
    router_name: str = DEFAULT_ROUTER_NAME,
) -> str:
    """Derive the runtime container name.

    The router is a singleton with a reserved name. Every other kind gets
    ``<prefix>-<namespace>-<type>-<friendly_name>``.

    Examples:
        >>> derive_runtime_name("dev", "resource", "worker-1")
        'noop-dev-resource-worker-1'
        >>> derive_runtime_name("dev", "router", "anything")
        'localapp'
    """
    if type == ContainerKind.ROUTER:
        return router_name
    return f"{prefix}-{namespace}-{type}-{friendly_name}"


@dataclass(frozen=True, slots=True)
class ContainerIdentity:
    """Identity of the container a controller manages.

    Attributes:
        namespace: Dev server namespace (e.g., "dev")
        friendly_name: Human-chosen short name (e.g., "worker-1")
        type: Container kind (router, resource or any service kind)
        runtime_name: Name of the container in the runtime, derived from the above
    """

    namespace: str
    friendly_name: str
    type: str
    runtime_name: str

    @classmethod
    def create(
        cls,
        namespace: str,
        friendly_name: str,
        type: str,
        prefix: str = DEFAULT_NAME_PREFIX,
        router_name: str = DEFAULT_ROUTER_NAME,
    ) -> ContainerIdentity:
        return cls(
            namespace=namespace,
            friendly_name=friendly_name,
            type=type,
            runtime_name=derive_runtime_name(namespace, type, friendly_name, prefix, router_name),
        )

    @property
    def is_router(self) -> bool:
        return self.type == ContainerKind.ROUTER

    @property
    def is_resource(self) -> bool:
        return self.type == ContainerKind.RESOURCE

    @property
    def display_type(self) -> str:
        """Kind with its first letter capitalized (e.g., "Resource")."""
        return self.type[:1].upper() + self.type[1:]


@dataclass(slots=True)
class LifecycleState:
    """Runtime state of a controlled container.

    Only the owning ContainerController mutates this.

    Attributes:
        desired_running: True while the controller intends the container to be up
        restart_attempts: Restarts triggered over the controller's lifetime (never reset)
        container_handle: Runtime handle of the container created by the last start cycle
        exit_state: State of the exit watch for the current cycle
        last_exit_code: Status code of the last observed exit
    """

    desired_running: bool = False
    restart_attempts: int = 0
    container_handle: str | None = None
    exit_state: ExitState = ExitState.IDLE
    last_exit_code: int | None = None


@dataclass(slots=True)
class CreateOptions:
    """Options for creating a runtime container.

    Port bindings and exposed ports are only ever set for the router.
    """

    image: str
    name: str
    hostname: str
    environment: list[str] = field(default_factory=list)
    command: list[str] = field(default_factory=list)
    attach_stdout: bool = True
    attach_stderr: bool = True
    port_bindings: dict[str, list[dict[str, str]]] = field(default_factory=dict)
    exposed_ports: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Engine API container config (the body of POST /containers/create).

        The container name travels as a query parameter, so it is not part
        of the payload.
        """
        payload: dict[str, Any] = {
            "AttachStdout": self.attach_stdout,
            "AttachStderr": self.attach_stderr,
            "Image": self.image,
            "Hostname": self.hostname,
        }
        if self.environment:
            payload["Env"] = list(self.environment)
        if self.command:
            payload["Cmd"] = list(self.command)
        if self.port_bindings:
            payload["HostConfig"] = {"PortBindings": self.port_bindings}
        if self.exposed_ports:
            payload["ExposedPorts"] = self.exposed_ports
        return payload

"""Shared domain models for the container lifecycle.

Import from here instead of the individual modules:

    from devserver.services.lifecycle import (
        # Enums
        ContainerKind,
        ExitState,
        RestartDecision,
        # Models
        ContainerIdentity,
        CreateOptions,
        LifecycleState,
        derive_runtime_name,
    )

Modules in this package:
    enums: ContainerKind, ExitState and RestartDecision
    models: ContainerIdentity, LifecycleState and CreateOptions dataclasses
"""

from devserver.services.lifecycle.enums import ContainerKind, ExitState, RestartDecision
from devserver.services.lifecycle.models import (
    DEFAULT_NAME_PREFIX,
    DEFAULT_ROUTER_NAME,
    ContainerIdentity,
    CreateOptions,
    LifecycleState,
    derive_runtime_name,
)

__all__ = [
    "DEFAULT_NAME_PREFIX",
    "DEFAULT_ROUTER_NAME",
    "ContainerIdentity",
    "ContainerKind",
    "CreateOptions",
    "ExitState",
    "LifecycleState",
    "RestartDecision",
    "derive_runtime_name",
]

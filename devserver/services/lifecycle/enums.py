"""Enums shared by the container lifecycle modules.

- ContainerKind: Role of a container (router, resource, generic service)
- ExitState: Where the exit watcher of the current start cycle stands
- RestartDecision: Outcome of the restart policy for an unexpected exit
"""

from enum import StrEnum, auto


class ContainerKind(StrEnum):
    """Well-known container kinds.

    Any other string is treated as a generic service kind.
    """

    ROUTER = auto()
    RESOURCE = auto()
    SERVICE = auto()


class ExitState(StrEnum):
    """Exit watch state machine.

    IDLE -> WATCHING once the container has started, then exactly one of:
    EXITED_EXPECTED (the controller had been stopped),
    EXITED_UNEXPECTED_RESTART (a new start cycle is scheduled) or
    EXITED_UNEXPECTED_GIVEUP (restart ceiling reached).
    """

    IDLE = auto()
    WATCHING = auto()
    EXITED_EXPECTED = "exited-expected"
    EXITED_UNEXPECTED_RESTART = "exited-unexpected-restart"
    EXITED_UNEXPECTED_GIVEUP = "exited-unexpected-giveup"


class RestartDecision(StrEnum):
    RESTART = auto()
    GIVE_UP = "give-up"

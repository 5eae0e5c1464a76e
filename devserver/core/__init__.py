"""Core infrastructure components."""

from devserver.core.config import DevServerSettings, get_settings
from devserver.core.exceptions import (
    DevServerError,
    ImagePullError,
    RuntimeClientError,
    RuntimeNotFoundError,
    TaskGraphDefinitionError,
)
from devserver.core.logging import (
    get_log_container,
    get_logger,
    set_log_container,
    setup_logging,
)

__all__ = [
    "DevServerError",
    "DevServerSettings",
    "ImagePullError",
    "RuntimeClientError",
    "RuntimeNotFoundError",
    "TaskGraphDefinitionError",
    "get_log_container",
    "get_logger",
    "get_settings",
    "set_log_container",
    "setup_logging",
]

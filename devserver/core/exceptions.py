"""Exception hierarchy for the dev server.

Errors are grouped by where they originate:
1. RuntimeClientError: anything the container runtime reported
2. ImagePullError: a failed image pull, kept apart so callers can tell
   "image unavailable" from other runtime failures
3. TaskGraphDefinitionError: a malformed setup task graph
"""

from __future__ import annotations

from typing import Any


class DevServerError(Exception):
    """Base exception for all dev server errors."""

    default_message: str = "An unexpected error occurred"
    default_error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# Runtime Errors
class RuntimeClientError(DevServerError):
    """A container runtime call failed.

    Attributes:
        status_code: HTTP status reported by the daemon, if any
        cause: The underlying docker-py exception, if any
    """

    default_message = "Container runtime request failed"
    default_error_code = "RUNTIME_ERROR"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        cause: BaseException | None = None,
        **kwargs: Any,
    ) -> None:
        self.status_code = status_code
        self.cause = cause
        details = kwargs.pop("details", {}) or {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details, **kwargs)


class RuntimeNotFoundError(RuntimeClientError):
    """The runtime has no container or image by that name."""

    default_message = "Resource not found"
    default_error_code = "RUNTIME_NOT_FOUND"

    def __init__(
        self,
        message: str | None = None,
        *,
        resource: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.resource = resource
        details = kwargs.pop("details", {}) or {}
        if resource:
            details["resource"] = resource
        kwargs.setdefault("status_code", 404)
        super().__init__(message, details=details, **kwargs)


class ImagePullError(DevServerError):
    """Pulling a container image failed."""

    default_message = "Container image pull failed"
    default_error_code = "IMAGE_PULL_FAILED"

    def __init__(
        self,
        message: str | None = None,
        *,
        image: str | None = None,
        cause: BaseException | str | None = None,
        **kwargs: Any,
    ) -> None:
        self.image = image
        self.cause = cause
        details = kwargs.pop("details", {}) or {}
        if image:
            details["image"] = image
        if cause is not None:
            details["cause"] = str(cause)
        if message is None and image:
            message = f"Error pulling container image {image}"
        super().__init__(message, details=details, **kwargs)


# Task Graph Errors
class TaskGraphDefinitionError(DevServerError):
    """The setup task graph cannot be executed as declared."""

    default_message = "Invalid task graph"
    default_error_code = "INVALID_TASK_GRAPH"

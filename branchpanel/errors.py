"""Error taxonomy shared by the request client, gateway, and selection layers."""

from __future__ import annotations

from typing import Any


class BranchPanelError(RuntimeError):
    """Base class for every failure raised by the core."""


class AuthError(BranchPanelError):
    """Authentication is missing or no longer valid."""


class Unauthenticated(AuthError):
    """No credential is available for the current call."""

    def __init__(self, message: str = "Authentication required. Please sign in.") -> None:
        super().__init__(message)


class SessionExpired(AuthError):
    """A 401 exhausted the refresh budget; the user has been signed out."""

    def __init__(self, message: str = "Session expired. Please sign in again.") -> None:
        super().__init__(message)


class InvalidToken(AuthError):
    """A token supplied for import was rejected by the API."""


class RequestTimeout(BranchPanelError):
    """The API call exceeded its deadline."""


class RequestFailed(BranchPanelError):
    """The API answered with a non-2xx status (or never answered)."""

    def __init__(self, status: int | None, body: Any = None, *, message: str | None = None) -> None:
        self.status = status
        self.body = body
        if message is None:
            if status is None:
                message = f"Request failed: {body}"
            else:
                message = f"Request failed with status {status}: {body}"
        super().__init__(message)


class InvalidResponse(RequestFailed):
    """A 2xx response whose body could not be decoded or understood."""


class ResourceNotFound(BranchPanelError):
    """A selection referenced an id missing from the freshly fetched list."""

    kind = "resource"

    def __init__(self, resource_id: str) -> None:
        self.resource_id = resource_id
        super().__init__(f"Selected {self.kind} not found: {resource_id}")


class OrganizationNotFound(ResourceNotFound):
    kind = "organization"


class ProjectNotFound(ResourceNotFound):
    kind = "project"


class BranchNotFound(ResourceNotFound):
    kind = "branch"


class NoReadWriteEndpoint(BranchPanelError):
    """The branch has no read_write endpoint to connect to."""


class NoDatabasesFound(BranchPanelError):
    """No connection tuple could be built for the branch."""


__all__ = [
    "AuthError",
    "BranchNotFound",
    "BranchPanelError",
    "InvalidResponse",
    "InvalidToken",
    "NoDatabasesFound",
    "NoReadWriteEndpoint",
    "OrganizationNotFound",
    "ProjectNotFound",
    "RequestFailed",
    "RequestTimeout",
    "ResourceNotFound",
    "SessionExpired",
    "Unauthenticated",
]

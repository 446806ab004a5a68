"""Shared dataclasses used across the gateway, selection, and session modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

PERSONAL_ACCOUNT_ID = "personal_account"


class ConnectionType(str, Enum):
    """Whether the user connects to an existing branch or forks a new one."""

    EXISTING = "existing"
    NEW = "new"


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


@dataclass(frozen=True, slots=True)
class Organization:
    id: str
    name: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Organization:
        return cls(id=_text(payload, "id"), name=_text(payload, "name"))


@dataclass(frozen=True, slots=True)
class Project:
    id: str
    name: str
    org_id: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Project:
        return cls(id=_text(payload, "id"), name=_text(payload, "name"), org_id=_text(payload, "org_id"))


@dataclass(frozen=True, slots=True)
class Branch:
    id: str
    name: str
    parent_id: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Branch:
        parent = payload.get("parent_id")
        return cls(
            id=_text(payload, "id"),
            name=_text(payload, "name"),
            parent_id=parent if isinstance(parent, str) and parent else None,
        )


@dataclass(frozen=True, slots=True)
class Database:
    name: str
    owner_name: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Database:
        return cls(name=_text(payload, "name"), owner_name=_text(payload, "owner_name"))


@dataclass(frozen=True, slots=True)
class Role:
    name: str
    protected: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Role:
        return cls(name=_text(payload, "name"), protected=payload.get("protected") is True)


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Compute endpoint attached to a branch."""

    id: str
    host: str
    type: str
    project_id: str = ""
    branch_id: str = ""

    @property
    def is_read_write(self) -> bool:
        return self.type == "read_write"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Endpoint:
        return cls(
            id=_text(payload, "id"),
            host=_text(payload, "host"),
            type=_text(payload, "type"),
            project_id=_text(payload, "project_id"),
            branch_id=_text(payload, "branch_id"),
        )


@dataclass(frozen=True, slots=True)
class BranchConnectionInfo:
    """One connectable (host, database, user, password) tuple for a branch."""

    host: str
    database: str
    user: str
    password: str

    def dsn(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}/{self.database}?sslmode=require"


@dataclass(frozen=True, slots=True)
class ApiKey:
    id: str
    key: str


@dataclass(frozen=True, slots=True)
class Selection:
    """Current org/project/branch choice.

    Lower levels are only ever non-empty when their parent level is set; the
    selection state machine enforces this when it replaces the snapshot.
    """

    org_id: str = ""
    org_name: str = ""
    project_id: str = ""
    project_name: str = ""
    branch_id: str = ""
    branch_name: str = ""
    parent_branch_id: str = ""
    parent_branch_name: str = ""
    connection_type: ConnectionType = ConnectionType.EXISTING

    def without_branches(self) -> Selection:
        return Selection(
            org_id=self.org_id,
            org_name=self.org_name,
            project_id=self.project_id,
            project_name=self.project_name,
            connection_type=self.connection_type,
        )

    def without_projects(self) -> Selection:
        return Selection(
            org_id=self.org_id,
            org_name=self.org_name,
            connection_type=self.connection_type,
        )


@dataclass(frozen=True, slots=True)
class LoadingState:
    orgs: bool = False
    projects: bool = False
    branches: bool = False


@dataclass(frozen=True, slots=True)
class SelectionSnapshot:
    """Everything the view needs from the selection state machine."""

    selection: Selection
    orgs: tuple[Organization, ...] = ()
    projects: tuple[Project, ...] = ()
    branches: tuple[Branch, ...] = ()
    loading: LoadingState = field(default_factory=LoadingState)
    current_branch_id: str = ""
    last_error: str | None = None


@dataclass(frozen=True, slots=True)
class ConnectionState:
    """Local session state for the connected branch."""

    connected: bool = False
    is_starting: bool = False
    connection_infos: tuple[BranchConnectionInfo, ...] = ()
    databases: tuple[Database, ...] = ()
    roles: tuple[Role, ...] = ()
    selected_database: str = ""
    selected_role: str = ""
    connected_branch_id: str = ""
    connected_org_id: str = ""
    connected_org_name: str = ""
    connected_project_id: str = ""
    connected_project_name: str = ""
    connection_string: str = ""
    status: str = "Disconnected"
    latency_ms: int | None = None
    last_error: str | None = None

    def info_for(self, database: str | None = None) -> BranchConnectionInfo | None:
        """Return the tuple for ``database`` or fall back to the first one."""

        if not self.connection_infos:
            return None
        target = database or self.selected_database
        for info in self.connection_infos:
            if info.database == target:
                return info
        return self.connection_infos[0]


__all__ = [
    "ApiKey",
    "Branch",
    "BranchConnectionInfo",
    "ConnectionState",
    "ConnectionType",
    "Database",
    "Endpoint",
    "LoadingState",
    "Organization",
    "PERSONAL_ACCOUNT_ID",
    "Project",
    "Role",
    "Selection",
    "SelectionSnapshot",
]

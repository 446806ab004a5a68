"""Typed resource operations on top of the request client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping
from urllib.parse import quote

from .client import RequestClient
from .errors import (
    AuthError,
    InvalidResponse,
    NoDatabasesFound,
    NoReadWriteEndpoint,
    RequestFailed,
    RequestTimeout,
)
from .models import (
    PERSONAL_ACCOUNT_ID,
    ApiKey,
    Branch,
    BranchConnectionInfo,
    Database,
    Endpoint,
    Organization,
    Project,
    Role,
)
from .retry import RetryPolicy, call_with_retry

LOG = logging.getLogger(__name__)

PERSONAL_ACCOUNT_NAME = "Personal account"


def _as_list(payload: Any, plural: str, singular: str, key: str = "id") -> list[Mapping[str, Any]]:
    """Normalize the API's assorted list shapes into a list of objects.

    A bare object counts as a single record when it carries ``key``.
    """

    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, Mapping)]
    if not isinstance(payload, Mapping):
        return []
    items = payload.get(plural)
    if isinstance(items, list):
        return [item for item in items if isinstance(item, Mapping)]
    item = payload.get(singular)
    if isinstance(item, Mapping):
        return [item]
    if payload.get(key):
        return [payload]
    return []


def _as_object(payload: Any, singular: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        return {}
    inner = payload.get(singular)
    if isinstance(inner, Mapping):
        return inner
    return payload


def _segment(value: str) -> str:
    return quote(value, safe="")


class ResourceGateway:
    """Organization/project/branch operations with response normalization."""

    def __init__(
        self,
        client: RequestClient,
        *,
        project_retry: RetryPolicy | None = None,
    ) -> None:
        self._client = client
        self._project_retry = project_retry or RetryPolicy()

    async def list_orgs(self, include_personal: bool = False) -> list[Organization]:
        payload = await self._client.execute("/users/me/organizations")
        orgs = [Organization.from_payload(item) for item in _as_list(payload, "organizations", "organization")]
        if include_personal and await self._has_personal_account():
            orgs.insert(0, Organization(id=PERSONAL_ACCOUNT_ID, name=PERSONAL_ACCOUNT_NAME))
        return orgs

    async def list_projects(self, org_id: str) -> list[Project]:
        """Projects for ``org_id``; transient failures are retried with a fixed delay."""

        def _log_failure(attempt: int, attempts: int, error: BaseException) -> None:
            LOG.warning(
                "Project listing failed",
                extra={"org_id": org_id, "attempt": attempt, "attempts": attempts, "error": str(error)},
            )

        return await call_with_retry(
            lambda: self._fetch_projects(org_id),
            policy=self._project_retry,
            on_failure=_log_failure,
        )

    async def get_project(self, project_id: str) -> Project:
        payload = await self._client.execute(f"/projects/{_segment(project_id)}")
        return Project.from_payload(_as_object(payload, "project"))

    async def list_branches(self, project_id: str) -> list[Branch]:
        payload = await self._client.execute(f"/projects/{_segment(project_id)}/branches")
        return [Branch.from_payload(item) for item in _as_list(payload, "branches", "branch")]

    async def get_branch(self, project_id: str, branch_id: str) -> Branch:
        payload = await self._client.execute(self._branch_path(project_id, branch_id))
        return Branch.from_payload(_as_object(payload, "branch"))

    async def get_branch_parent(self, project_id: str, branch_id: str) -> str | None:
        branch = await self.get_branch(project_id, branch_id)
        return branch.parent_id

    async def list_databases(self, project_id: str, branch_id: str) -> list[Database]:
        payload = await self._client.execute(f"{self._branch_path(project_id, branch_id)}/databases")
        return [Database.from_payload(item) for item in _as_list(payload, "databases", "database", key="name")]

    async def list_roles(self, project_id: str, branch_id: str) -> list[Role]:
        payload = await self._client.execute(f"{self._branch_path(project_id, branch_id)}/roles")
        return [Role.from_payload(item) for item in _as_list(payload, "roles", "role", key="name")]

    async def list_endpoints(self, project_id: str, branch_id: str | None = None) -> list[Endpoint]:
        if branch_id:
            path = f"{self._branch_path(project_id, branch_id)}/endpoints"
        else:
            path = f"/projects/{_segment(project_id)}/endpoints"
        payload = await self._client.execute(path)
        return [Endpoint.from_payload(item) for item in _as_list(payload, "endpoints", "endpoint")]

    async def get_branch_endpoint(self, project_id: str, branch_id: str) -> str:
        """Host of the branch's read-write endpoint."""

        for endpoint in await self.list_endpoints(project_id, branch_id):
            if endpoint.is_read_write and endpoint.host:
                return endpoint.host
        raise NoReadWriteEndpoint(f"No read_write endpoint found for branch {branch_id}")

    async def reveal_role_password(self, project_id: str, branch_id: str, role_name: str) -> str:
        path = f"{self._role_path(project_id, branch_id, role_name)}/reveal_password"
        payload = await self._client.execute(path)
        password = payload.get("password") if isinstance(payload, Mapping) else None
        if not isinstance(password, str):
            raise InvalidResponse(200, payload, message=f"No password returned for role {role_name}")
        return password

    async def reset_role_password(self, project_id: str, branch_id: str, role_name: str) -> Any:
        path = f"{self._role_path(project_id, branch_id, role_name)}/reset_password"
        return await self._client.execute(path, "POST", {})

    async def create_role(self, project_id: str, branch_id: str, role_name: str) -> Any:
        path = f"{self._branch_path(project_id, branch_id)}/roles"
        return await self._client.execute(path, "POST", {"role": {"name": role_name}})

    async def delete_role(self, project_id: str, branch_id: str, role_name: str) -> Any:
        return await self._client.execute(self._role_path(project_id, branch_id, role_name), "DELETE")

    async def create_branch(self, project_id: str, parent_branch_id: str, name: str) -> Branch:
        """Fork ``parent_branch_id`` into a new branch with its own read-write endpoint."""

        body = {
            "branch": {"name": name, "parent_id": parent_branch_id},
            "endpoints": [{"type": "read_write"}],
            "annotation_value": {"branchpanel": "true"},
        }
        payload = await self._client.execute(f"/projects/{_segment(project_id)}/branches", "POST", body)
        branches = _as_list(payload, "branches", "branch")
        if not branches:
            raise InvalidResponse(200, payload, message="Branch creation returned no branch")
        return Branch.from_payload(branches[0])

    async def reset_branch_to_parent(self, project_id: str, branch_id: str) -> None:
        await self._client.execute(f"{self._branch_path(project_id, branch_id)}/reset_to_parent", "POST")

    async def create_api_key(self, name: str) -> ApiKey:
        payload = await self._client.execute("/api_keys", "POST", {"key_name": name})
        if isinstance(payload, Mapping):
            source = payload.get("api_key") if isinstance(payload.get("api_key"), Mapping) else payload
            key_id, key = source.get("id"), source.get("key")
            if key_id and isinstance(key, str) and key:
                return ApiKey(id=str(key_id), key=key)
        raise InvalidResponse(200, payload, message="Unexpected API key response format")

    async def find_endpoint(self, endpoint_id: str) -> Endpoint | None:
        """Search every accessible project for the endpoint with ``endpoint_id``."""

        for org in await self.list_orgs(include_personal=True):
            for project in await self._fetch_projects(org.id):
                for endpoint in await self.list_endpoints(project.id):
                    if endpoint.id == endpoint_id:
                        return _with_project(endpoint, project.id)
        return None

    async def get_branch_connection_info(self, project_id: str, branch_id: str) -> list[BranchConnectionInfo]:
        """One connection tuple per database whose owner password can be revealed."""

        host = await self.get_branch_endpoint(project_id, branch_id)
        databases = [db for db in await self.list_databases(project_id, branch_id) if db.owner_name]
        passwords = await asyncio.gather(
            *(self.reveal_role_password(project_id, branch_id, db.owner_name) for db in databases),
            return_exceptions=True,
        )
        infos: list[BranchConnectionInfo] = []
        for database, password in zip(databases, passwords):
            if isinstance(password, AuthError):
                raise password
            if isinstance(password, BaseException):
                LOG.warning(
                    "Skipping database whose owner password could not be revealed",
                    extra={"database": database.name, "role": database.owner_name, "error": str(password)},
                )
                continue
            infos.append(
                BranchConnectionInfo(host=host, database=database.name, user=database.owner_name, password=password)
            )
        if not infos:
            raise NoDatabasesFound(f"No databases found for branch {branch_id}")
        return infos

    async def _fetch_projects(self, org_id: str) -> list[Project]:
        if org_id == PERSONAL_ACCOUNT_ID:
            path = "/projects"
        else:
            path = f"/projects?org_id={quote(org_id, safe='')}"
        payload = await self._client.execute(path)
        return [Project.from_payload(item) for item in _as_list(payload, "projects", "project")]

    async def _has_personal_account(self) -> bool:
        try:
            await self._fetch_projects(PERSONAL_ACCOUNT_ID)
        except (RequestFailed, RequestTimeout) as exc:
            LOG.debug("Personal account unavailable", extra={"error": str(exc)})
            return False
        return True

    @staticmethod
    def _branch_path(project_id: str, branch_id: str) -> str:
        return f"/projects/{_segment(project_id)}/branches/{_segment(branch_id)}"

    def _role_path(self, project_id: str, branch_id: str, role_name: str) -> str:
        return f"{self._branch_path(project_id, branch_id)}/roles/{_segment(role_name)}"


def _with_project(endpoint: Endpoint, project_id: str) -> Endpoint:
    if endpoint.project_id:
        return endpoint
    return Endpoint(
        id=endpoint.id,
        host=endpoint.host,
        type=endpoint.type,
        project_id=project_id,
        branch_id=endpoint.branch_id,
    )


__all__ = ["PERSONAL_ACCOUNT_NAME", "ResourceGateway"]

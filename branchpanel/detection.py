"""Detect branch connection strings already present in a workspace."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

from .cache import ENDPOINT_CACHE_TTL, SCAN_CACHE_TTL, Clock, TTLCache
from .errors import AuthError, BranchPanelError, RequestFailed
from .models import Branch, Endpoint, Organization, Project

LOG = logging.getLogger(__name__)

CANDIDATE_FILES: tuple[str, ...] = (
    ".env",
    ".env.local",
    ".env.development",
    ".env.production",
    ".env.example",
    "config.json",
    "config.yaml",
    "config.yml",
    "database.json",
    "database.yml",
    "next.config.js",
    "next.config.ts",
    "nuxt.config.js",
    "nuxt.config.ts",
    "prisma/schema.prisma",
    "drizzle.config.ts",
    "drizzle.config.js",
)

CONNECTION_URL = re.compile(r"postgres(?:ql)?://[^:\s]+:[^@\s]+@[^/\s]+\.neon\.tech[^\s\"')}\]]+", re.IGNORECASE)
_URL_PARTS = re.compile(r"postgres(?:ql)?://([^:]+):([^@]+)@([^/]+)/([^?]+)", re.IGNORECASE)
_ENDPOINT_HOST = re.compile(r"(ep-[^.]+)\.")


@dataclass(frozen=True, slots=True)
class EndpointDetails:
    """What the API knows about the endpoint behind a connection string."""

    project_id: str = ""
    branch_id: str = ""
    project_name: str = ""
    branch_name: str = ""
    org_id: str = ""
    org_name: str = ""
    error: str | None = None


@dataclass(frozen=True, slots=True)
class DetectedConnection:
    file: str
    connection_string: str
    database: str | None = None
    endpoint_id: str | None = None
    details: EndpointDetails | None = None

    @property
    def error(self) -> str | None:
        return self.details.error if self.details else None


class EndpointLookup(Protocol):
    """Gateway operations needed to enrich detected connections."""

    async def find_endpoint(self, endpoint_id: str) -> Endpoint | None: ...

    async def get_project(self, project_id: str) -> Project: ...

    async def get_branch(self, project_id: str, branch_id: str) -> Branch: ...

    async def list_orgs(self, include_personal: bool = False) -> list[Organization]: ...


def parse_connection_string(url: str) -> tuple[str | None, str | None]:
    """Return ``(database, endpoint_id)`` for a connection URL.

    Pooled hosts (``ep-foo-123-pooler.region...``) map to the same endpoint id
    as their direct counterpart.
    """

    match = _URL_PARTS.match(url)
    if match is None:
        return None, None
    host, database = match.group(3), match.group(4)
    host_match = _ENDPOINT_HOST.search(host)
    endpoint_id = host_match.group(1).removesuffix("-pooler") if host_match else None
    return database, endpoint_id


class ConnectionScanner:
    """Scans well-known config files and resolves their endpoints through the API.

    Two caches apply: resolved endpoint details (failures included) and whole
    scan results per workspace root. :meth:`invalidate` clears both. Results
    that hit an auth failure are never cached; they are retried on the next
    scan.
    """

    def __init__(
        self,
        gateway: EndpointLookup,
        *,
        endpoint_ttl: float = ENDPOINT_CACHE_TTL,
        scan_ttl: float = SCAN_CACHE_TTL,
        clock: Clock | None = None,
    ) -> None:
        self._gateway = gateway
        self._endpoints: TTLCache[str, EndpointDetails] = TTLCache(endpoint_ttl, clock=clock)
        self._scans: TTLCache[str, tuple[DetectedConnection, ...]] = TTLCache(scan_ttl, clock=clock)

    @property
    def endpoint_cache(self) -> TTLCache[str, EndpointDetails]:
        return self._endpoints

    @property
    def scan_cache(self) -> TTLCache[str, tuple[DetectedConnection, ...]]:
        return self._scans

    def invalidate(self) -> None:
        self._endpoints.invalidate_all()
        self._scans.invalidate_all()

    async def scan(self, root: Path) -> tuple[DetectedConnection, ...]:
        key = str(root.expanduser().resolve())
        cached = self._scans.get(key)
        if cached is not None:
            LOG.debug("Using cached detected connections", extra={"root": key})
            return cached
        found: list[DetectedConnection] = []
        complete = True
        for relative in CANDIDATE_FILES:
            path = root / relative
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                LOG.warning("Could not read %s", path, exc_info=True)
                continue
            for match in CONNECTION_URL.finditer(content):
                url = match.group(0)
                database, endpoint_id = parse_connection_string(url)
                details = None
                if endpoint_id:
                    details, cacheable = await self._resolve(endpoint_id)
                    complete = complete and cacheable
                found.append(
                    DetectedConnection(
                        file=relative,
                        connection_string=url,
                        database=database,
                        endpoint_id=endpoint_id,
                        details=details,
                    )
                )
        result = tuple(found)
        if complete:
            self._scans.set(key, result)
        return result

    async def _resolve(self, endpoint_id: str) -> tuple[EndpointDetails, bool]:
        """Return the endpoint details and whether they may be cached."""

        cached = self._endpoints.get(endpoint_id)
        if cached is not None:
            return cached, True
        try:
            details = await self._lookup(endpoint_id)
        except AuthError as exc:
            LOG.info("Endpoint lookup hit an auth failure", extra={"endpoint_id": endpoint_id, "error": str(exc)})
            return EndpointDetails(error=_endpoint_error(exc)), False
        self._endpoints.set(endpoint_id, details)
        return details, True

    async def _lookup(self, endpoint_id: str) -> EndpointDetails:
        try:
            endpoint = await self._gateway.find_endpoint(endpoint_id)
        except AuthError:
            raise
        except BranchPanelError as exc:
            LOG.warning("Endpoint lookup failed", extra={"endpoint_id": endpoint_id, "error": str(exc)})
            return EndpointDetails(error=_endpoint_error(exc))
        if endpoint is None:
            return EndpointDetails(error="Endpoint not found")
        details = EndpointDetails(project_id=endpoint.project_id, branch_id=endpoint.branch_id)
        if not endpoint.project_id:
            return details
        try:
            project = await self._gateway.get_project(endpoint.project_id)
        except AuthError:
            raise
        except BranchPanelError as exc:
            error = "Project not found or deleted" if _status(exc) == 404 else "Project not accessible"
            return replace(details, error=error)
        details = replace(details, project_name=project.name, org_id=project.org_id)
        if project.org_id:
            try:
                orgs = await self._gateway.list_orgs()
            except AuthError:
                raise
            except BranchPanelError:
                orgs = []
            org = next((item for item in orgs if item.id == project.org_id), None)
            if org is None:
                return replace(details, error="Organization not accessible")
            details = replace(details, org_name=org.name)
        if endpoint.branch_id:
            try:
                branch = await self._gateway.get_branch(endpoint.project_id, endpoint.branch_id)
            except AuthError:
                raise
            except BranchPanelError as exc:
                error = "Branch not found or deleted" if _status(exc) == 404 else "Branch not accessible"
                return replace(details, error=error)
            details = replace(details, branch_name=branch.name)
        return details


def _status(exc: BaseException) -> int | None:
    return exc.status if isinstance(exc, RequestFailed) else None


def _endpoint_error(exc: BaseException) -> str:
    status = _status(exc)
    if status == 404:
        return "Endpoint not found - project may be deleted"
    if status in (401, 403) or isinstance(exc, AuthError):
        return "Not authorized to access this project"
    return "Could not verify connection"


__all__ = [
    "CANDIDATE_FILES",
    "CONNECTION_URL",
    "ConnectionScanner",
    "DetectedConnection",
    "EndpointDetails",
    "EndpointLookup",
    "parse_connection_string",
]

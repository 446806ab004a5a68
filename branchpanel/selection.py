"""Cascading organization/project/branch selection."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Awaitable, Callable, Iterator, Protocol, Sequence, TypeVar

from .errors import (
    AuthError,
    BranchNotFound,
    BranchPanelError,
    OrganizationNotFound,
    ProjectNotFound,
    ResourceNotFound,
)
from .models import (
    Branch,
    ConnectionType,
    LoadingState,
    Organization,
    Project,
    Selection,
    SelectionSnapshot,
)

LOG = logging.getLogger(__name__)

SelectionListener = Callable[[SelectionSnapshot], None]

_Item = TypeVar("_Item", Organization, Project, Branch)

_TIERS = ("orgs", "projects", "branches")

SequenceToken = dict[str, int]


class SelectionGateway(Protocol):
    """Subset of :class:`~branchpanel.gateway.ResourceGateway` used here."""

    async def list_orgs(self, include_personal: bool = False) -> list[Organization]: ...

    async def list_projects(self, org_id: str) -> list[Project]: ...

    async def list_branches(self, project_id: str) -> list[Branch]: ...


def _find(items: Sequence[_Item], item_id: str) -> _Item | None:
    for item in items:
        if item.id == item_id:
            return item
    return None


class SelectionStateMachine:
    """Owns the Selection plus the lists it was chosen from.

    Transitions run one at a time under a lock. Each list tier (orgs, projects,
    branches) has its own sequence number; a request bumps the tiers it will
    replace and records all of them when it is issued. A fetch is applied only
    while its tier number is still the recorded one, so a newer request for the
    same tier (or :meth:`reset`) supersedes it while requests for other tiers
    do not.
    """

    def __init__(
        self,
        gateway: SelectionGateway,
        *,
        include_personal: bool = False,
        connection_type: ConnectionType = ConnectionType.EXISTING,
    ) -> None:
        self._gateway = gateway
        self._include_personal = include_personal
        self._lock = asyncio.Lock()
        self._sequences: dict[str, int] = dict.fromkeys(_TIERS, 0)
        self._selection = Selection(connection_type=connection_type)
        self._orgs: tuple[Organization, ...] = ()
        self._projects: tuple[Project, ...] = ()
        self._branches: tuple[Branch, ...] = ()
        self._loading = LoadingState()
        self._current_branch_id = ""
        self._last_error: str | None = None
        # project id -> (branch, parent branch) chosen while that project was active
        self._remembered: dict[str, tuple[Branch | None, Branch | None]] = {}
        self._listeners: set[SelectionListener] = set()

    @property
    def selection(self) -> Selection:
        return self._selection

    @property
    def orgs(self) -> tuple[Organization, ...]:
        return self._orgs

    @property
    def projects(self) -> tuple[Project, ...]:
        return self._projects

    @property
    def branches(self) -> tuple[Branch, ...]:
        return self._branches

    def snapshot(self) -> SelectionSnapshot:
        return SelectionSnapshot(
            selection=self._selection,
            orgs=self._orgs,
            projects=self._projects,
            branches=self._branches,
            loading=self._loading,
            current_branch_id=self._current_branch_id,
            last_error=self._last_error,
        )

    def subscribe(self, listener: SelectionListener) -> Callable[[], None]:
        """Subscribe to snapshot changes; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def reset(self) -> None:
        """Forget everything (sign-out or identity change) and supersede in-flight work."""

        self._issue(*_TIERS)
        self._clear()
        self._notify()

    async def load_organizations(self) -> bool:
        """Fetch organizations; returns True when the accessible org set changed."""

        token = self._issue("orgs")
        async with self._lock:
            with self._loading_tier("orgs"):
                try:
                    orgs = await self._gateway.list_orgs(self._include_personal)
                except AuthError:
                    raise
                except BranchPanelError as exc:
                    self._record_failure(token, exc, "orgs")
                    return False
            if not self._is_current(token, "orgs"):
                return False
            identity_changed = bool(self._orgs) and {org.id for org in orgs} != {org.id for org in self._orgs}
            if identity_changed:
                LOG.info("Accessible organizations changed; clearing selection")
                self._clear()
            self._orgs = tuple(orgs)
            if self._selection.org_id and _find(self._orgs, self._selection.org_id) is None:
                self._selection = Selection(connection_type=self._selection.connection_type)
                self._projects = ()
                self._branches = ()
                self._current_branch_id = ""
            self._last_error = None
            self._notify()
            return identity_changed

    async def select_org(self, org_id: str) -> SelectionSnapshot:
        token = self._issue(*_TIERS)
        async with self._lock:
            try:
                org = await self._resolve(token, "orgs", org_id, self._refetch_orgs, OrganizationNotFound)
            except (AuthError, ResourceNotFound):
                raise
            except BranchPanelError as exc:
                self._record_failure(token, exc, "orgs")
                return self.snapshot()
            if org is None:
                return self.snapshot()
            self._selection = Selection(
                org_id=org.id,
                org_name=org.name,
                connection_type=self._selection.connection_type,
            )
            self._projects = ()
            self._branches = ()
            self._current_branch_id = ""
            self._notify()
            await self._load_projects(token, org.id)
            return self.snapshot()

    async def select_project(self, project_id: str) -> SelectionSnapshot:
        token = self._issue("branches")
        async with self._lock:
            try:
                project = await self._resolve(token, "projects", project_id, self._refetch_projects, ProjectNotFound)
            except (AuthError, ResourceNotFound):
                raise
            except BranchPanelError as exc:
                self._record_failure(token, exc, "projects")
                return self.snapshot()
            if project is None:
                return self.snapshot()
            self._remember_current()
            self._selection = replace(
                self._selection.without_branches(),
                project_id=project.id,
                project_name=project.name,
            )
            self._branches = ()
            self._current_branch_id = ""
            self._notify()
            branches = await self._fetch_branches(token, project.id)
            if branches is None:
                return self.snapshot()
            self._branches = tuple(branches)
            self._restore(project.id)
            self._notify()
            return self.snapshot()

    async def select_branch(self, branch_id: str) -> SelectionSnapshot:
        token = self._issue()
        async with self._lock:
            try:
                branch = await self._resolve(token, "branches", branch_id, self._refetch_branches, BranchNotFound)
            except (AuthError, ResourceNotFound):
                raise
            except BranchPanelError as exc:
                self._record_failure(token, exc, "branches")
                return self.snapshot()
            if branch is None:
                return self.snapshot()
            self._adopt_branch(branch)
            self._remember_current()
            self._notify()
            return self.snapshot()

    async def set_connection_type(self, connection_type: ConnectionType | str) -> SelectionSnapshot:
        mode = ConnectionType(connection_type)
        async with self._lock:
            self._selection = replace(self._selection, connection_type=mode)
            self._notify()
            return self.snapshot()

    async def refresh_projects(self) -> SelectionSnapshot:
        """Reload the current org's projects, keeping the project when it still exists."""

        token = self._issue("projects")
        async with self._lock:
            org_id = self._selection.org_id
            if not org_id:
                return self.snapshot()
            await self._load_projects(token, org_id)
            if not self._is_current(token, "projects"):
                return self.snapshot()
            project_id = self._selection.project_id
            if project_id:
                project = _find(self._projects, project_id)
                if project is None:
                    self._remember_current()
                    self._selection = self._selection.without_projects()
                    self._branches = ()
                    self._current_branch_id = ""
                else:
                    self._selection = replace(self._selection, project_name=project.name)
                self._notify()
            return self.snapshot()

    async def refresh_branches(self) -> SelectionSnapshot:
        """Reload the current project's branches, re-validating the branch fields."""

        token = self._issue("branches")
        async with self._lock:
            project_id = self._selection.project_id
            if not project_id:
                return self.snapshot()
            self._remember_current()
            branches = await self._fetch_branches(token, project_id)
            if branches is None:
                return self.snapshot()
            self._branches = tuple(branches)
            self._selection = self._selection.without_branches()
            self._restore(project_id)
            self._notify()
            return self.snapshot()

    async def _load_projects(self, token: SequenceToken, org_id: str) -> None:
        with self._loading_tier("projects"):
            try:
                projects = await self._gateway.list_projects(org_id)
            except AuthError:
                raise
            except BranchPanelError as exc:
                self._record_failure(token, exc, "projects")
                return
        if not self._is_current(token, "projects"):
            LOG.debug("Dropping stale project list", extra={"org_id": org_id})
            return
        self._projects = tuple(projects)
        self._last_error = None
        self._notify()

    async def _fetch_branches(self, token: SequenceToken, project_id: str) -> list[Branch] | None:
        with self._loading_tier("branches"):
            try:
                branches = await self._gateway.list_branches(project_id)
            except AuthError:
                raise
            except BranchPanelError as exc:
                self._record_failure(token, exc, "branches")
                return None
        if not self._is_current(token, "branches"):
            LOG.debug("Dropping stale branch list", extra={"project_id": project_id})
            return None
        self._last_error = None
        return branches

    async def _resolve(
        self,
        token: SequenceToken,
        tier: str,
        item_id: str,
        refetch: Callable[[], Awaitable[Sequence[_Item]]],
        not_found: type[ResourceNotFound],
    ) -> _Item | None:
        """Find ``item_id`` in the loaded list, refetching it once when absent.

        Returns ``None`` when the transition went stale during the refetch.
        """

        found = _find(getattr(self, f"_{tier}"), item_id)
        if found is not None:
            return found
        LOG.debug("Selection target not loaded; refetching", extra={"kind": not_found.kind, "id": item_id})
        items = await refetch()
        if not self._is_current(token, tier):
            return None
        setattr(self, f"_{tier}", tuple(items))
        found = _find(items, item_id)
        if found is None:
            self._notify()
            raise not_found(item_id)
        return found

    async def _refetch_orgs(self) -> list[Organization]:
        return await self._gateway.list_orgs(self._include_personal)

    async def _refetch_projects(self) -> list[Project]:
        if not self._selection.org_id:
            return []
        return await self._gateway.list_projects(self._selection.org_id)

    async def _refetch_branches(self) -> list[Branch]:
        if not self._selection.project_id:
            return []
        return await self._gateway.list_branches(self._selection.project_id)

    def _adopt_branch(self, branch: Branch) -> None:
        if self._selection.connection_type is ConnectionType.NEW:
            self._selection = replace(self._selection, parent_branch_id=branch.id, parent_branch_name=branch.name)
        else:
            self._selection = replace(self._selection, branch_id=branch.id, branch_name=branch.name)
            self._current_branch_id = branch.id

    def _restore(self, project_id: str) -> None:
        remembered_branch, remembered_parent = self._remembered.get(project_id, (None, None))
        if self._selection.connection_type is ConnectionType.NEW:
            candidate = remembered_parent
        else:
            candidate = remembered_branch
        if candidate is None:
            return
        current = _find(self._branches, candidate.id)
        if current is None:
            LOG.debug("Remembered branch no longer exists", extra={"branch_id": candidate.id})
            self._forget(project_id)
            return
        self._adopt_branch(current)

    def _remember_current(self) -> None:
        selection = self._selection
        if not selection.project_id:
            return
        branch = Branch(id=selection.branch_id, name=selection.branch_name) if selection.branch_id else None
        parent = (
            Branch(id=selection.parent_branch_id, name=selection.parent_branch_name)
            if selection.parent_branch_id
            else None
        )
        previous_branch, previous_parent = self._remembered.get(selection.project_id, (None, None))
        self._remembered[selection.project_id] = (branch or previous_branch, parent or previous_parent)

    def _forget(self, project_id: str) -> None:
        branch, parent = self._remembered.get(project_id, (None, None))
        if self._selection.connection_type is ConnectionType.NEW:
            parent = None
        else:
            branch = None
        self._remembered[project_id] = (branch, parent)

    @contextmanager
    def _loading_tier(self, tier: str) -> Iterator[None]:
        self._loading = replace(self._loading, **{tier: True})
        self._notify()
        try:
            yield
        finally:
            # reset() already cleared the flags
            if getattr(self._loading, tier):
                self._loading = replace(self._loading, **{tier: False})
                self._notify()

    def _record_failure(self, token: SequenceToken, exc: BaseException, tier: str) -> None:
        LOG.error("Failed to load %s", tier, exc_info=exc)
        if self._is_current(token, tier):
            self._last_error = str(exc)
            self._notify()

    def _issue(self, *tiers: str) -> SequenceToken:
        """Bump ``tiers`` and record every tier number as of this request."""

        for tier in tiers:
            self._sequences[tier] += 1
        return dict(self._sequences)

    def _is_current(self, token: SequenceToken, tier: str) -> bool:
        return token[tier] == self._sequences[tier]

    def _clear(self) -> None:
        self._selection = Selection(connection_type=self._selection.connection_type)
        self._orgs = ()
        self._projects = ()
        self._branches = ()
        self._loading = LoadingState()
        self._current_branch_id = ""
        self._last_error = None
        self._remembered.clear()

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in tuple(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                LOG.exception("Selection listener failed")


__all__ = ["SelectionGateway", "SelectionListener", "SelectionStateMachine"]

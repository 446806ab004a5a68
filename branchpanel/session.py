"""Session manager tying auth, selection, and the branch connection together."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from .auth import AuthSession, TokenSet
from .client import RequestClient
from .connections import ConnectionBackend, ConnectionBackendError, DemoConnectionBackend
from .detection import ConnectionScanner, DetectedConnection
from .errors import AuthError, BranchPanelError, InvalidToken
from .gateway import ResourceGateway
from .models import Branch, ConnectionState, ConnectionType
from .selection import SelectionStateMachine

LOG = logging.getLogger(__name__)

SessionListener = Callable[[ConnectionState], None]


class SessionManager:
    """Owns the auth lifecycle and the local connection state for the panel."""

    def __init__(
        self,
        *,
        auth: AuthSession,
        client: RequestClient,
        gateway: ResourceGateway,
        selection: SelectionStateMachine,
        backend: ConnectionBackend | None = None,
        scanner: ConnectionScanner | None = None,
        api_key_name: str = "branchpanel",
    ) -> None:
        self._auth = auth
        self._client = client
        self._gateway = gateway
        self._selection = selection
        self._backend = backend or DemoConnectionBackend()
        self._scanner = scanner or ConnectionScanner(gateway)
        self._api_key_name = api_key_name
        self._state = ConnectionState()
        self._listeners: set[SessionListener] = set()

    @property
    def auth(self) -> AuthSession:
        return self._auth

    @property
    def selection(self) -> SelectionStateMachine:
        return self._selection

    @property
    def gateway(self) -> ResourceGateway:
        return self._gateway

    @property
    def scanner(self) -> ConnectionScanner:
        return self._scanner

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""

        return self._state

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to connection state updates; returns an unsubscribe handle."""

        self._listeners.add(listener)
        listener(self._state)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def initialize(self) -> bool:
        """Load organizations and re-load lists below any surviving selection.

        Returns True when the accessible organizations changed, in which case
        selection and connection state have been cleared.
        """

        identity_changed = await self._selection.load_organizations()
        if identity_changed:
            await self._drop_connection()
            return True
        if self._selection.selection.org_id:
            await self._selection.refresh_projects()
        if self._selection.selection.project_id:
            await self._selection.refresh_branches()
        return False

    async def refresh(self) -> None:
        """User-triggered refresh: drop cached lookups and reload everything."""

        self._scanner.invalidate()
        await self.initialize()
        if self._state.connected:
            await self.refresh_connection_info()

    async def connect(self, branch_id: str | None = None) -> ConnectionState:
        """Connect to ``branch_id`` (default: the selected branch).

        In ``new`` mode a fresh branch is forked from the selected parent first.
        """

        selection = self._selection.selection
        if not selection.project_id:
            raise BranchPanelError("Select a project before connecting.")
        if branch_id is None and selection.connection_type is ConnectionType.NEW:
            if not selection.parent_branch_id:
                raise BranchPanelError("Select a parent branch before connecting.")
            branch = await self.create_branch(self._fork_name(), selection.parent_branch_id)
            branch_id = branch.id
        branch_id = branch_id or selection.branch_id
        if not branch_id:
            raise BranchPanelError("Select a branch before connecting.")
        project_id = selection.project_id
        self._update(is_starting=True, status="Connecting", last_error=None)
        try:
            infos, databases, roles = await asyncio.gather(
                self._gateway.get_branch_connection_info(project_id, branch_id),
                self._gateway.list_databases(project_id, branch_id),
                self._gateway.list_roles(project_id, branch_id),
            )
            info = infos[0]
            event = await self._backend.connect(info)
        except (BranchPanelError, ConnectionBackendError) as exc:
            LOG.exception("Failed to connect", extra={"project_id": project_id, "branch_id": branch_id})
            self._update(connected=False, is_starting=False, status="Disconnected", last_error=str(exc))
            raise
        self._state = ConnectionState(
            connected=True,
            connection_infos=tuple(infos),
            databases=tuple(databases),
            roles=tuple(roles),
            selected_database=info.database,
            selected_role=info.user,
            connected_branch_id=branch_id,
            connected_org_id=selection.org_id,
            connected_org_name=selection.org_name,
            connected_project_id=project_id,
            connected_project_name=selection.project_name,
            connection_string=info.dsn(),
            status=event.status,
            latency_ms=event.latency_ms,
        )
        self._notify()
        return self._state

    async def disconnect(self) -> ConnectionState:
        await self._drop_connection()
        return self._state

    async def select_database(self, name: str) -> ConnectionState:
        if not any(database.name == name for database in self._state.databases):
            raise BranchPanelError(f"Database '{name}' is not available on the connected branch.")
        info = self._state.info_for(name)
        updates: dict[str, object] = {"selected_database": name}
        if info is not None:
            updates["connection_string"] = info.dsn()
            if info.database == name:
                updates["selected_role"] = info.user
        self._update(**updates)
        return self._state

    async def select_role(self, name: str) -> ConnectionState:
        if not any(role.name == name for role in self._state.roles):
            raise BranchPanelError(f"Role '{name}' is not available on the connected branch.")
        self._update(selected_role=name)
        return self._state

    async def refresh_connection_info(self) -> ConnectionState:
        """Re-fetch credentials, databases and roles for the connected branch."""

        state = self._state
        if not state.connected:
            return state
        project_id, branch_id = state.connected_project_id, state.connected_branch_id
        infos, databases, roles = await asyncio.gather(
            self._gateway.get_branch_connection_info(project_id, branch_id),
            self._gateway.list_databases(project_id, branch_id),
            self._gateway.list_roles(project_id, branch_id),
        )
        names = {database.name for database in databases}
        selected = state.selected_database if state.selected_database in names else infos[0].database
        self._state = replace(
            state,
            connection_infos=tuple(infos),
            databases=tuple(databases),
            roles=tuple(roles),
            selected_database=selected,
        )
        info = self._state.info_for(selected)
        if info is not None:
            self._state = replace(self._state, connection_string=info.dsn())
        try:
            event = await self._backend.ping()
        except ConnectionBackendError as exc:
            self._update(status="Degraded", last_error=str(exc))
        else:
            self._update(status=event.status, latency_ms=event.latency_ms, last_error=None)
        return self._state

    async def create_branch(self, name: str, parent_branch_id: str | None = None) -> Branch:
        """Create a branch in the selected project and reload the branch list."""

        selection = self._selection.selection
        if not selection.project_id:
            raise BranchPanelError("Select a project before creating a branch.")
        parent = parent_branch_id or selection.parent_branch_id or selection.branch_id
        if not parent:
            raise BranchPanelError("Select a parent branch before creating a branch.")
        branch = await self._gateway.create_branch(selection.project_id, parent, name)
        LOG.info("Created branch", extra={"branch_id": branch.id, "parent_id": parent})
        await self._selection.refresh_branches()
        return branch

    async def reset_branch(self) -> None:
        """Reset the selected branch to its parent's state."""

        selection = self._selection.selection
        if not selection.project_id or not selection.branch_id:
            raise BranchPanelError("Select a branch before resetting it.")
        await self._gateway.reset_branch_to_parent(selection.project_id, selection.branch_id)
        if self._state.connected and self._state.connected_branch_id == selection.branch_id:
            await self.refresh_connection_info()

    async def scan_connections(self, root: Path) -> tuple[DetectedConnection, ...]:
        return await self._scanner.scan(root)

    async def import_token(self, token: str) -> None:
        """Validate ``token`` and adopt it as the persistent credential."""

        token = token.strip()
        if not token or not await self._client.probe(token):
            raise InvalidToken("The provided token is invalid.")
        await self._auth.set_persistent_token(token)

    async def complete_sign_in(self, token_set: TokenSet) -> None:
        """Install OAuth tokens and provision a persistent API key when missing."""

        await self._auth.sign_in(token_set)
        if await self._auth.get_persistent_token():
            return
        key_name = f"{self._api_key_name}-{datetime.now(tz=timezone.utc):%Y%m%d%H%M%S}"
        try:
            api_key = await self._gateway.create_api_key(key_name)
        except AuthError:
            raise
        except BranchPanelError:
            LOG.exception("Failed to create persistent API key; continuing with OAuth tokens")
            return
        await self._auth.set_persistent_token(api_key.key)

    async def sign_out(self) -> None:
        await self._auth.sign_out()

    async def clear(self) -> None:
        """Drop selection, detection caches and connection state (sign-out)."""

        self._selection.reset()
        self._scanner.invalidate()
        await self._drop_connection()

    async def close(self) -> None:
        """Close the branch connection and the HTTP client."""

        await self._drop_connection()
        await self._client.aclose()

    async def _drop_connection(self) -> None:
        try:
            await self._backend.disconnect()
        except ConnectionBackendError:
            LOG.exception("Failed to close branch connection")
        self._state = ConnectionState()
        self._notify()

    def _fork_name(self) -> str:
        return f"{self._api_key_name}-{datetime.now(tz=timezone.utc):%Y%m%d-%H%M%S}"

    def _update(self, **changes: object) -> None:
        self._state = replace(self._state, **changes)
        self._notify()

    def _notify(self) -> None:
        for listener in tuple(self._listeners):
            try:
                listener(self._state)
            except Exception:
                LOG.exception("Session listener failed")


__all__ = ["SessionListener", "SessionManager"]

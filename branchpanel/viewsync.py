"""Controller that keeps the presenter in sync with auth, selection and session state."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from .connections import ConnectionBackendError
from .debounce import DEFAULT_DELAY, Debouncer
from .detection import DetectedConnection
from .errors import AuthError, BranchPanelError, ResourceNotFound
from .models import ConnectionState, ConnectionType, SelectionSnapshot
from .session import SessionManager

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PanelView:
    """Everything the presenter needs to draw the signed-in panel."""

    selection: SelectionSnapshot
    connection: ConnectionState
    detected: tuple[DetectedConnection, ...] = ()


class Presenter(Protocol):
    """Rendering surface; methods may be plain or async."""

    def render(self, view: PanelView) -> Awaitable[None] | None: ...

    def render_sign_in(self, message: str | None = None) -> Awaitable[None] | None: ...

    def notify(self, message: str, severity: str = "information") -> Awaitable[None] | None: ...


IntentHandler = Callable[..., Awaitable[Any]]


class ViewSyncController:
    """Routes user intents to the core and coalesces re-renders.

    At most one render runs at a time; a request that arrives while one is in
    flight is dropped. Bursts of state changes are debounced into one render.
    """

    def __init__(
        self,
        session: SessionManager,
        presenter: Presenter,
        *,
        debounce_delay: float = DEFAULT_DELAY,
        workspace_root: Path | None = None,
    ) -> None:
        self._session = session
        self._presenter = presenter
        self._debouncer = Debouncer(debounce_delay)
        self._workspace_root = workspace_root
        self._rendering = False
        self._render_count = 0
        self._detected: tuple[DetectedConnection, ...] = ()
        self._subscriptions: list[Callable[[], None]] = []
        self._intents: dict[str, IntentHandler] = {
            "select_org": self._select_org,
            "select_project": self._select_project,
            "select_branch": self._select_branch,
            "set_connection_type": self._set_connection_type,
            "refresh": self._refresh,
            "refresh_projects": self._refresh_projects,
            "refresh_branches": self._refresh_branches,
            "connect": self._connect,
            "disconnect": self._disconnect,
            "select_database": self._select_database,
            "select_role": self._select_role,
            "create_branch": self._create_branch,
            "reset_branch": self._reset_branch,
            "sign_out": self._sign_out,
            "import_token": self._import_token,
            "scan_connections": self._scan_connections,
        }

    @property
    def render_count(self) -> int:
        """Number of renders started so far (sign-in renders included)."""

        return self._render_count

    @property
    def is_rendering(self) -> bool:
        return self._rendering

    @property
    def intents(self) -> tuple[str, ...]:
        return tuple(self._intents)

    @property
    def detected(self) -> tuple[DetectedConnection, ...]:
        return self._detected

    async def start(self) -> None:
        """Subscribe to state sources and draw the first frame."""

        auth = self._session.auth
        self._subscriptions.append(auth.subscribe(self._handle_auth_change))
        self._subscriptions.append(self._session.selection.subscribe(lambda _snapshot: self.schedule_update()))
        self._subscriptions.append(self._session.subscribe(lambda _state: self.schedule_update()))
        self._debouncer.cancel()
        if not await auth.is_authenticated():
            await auth.load()
        if await auth.is_authenticated():
            await self._initialize()
        await self.request_update()

    def close(self) -> None:
        """Dispose subscriptions and drop any pending debounced render."""

        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()
        self._debouncer.cancel()

    async def request_update(self) -> bool:
        """Render now unless a render is already running; returns whether it rendered."""

        if self._rendering:
            LOG.debug("Render already in flight; dropping request")
            return False
        self._rendering = True
        self._render_count += 1
        try:
            await self._render()
        except Exception:
            LOG.exception("Render failed; showing sign-in")
            await self._show_sign_in(None)
        finally:
            self._rendering = False
        return True

    def schedule_update(self) -> None:
        """Debounced :meth:`request_update`."""

        self._debouncer.submit(self.request_update)

    async def flush(self) -> None:
        """Wait for a pending debounced render (testing helper)."""

        await self._debouncer.wait()

    async def dispatch(self, intent: str, **payload: Any) -> Any:
        """Run a named user intent and re-render.

        Selection and request failures become warnings; auth failures lead
        back to the sign-in surface.
        """

        handler = self._intents.get(intent)
        if handler is None:
            raise ValueError(f"Unknown intent: {intent}")
        LOG.debug("Dispatching intent", extra={"intent": intent})
        try:
            result = await handler(**payload)
        except AuthError as exc:
            LOG.info("Intent hit an auth failure", extra={"intent": intent, "error": str(exc)})
            if await self._session.auth.is_authenticated():
                await self._call(self._presenter.notify, str(exc), "error")
                await self.request_update()
            else:
                await self._show_sign_in(str(exc))
            return None
        except ResourceNotFound as exc:
            await self._call(self._presenter.notify, str(exc), "warning")
        except (BranchPanelError, ConnectionBackendError) as exc:
            LOG.warning("Intent failed", extra={"intent": intent, "error": str(exc)})
            await self._call(self._presenter.notify, str(exc), "warning")
        else:
            await self.request_update()
            return result
        await self.request_update()
        return None

    async def _render(self) -> None:
        if not await self._session.auth.is_authenticated():
            await self._call(self._presenter.render_sign_in, None)
            return
        view = PanelView(
            selection=self._session.selection.snapshot(),
            connection=self._session.state,
            detected=self._detected,
        )
        await self._call(self._presenter.render, view)

    async def _show_sign_in(self, message: str | None) -> None:
        self._debouncer.cancel()
        try:
            await self._call(self._presenter.render_sign_in, message)
        except Exception:
            LOG.exception("Failed to render sign-in surface")

    async def _handle_auth_change(self, authenticated: bool) -> None:
        if authenticated:
            await self._initialize()
            await self.request_update()
            return
        self._detected = ()
        await self._session.clear()
        await self._show_sign_in(None)

    async def _initialize(self) -> None:
        try:
            identity_changed = await self._session.initialize()
        except AuthError:
            LOG.info("Initialization hit an auth failure")
            return
        if identity_changed:
            self._detected = ()
            await self._call(self._presenter.notify, "Account changed; selection was reset.", "information")

    async def _select_org(self, org_id: str) -> SelectionSnapshot:
        return await self._session.selection.select_org(org_id)

    async def _select_project(self, project_id: str) -> SelectionSnapshot:
        return await self._session.selection.select_project(project_id)

    async def _select_branch(self, branch_id: str) -> SelectionSnapshot:
        return await self._session.selection.select_branch(branch_id)

    async def _set_connection_type(self, connection_type: ConnectionType | str) -> SelectionSnapshot:
        return await self._session.selection.set_connection_type(connection_type)

    async def _refresh(self) -> None:
        await self._session.refresh()
        if self._detected and self._workspace_root is not None:
            self._detected = await self._session.scan_connections(self._workspace_root)

    async def _refresh_projects(self) -> SelectionSnapshot:
        return await self._session.selection.refresh_projects()

    async def _refresh_branches(self) -> SelectionSnapshot:
        return await self._session.selection.refresh_branches()

    async def _connect(self, branch_id: str | None = None) -> ConnectionState:
        state = await self._session.connect(branch_id)
        await self._call(self._presenter.notify, f"Connected to {state.connected_project_name or 'branch'}.", "information")
        return state

    async def _disconnect(self) -> ConnectionState:
        return await self._session.disconnect()

    async def _select_database(self, name: str) -> ConnectionState:
        return await self._session.select_database(name)

    async def _select_role(self, name: str) -> ConnectionState:
        return await self._session.select_role(name)

    async def _create_branch(self, name: str, parent_branch_id: str | None = None) -> Any:
        branch = await self._session.create_branch(name, parent_branch_id)
        await self._call(self._presenter.notify, f'Branch "{branch.name}" created.', "information")
        return branch

    async def _reset_branch(self) -> None:
        await self._session.reset_branch()
        await self._call(self._presenter.notify, "Branch reset to parent.", "information")

    async def _sign_out(self) -> None:
        await self._session.sign_out()

    async def _import_token(self, token: str) -> None:
        await self._session.import_token(token)

    async def _scan_connections(self, root: Path | str | None = None) -> tuple[DetectedConnection, ...]:
        target = Path(root) if root is not None else self._workspace_root or Path.cwd()
        self._detected = await self._session.scan_connections(target)
        return self._detected

    @staticmethod
    async def _call(method: Callable[..., Any], *args: Any) -> None:
        result = method(*args)
        if inspect.isawaitable(result):
            await result


__all__ = ["IntentHandler", "PanelView", "Presenter", "ViewSyncController"]

"""Sidebar widget listing organizations, projects and branches."""

from __future__ import annotations

from textual import on
from textual.app import ComposeResult
from textual.containers import Container
from textual.widgets import Button, Label, ListItem, ListView, Static

from branchpanel.models import ConnectionType, SelectionSnapshot


class NavigationSidebar(Container):
    """Three stacked lists mirroring the current selection snapshot."""

    DEFAULT_CSS = """
    NavigationSidebar {
        width: 34;
        min-width: 26;
        border-right: solid $surface-darken-1;
        padding: 1;
        height: 1fr;
        background: $surface-darken-2;
    }

    NavigationSidebar .sidebar-heading {
        text-style: bold;
        margin-top: 1;
    }

    NavigationSidebar ListView {
        height: 6;
        border: round $primary 30%;
    }

    NavigationSidebar .selected {
        text-style: bold;
    }

    #selection-summary {
        padding-top: 1;
        border-top: solid $surface-darken-1;
        color: $text-muted;
        min-height: 4;
    }
    """

    _LISTS = {
        "org-list": "select_org",
        "project-list": "select_project",
        "branch-list": "select_branch",
    }

    def __init__(self) -> None:
        super().__init__(id="nav-sidebar")
        self._snapshot: SelectionSnapshot | None = None

    def compose(self) -> ComposeResult:
        yield Static("Organizations", classes="sidebar-heading", id="org-heading")
        yield ListView(id="org-list")
        yield Static("Projects", classes="sidebar-heading", id="project-heading")
        yield ListView(id="project-list")
        yield Static("Branches", classes="sidebar-heading", id="branch-heading")
        yield ListView(id="branch-list")
        yield Button("Mode: existing branch", id="connection-type")
        yield Static("", id="selection-summary")

    async def on_mount(self) -> None:
        view = getattr(self.app, "last_view", None)
        if view is not None:
            self.show(view.selection)

    def show(self, snapshot: SelectionSnapshot) -> None:
        """Re-populate the lists from ``snapshot``."""

        self._snapshot = snapshot
        if not self.is_mounted:
            return
        selection = snapshot.selection
        self._fill("org-list", [(org.id, org.name or org.id) for org in snapshot.orgs], selection.org_id)
        self._fill(
            "project-list",
            [(project.id, project.name or project.id) for project in snapshot.projects],
            selection.project_id,
        )
        active_branch = (
            selection.parent_branch_id if selection.connection_type is ConnectionType.NEW else selection.branch_id
        )
        self._fill(
            "branch-list",
            [(branch.id, branch.name or branch.id) for branch in snapshot.branches],
            active_branch,
        )
        loading = snapshot.loading
        self.query_one("#org-heading", Static).update("Organizations…" if loading.orgs else "Organizations")
        self.query_one("#project-heading", Static).update("Projects…" if loading.projects else "Projects")
        self.query_one("#branch-heading", Static).update("Branches…" if loading.branches else "Branches")
        mode = "new branch" if selection.connection_type is ConnectionType.NEW else "existing branch"
        self.query_one("#connection-type", Button).label = f"Mode: {mode}"
        self._render_summary(snapshot)

    def _fill(self, list_id: str, entries: list[tuple[str, str]], active_id: str) -> None:
        list_view = self.query_one(f"#{list_id}", ListView)
        list_view.clear()
        active_index: int | None = None
        for index, (resource_id, label) in enumerate(entries):
            item = _ResourceItem(resource_id, label)
            if resource_id == active_id:
                item.add_class("selected")
                active_index = index
            list_view.append(item)
        if active_index is not None:
            list_view.index = active_index

    def _render_summary(self, snapshot: SelectionSnapshot) -> None:
        selection = snapshot.selection
        if selection.connection_type is ConnectionType.NEW:
            branch_line = f"Parent: {selection.parent_branch_name or '-'}"
        else:
            branch_line = f"Branch: {selection.branch_name or '-'}"
        lines = [
            f"Org: {selection.org_name or '-'}",
            f"Project: {selection.project_name or '-'}",
            branch_line,
        ]
        if snapshot.last_error:
            lines.append(f"Error: {snapshot.last_error.splitlines()[0][:80]}")
        self.query_one("#selection-summary", Static).update("\n".join(lines))

    @on(ListView.Selected)
    def _handle_selected(self, event: ListView.Selected) -> None:
        intent = self._LISTS.get(event.list_view.id or "")
        item = event.item
        if intent is None or not isinstance(item, _ResourceItem):
            return
        event.stop()
        key = {"select_org": "org_id", "select_project": "project_id", "select_branch": "branch_id"}[intent]
        self._request(intent, **{key: item.resource_id})

    @on(Button.Pressed, "#connection-type")
    def _toggle_connection_type(self, event: Button.Pressed) -> None:
        event.stop()
        current = self._snapshot.selection.connection_type if self._snapshot else ConnectionType.EXISTING
        target = ConnectionType.EXISTING if current is ConnectionType.NEW else ConnectionType.NEW
        self._request("set_connection_type", connection_type=target)

    def _request(self, intent: str, **payload: object) -> None:
        dispatcher = getattr(self.app, "dispatch_intent", None)
        if dispatcher is None:
            return
        dispatcher(intent, **payload)


class _ResourceItem(ListItem):
    """List item remembering the id it was rendered for."""

    def __init__(self, resource_id: str, label: str) -> None:
        super().__init__(Label(label))
        self.resource_id = resource_id


__all__ = ["NavigationSidebar"]

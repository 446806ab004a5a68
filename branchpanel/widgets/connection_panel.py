"""Main panel describing the branch connection and detected connection strings."""

from __future__ import annotations

from textual import on
from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import Button, Static

from branchpanel.detection import DetectedConnection
from branchpanel.models import ConnectionState


class ConnectionPanel(Container):
    """Connection details plus connect/disconnect controls."""

    DEFAULT_CSS = """
    ConnectionPanel {
        padding: 1 2;
        height: 1fr;
    }

    ConnectionPanel #connection-buttons {
        height: auto;
        margin-bottom: 1;
    }

    ConnectionPanel #connection-details {
        min-height: 6;
    }

    ConnectionPanel #detected-connections {
        padding-top: 1;
        border-top: solid $surface-darken-1;
        color: $text-muted;
    }
    """

    _BUTTON_INTENTS = {
        "connect": "connect",
        "disconnect": "disconnect",
        "scan": "scan_connections",
        "refresh-panel": "refresh",
    }

    def __init__(self) -> None:
        super().__init__(id="connection-panel")

    def compose(self) -> ComposeResult:
        yield Horizontal(
            Button("Connect", id="connect", variant="primary"),
            Button("Disconnect", id="disconnect"),
            Button("Scan workspace", id="scan"),
            Button("Refresh", id="refresh-panel"),
            id="connection-buttons",
        )
        yield Static("Not connected.", id="connection-details")
        yield Static("", id="detected-connections")

    async def on_mount(self) -> None:
        view = getattr(self.app, "last_view", None)
        if view is not None:
            self.show(view.connection, view.detected)

    def show(self, state: ConnectionState, detected: tuple[DetectedConnection, ...] = ()) -> None:
        if not self.is_mounted:
            return
        self.query_one("#connection-details", Static).update(self.describe(state))
        self.query_one("#detected-connections", Static).update(self.describe_detected(detected))
        self.query_one("#connect", Button).disabled = state.connected or state.is_starting
        self.query_one("#disconnect", Button).disabled = not state.connected

    @staticmethod
    def describe(state: ConnectionState) -> str:
        if state.is_starting:
            return "Connecting…"
        if not state.connected:
            return "Not connected."
        lines = [
            f"Organization: {state.connected_org_name or state.connected_org_id or '-'}",
            f"Project: {state.connected_project_name or state.connected_project_id}",
            f"Branch: {state.connected_branch_id}",
            f"Database: {state.selected_database}",
            f"Role: {state.selected_role}",
            f"Connection string: {state.connection_string}",
        ]
        if state.databases:
            lines.append("Databases: " + ", ".join(database.name for database in state.databases))
        if state.roles:
            lines.append("Roles: " + ", ".join(role.name for role in state.roles))
        return "\n".join(lines)

    @staticmethod
    def describe_detected(detected: tuple[DetectedConnection, ...]) -> str:
        if not detected:
            return ""
        lines = ["Detected connections:"]
        for connection in detected:
            details = connection.details
            target = connection.database or "?"
            if details and details.project_name:
                target = f"{details.project_name}/{details.branch_name or details.branch_id} ({target})"
            suffix = f" [{connection.error}]" if connection.error else ""
            lines.append(f"  {connection.file}: {target}{suffix}")
        return "\n".join(lines)

    @on(Button.Pressed)
    def _pressed(self, event: Button.Pressed) -> None:
        intent = self._BUTTON_INTENTS.get(event.button.id or "")
        if intent is None:
            return
        event.stop()
        dispatcher = getattr(self.app, "dispatch_intent", None)
        if dispatcher is not None:
            dispatcher(intent)


__all__ = ["ConnectionPanel"]

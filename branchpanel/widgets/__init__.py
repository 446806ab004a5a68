"""Widget library for the Textual UI."""

from __future__ import annotations

from .connection_panel import ConnectionPanel
from .navigation_sidebar import NavigationSidebar
from .sign_in import SignInPanel
from .status_bar import StatusBar

__all__ = ["ConnectionPanel", "NavigationSidebar", "SignInPanel", "StatusBar"]

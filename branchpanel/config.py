"""App configuration loading helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .cache import ENDPOINT_CACHE_TTL, SCAN_CACHE_TTL
from .client import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_SECONDS
from .debounce import DEFAULT_DELAY
from .models import ConnectionType

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "branchpanel" / "config.toml"


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    api_base_url: str = DEFAULT_BASE_URL
    request_timeout: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    project_list_attempts: int = Field(default=3, ge=1)
    project_list_retry_delay: float = Field(default=1.0, ge=0)
    endpoint_cache_ttl: float = Field(default=ENDPOINT_CACHE_TTL, gt=0)
    scan_cache_ttl: float = Field(default=SCAN_CACHE_TTL, gt=0)
    debounce_delay: float = Field(default=DEFAULT_DELAY, ge=0)
    include_personal_account: bool = True
    connection_type: ConnectionType = ConnectionType.EXISTING
    workspace_root: str | None = None
    api_key_name: str = "branchpanel"
    theme: str = "dark"
    log_level: str = "WARNING"
    backend: Literal["asyncpg", "demo"] = "asyncpg"

    def with_connection_type(self, connection_type: ConnectionType) -> AppConfig:
        """Return a copy with the connection type updated."""

        return self.model_copy(update={"connection_type": connection_type})

    def with_workspace_root(self, root: str | None) -> AppConfig:
        return self.model_copy(update={"workspace_root": root})

    def resolved_workspace_root(self) -> Path:
        if self.workspace_root:
            return Path(self.workspace_root).expanduser()
        return Path.cwd()


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing or malformed."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        LOG.warning("Ignoring unreadable config file %s", CONFIG_FILE, exc_info=True)
        return AppConfig()
    try:
        return AppConfig(**data)
    except ValidationError:
        LOG.warning("Ignoring invalid config file %s", CONFIG_FILE, exc_info=True)
        return AppConfig()


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f'api_base_url = "{config.api_base_url}"',
        f"request_timeout = {config.request_timeout}",
        f"project_list_attempts = {config.project_list_attempts}",
        f"project_list_retry_delay = {config.project_list_retry_delay}",
        f"endpoint_cache_ttl = {config.endpoint_cache_ttl}",
        f"scan_cache_ttl = {config.scan_cache_ttl}",
        f"debounce_delay = {config.debounce_delay}",
        f"include_personal_account = {str(config.include_personal_account).lower()}",
        f'connection_type = "{config.connection_type.value}"',
        f'api_key_name = "{config.api_key_name}"',
        f'theme = "{config.theme}"',
        f'log_level = "{config.log_level}"',
        f'backend = "{config.backend}"',
    ]
    if config.workspace_root:
        lines.append(f'workspace_root = "{config.workspace_root}"')
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if not isinstance(raw, dict):
        return data
    for key in ("api_base_url", "workspace_root", "api_key_name", "theme", "log_level", "backend", "connection_type"):
        value = raw.get(key)
        if isinstance(value, str):
            data[key] = value
    for key in ("request_timeout", "project_list_retry_delay", "endpoint_cache_ttl", "scan_cache_ttl", "debounce_delay"):
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            data[key] = float(value)
    attempts = raw.get("project_list_attempts")
    if isinstance(attempts, int) and not isinstance(attempts, bool):
        data["project_list_attempts"] = attempts
    personal = raw.get("include_personal_account")
    if isinstance(personal, bool):
        data["include_personal_account"] = personal
    return data


__all__ = ["AppConfig", "CONFIG_FILE", "load_config", "save_config"]

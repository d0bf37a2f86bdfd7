"""
Configuration from environment variables.

Usage:
    from sandctl.config import get_settings

    settings = get_settings()
    print(settings.sessions_path, settings.default_provider)
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from sandctl.exceptions import ConfigError


def default_sessions_path() -> Path:
    """Default location of the sessions file (~/.sandctl/sessions.json)."""
    return Path.home() / ".sandctl" / "sessions.json"


def _env_truthy(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_path(name: str) -> Optional[Path]:
    raw = os.getenv(name)
    if not raw:
        return None
    return Path(raw).expanduser()


class Settings:
    """Configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Session store
        self.sessions_path: Path = (
            _env_path("SANDCTL_SESSIONS_PATH") or default_sessions_path()
        )

        # Providers
        self.default_provider: str = os.getenv("SANDCTL_DEFAULT_PROVIDER", "hetzner")
        self.hetzner_token: Optional[str] = os.getenv(
            "SANDCTL_HETZNER_TOKEN"
        ) or os.getenv("HCLOUD_TOKEN")
        self.hetzner_region: str = os.getenv("SANDCTL_HETZNER_REGION", "ash")
        self.hetzner_server_type: str = os.getenv(
            "SANDCTL_HETZNER_SERVER_TYPE", "cpx31"
        )
        self.hetzner_image: str = os.getenv("SANDCTL_HETZNER_IMAGE", "ubuntu-24.04")
        self.http_timeout: float = _env_float("SANDCTL_HTTP_TIMEOUT", 30.0)

        # SSH access to provisioned VMs
        self.ssh_public_key: Optional[Path] = _env_path("SANDCTL_SSH_PUBLIC_KEY")
        self.ssh_private_key: Optional[Path] = _env_path("SANDCTL_SSH_PRIVATE_KEY")
        self.ssh_user: str = os.getenv("SANDCTL_SSH_USER", "agent")
        self.user_data_path: Optional[Path] = _env_path("SANDCTL_USER_DATA")

        # Readiness polling (seconds)
        self.poll_interval: float = _env_float("SANDCTL_POLL_INTERVAL", 5.0)
        self.ready_timeout: float = _env_float("SANDCTL_READY_TIMEOUT", 300.0)
        self.boot_timeout: float = _env_float("SANDCTL_BOOT_TIMEOUT", 600.0)
        self.wait_for_boot: bool = _env_truthy(
            os.getenv("SANDCTL_WAIT_FOR_BOOT"), True
        )

        # HTTP server
        self.host: str = os.getenv("SANDCTL_HOST", "127.0.0.1")
        self.port: int = _env_int("SANDCTL_PORT", 8080)
        self.api_key: Optional[str] = os.getenv("SANDCTL_API_KEY")
        self.sync_interval: float = _env_float("SANDCTL_SYNC_INTERVAL", 0.0)

        self.log_level: str = os.getenv("SANDCTL_LOG_LEVEL", "INFO")

        if self.poll_interval <= 0:
            raise ConfigError("SANDCTL_POLL_INTERVAL must be positive")

    @property
    def auth_required(self) -> bool:
        """Authentication is required if SANDCTL_API_KEY is set."""
        return self.api_key is not None

    def read_user_data(self) -> str:
        """Contents of the configured cloud-init file, or an empty string."""
        if self.user_data_path is None:
            return ""
        try:
            return self.user_data_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(
                f"failed to read user data file {self.user_data_path}: {exc}"
            ) from exc

    def read_ssh_public_key(self) -> Optional[str]:
        """Contents of the configured SSH public key, or None if unset."""
        if self.ssh_public_key is None:
            return None
        try:
            return self.ssh_public_key.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(
                f"failed to read SSH public key {self.ssh_public_key}: {exc}"
            ) from exc


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()

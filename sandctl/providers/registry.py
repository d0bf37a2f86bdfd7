from __future__ import annotations

import threading
from typing import Callable, Dict, Optional

from sandctl.config import Settings, get_settings
from sandctl.exceptions import ConfigError
from sandctl.providers.base import BaseProvider

ProviderFactory = Callable[[Settings], BaseProvider]

PROVIDERS: Dict[str, ProviderFactory] = {}


def _hetzner_factory(settings: Settings) -> BaseProvider:
    from sandctl.providers.hetzner import HetznerProvider

    return HetznerProvider.from_settings(settings)


PROVIDERS["hetzner"] = _hetzner_factory


def register_provider(name: str, factory: ProviderFactory) -> None:
    """
    Register a provider backend.

    Args:
        name: Provider identifier stored on sessions
        factory: Callable building the provider from Settings

    Example:
        register_provider("fake", lambda settings: FakeProvider())
    """
    if not name or not isinstance(name, str):
        raise ValueError("Provider name must be a non-empty string")
    PROVIDERS[name] = factory


def get_provider(name: str, settings: Optional[Settings] = None) -> BaseProvider:
    """Build a new provider instance. Raises ConfigError for unknown names."""
    factory = PROVIDERS.get(name)
    if factory is None:
        raise ConfigError(
            f"Unknown provider: {name}. Registered: {', '.join(list_providers())}"
        )
    return factory(settings or get_settings())


def list_providers() -> list[str]:
    """List all registered provider names."""
    return list(PROVIDERS.keys())


class ProviderResolver:
    """
    Resolves provider names to instances, building each one at most once.

    One resolver is meant to live for a single CLI invocation or server
    process; close() releases every instance it built.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings
        self._instances: Dict[str, BaseProvider] = {}
        self._lock = threading.Lock()

    def __call__(self, name: str) -> BaseProvider:
        with self._lock:
            provider = self._instances.get(name)
            if provider is None:
                provider = get_provider(name, self._settings)
                self._instances[name] = provider
            return provider

    def close(self) -> None:
        with self._lock:
            instances = list(self._instances.values())
            self._instances.clear()
        for provider in instances:
            provider.close()

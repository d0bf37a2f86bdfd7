from sandctl.providers.base import BaseProvider
from sandctl.providers.registry import (
    ProviderResolver,
    get_provider,
    list_providers,
    register_provider,
)

__all__ = [
    "BaseProvider",
    "ProviderResolver",
    "get_provider",
    "list_providers",
    "register_provider",
]

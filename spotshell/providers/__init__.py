"""Provider registry and management.

Each registered provider contributes a client class implementing the
``ProviderClient`` protocol for a single region.
"""

from __future__ import annotations

from spotshell.constants import DEFAULT_REGION
from spotshell.core.interfaces import ProviderClient
from spotshell.providers.aws import AWSProviderClient
from spotshell.providers.exceptions import (
    ProviderAPIError,
    ProviderConnectionError,
    ProviderCredentialsError,
    ProviderError,
    ProviderNotFoundError,
    ProviderPermanentError,
    ProviderTransientError,
)

_PROVIDERS: dict[str, dict[str, type[ProviderClient] | str | None]] = {}


def register_provider(
    name: str,
    client_class: type[ProviderClient],
    default_region: str | None = None,
) -> None:
    """Register a cloud provider implementation.

    Parameters
    ----------
    name : str
        Provider name (e.g., 'aws')
    client_class : type[ProviderClient]
        Client class implementing the ProviderClient protocol
    default_region : str | None
        Default region for this provider
    """
    _PROVIDERS[name] = {"client": client_class, "default_region": default_region}


def get_provider(name: str) -> type[ProviderClient]:
    """Get a registered provider client class by name.

    Raises
    ------
    ValueError
        If provider is not registered
    """
    if name not in _PROVIDERS:
        raise ValueError(f"Unknown provider: {name}")
    return _PROVIDERS[name]["client"]


def list_providers() -> list[str]:
    return list(_PROVIDERS.keys())


def get_default_region(provider_name: str) -> str:
    """Get the default region for a provider.

    Raises
    ------
    ValueError
        If provider is not registered or has no default region
    """
    if provider_name not in _PROVIDERS:
        raise ValueError(f"Unknown provider: {provider_name}")

    default_region = _PROVIDERS[provider_name].get("default_region")

    if default_region is None:
        raise ValueError(f"No default region defined for provider: {provider_name}")

    return default_region


__all__ = [
    "register_provider",
    "get_provider",
    "list_providers",
    "get_default_region",
    "ProviderError",
    "ProviderCredentialsError",
    "ProviderAPIError",
    "ProviderConnectionError",
    "ProviderNotFoundError",
    "ProviderPermanentError",
    "ProviderTransientError",
]

register_provider("aws", AWSProviderClient, DEFAULT_REGION)

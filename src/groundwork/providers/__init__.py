"""Provider interface, registry and the in-memory implementation."""

from groundwork.providers.base import (
    MissingProviderError,
    ProviderRegistry,
    ResourceNotFoundError,
    ResourceProvider,
)
from groundwork.providers.memory import InMemoryProvider, demo_registry, demo_schema

__all__ = [
    "InMemoryProvider",
    "MissingProviderError",
    "ProviderRegistry",
    "ResourceNotFoundError",
    "ResourceProvider",
    "demo_registry",
    "demo_schema",
]

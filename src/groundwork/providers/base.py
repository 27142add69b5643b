"""Provider boundary — the four operations the engine needs per resource type.

This is where the engine meets the real control plane.  A provider is any
object satisfying :class:`ResourceProvider`; errors are raised as
exceptions and wrapped into
:class:`~groundwork.core.errors.ProviderCallError` by the apply executor.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from groundwork.core.errors import ConfigurationError, ErrorCategory, GroundworkError


@runtime_checkable
class ResourceProvider(Protocol):
    """Control-plane operations for one resource type."""

    def create(self, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Create the resource; return ``(remote_id, outputs)``."""
        ...

    def read(self, remote_id: str) -> dict[str, Any]:
        """Return current outputs; raise :class:`ResourceNotFoundError` if gone."""
        ...

    def update(self, remote_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Update in place; return the new outputs."""
        ...

    def delete(self, remote_id: str) -> None:
        """Delete the resource."""
        ...


class ResourceNotFoundError(GroundworkError):
    """The remote object no longer exists (deleted out of band)."""

    default_category = ErrorCategory.PROVIDER

    def __init__(self, remote_id: str):
        self.remote_id = remote_id
        super().__init__(f"Remote object not found: {remote_id}")


class MissingProviderError(ConfigurationError):
    """No provider is registered for a resource type."""

    def __init__(self, resource_type: str):
        self.resource_type = resource_type
        super().__init__(f"No provider registered for resource type '{resource_type}'")


class ProviderRegistry:
    """Resource type name -> provider.

    Example::

        registry = ProviderRegistry()
        registry.register("web_app", AppServiceProvider(client))
        registry.get("web_app").create({...})
    """

    def __init__(self, providers: dict[str, ResourceProvider] | None = None):
        self._providers: dict[str, ResourceProvider] = dict(providers or {})

    def register(self, resource_type: str, provider: ResourceProvider) -> None:
        self._providers[resource_type] = provider

    def get(self, resource_type: str) -> ResourceProvider:
        try:
            return self._providers[resource_type]
        except KeyError:
            raise MissingProviderError(resource_type) from None

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._providers

    @property
    def types(self) -> list[str]:
        return sorted(self._providers)

    def require(self, resource_types: set[str] | list[str]) -> None:
        """Fail before any call if a needed type has no provider."""
        for resource_type in sorted(set(resource_types)):
            self.get(resource_type)

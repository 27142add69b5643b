"""In-memory providers for local runs and tests.

``InMemoryProvider`` keeps created objects in a dict, computes outputs with
an optional function, records every call and can be told to fail.  It is
lenient: updating or deleting an id it has never seen is not an error,
which mirrors control planes where delete is idempotent.

``demo_registry()`` wires up the resource types used by the sample
declarations (registry, identity, role assignment, web apps) and is what
``groundwork --providers groundwork.providers.memory:demo_registry`` loads.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from groundwork.config.schema import ProviderSchema
from groundwork.core.errors import ErrorCategory, GroundworkError
from groundwork.providers.base import ProviderRegistry, ResourceNotFoundError

OutputFn = Callable[[str, dict[str, Any]], dict[str, Any]]


class InjectedFailure(GroundworkError):
    """Failure configured with :meth:`InMemoryProvider.fail_on`."""

    default_category = ErrorCategory.PROVIDER


@dataclass
class ProviderCall:
    """One recorded provider call."""

    action: str
    remote_id: str | None
    attributes: dict[str, Any] | None = None


@dataclass
class _Failure:
    action: str
    match: dict[str, Any] | None
    message: str
    retryable: bool
    remaining: int | None

    def matches(self, action: str, attributes: dict[str, Any] | None, remote_id: str | None) -> bool:
        if action != self.action or self.remaining == 0:
            return False
        if self.match is None:
            return True
        values = dict(attributes or {})
        if remote_id is not None:
            values.setdefault("id", remote_id)
        return all(values.get(k) == v for k, v in self.match.items())


@dataclass
class InMemoryProvider:
    """Provider for one resource type, backed by a dict.

    Args:
        resource_type: Type name, used in remote ids
        output_fn: ``(remote_id, attributes) -> outputs``
        delay: Seconds each call sleeps (to exercise parallel apply)
    """

    resource_type: str
    output_fn: OutputFn | None = None
    delay: float = 0.0
    objects: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[ProviderCall] = field(default_factory=list)
    max_in_flight: int = 0

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = 0
        self._in_flight = 0
        self._failures: list[_Failure] = []

    def fail_on(
        self,
        action: str,
        match: dict[str, Any] | None = None,
        *,
        message: str = "injected failure",
        retryable: bool = False,
        times: int | None = None,
    ) -> None:
        """Make ``action`` fail for calls whose attributes contain ``match``.

        ``times`` limits how often the failure fires (``None`` = always).
        """
        self._failures.append(_Failure(action, match, message, retryable, times))

    # -------------------------------------------------------------------------
    # ResourceProvider
    # -------------------------------------------------------------------------

    def create(self, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        with self._call("create", None, attributes):
            with self._lock:
                self._counter += 1
                remote_id = f"{self.resource_type}-{self._counter:04d}"
            outputs = self._outputs(remote_id, attributes)
            with self._lock:
                self.objects[remote_id] = {"attributes": dict(attributes), "outputs": outputs}
            return remote_id, dict(outputs)

    def read(self, remote_id: str) -> dict[str, Any]:
        with self._call("read", remote_id, None):
            with self._lock:
                obj = self.objects.get(remote_id)
            if obj is None:
                raise ResourceNotFoundError(remote_id)
            return dict(obj["outputs"])

    def update(self, remote_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        with self._call("update", remote_id, attributes):
            outputs = self._outputs(remote_id, attributes)
            with self._lock:
                self.objects[remote_id] = {"attributes": dict(attributes), "outputs": outputs}
            return dict(outputs)

    def delete(self, remote_id: str) -> None:
        with self._call("delete", remote_id, None):
            with self._lock:
                self.objects.pop(remote_id, None)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def calls_for(self, action: str) -> list[ProviderCall]:
        return [c for c in self.calls if c.action == action]

    def _outputs(self, remote_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return dict(self.output_fn(remote_id, attributes)) if self.output_fn else {}

    def _call(self, action: str, remote_id: str | None, attributes: dict[str, Any] | None) -> _CallScope:
        return _CallScope(self, action, remote_id, attributes)


class _CallScope:
    """Records the call, tracks concurrency and applies injected failures."""

    def __init__(self, provider: InMemoryProvider, action: str, remote_id, attributes):
        self.provider = provider
        self.action = action
        self.remote_id = remote_id
        self.attributes = attributes

    def __enter__(self) -> None:
        p = self.provider
        with p._lock:
            p.calls.append(
                ProviderCall(self.action, self.remote_id, dict(self.attributes) if self.attributes else None)
            )
            p._in_flight += 1
            p.max_in_flight = max(p.max_in_flight, p._in_flight)
            failure = next(
                (f for f in p._failures if f.matches(self.action, self.attributes, self.remote_id)),
                None,
            )
            if failure is not None and failure.remaining is not None:
                failure.remaining -= 1
        try:
            if p.delay:
                time.sleep(p.delay)
            if failure is not None:
                raise InjectedFailure(failure.message, retryable=failure.retryable)
        except BaseException:
            self._leave()
            raise

    def __exit__(self, *args) -> None:
        self._leave()

    def _leave(self) -> None:
        with self.provider._lock:
            self.provider._in_flight -= 1


# =============================================================================
# Demo registry
# =============================================================================

DEMO_SCHEMA = {
    "container_registry": {
        "required": ["sku"],
        "optional": ["location", "admin_enabled", "tags"],
        "outputs": ["login_server"],
    },
    "user_identity": {
        "required": [],
        "optional": ["location", "tags"],
        "outputs": ["principal_id", "client_id"],
    },
    "role_assignment": {
        "required": ["scope", "principal_id", "role"],
        "optional": [],
        "outputs": [],
    },
    "web_app": {
        "required": ["image"],
        "optional": ["location", "port", "identity", "settings", "tags"],
        "outputs": ["hostname"],
    },
}


def demo_schema() -> ProviderSchema:
    return ProviderSchema.from_mapping(DEMO_SCHEMA)


def demo_registry(delay: float = 0.0) -> ProviderRegistry:
    """Registry with in-memory providers for the demo resource types."""
    return ProviderRegistry(
        {
            "container_registry": InMemoryProvider(
                "container_registry",
                output_fn=lambda rid, attrs: {"login_server": f"{rid}.registry.local"},
                delay=delay,
            ),
            "user_identity": InMemoryProvider(
                "user_identity",
                output_fn=lambda rid, attrs: {
                    "principal_id": f"principal-{rid}",
                    "client_id": f"client-{rid}",
                },
                delay=delay,
            ),
            "role_assignment": InMemoryProvider("role_assignment", delay=delay),
            "web_app": InMemoryProvider(
                "web_app",
                output_fn=lambda rid, attrs: {"hostname": f"{rid}.apps.local"},
                delay=delay,
            ),
        }
    )

"""Artifact store — named, time-limited values handed from job to job.

An artifact is whatever a job publishes for later stages: an image
reference (``image:python-service`` -> ``registry.local/python-service:1.4``),
infrastructure outputs, a test report path.  Artifacts expire after their
TTL; asking for an expired or never-produced artifact raises
:class:`~groundwork.core.errors.MissingArtifactError`.

The clock is injectable so expiry can be tested without sleeping.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from groundwork.core.errors import MissingArtifactError

logger = structlog.get_logger()

_DEFAULT = object()


@dataclass(frozen=True)
class Artifact:
    name: str
    value: Any
    producer: str | None
    created_at: float
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class ArtifactStore:
    """Thread-safe artifact table shared by every job of a pipeline run.

    Example::

        store = ArtifactStore(default_ttl=3600)
        store.put("image:python-service", "python-service:1.4", producer="build/image")
        store.get("image:python-service")
    """

    def __init__(
        self,
        default_ttl: float | None = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.clock = clock
        self._artifacts: dict[str, Artifact] = {}
        self._lock = threading.Lock()

    def put(self, name: str, value: Any, *, producer: str | None = None, ttl: Any = _DEFAULT) -> Artifact:
        """Publish (or replace) an artifact; ``ttl=None`` never expires."""
        ttl = self.default_ttl if ttl is _DEFAULT else ttl
        now = self.clock()
        artifact = Artifact(
            name=name,
            value=value,
            producer=producer,
            created_at=now,
            expires_at=now + ttl if ttl is not None else None,
        )
        with self._lock:
            self._artifacts[name] = artifact
        logger.debug("artifact.published", artifact=name, producer=producer, ttl_seconds=ttl)
        return artifact

    def artifact(self, name: str) -> Artifact:
        with self._lock:
            artifact = self._artifacts.get(name)
        if artifact is None:
            raise MissingArtifactError(name)
        now = self.clock()
        if artifact.expired(now):
            raise MissingArtifactError(name, f"expired {now - artifact.expires_at:.1f}s ago")
        return artifact

    def get(self, name: str) -> Any:
        return self.artifact(name).value

    def __contains__(self, name: object) -> bool:
        with self._lock:
            artifact = self._artifacts.get(name)  # type: ignore[arg-type]
        return artifact is not None and not artifact.expired(self.clock())

    def names(self) -> list[str]:
        """Names of artifacts that are currently available."""
        now = self.clock()
        with self._lock:
            return sorted(n for n, a in self._artifacts.items() if not a.expired(now))

    def purge_expired(self) -> list[str]:
        now = self.clock()
        with self._lock:
            expired = sorted(n for n, a in self._artifacts.items() if a.expired(now))
            for name in expired:
                del self._artifacts[name]
        if expired:
            logger.debug("artifact.purged", artifacts=expired)
        return expired

    def snapshot(self) -> dict[str, Any]:
        """Available artifact values by name."""
        now = self.clock()
        with self._lock:
            return {n: a.value for n, a in sorted(self._artifacts.items()) if not a.expired(now)}

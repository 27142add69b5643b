"""State record models — the persisted baseline for planning.

The record is versioned: ``schema_version`` is mandatory on disk, readers
accept any version up to :data:`STATE_SCHEMA_VERSION` and ignore unknown
fields, so older engines can still read what newer minor revisions add.

Records are treated as values: every mutation helper returns a new
record, and only the apply executor ever persists one.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

STATE_SCHEMA_VERSION = 1


def _now() -> str:
    return datetime.now(UTC).isoformat()


class ResourceState(BaseModel):
    """Last successfully applied view of one resource."""

    model_config = ConfigDict(extra="ignore")

    type: str
    name: str
    remote_id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    updated_at: str = Field(default_factory=_now)

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"

    def lookup(self, attribute: str) -> Any:
        """Known value of an attribute: ``id``, then outputs, then inputs."""
        if attribute == "id":
            return self.remote_id
        if attribute in self.outputs:
            return self.outputs[attribute]
        if attribute in self.attributes:
            return self.attributes[attribute]
        raise KeyError(attribute)


class StateRecord(BaseModel):
    """Versioned map of resource identity -> :class:`ResourceState`."""

    model_config = ConfigDict(extra="ignore")

    schema_version: int = STATE_SCHEMA_VERSION
    serial: int = 0
    lineage: str = Field(default_factory=lambda: uuid.uuid4().hex)
    resources: dict[str, ResourceState] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def get(self, address: str) -> ResourceState | None:
        return self.resources.get(address)

    def __contains__(self, address: object) -> bool:
        return address in self.resources

    @property
    def addresses(self) -> list[str]:
        return list(self.resources)

    def with_resource(self, resource: ResourceState) -> StateRecord:
        resources = dict(self.resources)
        resources[resource.address] = resource
        return self.model_copy(update={"resources": resources})

    def without_resource(self, address: str) -> StateRecord:
        resources = {a: r for a, r in self.resources.items() if a != address}
        return self.model_copy(update={"resources": resources})

    def with_outputs(self, outputs: dict[str, Any]) -> StateRecord:
        return self.model_copy(update={"outputs": dict(outputs)})

    def dependency_edges(self) -> dict[str, list[str]]:
        return {a: list(r.dependencies) for a, r in self.resources.items()}

"""Provider schema — static metadata describing each resource type.

The schema is external to the engine: providers ship it, and the loader
validates declarations against it when one is supplied.

Example YAML::

    container_registry:
      required: [sku, location]
      optional: [admin_enabled]
      outputs: [id, login_server]
    web_app:
      required: [image, port]
      outputs: [id, hostname]
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from groundwork.config.model import Configuration, Resource
from groundwork.core.errors import ParseError, SchemaValidationError


@dataclass(frozen=True)
class ResourceSchema:
    """Required/optional input attributes and computed outputs of one type."""

    type: str
    required: frozenset[str] = field(default_factory=frozenset)
    optional: frozenset[str] = field(default_factory=frozenset)
    outputs: frozenset[str] = field(default_factory=frozenset)

    @property
    def attributes(self) -> frozenset[str]:
        return self.required | self.optional

    def exposes(self, attribute: str) -> bool:
        """Whether ``attribute`` can be referenced (input, output or ``id``)."""
        return attribute == "id" or attribute in self.attributes or attribute in self.outputs

    def problems(self, resource: Resource) -> list[str]:
        declared = set(resource.attributes)
        problems = [f"missing required attribute '{a}'" for a in sorted(self.required - declared)]
        problems += [f"unsupported attribute '{a}'" for a in sorted(declared - self.attributes)]
        return problems


class _ResourceSchemaSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    required: list[str] = Field(default_factory=list)
    optional: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)


class ProviderSchema:
    """Resource type name -> :class:`ResourceSchema`."""

    def __init__(self, types: Iterable[ResourceSchema] = ()):
        self._types: dict[str, ResourceSchema] = {t.type: t for t in types}

    def __contains__(self, resource_type: str) -> bool:
        return resource_type in self._types

    def get(self, resource_type: str) -> ResourceSchema | None:
        return self._types.get(resource_type)

    @property
    def types(self) -> list[str]:
        return sorted(self._types)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ProviderSchema:
        types = []
        for type_name, raw in data.items():
            try:
                spec = _ResourceSchemaSpec.model_validate(raw or {})
            except ValidationError as e:
                raise ParseError(f"Invalid schema for resource type '{type_name}': {e}") from e
            types.append(
                ResourceSchema(
                    type=type_name,
                    required=frozenset(spec.required),
                    optional=frozenset(spec.optional),
                    outputs=frozenset(spec.outputs),
                )
            )
        return cls(types)

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> ProviderSchema:
        try:
            data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ParseError(f"Malformed schema file {path}: {e}", cause=e) from e
        if not isinstance(data, dict):
            raise ParseError(f"Schema file {path} must contain a mapping of resource types")
        return cls.from_mapping(data)

    def validate(self, config: Configuration) -> None:
        """Check every resource and every reference against the schema.

        Raises:
            SchemaValidationError: On the first invalid resource.
        """
        by_address = {r.address: r for r in config.resources}
        for resource in config.resources:
            schema = self._types.get(resource.type)
            if schema is None:
                raise SchemaValidationError(
                    resource.address, [f"unknown resource type '{resource.type}'"]
                )
            problems = schema.problems(resource)
            for ref in resource.references():
                target = by_address.get(ref.address)
                target_schema = self._types.get(target.type) if target else None
                if target_schema and not target_schema.exposes(ref.root_attribute):
                    problems.append(
                        f"reference {ref} names attribute '{ref.root_attribute}' "
                        f"not exposed by '{target.type}'"
                    )
            if problems:
                raise SchemaValidationError(resource.address, problems)

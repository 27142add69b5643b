"""Resource model — declared resources, resolved variables and outputs.

These are the immutable results of :func:`groundwork.config.loader.load`.
A :class:`Resource` is a declaration only: its provider-assigned remote id
lives in the state record, written by the apply executor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from groundwork.config.values import Reference, iter_references


class VariableType(str, Enum):
    """Declared type of an input variable."""

    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"


@dataclass(frozen=True)
class Variable:
    """A named input, resolved once per run and immutable thereafter."""

    name: str
    type: VariableType
    value: Any
    description: str = ""
    sensitive: bool = False


@dataclass(frozen=True)
class Resource:
    """One declared unit of remote infrastructure.

    Attributes:
        type: Resource type name, matched against the provider registry
        name: Local name, unique per type within a configuration
        attributes: Attribute name -> parsed value expression
        depends_on: Explicit extra dependencies (resource addresses)
        source: Declaration file, for error messages
    """

    type: str
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    source: str | None = None

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"

    def references(self) -> list[Reference]:
        """All attribute references, in declaration order."""
        return list(iter_references(self.attributes))

    def dependency_addresses(self) -> list[str]:
        """Referenced addresses plus explicit ``depends_on``, de-duplicated."""
        seen: dict[str, None] = {}
        for ref in self.references():
            seen.setdefault(ref.address, None)
        for dep in self.depends_on:
            seen.setdefault(dep, None)
        return list(seen)


@dataclass(frozen=True)
class Output:
    """A named projection of resolved resource attributes, exposed after apply."""

    name: str
    value: Any
    description: str = ""
    sensitive: bool = False

    def references(self) -> list[Reference]:
        return list(iter_references(self.value))


@dataclass(frozen=True)
class Configuration:
    """Everything one load produced, in declaration order."""

    resources: tuple[Resource, ...] = ()
    variables: dict[str, Variable] = field(default_factory=dict)
    outputs: dict[str, Output] = field(default_factory=dict)
    sources: tuple[str, ...] = ()

    @property
    def addresses(self) -> list[str]:
        return [r.address for r in self.resources]

    def resource(self, address: str) -> Resource:
        for r in self.resources:
            if r.address == address:
                return r
        raise KeyError(address)

    def variable_values(self) -> dict[str, Any]:
        return {name: v.value for name, v in self.variables.items()}

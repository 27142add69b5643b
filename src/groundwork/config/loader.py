"""Declaration loader — YAML files to a validated :class:`Configuration`.

``load()`` accepts a single file, a directory of ``*.yaml``/``*.yml``
declaration files (merged in sorted filename order), or an already parsed
mapping.  Loading is pure: nothing outside the returned object changes.

Pipeline:
1. Parse YAML and validate the document shape (pydantic, ``extra="forbid"``)
2. Merge files, rejecting duplicate variables, outputs and resource identities
3. Resolve variables: supplied value > default, coerced to the declared type
4. Substitute ``${var.x}`` and parse ``${type.name.attr}`` into references
5. Validate outputs and (optionally) the provider schema

Example YAML::

    variables:
      location:
        type: string
        default: eastus
    resources:
      - type: web_app
        name: api
        attributes:
          location: ${var.location}
          image: ${container_registry.registry.login_server}/python-service:latest
    outputs:
      api_url:
        value: https://${web_app.api.hostname}
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from groundwork.config.model import Configuration, Output, Resource, Variable, VariableType
from groundwork.config.schema import ProviderSchema
from groundwork.config.values import IDENTIFIER, parse_value
from groundwork.core.errors import (
    DuplicateIdentityError,
    ParseError,
    UnknownReferenceError,
    UnknownVariableError,
)

logger = structlog.get_logger()

_MISSING = object()


class VariableSpec(BaseModel):
    """One entry of the ``variables`` section."""

    model_config = ConfigDict(extra="forbid")

    type: VariableType = VariableType.STRING
    default: str | int | float | bool | None = None
    description: str = ""
    sensitive: bool = False


class ResourceSpec(BaseModel):
    """One entry of the ``resources`` section."""

    model_config = ConfigDict(extra="forbid")

    type: str = Field(..., pattern=f"^{IDENTIFIER}$")
    name: str = Field(..., pattern=f"^{IDENTIFIER}$")
    attributes: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)


class OutputSpec(BaseModel):
    """One entry of the ``outputs`` section."""

    model_config = ConfigDict(extra="forbid")

    value: Any
    description: str = ""
    sensitive: bool = False


class DeclarationFile(BaseModel):
    """A whole declaration document."""

    model_config = ConfigDict(extra="forbid")

    variables: dict[str, VariableSpec] = Field(default_factory=dict)
    resources: list[ResourceSpec] = Field(default_factory=list)
    outputs: dict[str, OutputSpec] = Field(default_factory=dict)


def load(
    source: str | Path | Mapping[str, Any],
    variables: Mapping[str, Any] | None = None,
    schema: ProviderSchema | None = None,
) -> Configuration:
    """Load declarations into a :class:`Configuration`.

    Args:
        source: File, directory of declaration files, or parsed mapping
        variables: Supplied variable values (override defaults)
        schema: Optional provider schema to validate against

    Raises:
        ParseError: Malformed YAML, document shape or expression
        DuplicateIdentityError: Two resources share type and name
        UnknownVariableError: A default-less variable has no supplied value
        UnknownReferenceError: An output references an undeclared resource
        SchemaValidationError: A resource violates the provider schema
    """
    documents = _read_documents(source)
    supplied = dict(variables or {})

    var_specs: dict[str, VariableSpec] = {}
    resource_specs: list[tuple[ResourceSpec, str]] = []
    output_specs: dict[str, OutputSpec] = {}
    seen: dict[str, str] = {}

    for origin, doc in documents:
        for name, spec in doc.variables.items():
            if name in var_specs:
                raise ParseError(f"Variable '{name}' declared more than once").with_context(source=origin)
            var_specs[name] = spec
        for spec in doc.resources:
            address = f"{spec.type}.{spec.name}"
            if address in seen:
                raise DuplicateIdentityError(address, [seen[address], origin])
            seen[address] = origin
            resource_specs.append((spec, origin))
        for name, spec in doc.outputs.items():
            if name in output_specs:
                raise ParseError(f"Output '{name}' declared more than once").with_context(source=origin)
            output_specs[name] = spec

    resolved_vars = _resolve_variables(var_specs, supplied)
    values = {name: v.value for name, v in resolved_vars.items()}

    resources = []
    for spec, origin in resource_specs:
        try:
            attributes = parse_value(spec.attributes, values)
        except (ParseError, UnknownVariableError) as e:
            raise e.with_context(address=f"{spec.type}.{spec.name}", source=origin)
        resources.append(
            Resource(
                type=spec.type,
                name=spec.name,
                attributes=attributes,
                depends_on=tuple(spec.depends_on),
                source=origin,
            )
        )

    outputs = {}
    for name, spec in output_specs.items():
        output = Output(
            name=name,
            value=parse_value(spec.value, values),
            description=spec.description,
            sensitive=spec.sensitive,
        )
        for ref in output.references():
            if ref.address not in seen:
                raise UnknownReferenceError(f"output.{name}", ref.address)
        outputs[name] = output

    config = Configuration(
        resources=tuple(resources),
        variables=resolved_vars,
        outputs=outputs,
        sources=tuple(origin for origin, _ in documents),
    )

    if schema is not None:
        schema.validate(config)

    logger.debug(
        "config.loaded",
        sources=list(config.sources),
        resources=len(config.resources),
        variables=len(config.variables),
        outputs=len(config.outputs),
    )
    return config


# =============================================================================
# Helpers
# =============================================================================


def _read_documents(source: str | Path | Mapping[str, Any]) -> list[tuple[str, DeclarationFile]]:
    if isinstance(source, Mapping):
        return [("<mapping>", _validate_document(dict(source), "<mapping>"))]

    path = Path(source)
    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix in (".yaml", ".yml") and p.is_file())
        if not files:
            raise ParseError(f"No declaration files (*.yaml, *.yml) in {path}")
    elif path.is_file():
        files = [path]
    else:
        raise ParseError(f"Configuration source not found: {path}")

    documents = []
    for file in files:
        try:
            raw = yaml.safe_load(file.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ParseError(f"Malformed YAML in {file}: {e}", cause=e).with_context(source=str(file))
        documents.append((str(file), _validate_document(raw or {}, str(file))))
    return documents


def _validate_document(raw: Any, origin: str) -> DeclarationFile:
    if not isinstance(raw, dict):
        raise ParseError(f"{origin}: top level must be a mapping").with_context(source=origin)
    try:
        return DeclarationFile.model_validate(raw)
    except ValidationError as e:
        raise ParseError(f"{origin}: invalid declaration: {e}", cause=e).with_context(source=origin)


def _resolve_variables(
    specs: Mapping[str, VariableSpec], supplied: Mapping[str, Any]
) -> dict[str, Variable]:
    resolved = {}
    for name, spec in specs.items():
        if isinstance(spec.default, str) and "${" in spec.default:
            raise ParseError(f"Default of variable '{name}' must be a literal, not an expression")

        raw = supplied.get(name, _MISSING)
        if raw is _MISSING:
            raw = spec.default if spec.default is not None else _MISSING
        if raw is _MISSING:
            raise UnknownVariableError(name)

        resolved[name] = Variable(
            name=name,
            type=spec.type,
            value=coerce_variable(name, spec.type, raw),
            description=spec.description,
            sensitive=spec.sensitive,
        )
    return resolved


def coerce_variable(name: str, vtype: VariableType, raw: Any) -> Any:
    """Coerce a supplied value (often a CLI string) to the declared type."""
    if isinstance(raw, (list, dict)):
        raise ParseError(f"Variable '{name}' must be a scalar, got {type(raw).__name__}")

    if vtype == VariableType.STRING:
        return raw if isinstance(raw, str) else str(raw)

    if vtype == VariableType.BOOL:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in ("true", "1", "yes", "on"):
            return True
        if text in ("false", "0", "no", "off"):
            return False
        raise ParseError(f"Variable '{name}' expects bool, got {raw!r}")

    if isinstance(raw, bool):
        raise ParseError(f"Variable '{name}' expects number, got {raw!r}")
    if isinstance(raw, (int, float)):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError:
        try:
            return float(str(raw).strip())
        except ValueError:
            raise ParseError(f"Variable '{name}' expects number, got {raw!r}") from None

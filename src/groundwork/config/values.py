"""Attribute value expressions — concrete, reference, interpolation, unknown.

An attribute value in a declaration is one of:

- a concrete scalar, list or mapping;
- a :class:`Reference` to another resource's attribute or output
  (``${web_app.api.hostname}``);
- an :class:`Interpolation` mixing literal text and references
  (``https://${web_app.api.hostname}/v1``);
- :data:`UNKNOWN`, a placeholder for a value only known after apply.

Values never point into live state: a reference names its target by
address and is resolved against an explicit lookup every time.

Variables (``${var.name}``) are substituted while parsing and never
survive into a parsed value.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

from groundwork.core.errors import ParseError, UnknownVariableError

IDENTIFIER = r"[A-Za-z_][A-Za-z0-9_-]*"

_EXPRESSION = re.compile(r"\$\$\{|\$\{([^}]*)\}")
_VARIABLE = re.compile(rf"^var\.({IDENTIFIER})$")
_REFERENCE = re.compile(rf"^({IDENTIFIER})\.({IDENTIFIER})\.({IDENTIFIER}(?:\.{IDENTIFIER})*)$")


@dataclass(frozen=True)
class Reference:
    """Pointer to ``attribute`` of the resource at ``address`` (``type.name``)."""

    address: str
    attribute: str

    @property
    def root_attribute(self) -> str:
        """First segment of a dotted attribute path."""
        return self.attribute.split(".", 1)[0]

    def __str__(self) -> str:
        return f"${{{self.address}.{self.attribute}}}"


@dataclass(frozen=True)
class Interpolation:
    """A string assembled from literal text and references."""

    parts: tuple[str | Reference, ...]

    def __str__(self) -> str:
        return "".join(str(p) for p in self.parts)


class _Unknown:
    """Singleton placeholder for a value computed at apply time."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __str__(self) -> str:
        return "(known after apply)"

    def __eq__(self, other: object) -> bool:
        # Unknown never equals anything, itself included: an attribute that
        # is unknown at plan time is always a pending change.
        return False

    def __hash__(self) -> int:
        return id(self)

    def __reduce__(self) -> str:
        return "UNKNOWN"


UNKNOWN = _Unknown()


def is_unknown(value: Any) -> bool:
    return value is UNKNOWN


# =============================================================================
# Parsing
# =============================================================================


def parse_string(text: str, variables: Mapping[str, Any]) -> Any:
    """Parse one string, substituting variables and extracting references.

    A string that is exactly one ``${var.x}`` yields the variable's typed
    value; exactly one resource expression yields a :class:`Reference`.
    Mixed text yields an :class:`Interpolation`, or a plain string when no
    references remain after variable substitution.  ``$${`` escapes a
    literal ``${``.

    Raises:
        ParseError: On an unterminated or malformed expression.
        UnknownVariableError: On ``${var.x}`` for an undeclared variable.
    """
    if "${" not in text:
        return text

    parts: list[str | Reference] = []
    pos = 0
    for match in _EXPRESSION.finditer(text):
        if match.start() > pos:
            parts.append(text[pos : match.start()])
        pos = match.end()
        if match.group(0) == "$${":
            parts.append("${")
            continue
        parts.append(_parse_expression(match.group(1).strip(), variables, text))

    tail = text[pos:]
    if "${" in tail:
        raise ParseError(f"Unterminated expression in {text!r}")
    if tail:
        parts.append(tail)

    if len(parts) == 1 and isinstance(parts[0], _VarValue):
        return parts[0].value
    if len(parts) == 1 and isinstance(parts[0], Reference):
        return parts[0]

    merged = _merge_literals(parts)
    if all(isinstance(p, str) for p in merged):
        return "".join(merged)  # type: ignore[arg-type]
    return Interpolation(tuple(merged))


def parse_value(raw: Any, variables: Mapping[str, Any]) -> Any:
    """Recursively parse a raw YAML value (scalars, lists, mappings)."""
    if isinstance(raw, str):
        return parse_string(raw, variables)
    if isinstance(raw, list):
        return [parse_value(item, variables) for item in raw]
    if isinstance(raw, dict):
        return {str(k): parse_value(v, variables) for k, v in raw.items()}
    if isinstance(raw, date):
        # YAML timestamps; state is JSON, so keep the ISO text
        return raw.isoformat()
    return raw


def _parse_expression(expr: str, variables: Mapping[str, Any], text: str) -> Any:
    var_match = _VARIABLE.match(expr)
    if var_match:
        name = var_match.group(1)
        if name not in variables:
            raise UnknownVariableError(name, f"Expression {text!r} uses undeclared variable '{name}'")
        return _VarValue(variables[name])

    ref_match = _REFERENCE.match(expr)
    if ref_match:
        rtype, rname, attr = ref_match.groups()
        return Reference(address=f"{rtype}.{rname}", attribute=attr)

    raise ParseError(
        f"Malformed expression '${{{expr}}}' in {text!r}: "
        "expected ${var.NAME} or ${TYPE.NAME.ATTRIBUTE}"
    )


@dataclass(frozen=True)
class _VarValue:
    value: Any


def _merge_literals(parts: list[Any]) -> list[str | Reference]:
    merged: list[str | Reference] = []
    for part in parts:
        if isinstance(part, _VarValue):
            part = _stringify(part.value)
        if isinstance(part, str) and merged and isinstance(merged[-1], str):
            merged[-1] = merged[-1] + part
        else:
            merged.append(part)
    return merged


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# =============================================================================
# Inspection and resolution
# =============================================================================


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every reference in ``value``, depth first, in declaration order."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Interpolation):
        for part in value.parts:
            if isinstance(part, Reference):
                yield part
    elif isinstance(value, list):
        for item in value:
            yield from iter_references(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, list):
        return any(contains_unknown(v) for v in value)
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    return False


def resolve(value: Any, lookup: Callable[[Reference], Any]) -> Any:
    """Resolve references in ``value`` through ``lookup``.

    ``lookup`` returns the referenced value or :data:`UNKNOWN`.  An
    interpolation with any unknown part becomes :data:`UNKNOWN`; unknown
    items inside lists and mappings stay in place.
    """
    if isinstance(value, Reference):
        return lookup(value)
    if isinstance(value, Interpolation):
        pieces = []
        for part in value.parts:
            if isinstance(part, Reference):
                resolved = lookup(part)
                if resolved is UNKNOWN:
                    return UNKNOWN
                pieces.append(_stringify(resolved))
            else:
                pieces.append(part)
        return "".join(pieces)
    if isinstance(value, list):
        return [resolve(v, lookup) for v in value]
    if isinstance(value, dict):
        return {k: resolve(v, lookup) for k, v in value.items()}
    return value


def dig(value: Any, path: list[str]) -> Any:
    """Follow a dotted attribute path into nested mappings; UNKNOWN if absent."""
    for segment in path:
        if value is UNKNOWN:
            return UNKNOWN
        if isinstance(value, dict) and segment in value:
            value = value[segment]
        else:
            return UNKNOWN
    return value


def to_display(value: Any) -> Any:
    """JSON-friendly rendering of a value (used by plan output)."""
    if value is UNKNOWN:
        return str(UNKNOWN)
    if isinstance(value, (Reference, Interpolation)):
        return str(value)
    if isinstance(value, list):
        return [to_display(v) for v in value]
    if isinstance(value, dict):
        return {k: to_display(v) for k, v in value.items()}
    return value


__all__ = [
    "UNKNOWN",
    "Interpolation",
    "Reference",
    "contains_unknown",
    "dig",
    "is_unknown",
    "iter_references",
    "parse_string",
    "parse_value",
    "resolve",
    "to_display",
]

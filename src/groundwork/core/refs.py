"""``module:qualname`` references to callables (provider factories, job handlers)."""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import Any

from groundwork.core.errors import ConfigurationError


def resolve_callable_ref(ref: str) -> Callable[..., Any]:
    """Import and return the callable identified by ``'module:qualname'``.

    Raises:
        ConfigurationError: Malformed reference, missing module or attribute,
            or the target is not callable.
    """
    module_path, _, attr_path = ref.partition(":")
    if not module_path or not attr_path:
        raise ConfigurationError(f"Invalid callable reference (expected 'module:qualname'): {ref!r}")
    try:
        obj: Any = importlib.import_module(module_path)
        for part in attr_path.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot resolve {ref!r}: {e}", cause=e) from e
    if not callable(obj):
        raise ConfigurationError(f"{ref!r} resolved to non-callable: {type(obj).__name__}")
    return obj

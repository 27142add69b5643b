"""Resource model: typed declarations, variables, outputs and value expressions.

Key Concepts:
    Resource: ``type.name`` identity plus attribute expressions
    Reference / Interpolation / UNKNOWN: tagged attribute value variants
    Variable: typed input, resolved once per run
    ProviderSchema: static required/optional/output metadata per type
    load(): YAML declarations -> Configuration
"""

from groundwork.config.loader import load
from groundwork.config.model import Configuration, Output, Resource, Variable, VariableType
from groundwork.config.schema import ProviderSchema, ResourceSchema
from groundwork.config.values import UNKNOWN, Interpolation, Reference

__all__ = [
    "UNKNOWN",
    "Configuration",
    "Interpolation",
    "Output",
    "ProviderSchema",
    "Reference",
    "Resource",
    "ResourceSchema",
    "Variable",
    "VariableType",
    "load",
]

"""
groundwork - declarative resource provisioning and delivery pipelines.

Subpackages:
- groundwork.config: resource model and YAML loader
- groundwork.graph: dependency graph builder
- groundwork.plan: plan engine
- groundwork.apply: apply executor
- groundwork.state: versioned state record and lock
- groundwork.providers: provider boundary and in-memory providers
- groundwork.pipeline: stage/job orchestrator with artifact hand-off
"""

__version__ = "0.1.0"

from groundwork.engine import Engine  # noqa: E402

__all__ = ["Engine", "__version__"]

"""Dependency graph of declared resources (edges follow references)."""

from groundwork.graph.builder import DependencyGraph, GraphBuilder, build, topological_sort

__all__ = ["DependencyGraph", "GraphBuilder", "build", "topological_sort"]

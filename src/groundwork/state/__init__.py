"""Persisted state record: the last successfully applied view of every resource."""

from groundwork.state.models import STATE_SCHEMA_VERSION, ResourceState, StateRecord
from groundwork.state.store import StateLock, StateStore

__all__ = ["STATE_SCHEMA_VERSION", "ResourceState", "StateLock", "StateRecord", "StateStore"]

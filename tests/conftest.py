"""
Shared pytest fixtures for groundwork tests.

This module provides:
- Settings cache isolation
- Temporary state stores and demo provider registries
- The five-resource sample declaration (registry, identity, role
  assignment and two web apps) used across plan/apply/CLI tests

Usage:
    def test_something(engine, declarations):
        plan = engine.plan(declarations)
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest
import structlog

from groundwork.core.settings import reset_settings
from groundwork.engine import Engine
from groundwork.providers.base import ProviderRegistry
from groundwork.providers.memory import demo_registry
from groundwork.state.store import StateStore

SAMPLE_DECLARATIONS = """\
variables:
  location:
    type: string
    default: eastus
  python_image:
    type: string
    default: "python-service:latest"

resources:
  - type: container_registry
    name: registry
    attributes:
      sku: Basic
      location: "${var.location}"

  - type: user_identity
    name: deployer
    attributes:
      location: "${var.location}"

  - type: role_assignment
    name: acr_pull
    attributes:
      scope: "${container_registry.registry.id}"
      principal_id: "${user_identity.deployer.principal_id}"
      role: AcrPull

  - type: web_app
    name: python
    attributes:
      image: "${container_registry.registry.login_server}/${var.python_image}"
      identity: "${user_identity.deployer.id}"
      location: "${var.location}"
      port: 8000
    depends_on: [role_assignment.acr_pull]

  - type: web_app
    name: node
    attributes:
      image: "${container_registry.registry.login_server}/node-service:latest"
      identity: "${user_identity.deployer.id}"
      settings:
        API_URL: "https://${web_app.python.hostname}"
    depends_on: [role_assignment.acr_pull]

outputs:
  python_url:
    value: "https://${web_app.python.hostname}"
  registry:
    value: "${container_registry.registry.login_server}"
"""

SAMPLE_ORDER = [
    "container_registry.registry",
    "user_identity.deployer",
    "role_assignment.acr_pull",
    "web_app.python",
    "web_app.node",
]


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch):
    """Drop cached settings, GROUNDWORK_* host variables and logging config."""
    for key in list(os.environ):
        if key.startswith("GROUNDWORK_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()
    structlog.reset_defaults()


# =============================================================================
# State and providers
# =============================================================================


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "groundwork.state.json"


@pytest.fixture
def store(state_path: Path) -> StateStore:
    return StateStore(state_path)


@pytest.fixture
def registry() -> ProviderRegistry:
    return demo_registry()


@pytest.fixture
def engine(registry: ProviderRegistry, store: StateStore) -> Engine:
    return Engine(registry, store)


# =============================================================================
# Declarations
# =============================================================================


@pytest.fixture
def write_declarations(tmp_path: Path):
    """Write declaration text into ``tmp_path/infra/<filename>``."""

    def _write(text: str, filename: str = "main.yaml") -> Path:
        infra = tmp_path / "infra"
        infra.mkdir(exist_ok=True)
        (infra / filename).write_text(text, encoding="utf-8")
        return infra

    return _write


@pytest.fixture
def declarations(write_declarations) -> Path:
    """Directory holding the five-resource sample declaration."""
    return write_declarations(SAMPLE_DECLARATIONS)


@pytest.fixture
def sample_text() -> str:
    return SAMPLE_DECLARATIONS


@pytest.fixture
def sample_order() -> list[str]:
    return list(SAMPLE_ORDER)

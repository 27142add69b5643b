"""Tests for GroundworkSettings, callable references and logging setup."""

from pathlib import Path

import pytest
import structlog

from groundwork.core.errors import ConfigurationError
from groundwork.core.logging import LogContext, configure_logging
from groundwork.core.refs import resolve_callable_ref
from groundwork.core.settings import GroundworkSettings, get_settings, reset_settings
from groundwork.providers.memory import demo_registry


class TestSettings:
    def test_defaults(self):
        settings = GroundworkSettings()
        assert settings.state_path == Path("groundwork.state.json")
        assert settings.parallelism == 1
        assert settings.lock_timeout_seconds == 0.0
        assert settings.max_parallel_jobs == 4
        assert settings.artifact_ttl_seconds == 3600.0
        assert settings.providers == "groundwork.providers.memory:demo_registry"
        assert settings.schema_path is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("GROUNDWORK_STATE_PATH", "/tmp/prod.json")
        monkeypatch.setenv("GROUNDWORK_PARALLELISM", "8")
        reset_settings()
        settings = get_settings()
        assert settings.state_path == Path("/tmp/prod.json")
        assert settings.parallelism == 8

    def test_invalid_parallelism_rejected(self, monkeypatch):
        monkeypatch.setenv("GROUNDWORK_PARALLELISM", "0")
        with pytest.raises(ValueError):
            GroundworkSettings()

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestCallableRef:
    def test_resolves_function(self):
        assert resolve_callable_ref("groundwork.providers.memory:demo_registry") is demo_registry

    def test_resolves_nested_attribute(self):
        ref = resolve_callable_ref("groundwork.providers.memory:InMemoryProvider.calls_for")
        assert callable(ref)

    @pytest.mark.parametrize("ref", ["no_colon", ":missing_module", "groundwork.engine:"])
    def test_malformed(self, ref):
        with pytest.raises(ConfigurationError, match="expected 'module:qualname'"):
            resolve_callable_ref(ref)

    def test_missing_module(self):
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_callable_ref("groundwork.nope:factory")
        assert isinstance(exc_info.value.__cause__, ImportError)

    def test_missing_attribute(self):
        with pytest.raises(ConfigurationError, match="Cannot resolve"):
            resolve_callable_ref("groundwork.providers.memory:nope")

    def test_not_callable(self):
        with pytest.raises(ConfigurationError, match="non-callable"):
            resolve_callable_ref("groundwork.engine:EXIT_PARTIAL")


class TestLogging:
    def test_json_logs_go_to_stderr(self, capsys):
        configure_logging(level="INFO", json_format=True)
        structlog.get_logger().info("plan.complete", create=2)
        captured = capsys.readouterr()
        assert captured.out == ""
        assert '"event": "plan.complete"' in captured.err
        assert '"service": "groundwork"' in captured.err

    def test_level_filters(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        structlog.get_logger().info("hidden")
        assert "hidden" not in capsys.readouterr().err

    def test_log_context_binds_and_unbinds(self, capsys):
        configure_logging(level="INFO", json_format=True)
        log = structlog.get_logger()
        with LogContext(run_id="r-1"):
            log.info("inside")
        log.info("outside")
        lines = capsys.readouterr().err.strip().splitlines()
        assert '"run_id": "r-1"' in lines[0]
        assert "run_id" not in lines[1]

    def test_error_and_warning_levels_render(self, capsys):
        configure_logging(level="INFO", json_format=True)
        log = structlog.get_logger("groundwork.apply")
        log.warning("apply.output.unresolved", output="url")
        log.error("apply.failed", failed=1)
        lines = capsys.readouterr().err.strip().splitlines()
        assert '"level": "warning"' in lines[0]
        assert '"event": "apply.failed"' in lines[1]

"""Tests for configuration, logging and error responses."""

import json
import logging

import pytest
from pydantic import ValidationError

from agency_workflows.config import (
    AppConfig,
    ConditionFailurePolicy,
    LogLevel,
    get_config,
    get_testing_config,
    load_config,
    reset_config,
)
from agency_workflows.core.exceptions import HandlerError, create_error_response
from agency_workflows.core.logging import (
    ExecutionAuditLogger,
    ExecutionContextFilter,
    ExecutionJsonFormatter,
    bind_execution,
    unbind_execution,
)


@pytest.fixture(autouse=True)
def fresh_config():
    reset_config()
    yield
    reset_config()


class TestAppConfig:
    """Test cases for AppConfig."""

    def test_defaults(self):
        config = AppConfig()
        assert config.node_timeout == 30.0
        assert config.execution_timeout == 300.0
        assert config.max_loop_iterations == 100
        assert config.condition_failure_policy == ConditionFailurePolicy.CONTINUE
        assert config.strict_edges is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("AGENCY_WORKFLOWS_EXECUTION_TIMEOUT", "60")
        monkeypatch.setenv("AGENCY_WORKFLOWS_CONDITION_FAILURE_POLICY", "BLOCK")
        monkeypatch.setenv("AGENCY_WORKFLOWS_STRICT_EDGES", "yes")
        monkeypatch.setenv("AGENCY_WORKFLOWS_LOG_LEVEL", "debug")
        monkeypatch.setenv("AGENCY_WORKFLOWS_CORS_ORIGINS", "https://a.example,https://b.example")

        config = AppConfig.from_env()

        assert config.execution_timeout == 60.0
        assert config.condition_failure_policy == ConditionFailurePolicy.BLOCK
        assert config.strict_edges is True
        assert config.log_level == LogLevel.DEBUG
        assert config.cors_origins == ["https://a.example", "https://b.example"]

    @pytest.mark.parametrize("field, value", [
        ("database_url", "mongodb://localhost/db"),
        ("port", 70000),
        ("node_timeout", 0),
        ("max_loop_iterations", 0),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            AppConfig(**{field: value})

    def test_sqlite_connect_args(self):
        assert get_testing_config().get_database_connect_args() == {"check_same_thread": False}
        assert AppConfig(database_url="postgresql://db/agency").get_database_connect_args() == {}

    def test_global_config(self, monkeypatch):
        monkeypatch.setenv("AGENCY_WORKFLOWS_APP_NAME", "Pipeline")
        assert get_config().app_name == "Pipeline"
        assert get_config() is get_config()

    def test_load_config_from_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("AGENCY_WORKFLOWS_NODE_TIMEOUT", raising=False)
        env_file = tmp_path / "agency.env"
        env_file.write_text("AGENCY_WORKFLOWS_NODE_TIMEOUT=12.5\n")

        config = load_config(str(env_file))

        assert config.node_timeout == 12.5
        assert get_config() is config
        monkeypatch.delenv("AGENCY_WORKFLOWS_NODE_TIMEOUT", raising=False)


class TestLogging:
    """Test cases for the logging helpers."""

    def test_structured_formatter_includes_context(self):
        record = logging.LogRecord("agency_workflows.core.engine", logging.INFO, __file__, 1, "Starting", None, None)
        bind_execution(workflow_id="wf-1", execution_id="exec-1")
        try:
            ExecutionContextFilter().filter(record)
        finally:
            unbind_execution()

        entry = json.loads(ExecutionJsonFormatter().format(record))
        assert entry["message"] == "Starting"
        assert entry["workflow_id"] == "wf-1"
        assert entry["execution_id"] == "exec-1"

    def test_audit_summary_level(self, caplog):
        caplog.set_level(logging.INFO, logger="audit.executions")
        audit = ExecutionAuditLogger()
        audit.log_execution_summary("wf-1", "exec-1", "COMPLETED", 12.0, 3, 0, 0)
        audit.log_execution_summary("wf-1", "exec-2", "FAILED", 5.0, 1, 1, 0)

        levels = [record.levelno for record in caplog.records]
        assert levels == [logging.INFO, logging.WARNING]
        assert caplog.records[1].extra_fields["error_count"] == 1


class TestErrorResponse:
    """Test cases for create_error_response."""

    def test_shape(self):
        error = HandlerError("GET http://x returned HTTP 500", node_id="api", details={"statusCode": 500})
        response = create_error_response(error)

        assert response["error"] == "HandlerError"
        assert response["details"]["statusCode"] == 500
        assert response["details"]["recoverable"] is True
        assert response["context"] == {"node_id": "api"}

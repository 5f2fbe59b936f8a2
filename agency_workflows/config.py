"""Configuration for the Agency Workflows engine and its HTTP service.

Every field can be overridden with an ``AGENCY_WORKFLOWS_<FIELD>`` environment
variable, optionally loaded from a ``.env`` file by ``load_config``.
"""

import os
from enum import Enum
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "AGENCY_WORKFLOWS_"
SUPPORTED_DATABASES = ("sqlite", "postgresql", "mysql")


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ConditionFailurePolicy(str, Enum):
    """What to do with an edge whose condition cannot be evaluated."""
    CONTINUE = "continue"
    BLOCK = "block"


class AppConfig(BaseModel):
    """Engine, storage and service settings."""

    app_name: str = Field(default="Agency Workflows", description="Service name shown in the API docs")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    reload: bool = Field(default=False, description="Restart uvicorn on code changes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    database_url: str = Field(default="sqlite:///./agency_workflows.db", description="SQLAlchemy database URL")
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # Execution limits
    node_timeout: float = Field(default=30.0, description="Per-node timeout in seconds")
    execution_timeout: float = Field(default=300.0, description="Whole-run budget in seconds")
    max_loop_iterations: int = Field(default=100, description="Iteration cap for loop nodes without maxIterations")
    condition_failure_policy: ConditionFailurePolicy = Field(
        default=ConditionFailurePolicy.CONTINUE,
        description="Edge decision when its condition raises"
    )
    strict_edges: bool = Field(default=False, description="Fail runs whose edges reference unknown nodes")

    # Outbound calls made by api, http, webhook and ai nodes
    http_timeout: float = Field(default=15.0, description="Outbound HTTP timeout in seconds")
    ai_base_url: Optional[str] = Field(default=None, description="Base URL of an OpenAI-compatible API")
    ai_api_key: Optional[str] = Field(default=None)
    ai_default_model: str = Field(default="gpt-3.5-turbo")

    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_format: str = Field(default="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    log_file: Optional[str] = Field(default=None, description="Rotating log file; console only when unset")
    structured_logging: bool = Field(default=False, description="Emit one JSON object per log line")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        scheme = v.split("://", 1)[0].split("+", 1)[0].lower() if v else ""
        if scheme not in SUPPORTED_DATABASES:
            raise ValueError(f"database_url must use one of {', '.join(SUPPORTED_DATABASES)}, got {v!r}")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        if not 0 < v < 65536:
            raise ValueError(f"port out of range: {v}")
        return v

    @field_validator("node_timeout", "execution_timeout", "http_timeout")
    @classmethod
    def validate_timeouts(cls, v):
        if v <= 0:
            raise ValueError("timeouts must be greater than zero")
        return v

    @field_validator("max_loop_iterations")
    @classmethod
    def validate_max_loop_iterations(cls, v):
        if v < 1:
            raise ValueError("max_loop_iterations must be at least 1")
        return v

    @field_validator("condition_failure_policy", mode="before")
    @classmethod
    def normalize_policy(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.lower().startswith("sqlite")

    def get_database_connect_args(self) -> Dict[str, Any]:
        # sqlite handles are used from the threadpool that runs sync endpoints
        return {"check_same_thread": False} if self.is_sqlite else {}

    def get_uvicorn_config(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Build a configuration from ``AGENCY_WORKFLOWS_*`` variables; unset fields keep their defaults."""
        overrides = {}
        for name in cls.model_fields:
            value = os.getenv(ENV_PREFIX + name.upper())
            if value is not None:
                overrides[name] = value
        return cls(**overrides)


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, reading the environment on first use."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load ``config_file`` (or ``./.env``) into the environment and rebuild the global configuration."""
    global _config
    env_file = config_file or ".env"
    if os.path.exists(env_file):
        load_dotenv(env_file)
    _config = AppConfig.from_env()
    return _config


def reset_config():
    global _config
    _config = None


def get_testing_config() -> AppConfig:
    """Configuration used by the test suite: in-memory sqlite and short timeouts."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        node_timeout=2.0,
        execution_timeout=10.0,
    )

"""Fleet configuration using pydantic-settings.

This module defines the FleetSettings class that reads configuration from
environment variables with the FLEET_ prefix. Every field has a default so
the service can start on a developer machine; production deployments point
the repository paths and binaries at the real locations.
"""

import tempfile
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FleetSettings(BaseSettings):
    """Fleet orchestrator configuration from environment variables.

    All environment variables are prefixed with FLEET_ (e.g.,
    FLEET_FACTORY_REPO_PATH).
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Repository Layout
    # -------------------------------------------------------------------------
    # Shared factory repository holding the epics, research and workflows
    factory_repo_path: str = str(Path.home() / "dev" / "cycle-apps-factory")

    # Display name used for sessions launched in the factory repository
    factory_repo_name: str = "cycle-apps-factory"

    # Parent directory of the per-app repositories
    apps_base_path: str = str(Path.home() / "dev")

    # -------------------------------------------------------------------------
    # Worker Configuration
    # -------------------------------------------------------------------------
    # Path to the claude CLI executable
    claude_bin: str = "claude"

    # Directory holding the human-readable agent transcripts
    log_dir: str = str(Path(tempfile.gettempdir()) / "beads-web-agent-logs")

    default_model: str = "sonnet"
    default_max_turns: int = 200
    default_allowed_tools: str = "Bash,Read,Write,Edit,Glob,Grep"

    # Number of trailing log bytes returned by the status endpoint
    status_log_tail_bytes: int = 8192

    # -------------------------------------------------------------------------
    # Pipeline Configuration
    # -------------------------------------------------------------------------
    # QA rounds allowed before an epic is flagged for human review
    max_qa_rounds: int = 3

    # -------------------------------------------------------------------------
    # Beads CLI Configuration
    # -------------------------------------------------------------------------
    bd_path: str = "bd"
    bd_timeout_seconds: float = 30.0

    # Time-to-live for cached ticket store reads
    cache_ttl_seconds: float = 10.0

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "127.0.0.1"
    port: int = 3000

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("factory_repo_path", "apps_base_path", "log_dir")
    @classmethod
    def validate_absolute_path(cls, v: str) -> str:
        """Validate that repository and log paths are absolute."""
        if not v or not v.strip():
            raise ValueError("path cannot be empty")
        if not Path(v).is_absolute():
            raise ValueError("path must be absolute")
        return v

    @field_validator("claude_bin", "bd_path", "default_model", "factory_repo_name")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v

    @field_validator("default_max_turns", "max_qa_rounds", "status_log_tail_bytes")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that counts and limits are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("bd_timeout_seconds")
    @classmethod
    def validate_bd_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("bd_timeout_seconds must be positive")
        return v

    @field_validator("cache_ttl_seconds")
    @classmethod
    def validate_cache_ttl(cls, v: float) -> float:
        if v < 0:
            raise ValueError("cache_ttl_seconds cannot be negative")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v


def get_settings() -> FleetSettings:
    """Create and return a FleetSettings instance.

    Returns:
        FleetSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If a configured value is invalid.
    """
    return FleetSettings()

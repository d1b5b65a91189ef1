"""Configuration for the discovery workflow orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Execution parameters are snapshotted into each new session (see
`WorkflowSettings.session_config`) and are never re-read for that session.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from discovery_orchestrator.state.session import SessionConfig


class WorkflowSettings(BaseSettings):
    """Settings for the discovery workflow.

    Environment variables:
    - SESSION_STORAGE_PATH          (optional)
    - AI_PROVIDER                   (optional)
    - WORKFLOW_TIMEOUT_MINUTES      (optional)
    - MAX_CLARIFICATION_ITERATIONS  (optional)
    - SESSION_RETENTION_DAYS        (optional)
    - SWEEP_THROTTLE_DAYS           (optional)
    - LOG_LEVEL                     (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `WorkflowSettings(_env_file=path_to_env)`.
    """

    session_storage_path: Path = Field(
        default=Path(".prism/sessions"),
        validation_alias="SESSION_STORAGE_PATH",
        description="Root directory holding one subdirectory per session",
    )

    ai_provider: str = Field(
        default="anthropic",
        validation_alias="AI_PROVIDER",
        description="Provider name recorded in each session's config snapshot",
    )
    workflow_timeout_minutes: float = Field(
        default=20,
        ge=0,
        validation_alias="WORKFLOW_TIMEOUT_MINUTES",
        description="Soft deadline for a single workflow run",
    )
    max_clarification_iterations: int = Field(
        default=3,
        ge=1,
        validation_alias="MAX_CLARIFICATION_ITERATIONS",
        description="Upper bound on clarification rounds",
    )

    session_retention_days: float = Field(
        default=30,
        gt=0,
        validation_alias="SESSION_RETENTION_DAYS",
        description="Sessions untouched for longer than this are swept",
    )
    sweep_throttle_days: float = Field(
        default=7,
        ge=0,
        validation_alias="SWEEP_THROTTLE_DAYS",
        description="Minimum interval between two throttled retention sweeps",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.session_retention_days)

    @property
    def sweep_throttle(self) -> timedelta:
        return timedelta(days=self.sweep_throttle_days)

    def session_config(self) -> SessionConfig:
        """Snapshot the execution parameters for a new session."""

        return SessionConfig(
            ai_provider=self.ai_provider,
            workflow_timeout_minutes=self.workflow_timeout_minutes,
            max_clarification_iterations=self.max_clarification_iterations,
        )

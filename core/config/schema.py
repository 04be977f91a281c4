# ==============================
# Config Schemas (Pydantic)
# ==============================
"""
Pydantic settings models for the operation tracker.

Notes:
- Keep these schemas stable: the controller, client and CLI depend on them.
- No env reads here. No file IO here. Pure types + defaults.
- loader.py builds a single Settings object with precedence merging.

Precedence (implemented in loader.py):
env > .env > secrets/secrets.yaml > configs/*.yaml > defaults
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ==============================
# App Settings
# ==============================


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    env: str = Field(default="local", description="Environment name (local/stage/prod)")
    debug: bool = Field(default=False)
    orchestrator_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the remote orchestration service.",
    )
    default_namespace: Optional[str] = Field(
        default=None,
        description="Namespace the tracker starts with; platform loads without a namespace use it.",
    )
    default_branch: str = Field(default="main")
    user_email: Optional[str] = Field(default=None, description="Owner e-mail sent with deploy requests.")
    repo_root: str = Field(default=".", description="Repo root (resolved by loader)")


# ==============================
# Tracking Settings
# ==============================


class TrackingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    poll_interval_seconds: float = Field(default=2.0, gt=0, description="Status poll interval.")
    settle_delay_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Pause after remote completion before refreshing platform state.",
    )
    platform_load_debounce_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Minimum gap between two successful platform loads.",
    )
    request_timeout_seconds: float = Field(default=15.0, gt=0)
    trace_buffer_size: int = Field(default=500, ge=0, description="Trace events kept in memory (0 disables the trail).")


# ==============================
# Step Registry Settings
# ==============================


class StepsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    canonical: List[str] = Field(
        default_factory=lambda: [
            "frontend",
            "backend",
            "gitea",
            "confluence",
            "jira",
            "artifactory",
            "github",
        ],
        description="Known step identifiers (application / add-on names).",
    )
    default_order: List[str] = Field(
        default_factory=lambda: ["frontend", "backend"],
        description="Display order used when no selection is active.",
    )

    @field_validator("canonical", "default_order")
    @classmethod
    def _lower(cls, value: List[str]) -> List[str]:
        return [v.strip().lower() for v in value if v and v.strip()]


# ==============================
# Logging / Observability Settings
# ==============================


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    level: str = Field(default="INFO")
    redact: bool = Field(default=True)
    redact_patterns: List[str] = Field(default_factory=list)
    console: bool = Field(default=True, description="Mirror trace events to the log")


# ==============================
# Secrets Settings
# ==============================


class SecretsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    api_token: Optional[str] = Field(default=None, description="Bearer token for the orchestration service.")


# ==============================
# Top-Level Settings
# ==============================


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    app: AppConfig = Field(default_factory=AppConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    steps: StepsConfig = Field(default_factory=StepsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)

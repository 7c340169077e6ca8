from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .constants import (
    DEFAULT_CAS_RETRIES,
    DEFAULT_COMPLETION_PHRASES,
    DEFAULT_FALLBACK_AGENT,
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    DEFAULT_MAX_HANDOFF_ATTEMPTS,
    DEFAULT_MAX_PARALLEL,
    DEFAULT_TASK_ID_REQUIRED_SUFFIXES,
    DEFAULT_WORKFLOW_PATH,
)
from .exceptions import ConfigurationError


class StoreConfig(BaseModel):
    """Where and how the workflow document is persisted."""

    backend: Literal["file", "inmemory"] = "file"
    path: str = DEFAULT_WORKFLOW_PATH
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    cas_retries: int = Field(default=DEFAULT_CAS_RETRIES, ge=0)


class SchedulerConfig(BaseModel):
    """Scheduling settings."""

    max_parallel: int = Field(default=DEFAULT_MAX_PARALLEL, ge=1)
    auto_start: bool = True
    stale_after_seconds: Optional[float] = None


class HandoffConfig(BaseModel):
    """Handoff validation and escalation settings."""

    max_attempts: int = Field(default=DEFAULT_MAX_HANDOFF_ATTEMPTS, ge=1)
    fallback_agent: str = DEFAULT_FALLBACK_AGENT
    completion_phrases: List[str] = Field(
        default_factory=lambda: list(DEFAULT_COMPLETION_PHRASES)
    )
    task_id_required_suffixes: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TASK_ID_REQUIRED_SUFFIXES)
    )
    registry_path: Optional[str] = None


class LoggingConfig(BaseModel):
    level: str = "WARNING"
    file: Optional[str] = None


class TaskRelayConfig(BaseModel):
    """Top-level configuration model."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    handoff: HandoffConfig = Field(default_factory=HandoffConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Optional[str] = None) -> TaskRelayConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TASKRELAY_CONFIG env
            variable or 'taskrelay.yaml' in the current directory.
    """

    config_path = path or os.getenv("TASKRELAY_CONFIG", "taskrelay.yaml")
    data: dict = {}
    if os.path.exists(config_path):
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping")

    env_path = os.getenv("TASKRELAY_WORKFLOW_PATH")
    if env_path:
        data["store"] = {**(data.get("store") or {}), "path": env_path}
    env_parallel = os.getenv("TASKRELAY_MAX_PARALLEL")
    if env_parallel:
        data["scheduler"] = {**(data.get("scheduler") or {}), "max_parallel": env_parallel}

    try:
        return TaskRelayConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

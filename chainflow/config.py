from __future__ import annotations

import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Execution limits for the chain executor."""

    node_timeout: Optional[float] = None
    run_timeout: Optional[float] = None
    max_concurrent_runs: int = 0
    max_subworkflow_depth: int = 8


class LLMConfig(BaseModel):
    """Model references used by ``llm`` nodes."""

    default_model: Optional[str] = None
    models: Dict[str, str] = Field(default_factory=dict)


class PluginConfig(BaseModel):
    """HTTP endpoint backing a plugin reference."""

    url: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: float = 30.0


class ChainflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    workflows_dir: str = "workflows"
    log_level: str = "INFO"
    engine: EngineConfig = EngineConfig()
    llm: LLMConfig = LLMConfig()
    plugins: Dict[str, PluginConfig] = Field(default_factory=dict)


def load_config(path: Optional[str] = None) -> ChainflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CHAINFLOW_CONFIG env
            variable or 'chainflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("CHAINFLOW_CONFIG", "chainflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ChainflowConfig(**data)
    else:
        config = ChainflowConfig()

    env_db_url = os.getenv("CHAINFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_workflows = os.getenv("CHAINFLOW_WORKFLOWS_DIR")
    if env_workflows:
        config.workflows_dir = env_workflows
    return config

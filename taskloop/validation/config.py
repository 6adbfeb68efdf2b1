"""
TaskLoop Configuration - Configuration loading and validation.

This module provides the Config class for managing TaskLoop configuration
from global (~/.taskloop/config.yaml) and local (.taskloop/config.yaml)
YAML files, with environment variables layered on top.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from taskloop.errors import ConfigError


class ProviderConfig(BaseModel):
    """Configuration for an LLM provider."""

    api_key: Optional[str] = None
    api_base: Optional[str] = None
    enabled: bool = True


class AgentConfig(BaseModel):
    """Completion call settings shared by all agents."""

    model: str = "gpt-3.5-turbo"
    max_tokens: int = 100
    temperature: float = 0.5
    timeout: int = 120
    retry_count: int = 3
    rate_limit_wait: float = 10.0
    # non-chat models on the OpenAI completions endpoint
    legacy_max_tokens: int = 2000
    legacy_temperature: float = 0.7


class LoopConfig(BaseModel):
    """Settings for the task loop itself."""

    objective: Optional[str] = None
    initial_task: str = "Develop a task list"
    interval: float = 1.0
    context_results: int = 5
    lossless: bool = True
    keep_going: bool = False


class EmbeddingConfig(BaseModel):
    """Embedding backend selection."""

    backend: str = "openai"  # openai | local
    model: Optional[str] = None


class VectorStoreConfig(BaseModel):
    """Vector store backend selection and credentials."""

    backend: str = "pinecone"  # pinecone | chroma | memory
    index_name: str = "tasks"
    dimension: int = 1536
    api_key: Optional[str] = None
    region: Optional[str] = None
    project_id: Optional[str] = None
    persist_directory: Optional[str] = None


class TaskLoopConfig(BaseModel):
    """Complete TaskLoop configuration schema."""

    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)


# (environment variable, config path)
ENV_OVERRIDES = [
    ("OBJECTIVE", ("loop", "objective")),
    ("INITIAL_TASK", ("loop", "initial_task")),
    ("OPENAI_API_MODEL", ("agent", "model")),
    ("PINECONE_API_KEY", ("vector_store", "api_key")),
    ("PINECONE_ENVIRONMENT", ("vector_store", "region")),
    ("PINECONE_REGION", ("vector_store", "region")),
    ("PINECONE_PROJECT_ID", ("vector_store", "project_id")),
    ("TABLE_NAME", ("vector_store", "index_name")),
    ("PINECONE_INDEX_NAME", ("vector_store", "index_name")),
]

SECRET_KEYS = {"api_key"}


class Config:
    """
    TaskLoop configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.taskloop/config.yaml
    - Local: .taskloop/config.yaml (project-specific)
    - Environment variables (OBJECTIVE, PINECONE_API_KEY, ...)

    Later sources override earlier ones.

    Example:
        >>> config = Config.load()
        >>> config.merged.loop.objective
        'Solve world hunger'
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".taskloop"
    LOCAL_CONFIG_DIR = Path(".taskloop")

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
            env: Environment mapping. Defaults to no environment overrides.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._env = env or {}
        self._overrides: Dict[str, Any] = {}
        self._merged: Optional[TaskLoopConfig] = None

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """
        Load configuration from default locations and the process environment.

        Args:
            path: Explicit local config file. Searched for when omitted.

        Returns:
            Config instance with loaded configuration.
        """
        global_config = cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml")
        local_config = cls._load_yaml(path or cls._find_local_config())

        return cls(global_config=global_config, local_config=local_config, env=dict(os.environ))

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
                return data if data else {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / cls.LOCAL_CONFIG_DIR / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_env_config(self) -> Dict[str, Any]:
        """Translate known environment variables into a config dictionary."""
        result: Dict[str, Any] = {}
        for env_var, (section, key) in ENV_OVERRIDES:
            value = self._env.get(env_var)
            if value:
                result.setdefault(section, {})[key] = value
        return result

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        merged = self._deep_merge(self._global_config.copy(), self._local_config)
        merged = self._deep_merge(merged, self.get_env_config())
        merged = self._deep_merge(merged, self._overrides)
        return merged

    @property
    def merged(self) -> TaskLoopConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                merged_dict = self.get_merged_config()
                self._merged = TaskLoopConfig(**merged_dict)
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    def override(self, section: str, **values: Any) -> None:
        """Apply command line overrides. ``None`` values are ignored."""
        values = {k: v for k, v in values.items() if v is not None}
        if not values:
            return
        self._overrides.setdefault(section, {}).update(values)
        self._merged = None  # Reset cache

    def require_objective(self) -> str:
        """Return the objective or raise if none is configured."""
        objective = self.merged.loop.objective
        if not objective or not objective.strip():
            raise ConfigError("OBJECTIVE is not set. Pass --objective or set the OBJECTIVE variable.")
        return objective.strip()

    def get_provider_config(self, provider_name: str) -> Optional[ProviderConfig]:
        """Get configuration for a specific provider."""
        return self.merged.providers.get(provider_name)

    def get_api_key(self, provider_name: str) -> Optional[str]:
        """
        Get API key for a provider.

        Checks config first, then environment variables.
        """
        provider = self.get_provider_config(provider_name)
        if provider and provider.api_key:
            return provider.api_key

        env_var_map = {
            "openai": "OPENAI_API_KEY",
            "anthropic": "ANTHROPIC_API_KEY",
            "openrouter": "OPENROUTER_API_KEY",
            "together": "TOGETHER_API_KEY",
            "groq": "GROQ_API_KEY",
        }

        env_var = env_var_map.get(provider_name)
        if env_var:
            return self._env.get(env_var)

        return None

    def masked(self) -> Dict[str, Any]:
        """Return the effective configuration with secrets masked."""
        return self._mask(self.merged.model_dump())

    def _mask(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: ("****" if k in SECRET_KEYS and v else self._mask(v))
                for k, v in data.items()
            }
        return data

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    @classmethod
    def create_default_local(cls, directory: Optional[Path] = None) -> Path:
        """Create a default local configuration file."""
        config_dir = (directory or Path.cwd()) / cls.LOCAL_CONFIG_DIR
        config_file = config_dir / "config.yaml"

        if config_file.exists():
            return config_file

        config_dir.mkdir(parents=True, exist_ok=True)

        default_config = {
            "agent": {
                "model": "gpt-3.5-turbo",  # OPENAI_API_MODEL overrides
                "max_tokens": 100,
                "temperature": 0.5,
            },
            "loop": {
                "objective": None,  # Set via OBJECTIVE env var
                "initial_task": "Develop a task list",
                "interval": 1.0,
                "context_results": 5,
                "lossless": True,
                "keep_going": False,
            },
            "embedding": {"backend": "openai"},
            "vector_store": {
                "backend": "pinecone",
                "index_name": "tasks",
                "dimension": 1536,
            },
        }

        with open(config_file, "w") as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

        return config_file


def list_env_keys() -> List[str]:
    """Environment variables recognised by the configuration layer."""
    return sorted({name for name, _ in ENV_OVERRIDES})

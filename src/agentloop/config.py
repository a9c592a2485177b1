"""Configuration settings for the application."""

import os
from pathlib import Path
from typing import (
    Optional,
    Tuple,
    Type,
)

from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from agentloop.core.retry import RetryPolicy

PLACEHOLDER_API_KEY = "YOUR_API_KEY_HERE"

USER_CONFIG_DIR = Path.home() / ".agentloop" / "config"
"""Per-user home of config.yaml, system_prompt.md and mcp.json (written by ``agentloop config init``)."""

SECRET_FIELDS = frozenset({"API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"})

_PROVIDER_KEY_FIELDS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openai-compatible": "OPENAI_API_KEY",
}


class ConfigError(RuntimeError):
    """Raised when the configuration cannot be used."""


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Loaded from init kwargs, environment variables, a .env file and config.yaml (in that order of
    # precedence).  A ./config.yaml overrides the one in USER_CONFIG_DIR; AGENTLOOP_CONFIG replaces
    # both.  YAML keys use the same upper-case names as the fields below.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file=os.getenv("AGENTLOOP_CONFIG") or [USER_CONFIG_DIR / "config.yaml", "config.yaml"],
        extra="ignore",
    )

    # LLM Configuration
    PROVIDER: str = "anthropic"  # Options: anthropic, openai, openai-compatible
    MODEL: str = "claude-sonnet-4-5-20250929"
    API_KEY: Optional[str] = None
    BASE_URL: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    MAX_TOKENS: int = 8192

    # Retry Configuration (executed by the chat backend, never by the agent loop)
    RETRY_ENABLED: bool = True
    RETRY_MAX_RETRIES: int = 3
    RETRY_INITIAL_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 60.0
    RETRY_EXPONENTIAL_BASE: float = 2.0
    RETRY_JITTER: bool = True
    RETRY_ON_AUTH_ERRORS: bool = False
    RETRY_IDEMPOTENT: bool = True

    # Agent Configuration
    MAX_STEPS: int = 50
    TOKEN_LIMIT: int = 80_000
    COMPLETION_RESERVE: int = 2_048
    TOKEN_ESTIMATOR: str = "approx"  # Options: approx, tiktoken
    WORKSPACE_DIR: str = "."
    SYSTEM_PROMPT_PATH: str = "system_prompt.md"
    ARG_PREVIEW_CHARS: int = 200
    RESULT_PREVIEW_CHARS: int = 300
    SUMMARY_WORD_LIMIT: int = 1000

    # Tool Configuration
    ENABLE_BASH: bool = True
    ENABLE_FILE_TOOLS: bool = True
    ENABLE_NOTES: bool = True
    ENABLE_SKILLS: bool = True
    ENABLE_MCP: bool = True
    SKILLS_DIR: str = "./skills"
    MCP_CONFIG_PATH: str = "mcp.json"
    NOTES_FILE: str = ".agent_memory.json"  # relative to the workspace
    BASH_TIMEOUT: float = 120.0

    # Runtime
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    LOG_DIR: Optional[str] = "~/.agentloop/log"
    API_PORT: int = 8000
    DEBUG: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    def retry_policy(self) -> RetryPolicy:
        """Retry parameters handed to the chat backend."""
        return RetryPolicy(
            enabled=self.RETRY_ENABLED,
            max_retries=self.RETRY_MAX_RETRIES,
            initial_delay=self.RETRY_INITIAL_DELAY,
            max_delay=self.RETRY_MAX_DELAY,
            exponential_base=self.RETRY_EXPONENTIAL_BASE,
            jitter=self.RETRY_JITTER,
            retry_on_auth_errors=self.RETRY_ON_AUTH_ERRORS,
            idempotent=self.RETRY_IDEMPOTENT,
        )

    def resolve_api_key(self) -> str:
        """
        Pick the API key for the configured provider.

        ``API_KEY`` wins; otherwise the provider-specific key (``ANTHROPIC_API_KEY``,
        ``OPENAI_API_KEY``) is used.

        Raises
        ------
        ConfigError
            If no usable key is configured.
        """
        candidates = [self.API_KEY]
        field = _PROVIDER_KEY_FIELDS.get(self.PROVIDER.lower())
        if field is not None:
            candidates.append(getattr(self, field))
        for key in candidates:
            if key and key != PLACEHOLDER_API_KEY:
                return key
        raise ConfigError(
            "Please configure a valid API Key (via config file or environment variables)"
        )

    def validate_llm(self) -> None:
        """Fail early on configurations that cannot reach a backend."""
        self.resolve_api_key()
        if self.PROVIDER.lower() == "openai-compatible" and not self.BASE_URL:
            raise ConfigError("Provider 'openai-compatible' requires 'BASE_URL' in config or env")


settings = Settings()

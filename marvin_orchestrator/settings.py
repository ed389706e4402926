"""
Typed settings management using pydantic-settings.

All configuration is environment-driven (with ``.env`` support) and
validated on load. Provider credentials are held as ``SecretStr`` so they
never end up in logs or reprs.

Usage:
    from marvin_orchestrator.settings import get_settings

    settings = get_settings()
    if settings.api.has_provider("gemini"):
        ...
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from marvin_orchestrator.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Registration order; also the order fallbacks are tried when smart routing is off
PROVIDER_NAMES = ("groq", "gemini", "cerebras")


# =============================================================================
# Enums for validated choices
# =============================================================================


class OrchestratorMode(str, Enum):
    """How requests are routed."""

    SMART = "smart"  # classify and route per category
    SINGLE = "single"  # always start with the default provider


# =============================================================================
# API Key Settings (Secrets)
# =============================================================================


class APISettings(BaseSettings):
    """API keys for the LLM providers.

    A provider is only constructed when its key is present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    groq_api_key: Optional[SecretStr] = Field(default=None, alias="GROQ_API_KEY")
    gemini_api_key: Optional[SecretStr] = Field(default=None, alias="GEMINI_API_KEY")
    cerebras_api_key: Optional[SecretStr] = Field(default=None, alias="CEREBRAS_API_KEY")

    def get_key(self, provider: str) -> Optional[str]:
        """Get the raw key for a provider, or None if not configured."""
        value = getattr(self, f"{provider.lower()}_api_key", None)
        if isinstance(value, SecretStr):
            return value.get_secret_value() or None
        return None

    def has_provider(self, provider: str) -> bool:
        return self.get_key(provider) is not None

    def configured_providers(self) -> List[str]:
        return [name for name in PROVIDER_NAMES if self.has_provider(name)]


# =============================================================================
# Model Settings
# =============================================================================


class ProviderModelSettings(BaseSettings):
    """Default model per provider."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    groq_model: str = Field(default="llama-3.3-70b-versatile", alias="GROQ_MODEL")
    groq_vision_model: str = Field(
        default="meta-llama/llama-4-scout-17b-16e-instruct",
        alias="GROQ_VISION_MODEL",
    )
    gemini_model: str = Field(default="gemini-2.5-flash", alias="GEMINI_MODEL")
    cerebras_model: str = Field(
        default="qwen-3-235b-a22b-instruct-2507", alias="CEREBRAS_MODEL"
    )


# =============================================================================
# Orchestrator Settings
# =============================================================================


class RateLimitOverride(BaseModel):
    """Partial per-provider rate limit override; unset fields keep defaults."""

    requests_per_minute: Optional[int] = Field(default=None, ge=1)
    tokens_per_minute: Optional[int] = Field(default=None, ge=1)
    backoff_seconds: Optional[float] = Field(default=None, gt=0)


class OrchestratorSettings(BaseSettings):
    """Routing, agent loop and deadline configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MARVIN_",
        extra="ignore",
        populate_by_name=True,
    )

    mode: OrchestratorMode = Field(
        default=OrchestratorMode.SMART,
        validation_alias=AliasChoices("ORCHESTRATOR_MODE", "MARVIN_MODE"),
        description="'smart' routes per category, 'single' always starts with the default",
    )
    default_provider: str = Field(
        default="groq",
        validation_alias=AliasChoices(
            "LLM_PROVIDER", "MARVIN_DEFAULT_PROVIDER"
        ),
    )
    max_agent_steps: int = Field(
        default=5,
        ge=1,
        description="Maximum model calls in one tool-using agent loop",
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Deadline in seconds for every provider HTTP call",
    )
    tool_timeout: float = Field(
        default=15.0,
        gt=0,
        description="Deadline in seconds for every tool executor call",
    )
    rate_limits: Dict[str, RateLimitOverride] = Field(
        default_factory=dict,
        description="Per-provider rate limit overrides (JSON in MARVIN_RATE_LIMITS)",
    )

    @property
    def smart_routing(self) -> bool:
        return self.mode == OrchestratorMode.SMART


# =============================================================================
# Assistant persona
# =============================================================================


class AssistantSettings(BaseSettings):
    """Names used in the system prompt."""

    model_config = SettingsConfigDict(
        env_prefix="MARVIN_",
        extra="ignore",
    )

    assistant_name: str = Field(default="MARVIN")
    owner_name: str = Field(default="the user")


# =============================================================================
# Logging Settings
# =============================================================================


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MARVIN_",
        extra="ignore",
        populate_by_name=True,
    )

    log_level: str = Field(default="INFO")
    service_name: str = Field(default="marvin-orchestrator")
    logfire_token: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("LOGFIRE_TOKEN", "MARVIN_LOGFIRE_TOKEN"),
    )


# =============================================================================
# Master Settings Class
# =============================================================================


class Settings(BaseSettings):
    """Master settings combining all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MARVIN_",
        extra="ignore",
        case_sensitive=False,
    )

    api: APISettings = Field(default_factory=APISettings)
    models: ProviderModelSettings = Field(default_factory=ProviderModelSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    assistant: AssistantSettings = Field(default_factory=AssistantSettings)
    observability: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def default_provider(self) -> str:
        return self.orchestrator.default_provider

    @property
    def smart_routing(self) -> bool:
        return self.orchestrator.smart_routing


# =============================================================================
# Cached Singleton Accessors
# =============================================================================


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached settings singleton.

    To reload after the environment changed, call clear_settings_cache() first.
    """
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()


# =============================================================================
# Validation
# =============================================================================


def validate_settings(settings: Settings) -> Settings:
    """Check that settings can drive an orchestrator.

    Raises ConfigurationError when no provider key is configured at all.
    Logs warnings for partial setups, and returns a copy whose default
    provider points at a configured provider.
    """
    available = settings.api.configured_providers()
    unavailable = [name for name in PROVIDER_NAMES if name not in available]

    if not available:
        raise ConfigurationError(
            "At least one LLM provider must be configured. Set one of: "
            "GROQ_API_KEY, GEMINI_API_KEY, CEREBRAS_API_KEY"
        )

    logger.info(f"Available LLM providers: {', '.join(available)}")
    if unavailable:
        logger.warning(f"Unconfigured LLM providers: {', '.join(unavailable)}")

    if settings.smart_routing and len(available) == 1:
        logger.warning(
            f"ORCHESTRATOR_MODE=smart but only {available[0]} is configured. "
            "Smart routing works best with multiple providers."
        )

    if settings.default_provider not in available:
        fallback = available[0]
        logger.warning(
            f"LLM_PROVIDER={settings.default_provider} but its API key is not set, "
            f"falling back to {fallback}"
        )
        orchestrator = settings.orchestrator.model_copy(
            update={"default_provider": fallback}
        )
        return settings.model_copy(update={"orchestrator": orchestrator})

    return settings

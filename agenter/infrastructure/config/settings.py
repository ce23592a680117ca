"""Runtime configuration loaded from the environment and ``.env``"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agenter.domain.exceptions import ConfigurationError


class CognitionToolSettings(BaseSettings):
    """Model parameters and system prompt for one cognition tool"""

    model: str = "deepseek-chat"
    temperature: float = 0.7
    top_p: float = 0.9
    system_prompt: str = ""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


class ActivationToolSettings(CognitionToolSettings):
    temperature: float = 0.3
    top_p: float = 0.5
    system_prompt: str = (
        "You are the hippocampus. Activate memory traces related to a cue.\n"
        "Given a cue and the available memory traces, return at most 5 memory fragments "
        "ordered by relevance. Associate loosely, allow fuzzy matches and keep emotional markers in mind.\n"
        "Reply with JSON: {\"memories\": [{\"content\": string, \"relevance\": number (0-1), "
        "\"emotional_tag\": string?, \"timestamp\": string?}], \"activation_pattern\": string}"
    )

    model_config = SettingsConfigDict(
        env_prefix="HIPPOCAMPUS_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class WorkingMemoryToolSettings(CognitionToolSettings):
    temperature: float = 0.2
    top_p: float = 0.3
    system_prompt: str = (
        "You are the prefrontal cortex. You manage the 4 slots of working memory (the 4 plus or minus 1 rule).\n"
        "Given new information and the current slots, decide how to update them:\n"
        "- replace: drop old information and store the new one\n"
        "- merge: combine related information into one slot\n"
        "- discard: ignore information that does not matter\n"
        "Reply with JSON: {\"slots\": [string or null] (4 slots), \"operations\": [string], \"reason\": string}"
    )

    model_config = SettingsConfigDict(
        env_prefix="PREFRONTAL_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class EmotionToolSettings(CognitionToolSettings):
    temperature: float = 0.8
    top_p: float = 0.9
    system_prompt: str = (
        "You are the amygdala. Tag memories and situations with emotional markers.\n"
        "Assess valence (positive | negative | neutral), arousal (0-1, emotional intensity) "
        "and priority (high | medium | low).\n"
        "Reply with JSON: {\"valence\": string, \"arousal\": number, \"priority\": string, \"reason\": string}"
    )

    model_config = SettingsConfigDict(
        env_prefix="AMYGDALA_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class ComparisonToolSettings(CognitionToolSettings):
    temperature: float = 0.4
    top_p: float = 0.6
    system_prompt: str = (
        "You are the comparison cortex. Compare two items along a given aspect.\n"
        "Reply with JSON: {\"similarity\": number (0-1), \"differences\": [string], \"conclusion\": string}"
    )

    model_config = SettingsConfigDict(
        env_prefix="COMPARATOR_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class MetacognitionToolSettings(CognitionToolSettings):
    system_prompt: str = (
        "You coordinate the cognitive tools (hippocampus, prefrontal cortex, amygdala, comparison cortex) "
        "during recall.\n"
        "Check whether the current cognitive state is enough to answer the user, list the gaps "
        "and suggest follow-up queries when more recall is needed.\n"
        "Reply with JSON: {\"should_continue\": boolean, \"gaps\": [string], "
        "\"suggested_queries\": [string], \"confidence\": number (0-1)}"
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class Settings(BaseSettings):
    """Application settings via environment variables"""

    # Text completion
    llm_provider: Optional[Literal["deepseek", "mock"]] = None
    deepseek_api_token: Optional[str] = None
    deepseek_base_url: str = "https://api.deepseek.com/v1"
    deepseek_model: str = "deepseek-chat"
    completion_timeout_seconds: float = 60.0

    # Storage
    storage_dir: Path = Field(
        default=Path("./data"),
        validation_alias=AliasChoices("AGENTER_STORAGE_DIR", "storage_dir"),
    )

    # Similarity index (unset url disables it)
    chroma_url: Optional[str] = None
    chroma_collection: str = "agenter-memory"
    embedding_dim: int = Field(
        default=48,
        validation_alias=AliasChoices("AGENTER_EMBEDDING_DIM", "embedding_dim"),
    )

    # Recall
    recent_fact_limit: int = 100
    related_fact_limit: int = 50
    max_recall_rounds: int = 5
    expose_metacognition: bool = Field(
        default=False,
        validation_alias=AliasChoices("AGENTER_EXPOSE_METACOGNITION", "expose_metacognition"),
    )

    # Server
    ws_host: str = Field(
        default="127.0.0.1",
        validation_alias=AliasChoices("AGENTER_WS_HOST", "ws_host"),
    )
    ws_port: int = Field(
        default=3457,
        validation_alias=AliasChoices("AGENTER_WS_PORT", "ws_port"),
    )

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"

    # Cognition tools
    activation: ActivationToolSettings = Field(default_factory=ActivationToolSettings)
    working_memory: WorkingMemoryToolSettings = Field(default_factory=WorkingMemoryToolSettings)
    emotion: EmotionToolSettings = Field(default_factory=EmotionToolSettings)
    comparison: ComparisonToolSettings = Field(default_factory=ComparisonToolSettings)
    metacognition: MetacognitionToolSettings = Field(default_factory=MetacognitionToolSettings)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def provider(self) -> Literal["deepseek", "mock"]:
        """Configured provider, or deepseek when a token is present"""

        if self.llm_provider:
            return self.llm_provider
        return "deepseek" if self.deepseek_api_token else "mock"

    @property
    def fact_log_path(self) -> Path:
        return self.storage_dir / "mid_term.jsonl"

    def require_completion_credentials(self) -> None:
        """Fail fast when the selected provider has no credential"""

        if self.provider == "deepseek" and not self.deepseek_api_token:
            raise ConfigurationError("DEEPSEEK_API_TOKEN is not set")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

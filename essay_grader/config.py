"""
Configuration management for the Essay Grader system.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are validated at startup. Missing required fields
    will raise clear validation errors.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # AI API Configuration (OpenAI-compatible endpoint)
    # ==========================================================================
    ai_api_key: str = Field(
        ...,
        description="API key for the OpenAI-compatible chat completion endpoint",
        min_length=10,
    )

    ai_base_url: str = Field(
        default="https://api.deepseek.com",
        description="Base URL for the chat completion API",
    )

    ai_model: str = Field(
        default="deepseek-chat",
        description="Model used for semantic matching and feedback",
    )

    ai_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Hard timeout for a single model call",
    )

    ai_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Transport-level retries performed by the LLM client",
    )

    # ==========================================================================
    # Scoring Point Matching
    # ==========================================================================
    default_semantic_threshold: float = Field(
        default=0.70,
        ge=0.0,
        le=1.0,
        description="Similarity needed for a semantic match when a point sets none",
    )

    semantic_full_credit_cutoff: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Similarity at or above which a semantic match earns full score",
    )

    keyword_full_ratio: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Keyword match ratio that counts as a full keyword hit",
    )

    keyword_partial_ratio: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Keyword match ratio that counts as a partial hit",
    )

    partial_credit_ratio: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Share of a point's score awarded for a partial hit",
    )

    neutral_similarity: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Similarity assumed when the semantic call fails",
    )

    # ==========================================================================
    # Score Reconciliation
    # ==========================================================================
    hybrid_algorithm_weight: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Weight of the algorithmic total when no scoring points exist",
    )

    hybrid_ai_weight: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Weight of the scaled AI dimensions when no scoring points exist",
    )

    # ==========================================================================
    # Per-call model parameters
    # ==========================================================================
    similarity_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    similarity_max_tokens: int = Field(default=50, ge=1)

    language_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    language_max_tokens: int = Field(default=1000, ge=1)

    feedback_temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    feedback_max_tokens: int = Field(default=7000, ge=1)

    revision_temperature: float = Field(default=0.6, ge=0.0, le=2.0)
    revision_max_tokens: int = Field(default=2000, ge=1)

    # ==========================================================================
    # Jobs and Storage
    # ==========================================================================
    store_directory: Path = Field(
        default=Path("./data"),
        description="Root directory of the file-backed store",
    )

    poll_interval_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Delay between status polls when waiting for a job",
    )

    max_polls: int = Field(
        default=100,
        ge=1,
        description="Number of status polls before a waiting client gives up",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root log level for the CLI",
    )

    @field_validator("ai_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def validate_ratios(self) -> "Settings":
        """Keyword bands must not overlap."""
        if self.keyword_partial_ratio > self.keyword_full_ratio:
            raise ValueError(
                f"keyword_partial_ratio ({self.keyword_partial_ratio}) cannot exceed "
                f"keyword_full_ratio ({self.keyword_full_ratio})"
            )
        return self


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()

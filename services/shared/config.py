"""Shared configuration management for the VAT extraction service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="vat-extraction-service",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # AI document-understanding service
    ai_enabled: bool = Field(
        default=True,
        description="Attempt the AI vision method for every document",
    )
    ai_provider: Literal["openai", "ollama"] = Field(
        default="openai",
        description="AI provider: openai (cloud API), ollama (self-hosted vision LLM)",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model used for document understanding",
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="qwen2.5vl:7b",
        description="Ollama vision model used for document understanding",
    )

    # Extraction pipeline
    method_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for a single extraction method; expiry counts as failure",
    )
    ocr_language: str = Field(
        default="eng",
        description="Tesseract language code for image OCR",
    )
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Largest accepted upload (checked before extraction)",
    )

    # Queue configuration (arq + Redis)
    queue_enabled: bool = Field(
        default=False,
        description="Enable background validation jobs",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the job queue and error store",
    )
    queue_max_jobs: int = Field(
        default=10,
        description="Maximum concurrent jobs per worker",
    )
    queue_job_timeout: int = Field(
        default=300,
        description="Job timeout in seconds",
    )

    # Error tracking
    error_store_max_entries: int = Field(
        default=10_000,
        description="Maximum errors kept by the in-memory error store",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()

"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from codebase_rag.errors import ConfigurationError


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # LLM
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for a local endpoint)")
    llm_model_name: str = Field(default="gpt-4o-mini", description="Chat model identifier")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL for an OpenAI-compatible chat API. Leave empty to use "
            "OpenAI cloud, e.g. 'http://localhost:8000/v1' for a local vLLM server."
        ),
    )
    llm_temperature: float = 0.0
    request_timeout: float = Field(default=60.0, gt=0, description="Per-request timeout for model clients (s)")

    # Embedding
    embedding_provider: str = Field(default="openai", description="'openai' or 'huggingface'")
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int | None = Field(
        default=None,
        ge=1,
        description="Expected vector length. Unset: fixed by the first indexed chunk.",
    )
    embedding_max_attempts: int = Field(default=3, ge=1)

    # Sources / chunking
    source_root: str = "."
    source_glob: str = "**/*.cs"
    source_encoding: str = "utf-8"
    source_autodetect_encoding: bool = Field(
        default=True,
        description="Guess the encoding of files that are not valid source_encoding",
    )
    boundary_markers: list[str] = ["class ", "public ", "private "]

    # Ingestion
    ingestion_policy: str = Field(default="skip_and_continue", description="'abort_all' or 'skip_and_continue'")
    ingestion_batch_size: int = Field(default=1, ge=1)

    # Retrieval / chat
    top_k: int = Field(default=5, ge=1)
    score_threshold: float | None = Field(default=None, description="Minimum cosine score kept; unset keeps all top-k hits")
    exit_command: str = "exit"

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("boundary_markers")
    @classmethod
    def _markers_not_blank(cls, value: list[str]) -> list[str]:
        if not value or any(not marker.strip() for marker in value):
            raise ValueError("boundary_markers must be a non-empty list of non-blank prefixes")
        return value

    @field_validator("embedding_provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        value = value.lower()
        if value not in {"openai", "huggingface"}:
            raise ValueError(f"Unsupported embedding provider: {value!r}")
        return value

    @field_validator("ingestion_policy")
    @classmethod
    def _known_policy(cls, value: str) -> str:
        value = value.lower()
        if value not in {"abort_all", "skip_and_continue"}:
            raise ValueError(f"Unsupported ingestion policy: {value!r}")
        return value


def validate_settings(cfg: Settings) -> Path:
    """Check the settings needed to start a session.

    Returns the resolved source root.

    Raises
    ------
    ConfigurationError
        When the source root is not a directory, or the OpenAI cloud is
        selected without an API key.
    """
    root = Path(cfg.source_root).expanduser().resolve()
    if not root.is_dir():
        raise ConfigurationError(f"Source root {str(root)!r} is not a directory")

    uses_cloud_llm = not cfg.llm_base_url
    uses_cloud_embeddings = cfg.embedding_provider == "openai" and not cfg.llm_base_url
    if (uses_cloud_llm or uses_cloud_embeddings) and not cfg.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY is required when no LLM_BASE_URL is configured")
    return root


# Module-level instance; `main()` and the factories default to it.
settings = Settings()

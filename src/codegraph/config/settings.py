"""Application settings using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CODEGRAPH_",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    # Storage
    index_dir: str = ".codegraph"
    workspace_name: str = "workspace"
    subgraph_max_nodes: int = 1000

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Ingestion
    chunk_size: int = 1000
    processor_interval_seconds: float = 5.0

    # Discovery
    discovery_confidence_threshold: float = 0.5
    discovery_max_entities: int = 50
    discovery_include_relationships: bool = True
    discovery_allow_new_types: bool = True

    # OpenAI
    openai_api_key: str | None = None
    openai_chat_model: str = "gpt-4o-mini"
    llm_min_interval_seconds: float = 1.0

    # Retrieval
    retrieval_max_workers: int = 4

    @property
    def index_path(self) -> Path:
        return Path(self.index_dir)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

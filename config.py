from __future__ import annotations

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices
from typing import Optional


BASE_DIR = Path(__file__).parent.resolve()

class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    db_path: Path = Field(
        default=BASE_DIR / "memex.db",
        validation_alias=AliasChoices('db_path', 'DB_PATH', 'SQLITE_DB')
    )
    # Root used to resolve media locators that are not URLs
    media_dir: Path = Field(
        default=BASE_DIR / "media",
        validation_alias=AliasChoices('media_dir', 'MEDIA_DIR')
    )
    # Optional explicit path to the sqlite-vec loadable extension
    sqlite_vec_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices('sqlite_vec_path', 'SQLITE_VEC_PATH')
    )

    # Runtime
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices('environment', 'ENVIRONMENT', 'ENV')
    )
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices('log_level', 'LOG_LEVEL')
    )
    cors_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        validation_alias=AliasChoices('cors_origins', 'CORS_ORIGINS')
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() in ('production', 'prod')

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.cors_origins.split(',') if origin.strip()]

    # === EMBEDDINGS ===
    # sentence_transformers | ollama | openai | none
    embeddings_provider: str = Field(
        default="sentence_transformers",
        validation_alias=AliasChoices('embeddings_provider', 'EMBEDDINGS_PROVIDER')
    )
    embeddings_model: str = Field(
        default="all-MiniLM-L6-v2",
        validation_alias=AliasChoices('embeddings_model', 'EMBEDDINGS_MODEL')
    )
    embeddings_dim: int = Field(
        default=384,
        validation_alias=AliasChoices('embeddings_dim', 'EMBEDDINGS_DIM')
    )
    # Character budget applied before the text reaches the model
    embeddings_max_chars: int = Field(
        default=8000,
        validation_alias=AliasChoices('embeddings_max_chars', 'EMBEDDINGS_MAX_CHARS')
    )
    embeddings_timeout_seconds: int = Field(
        default=30,
        validation_alias=AliasChoices('embeddings_timeout_seconds', 'EMBEDDINGS_TIMEOUT_SECONDS')
    )
    sentence_transformer_model_path: str = Field(
        default="./sentence_transformer_model",
        validation_alias=AliasChoices('sentence_transformer_model_path', 'SENTENCE_TRANSFORMER_MODEL_PATH')
    )
    ollama_embeddings_url: str = Field(
        default="http://localhost:11434/api/embeddings",
        validation_alias=AliasChoices('ollama_embeddings_url', 'OLLAMA_URL', 'OLLAMA_EMBEDDINGS_URL')
    )

    # Master switch: when False, external AI services are never called
    ai_allow_external: bool = Field(
        default=False,
        validation_alias=AliasChoices('ai_allow_external', 'AI_ALLOW_EXTERNAL')
    )
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices('openai_api_key', 'OPENAI_API_KEY')
    )
    openai_embeddings_url: str = Field(
        default="https://api.openai.com/v1/embeddings",
        validation_alias=AliasChoices('openai_embeddings_url', 'OPENAI_EMBEDDINGS_URL')
    )

    # === OCR ===
    ocr_language: str = Field(
        default="eng",
        validation_alias=AliasChoices('ocr_language', 'OCR_LANGUAGE')
    )
    # Seconds before tesseract is killed (0 = no limit)
    ocr_timeout_seconds: int = Field(
        default=60,
        validation_alias=AliasChoices('ocr_timeout_seconds', 'OCR_TIMEOUT_SECONDS')
    )
    ocr_fetch_timeout_seconds: int = Field(
        default=30,
        validation_alias=AliasChoices('ocr_fetch_timeout_seconds', 'OCR_FETCH_TIMEOUT_SECONDS')
    )

    # === SEARCH ===
    search_default_limit: int = Field(
        default=10,
        validation_alias=AliasChoices('search_default_limit', 'SEARCH_DEFAULT_LIMIT')
    )
    search_default_threshold: float = Field(
        default=0.7,
        validation_alias=AliasChoices('search_default_threshold', 'SEARCH_DEFAULT_THRESHOLD')
    )
    semantic_limit: int = Field(
        default=5,
        validation_alias=AliasChoices('semantic_limit', 'SEMANTIC_LIMIT')
    )
    full_text_limit: int = Field(
        default=5,
        validation_alias=AliasChoices('full_text_limit', 'FULL_TEXT_LIMIT')
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"   # prevents crashes if other stray keys exist
    )


settings = Settings()

def get_settings() -> Settings:
    """Get application settings instance"""
    return settings

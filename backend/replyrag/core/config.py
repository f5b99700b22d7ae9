from __future__ import annotations

import os
from enum import Enum
from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class AppEnv(str, Enum):
    LOCAL = "local"
    DEV = "dev"
    PROD = "prod"


class AppSettings(BaseModel):
    name: str = Field(default="Comment Reply RAG")
    env: AppEnv = Field(default=AppEnv.DEV)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, value: int) -> int:
        if not (1 <= value <= 65535):
            raise ValueError("APP_PORT must be between 1 and 65535")
        return value


class OTELSettings(BaseModel):
    enabled: bool = False
    service_name: str = Field(default="comment-reply-rag-api")
    exporter_otlp_endpoint: str = Field(default="http://alloy:4317")
    exporter_otlp_protocol: Literal["grpc", "http/protobuf", "http/json"] = Field(
        default="grpc"
    )


class StoreSettings(BaseModel):
    """
    Document store + catalog persistence.

    `backend` selects the chunk store used for vector/keyword search:
      - opensearch: k-NN + BM25 index (production)
      - memory: in-process store, useful for local runs and tests
    """

    backend: Literal["opensearch", "memory"] = Field(default="opensearch")
    opensearch_url: str = Field(default="http://localhost:9200")
    opensearch_index: str = Field(default="replyrag_chunks")
    opensearch_timeout_seconds: float = Field(default=10.0)
    catalog_db_path: str = Field(default="app_storage/catalog.sqlite3")
    rag_config_path: str = Field(default="config/rag.yaml")


class EmbeddingSettings(BaseModel):
    provider: Literal["sentence_transformers", "openai"] = Field(
        default="sentence_transformers"
    )
    model: str = Field(
        default="sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
    )
    dimensions: int = Field(default=384)
    batch_size: int = Field(default=64)
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None

    @field_validator("dimensions", "batch_size")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("embedding dimensions and batch size must be positive")
        return value


class LLMSettings(BaseModel):
    provider: Literal["hybrid", "ollama", "openai"] = Field(default="hybrid")
    model: str = Field(default="qwen3:14b")
    primary_provider: Literal["ollama", "openai"] = Field(default="ollama")
    fallback_provider: Literal["ollama", "openai"] = Field(default="openai")
    ollama_base_url: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="qwen3:14b")
    openai_api_key: Optional[str] = None
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    openai_model: str = Field(default="gpt-4o-mini")
    timeout_seconds: float = Field(default=60.0)


class LLMObservabilitySettings(BaseModel):
    tracing_v2: bool = False
    langsmith_api_key: Optional[str] = None
    langsmith_project: Optional[str] = "comment-reply-rag"


class PromptVersionSettings(BaseModel):
    comment_reply: str = Field(default="v1")
    comment_classify: str = Field(default="v1")


class Settings(BaseSettings):
    """
    Top-level application settings loaded from environment.

    Priority:
      1. REPLYRAG_* variables (namespaced)
      2. Legacy APP_* / OTEL_* / OPENAI_API_KEY where appropriate
    """

    # App
    app_name: Optional[str] = None
    app_env: Optional[str] = None
    app_host: Optional[str] = None
    app_port: Optional[int] = None
    log_level: Optional[str] = None

    # OTEL
    otel_enabled: Optional[str] = None
    otel_service_name: Optional[str] = None
    otel_exporter_otlp_endpoint: Optional[str] = None
    otel_exporter_otlp_protocol: Optional[str] = None

    # Stores
    store_backend: Optional[str] = None
    opensearch_url: Optional[str] = None
    opensearch_index: Optional[str] = None
    opensearch_timeout_seconds: Optional[float] = None
    catalog_db_path: Optional[str] = None
    rag_config_path: Optional[str] = None

    # Embeddings
    embed_provider: Optional[str] = None
    embed_model: Optional[str] = None
    embed_dimensions: Optional[int] = None
    embed_batch_size: Optional[int] = None
    embed_openai_api_key: Optional[str] = None
    embed_openai_base_url: Optional[str] = None

    # LLM
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None
    llm_primary_provider: Optional[str] = None
    llm_fallback_provider: Optional[str] = None
    llm_timeout_seconds: Optional[float] = None
    ollama_base_url: Optional[str] = None
    ollama_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: Optional[str] = None

    # LLM Observability
    langchain_tracing_v2: Optional[str] = None
    langchain_api_key: Optional[str] = None
    langchain_project: Optional[str] = None
    langsmith_api_key: Optional[str] = None
    langsmith_project: Optional[str] = None

    # Prompts
    comment_reply_prompt_version: Optional[str] = None
    comment_classify_prompt_version: Optional[str] = None

    class Config:
        env_prefix = "REPLYRAG_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def app(self) -> AppSettings:
        defaults = AppSettings()
        port = self.app_port or self._first("APP_PORT")
        return AppSettings(
            name=self._first("APP_NAME", self.app_name) or defaults.name,
            env=AppEnv(self._first("APP_ENV", self.app_env) or defaults.env),
            host=self._first("APP_HOST", self.app_host) or defaults.host,
            port=int(port) if port else defaults.port,
            log_level=self._first("LOG_LEVEL", self.log_level) or defaults.log_level,
        )

    @property
    def otel(self) -> OTELSettings:
        defaults = OTELSettings()
        return OTELSettings(
            enabled=self._as_bool(self._first("OTEL_ENABLED", self.otel_enabled)),
            service_name=self._first("OTEL_SERVICE_NAME", self.otel_service_name)
            or defaults.service_name,
            exporter_otlp_endpoint=self._first(
                "OTEL_EXPORTER_OTLP_ENDPOINT", self.otel_exporter_otlp_endpoint
            )
            or defaults.exporter_otlp_endpoint,
            exporter_otlp_protocol=self._first(
                "OTEL_EXPORTER_OTLP_PROTOCOL", self.otel_exporter_otlp_protocol
            )
            or defaults.exporter_otlp_protocol,
        )

    @property
    def store(self) -> StoreSettings:
        defaults = StoreSettings()
        return StoreSettings(
            backend=self.store_backend or defaults.backend,
            opensearch_url=self.opensearch_url or defaults.opensearch_url,
            opensearch_index=self.opensearch_index or defaults.opensearch_index,
            opensearch_timeout_seconds=(
                self.opensearch_timeout_seconds or defaults.opensearch_timeout_seconds
            ),
            catalog_db_path=self.catalog_db_path or defaults.catalog_db_path,
            rag_config_path=self.rag_config_path or defaults.rag_config_path,
        )

    @property
    def embedding(self) -> EmbeddingSettings:
        defaults = EmbeddingSettings()
        return EmbeddingSettings(
            provider=self.embed_provider or defaults.provider,
            model=self.embed_model or defaults.model,
            dimensions=self.embed_dimensions or defaults.dimensions,
            batch_size=self.embed_batch_size or defaults.batch_size,
            openai_api_key=self.embed_openai_api_key
            or self._first("OPENAI_API_KEY", self.openai_api_key),
            openai_base_url=self.embed_openai_base_url or self.openai_base_url,
        )

    @property
    def llm(self) -> LLMSettings:
        defaults = LLMSettings()
        return LLMSettings(
            provider=self.llm_provider or defaults.provider,
            model=self.llm_model or defaults.model,
            primary_provider=self.llm_primary_provider or defaults.primary_provider,
            fallback_provider=self.llm_fallback_provider or defaults.fallback_provider,
            ollama_base_url=self.ollama_base_url or defaults.ollama_base_url,
            ollama_model=self.ollama_model or defaults.ollama_model,
            openai_api_key=self._first("OPENAI_API_KEY", self.openai_api_key),
            openai_base_url=self.openai_base_url or defaults.openai_base_url,
            openai_model=self.openai_model or defaults.openai_model,
            timeout_seconds=self.llm_timeout_seconds or defaults.timeout_seconds,
        )

    @property
    def llm_obs(self) -> LLMObservabilitySettings:
        tracing = self._first("LANGCHAIN_TRACING_V2", self.langchain_tracing_v2)
        return LLMObservabilitySettings(
            tracing_v2=self._as_bool(tracing),
            langsmith_api_key=self.langsmith_api_key
            or self._first("LANGCHAIN_API_KEY", self.langchain_api_key),
            langsmith_project=self.langsmith_project
            or self._first("LANGCHAIN_PROJECT", self.langchain_project)
            or LLMObservabilitySettings().langsmith_project,
        )

    @property
    def prompts(self) -> PromptVersionSettings:
        return PromptVersionSettings(
            comment_reply=self.comment_reply_prompt_version
            or PromptVersionSettings().comment_reply,
            comment_classify=self.comment_classify_prompt_version
            or PromptVersionSettings().comment_classify,
        )

    @staticmethod
    def _first(legacy_name: str, value: Optional[object] = None) -> Optional[str]:
        """The REPLYRAG_* value when set, else the un-prefixed legacy variable."""
        if value not in (None, ""):
            return str(value)
        return os.getenv(legacy_name) or None

    @staticmethod
    def _as_bool(raw: Optional[str]) -> bool:
        return str(raw).strip().lower() in ("1", "true", "yes", "on")


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance to avoid re-parsing env on every import.

    Usage:
        from backend.replyrag.core.config import get_settings
        settings = get_settings()
        settings.store.backend, settings.llm.provider, ...
    """
    return Settings()


settings = get_settings()

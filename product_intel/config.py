"""
Product Intelligence Configuration Module
=========================================

Centralized configuration management using environment variables.
Supports both .env files and system environment variables.

Environment Variables:
    OPENAI_API_KEY: OpenAI API key (fallback: GPT_API_KEY)
    OPENAI_EMBEDDING_MODEL: Embedding model (default: text-embedding-3-small)
    OPENAI_EMBEDDING_DIMENSIONS: 1536 or 3072 (default: 1536)
    OPENAI_CHAT_MODEL: Chat model used for classification (default: gpt-4o-mini)
    OPENAI_MAX_RETRIES: SDK-level retries (default: 2)
    OPENAI_TIMEOUT: Request timeout in seconds (default: 60)

    AZURE_OPENAI_ENDPOINT: Use Azure OpenAI instead of api.openai.com
    AZURE_OPENAI_API_VERSION: Azure API version (default: 2024-06-01)
    AZURE_OPENAI_CHAT_DEPLOYMENT: Azure chat deployment name
    AZURE_OPENAI_EMBEDDING_DEPLOYMENT: Azure embedding deployment name

    DATABASE_HOST / DATABASE_PORT / DATABASE_NAME / DATABASE_USER / DATABASE_PASSWORD
    DATABASE_POOL_MIN / DATABASE_POOL_MAX / DATABASE_CONNECT_TIMEOUT / DATABASE_SSL_MODE

    CHUNK_SIZE: Characters per knowledge chunk (default: 2000)
    CHUNK_OVERLAP: Characters shared by consecutive chunks (default: 200)
    EMBED_CONCURRENCY: Max concurrent embedding calls during ingestion (default: 4)

    DEDUP_SIMILARITY_THRESHOLD: Retrieval threshold (default: 0.70)
    DEDUP_MAX_RESULTS: Max candidates sent to the classifier (default: 10)
    DEDUP_TEMPERATURE / DEDUP_MAX_TOKENS: Classifier completion settings
    DEDUP_DUPLICATE_CONFIDENCE / DEDUP_SIMILAR_CONFIDENCE / DEDUP_RELATED_CONFIDENCE

    RAG_DEFAULT_LIMIT: Chunks returned by context retrieval (default: 5)
    RAG_CONTEXT_MAX_TOKENS: Token budget for formatted context (default: 2000)

    LOG_LEVEL / LOG_JSON / LOG_FILE
"""

import os
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar
from pathlib import Path
from dotenv import load_dotenv


# Load environment variables from .env file if present
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


SUPPORTED_EMBEDDING_DIMENSIONS = (1536, 3072)

T = TypeVar("T")


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    """
    Read an environment variable.

    Raises:
        ValueError: If required=True and the variable is unset
    """
    value = os.getenv(key, default)
    if required and value is None:
        raise ValueError(f"Required environment variable '{key}' is not set")
    return value


def _get_env_typed(key: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"Environment variable '{key}' must be {cast.__name__}, got: {raw!r}")


def get_env_int(key: str, default: int) -> int:
    return _get_env_typed(key, default, int)


def get_env_float(key: str, default: float) -> float:
    return _get_env_typed(key, default, float)


def get_env_bool(key: str, default: bool) -> bool:
    """Truthy values: true, 1, yes, on (case-insensitive)."""
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in ("true", "1", "yes", "on")


@dataclass
class OpenAIConfig:
    """OpenAI / Azure OpenAI provider configuration."""

    api_key: Optional[str] = field(
        default_factory=lambda: get_env("OPENAI_API_KEY") or get_env("GPT_API_KEY")
    )
    embedding_model: str = field(
        default_factory=lambda: get_env("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    )
    embedding_dimensions: int = field(
        default_factory=lambda: get_env_int("OPENAI_EMBEDDING_DIMENSIONS", 1536)
    )
    chat_model: str = field(default_factory=lambda: get_env("OPENAI_CHAT_MODEL", "gpt-4o-mini"))

    # Retries happen inside the SDK, never in the engine
    max_retries: int = field(default_factory=lambda: get_env_int("OPENAI_MAX_RETRIES", 2))
    timeout: float = field(default_factory=lambda: get_env_float("OPENAI_TIMEOUT", 60.0))

    # Azure OpenAI (optional)
    azure_endpoint: Optional[str] = field(default_factory=lambda: get_env("AZURE_OPENAI_ENDPOINT"))
    azure_api_version: str = field(
        default_factory=lambda: get_env("AZURE_OPENAI_API_VERSION", "2024-06-01")
    )
    azure_chat_deployment: Optional[str] = field(
        default_factory=lambda: get_env("AZURE_OPENAI_CHAT_DEPLOYMENT")
    )
    azure_embedding_deployment: Optional[str] = field(
        default_factory=lambda: get_env("AZURE_OPENAI_EMBEDDING_DEPLOYMENT")
    )

    @property
    def use_azure(self) -> bool:
        return bool(self.azure_endpoint)

    def __post_init__(self):
        """Validate configuration."""
        if self.embedding_dimensions not in SUPPORTED_EMBEDDING_DIMENSIONS:
            raise ValueError(
                f"embedding_dimensions must be one of {SUPPORTED_EMBEDDING_DIMENSIONS}"
            )
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")


@dataclass
class DatabaseConfig:
    """PostgreSQL (pgvector) database configuration."""

    host: str = field(default_factory=lambda: get_env("DATABASE_HOST", "localhost"))
    port: int = field(default_factory=lambda: get_env_int("DATABASE_PORT", 5432))
    name: str = field(default_factory=lambda: get_env("DATABASE_NAME", "product_intelligence"))
    user: str = field(default_factory=lambda: get_env("DATABASE_USER", "postgres"))
    password: str = field(default_factory=lambda: get_env("DATABASE_PASSWORD", ""))

    # Connection pool settings
    pool_min_size: int = field(default_factory=lambda: get_env_int("DATABASE_POOL_MIN", 1))
    pool_max_size: int = field(default_factory=lambda: get_env_int("DATABASE_POOL_MAX", 10))

    # Connection timeout
    connect_timeout: int = field(default_factory=lambda: get_env_int("DATABASE_CONNECT_TIMEOUT", 10))

    # SSL mode: disable, allow, prefer, require, verify-ca, verify-full
    ssl_mode: str = field(default_factory=lambda: get_env("DATABASE_SSL_MODE", "prefer"))

    @property
    def connection_dict(self) -> dict:
        """Connection parameters as dictionary for psycopg2."""
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.name,
            "user": self.user,
            "password": self.password,
            "sslmode": self.ssl_mode,
            "connect_timeout": self.connect_timeout,
        }

    def __post_init__(self):
        """Validate configuration."""
        if self.pool_min_size > self.pool_max_size:
            raise ValueError("pool_min_size cannot exceed pool_max_size")


@dataclass
class ChunkingConfig:
    """Knowledge chunking and ingestion fan-out."""

    chunk_size: int = field(default_factory=lambda: get_env_int("CHUNK_SIZE", 2000))
    overlap: int = field(default_factory=lambda: get_env_int("CHUNK_OVERLAP", 200))
    embed_concurrency: int = field(default_factory=lambda: get_env_int("EMBED_CONCURRENCY", 4))

    def __post_init__(self):
        """Validate configuration."""
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        if self.overlap < 0:
            raise ValueError("overlap cannot be negative")
        if self.overlap >= self.chunk_size:
            raise ValueError("overlap must be smaller than chunk_size")
        if self.embed_concurrency < 1:
            raise ValueError("embed_concurrency must be at least 1")


@dataclass
class DeduplicationConfig:
    """Duplicate detection settings."""

    similarity_threshold: float = field(
        default_factory=lambda: get_env_float("DEDUP_SIMILARITY_THRESHOLD", 0.70)
    )
    max_results: int = field(default_factory=lambda: get_env_int("DEDUP_MAX_RESULTS", 10))

    # Low temperature for consistent classification
    temperature: float = field(default_factory=lambda: get_env_float("DEDUP_TEMPERATURE", 0.1))
    max_tokens: int = field(default_factory=lambda: get_env_int("DEDUP_MAX_TOKENS", 2000))

    # Confidence bands handed to the model
    duplicate_confidence: float = field(
        default_factory=lambda: get_env_float("DEDUP_DUPLICATE_CONFIDENCE", 0.90)
    )
    similar_confidence: float = field(
        default_factory=lambda: get_env_float("DEDUP_SIMILAR_CONFIDENCE", 0.70)
    )
    related_confidence: float = field(
        default_factory=lambda: get_env_float("DEDUP_RELATED_CONFIDENCE", 0.50)
    )

    def __post_init__(self):
        """Validate configuration."""
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be within [0, 1]")
        if self.max_results < 1:
            raise ValueError("max_results must be at least 1")


@dataclass
class RetrievalConfig:
    """Context retrieval (RAG) settings."""

    default_limit: int = field(default_factory=lambda: get_env_int("RAG_DEFAULT_LIMIT", 5))
    context_max_tokens: int = field(
        default_factory=lambda: get_env_int("RAG_CONTEXT_MAX_TOKENS", 2000)
    )

    def __post_init__(self):
        """Validate configuration."""
        if self.default_limit < 1:
            raise ValueError("default_limit must be at least 1")


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE"))

    # Structured logging
    json_logs: bool = field(default_factory=lambda: get_env_bool("LOG_JSON", False))


@dataclass
class Settings:
    """Main application settings container."""

    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    deduplication: DeduplicationConfig = field(default_factory=DeduplicationConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Application metadata
    app_name: str = "product-intel"
    app_version: str = "1.0.0"
    environment: str = field(default_factory=lambda: get_env("ENVIRONMENT", "development"))

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() in ("production", "prod")


def load_settings() -> Settings:
    """
    Load and validate all application settings.

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    return Settings()


# Global settings instance (lazy-loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None

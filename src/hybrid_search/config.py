"""
Configuration Management - Centralized configuration for the hybrid search engine

Part of the Hybrid Search Engine.

One validated EngineConfig is built per engine instance. ConfigManager layers
defaults, an optional YAML file and environment variables, then validates the
result as a whole.

License: MIT
"""

import os
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from pathlib import Path
import logging

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = [0.75, 0.70, 0.65, 0.60]

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@dataclass
class TokenizerConfig:
    """Configuration for text normalization."""

    stopwords: Optional[List[str]] = None  # None selects the built-in English list
    stemming: bool = False
    max_document_length: int = 8000


@dataclass
class BM25Config:
    """Configuration for BM25 keyword scoring."""

    k1: float = 1.2
    b: float = 0.75


@dataclass
class FusionConfig:
    """Configuration for score fusion."""

    bm25_weight: float = 0.7
    vector_weight: float = 0.3


@dataclass
class RetrievalConfig:
    """Configuration for progressive threshold retrieval."""

    k: int = 10
    min_results: int = 3
    thresholds: List[float] = field(default_factory=lambda: list(DEFAULT_THRESHOLDS))
    snippet_length: int = 300


@dataclass
class EmbeddingConfig:
    """Configuration for the embedding provider."""

    enabled: bool = True
    model: str = "text-embedding-3-small"
    dimension: int = 1536
    timeout: float = 10.0
    embed_documents: bool = True
    max_workers: int = 4


@dataclass
class CacheConfig:
    """Configuration for the semantic result cache."""

    enabled: bool = True
    ttl_seconds: int = 7200
    max_entries: int = 1000
    similarity_threshold: float = 0.85


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format_type: str = "structured"
    log_file: Optional[str] = None
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""

    prometheus_enabled: bool = True


@dataclass
class EngineConfig:
    """Main search engine configuration."""

    # Environment
    environment: str = "development"
    debug: bool = False

    # Component configurations
    tokenizer: TokenizerConfig = field(default_factory=TokenizerConfig)
    bm25: BM25Config = field(default_factory=BM25Config)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    # Worker pool for asynchronous callers
    query_workers: int = 8


def validate_thresholds(thresholds: List[float]) -> List[str]:
    """
    Check a similarity threshold ladder.

    Args:
        thresholds: Ordered list of cosine thresholds

    Returns:
        List of human-readable problems (empty when valid)
    """
    errors = []

    if not thresholds:
        errors.append("Threshold list must not be empty")
        return errors

    for value in thresholds:
        if not (-1.0 <= value <= 1.0):
            errors.append(f"Threshold {value} must be between -1.0 and 1.0")

    for previous, current in zip(thresholds, thresholds[1:]):
        if current >= previous:
            errors.append("Thresholds must be strictly descending")
            break

    return errors


def validate_config(config: EngineConfig) -> None:
    """
    Validate configuration values.

    Args:
        config: Configuration to check

    Raises:
        ConfigurationError: Listing every invalid value
    """
    errors = []

    # Tokenizer
    if config.tokenizer.max_document_length < 1:
        errors.append("Max document length must be at least 1")

    # BM25
    if config.bm25.k1 < 0:
        errors.append("BM25 k1 must be non-negative")

    if not (0.0 <= config.bm25.b <= 1.0):
        errors.append("BM25 b must be between 0.0 and 1.0")

    # Fusion
    if config.fusion.bm25_weight < 0 or config.fusion.vector_weight < 0:
        errors.append("Fusion weights must be non-negative")
    elif config.fusion.bm25_weight == 0 and config.fusion.vector_weight == 0:
        errors.append("At least one fusion weight must be positive")

    # Retrieval
    if config.retrieval.k < 1:
        errors.append("Retrieval k must be at least 1")

    if config.retrieval.min_results < 0:
        errors.append("Retrieval min_results must be non-negative")

    if config.retrieval.min_results > config.retrieval.k:
        errors.append("Retrieval min_results cannot exceed k")

    if config.retrieval.snippet_length < 0:
        errors.append("Snippet length must be non-negative")

    errors.extend(validate_thresholds(config.retrieval.thresholds))

    # Embedding
    if config.embedding.dimension < 1:
        errors.append("Embedding dimension must be at least 1")

    if config.embedding.timeout <= 0:
        errors.append("Embedding timeout must be positive")

    if config.embedding.max_workers < 1:
        errors.append("Embedding workers must be at least 1")

    # Cache
    if config.cache.ttl_seconds <= 0:
        errors.append("Cache TTL must be positive")

    if config.cache.max_entries < 1:
        errors.append("Cache max entries must be at least 1")

    if not (-1.0 <= config.cache.similarity_threshold <= 1.0):
        errors.append("Cache similarity threshold must be between -1.0 and 1.0")

    # Logging
    if config.logging.level.upper() not in VALID_LOG_LEVELS:
        errors.append(f"Log level must be one of: {', '.join(VALID_LOG_LEVELS)}")

    if config.query_workers < 1:
        errors.append("Query workers must be at least 1")

    # Raise exception if there are validation errors
    if errors:
        error_message = "Configuration validation errors:\n" + "\n".join(
            f"- {error}" for error in errors
        )
        raise ConfigurationError(error_message)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() == "true"


def _env_float_list(name: str, default: List[float]) -> List[float]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return [float(part.strip()) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ConfigurationError(f"{name} must be a comma-separated list of numbers")


class ConfigManager:
    """
    Configuration manager for loading and validating configuration.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to YAML configuration file (optional)
        """
        self.config_path = config_path
        self._config: Optional[EngineConfig] = None

    def load_config(self) -> EngineConfig:
        """
        Load configuration from environment variables and files.

        Returns:
            EngineConfig instance
        """
        if self._config is not None:
            return self._config

        # Start with default configuration
        config = EngineConfig()

        # Load from file if specified
        if self.config_path and Path(self.config_path).exists():
            config = self._load_from_file(config, self.config_path)

        # Override with environment variables
        config = self._load_from_env(config)

        validate_config(config)

        self._config = config
        logger.info(f"Configuration loaded for environment: {config.environment}")

        return config

    def _load_from_file(self, config: EngineConfig, file_path: str) -> EngineConfig:
        """Load configuration from YAML file."""
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {file_path}: {e}") from e

        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Configuration file {file_path} must contain a mapping")

        update_config_from_dict(config, file_config)
        logger.info(f"Configuration loaded from file: {file_path}")

        return config

    def _load_from_env(self, config: EngineConfig) -> EngineConfig:
        """Load configuration from environment variables."""
        try:
            # Environment
            config.environment = os.getenv("ENVIRONMENT", config.environment)
            config.debug = _env_bool("DEBUG", config.debug)
            config.query_workers = int(
                os.getenv("HYBRID_SEARCH_QUERY_WORKERS", str(config.query_workers))
            )

            # Tokenizer
            stopwords_env = os.getenv("HYBRID_SEARCH_STOPWORDS")
            if stopwords_env:
                config.tokenizer.stopwords = [
                    word.strip() for word in stopwords_env.split(",") if word.strip()
                ]
            config.tokenizer.stemming = _env_bool(
                "HYBRID_SEARCH_STEMMING", config.tokenizer.stemming
            )
            config.tokenizer.max_document_length = int(
                os.getenv(
                    "HYBRID_SEARCH_MAX_DOC_LENGTH", str(config.tokenizer.max_document_length)
                )
            )

            # BM25
            config.bm25.k1 = float(os.getenv("HYBRID_SEARCH_BM25_K1", str(config.bm25.k1)))
            config.bm25.b = float(os.getenv("HYBRID_SEARCH_BM25_B", str(config.bm25.b)))

            # Fusion
            config.fusion.bm25_weight = float(
                os.getenv("HYBRID_SEARCH_WEIGHT_BM25", str(config.fusion.bm25_weight))
            )
            config.fusion.vector_weight = float(
                os.getenv("HYBRID_SEARCH_WEIGHT_VECTOR", str(config.fusion.vector_weight))
            )

            # Retrieval
            config.retrieval.k = int(os.getenv("HYBRID_SEARCH_K", str(config.retrieval.k)))
            config.retrieval.min_results = int(
                os.getenv("HYBRID_SEARCH_MIN_RESULTS", str(config.retrieval.min_results))
            )
            config.retrieval.thresholds = _env_float_list(
                "HYBRID_SEARCH_THRESHOLDS", config.retrieval.thresholds
            )

            # Embedding
            config.embedding.enabled = _env_bool(
                "HYBRID_SEARCH_EMBEDDINGS_ENABLED", config.embedding.enabled
            )
            config.embedding.model = os.getenv("EMBEDDING_MODEL", config.embedding.model)
            config.embedding.dimension = int(
                os.getenv("EMBEDDING_DIMENSION", str(config.embedding.dimension))
            )
            config.embedding.timeout = float(
                os.getenv("EMBEDDING_TIMEOUT", str(config.embedding.timeout))
            )

            # Cache
            config.cache.enabled = _env_bool("CACHE_ENABLED", config.cache.enabled)
            config.cache.ttl_seconds = int(
                os.getenv("CACHE_TTL_SECONDS", str(config.cache.ttl_seconds))
            )
            config.cache.max_entries = int(
                os.getenv("CACHE_MAX_ENTRIES", str(config.cache.max_entries))
            )
            config.cache.similarity_threshold = float(
                os.getenv(
                    "CACHE_SIMILARITY_THRESHOLD", str(config.cache.similarity_threshold)
                )
            )
        except ValueError as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid numeric environment value: {e}") from e

        # Logging
        config.logging.level = os.getenv("LOG_LEVEL", config.logging.level)
        config.logging.format_type = os.getenv("LOG_FORMAT", config.logging.format_type)
        config.logging.log_file = os.getenv("LOG_FILE", config.logging.log_file)

        # Monitoring
        config.monitoring.prometheus_enabled = _env_bool(
            "PROMETHEUS_ENABLED", config.monitoring.prometheus_enabled
        )

        return config

    def get_config(self) -> EngineConfig:
        """Get the current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    def reload_config(self) -> EngineConfig:
        """Reload configuration from sources."""
        self._config = None
        return self.load_config()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return config_to_dict(self.get_config())


def update_config_from_dict(config: EngineConfig, config_dict: Dict[str, Any]) -> None:
    """Update configuration from a nested dictionary, ignoring unknown keys."""
    for section_name, section_config in config_dict.items():
        if not hasattr(config, section_name):
            logger.warning(f"Ignoring unknown configuration section: {section_name}")
            continue

        if isinstance(section_config, dict):
            section_obj = getattr(config, section_name)
            for key, value in section_config.items():
                if hasattr(section_obj, key):
                    setattr(section_obj, key, value)
                else:
                    logger.warning(f"Ignoring unknown configuration key: {section_name}.{key}")
        else:
            setattr(config, section_name, section_config)


def config_to_dict(obj: Any) -> Any:
    """Convert a (nested) configuration dataclass to plain dictionaries."""
    if hasattr(obj, "__dataclass_fields__"):
        return {
            field_name: config_to_dict(getattr(obj, field_name))
            for field_name in obj.__dataclass_fields__
        }
    if isinstance(obj, list):
        return list(obj)
    return obj


def build_config(overrides: Optional[Dict[str, Any]] = None) -> EngineConfig:
    """
    Build a validated configuration from defaults plus explicit overrides.

    Unlike ConfigManager this never reads files or the environment, which
    keeps independently constructed engines isolated from process state.

    Args:
        overrides: Nested dictionary of section -> key -> value

    Returns:
        Validated EngineConfig
    """
    config = EngineConfig()
    if overrides:
        update_config_from_dict(config, overrides)
    validate_config(config)
    return config


# Global configuration manager instance
_config_manager = None


def get_config_manager(config_path: Optional[str] = None) -> ConfigManager:
    """Get the global configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_path)
    return _config_manager


def get_config() -> EngineConfig:
    """Get the current process-wide configuration."""
    return get_config_manager().get_config()

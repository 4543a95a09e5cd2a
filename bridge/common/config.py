"""
Configuration Management for Bridge

Loads configuration from ~/.bridge/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

from .errors import ValidationError

logger = logging.getLogger("bridge.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".bridge"
CONFIG_PATH = CONFIG_DIR / "config.json"
DATA_PATH = CONFIG_DIR / "experiences.json"
PATTERN_CACHE_PATH = CONFIG_DIR / "patterns.json"


@dataclass
class EmbeddingConfig:
    """Embedding backend configuration"""
    provider: str = "auto"  # auto, none, openai, voyage, fastembed (femb)
    model: str = ""  # empty: provider default
    dimensions: int = 0  # 0: provider default
    openai_api_key: str = ""
    voyage_api_key: str = ""
    cache_size: int = 1000


@dataclass
class ResilienceConfig:
    """Timeout, retry and circuit breaker settings for backend calls"""
    embedding_timeout: float = 45.0
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    failure_threshold: int = 5
    reset_timeout: float = 300.0


@dataclass
class ScoringConfig:
    """Relevance blend weights; must sum to 1"""
    semantic: float = 0.5
    quality: float = 0.3
    exact: float = 0.1
    recency: float = 0.05
    density: float = 0.05
    recency_half_life_days: float = 90.0  # decay constant of exp(-age/τ)

    def validate(self) -> None:
        total = self.semantic + self.quality + self.exact + self.recency + self.density
        if abs(total - 1.0) > 1e-6:
            raise ValidationError(f"Scoring weights must sum to 1 (got {total:.4f})")
        for name in ("semantic", "quality", "exact", "recency", "density"):
            if getattr(self, name) < 0:
                raise ValidationError(f"Scoring weight '{name}' must be non-negative")


@dataclass
class RecallConfig:
    """Retrieval defaults"""
    default_limit: int = 10
    max_limit: int = 100
    semantic_threshold: float = 0.7
    group_similarity_threshold: float = 0.75


@dataclass
class PatternConfig:
    """Incremental pattern engine thresholds"""
    similarity_threshold: float = 0.7
    quality_prominence_threshold: float = 0.6
    cluster_similarity_threshold: float = 0.6
    min_pattern_size: int = 3
    split_cohesion_threshold: float = 0.5
    merge_similarity_threshold: float = 0.8
    max_matches: int = 3
    max_emojis: int = 4
    max_themes: int = 10
    auto_rediscover: bool = False
    cache_path: str = str(PATTERN_CACHE_PATH)


@dataclass
class StorageConfig:
    """Record store location"""
    data_file: str = str(DATA_PATH)


@dataclass
class BridgeConfig:
    """Main Bridge configuration"""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    recall: RecallConfig = field(default_factory=RecallConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    return EmbeddingConfig(
        provider=embedding_data.get("provider") or embedding_data.get("mode", "auto"),
        model=embedding_data.get("model", ""),
        dimensions=int(embedding_data.get("dimensions", 0)),
        openai_api_key=embedding_data.get("openai_api_key", ""),
        voyage_api_key=embedding_data.get("voyage_api_key", ""),
        cache_size=int(embedding_data.get("cache_size", 1000)),
    )


def _parse_resilience_config(data: dict) -> ResilienceConfig:
    """Parse resilience section from config dict"""
    res_data = data.get("resilience", {})
    return ResilienceConfig(
        embedding_timeout=float(res_data.get("embedding_timeout", 45.0)),
        max_attempts=int(res_data.get("max_attempts", 3)),
        base_delay=float(res_data.get("base_delay", 1.0)),
        max_delay=float(res_data.get("max_delay", 10.0)),
        failure_threshold=int(res_data.get("failure_threshold", 5)),
        reset_timeout=float(res_data.get("reset_timeout", 300.0)),
    )


def _parse_scoring_config(data: dict) -> ScoringConfig:
    """Parse scoring weights; an invalid blend falls back to defaults"""
    scoring_data = data.get("scoring", {})
    scoring = ScoringConfig(
        semantic=float(scoring_data.get("semantic", 0.5)),
        quality=float(scoring_data.get("quality", 0.3)),
        exact=float(scoring_data.get("exact", 0.1)),
        recency=float(scoring_data.get("recency", 0.05)),
        density=float(scoring_data.get("density", 0.05)),
        recency_half_life_days=float(scoring_data.get("recency_half_life_days", 90.0)),
    )
    try:
        scoring.validate()
    except ValidationError as e:
        logger.warning("Ignoring scoring section: %s", e)
        return ScoringConfig()
    return scoring


def _parse_recall_config(data: dict) -> RecallConfig:
    """Parse recall section from config dict"""
    recall_data = data.get("recall", {})
    return RecallConfig(
        default_limit=int(recall_data.get("default_limit", 10)),
        max_limit=int(recall_data.get("max_limit", 100)),
        semantic_threshold=float(recall_data.get("semantic_threshold", 0.7)),
        group_similarity_threshold=float(recall_data.get("group_similarity_threshold", 0.75)),
    )


def _parse_pattern_config(data: dict) -> PatternConfig:
    """Parse patterns section from config dict"""
    pattern_data = data.get("patterns", {})
    defaults = PatternConfig()
    return PatternConfig(
        similarity_threshold=float(pattern_data.get("similarity_threshold", defaults.similarity_threshold)),
        quality_prominence_threshold=float(
            pattern_data.get("quality_prominence_threshold", defaults.quality_prominence_threshold)
        ),
        cluster_similarity_threshold=float(
            pattern_data.get("cluster_similarity_threshold", defaults.cluster_similarity_threshold)
        ),
        min_pattern_size=int(pattern_data.get("min_pattern_size", defaults.min_pattern_size)),
        split_cohesion_threshold=float(
            pattern_data.get("split_cohesion_threshold", defaults.split_cohesion_threshold)
        ),
        merge_similarity_threshold=float(
            pattern_data.get("merge_similarity_threshold", defaults.merge_similarity_threshold)
        ),
        max_matches=int(pattern_data.get("max_matches", defaults.max_matches)),
        max_emojis=int(pattern_data.get("max_emojis", defaults.max_emojis)),
        max_themes=int(pattern_data.get("max_themes", defaults.max_themes)),
        auto_rediscover=bool(pattern_data.get("auto_rediscover", defaults.auto_rediscover)),
        cache_path=pattern_data.get("cache_path", defaults.cache_path),
    )


def _parse_storage_config(data: dict) -> StorageConfig:
    """Parse storage section from config dict"""
    storage_data = data.get("storage", {})
    return StorageConfig(data_file=storage_data.get("data_file", str(DATA_PATH)))


def load_config() -> BridgeConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.bridge/config.json)
    3. Default values
    """
    config = BridgeConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.embedding = _parse_embedding_config(data)
            config.resilience = _parse_resilience_config(data)
            config.scoring = _parse_scoring_config(data)
            config.recall = _parse_recall_config(data)
            config.patterns = _parse_pattern_config(data)
            config.storage = _parse_storage_config(data)
        except (json.JSONDecodeError, IOError, ValueError, TypeError) as e:
            logger.warning("Failed to load config file: %s", e)

    # Environment variable overrides
    if os.getenv("BRIDGE_EMBEDDING_PROVIDER"):
        config.embedding.provider = os.getenv("BRIDGE_EMBEDDING_PROVIDER")
    if os.getenv("BRIDGE_EMBEDDING_MODEL"):
        config.embedding.model = os.getenv("BRIDGE_EMBEDDING_MODEL")
    if os.getenv("BRIDGE_EMBEDDING_TIMEOUT"):
        config.resilience.embedding_timeout = float(os.getenv("BRIDGE_EMBEDDING_TIMEOUT"))
    if os.getenv("BRIDGE_DATA_FILE"):
        config.storage.data_file = os.getenv("BRIDGE_DATA_FILE")
    if os.getenv("BRIDGE_PATTERN_CACHE"):
        config.patterns.cache_path = os.getenv("BRIDGE_PATTERN_CACHE")
    if os.getenv("BRIDGE_SEMANTIC_THRESHOLD"):
        config.recall.semantic_threshold = float(os.getenv("BRIDGE_SEMANTIC_THRESHOLD"))

    # API keys (track env-sourced keys so they are never written back)
    _env_key_map = {
        "OPENAI_API_KEY": "openai_api_key",
        "VOYAGE_API_KEY": "voyage_api_key",
    }
    for env_var, attr in _env_key_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.embedding, attr, val)
            config._env_sourced_keys.add(attr)

    return config


def save_config(config: BridgeConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    embedding_section = {
        "provider": config.embedding.provider,
        "model": config.embedding.model,
        "dimensions": config.embedding.dimensions,
        "openai_api_key": config.embedding.openai_api_key,
        "voyage_api_key": config.embedding.voyage_api_key,
        "cache_size": config.embedding.cache_size,
    }
    for key in ("openai_api_key", "voyage_api_key"):
        if key in env_sourced:
            embedding_section[key] = ""

    data = {
        "embedding": embedding_section,
        "resilience": {
            "embedding_timeout": config.resilience.embedding_timeout,
            "max_attempts": config.resilience.max_attempts,
            "base_delay": config.resilience.base_delay,
            "max_delay": config.resilience.max_delay,
            "failure_threshold": config.resilience.failure_threshold,
            "reset_timeout": config.resilience.reset_timeout,
        },
        "scoring": {
            "semantic": config.scoring.semantic,
            "quality": config.scoring.quality,
            "exact": config.scoring.exact,
            "recency": config.scoring.recency,
            "density": config.scoring.density,
            "recency_half_life_days": config.scoring.recency_half_life_days,
        },
        "recall": {
            "default_limit": config.recall.default_limit,
            "max_limit": config.recall.max_limit,
            "semantic_threshold": config.recall.semantic_threshold,
            "group_similarity_threshold": config.recall.group_similarity_threshold,
        },
        "patterns": {
            "similarity_threshold": config.patterns.similarity_threshold,
            "quality_prominence_threshold": config.patterns.quality_prominence_threshold,
            "cluster_similarity_threshold": config.patterns.cluster_similarity_threshold,
            "min_pattern_size": config.patterns.min_pattern_size,
            "split_cohesion_threshold": config.patterns.split_cohesion_threshold,
            "merge_similarity_threshold": config.patterns.merge_similarity_threshold,
            "max_matches": config.patterns.max_matches,
            "max_emojis": config.patterns.max_emojis,
            "max_themes": config.patterns.max_themes,
            "auto_rediscover": config.patterns.auto_rediscover,
            "cache_path": config.patterns.cache_path,
        },
        "storage": {
            "data_file": config.storage.data_file,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)

"""
Configuration Management for the Context Engine

Loads configuration from ~/.context-engine/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

logger = logging.getLogger("context_engine.config")

# Default config paths
CONFIG_DIR = Path.home() / ".context-engine"
CONFIG_PATH = CONFIG_DIR / "config.json"
LOGS_DIR = CONFIG_DIR / "logs"
STORE_PATH = CONFIG_DIR / "context_store.json"
CANDIDATE_QUEUE_PATH = CONFIG_DIR / "candidate_queue.json"

# Project paths (relative to this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent
PATTERNS_DIR = PROJECT_ROOT / "patterns"


@dataclass
class ExtractorConfig:
    """Extractor configuration"""
    patterns_path: str = str(PATTERNS_DIR / "context-triggers.md")
    frequency_boost: float = 0.1  # per extra occurrence of a payload
    max_frequency_boost: float = 0.2


@dataclass
class ValidatorConfig:
    """Validator configuration"""
    min_keyword_overlap: int = 1
    active_decisions_only: bool = True


@dataclass
class RankerConfig:
    """Ranker configuration"""
    default_limit: int = 10


@dataclass
class StoreConfig:
    """Context store configuration"""
    path: str = str(STORE_PATH)


@dataclass
class ServerConfig:
    """MCP server configuration"""
    name: str = "context_engine"
    log_level: str = "INFO"


@dataclass
class EngineConfig:
    """Main context engine configuration"""
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    validator: ValidatorConfig = field(default_factory=ValidatorConfig)
    ranker: RankerConfig = field(default_factory=RankerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _parse_extractor_config(data: dict) -> ExtractorConfig:
    """Parse extractor section from config dict"""
    extractor_data = data.get("extractor", {})
    return ExtractorConfig(
        patterns_path=extractor_data.get("patterns_path", str(PATTERNS_DIR / "context-triggers.md")),
        frequency_boost=extractor_data.get("frequency_boost", 0.1),
        max_frequency_boost=extractor_data.get("max_frequency_boost", 0.2),
    )


def _parse_validator_config(data: dict) -> ValidatorConfig:
    """Parse validator section from config dict"""
    validator_data = data.get("validator", {})
    return ValidatorConfig(
        min_keyword_overlap=validator_data.get("min_keyword_overlap", 1),
        active_decisions_only=validator_data.get("active_decisions_only", True),
    )


def _parse_ranker_config(data: dict) -> RankerConfig:
    """Parse ranker section from config dict"""
    ranker_data = data.get("ranker", {})
    return RankerConfig(
        default_limit=ranker_data.get("default_limit", 10),
    )


def _parse_store_config(data: dict) -> StoreConfig:
    """Parse store section from config dict"""
    store_data = data.get("store", {})
    return StoreConfig(
        path=store_data.get("path", str(STORE_PATH)),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server section from config dict"""
    server_data = data.get("server", {})
    return ServerConfig(
        name=server_data.get("name", "context_engine"),
        log_level=server_data.get("log_level", "INFO"),
    )


def load_config() -> EngineConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.context-engine/config.json)
    3. Default values
    """
    config = EngineConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.extractor = _parse_extractor_config(data)
            config.validator = _parse_validator_config(data)
            config.ranker = _parse_ranker_config(data)
            config.store = _parse_store_config(data)
            config.server = _parse_server_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file: %s", e)

    # Environment variable overrides
    if os.getenv("CONTEXT_ENGINE_PATTERNS"):
        config.extractor.patterns_path = os.getenv("CONTEXT_ENGINE_PATTERNS")
    if os.getenv("CONTEXT_ENGINE_FREQUENCY_BOOST"):
        config.extractor.frequency_boost = float(os.getenv("CONTEXT_ENGINE_FREQUENCY_BOOST"))

    if os.getenv("CONTEXT_ENGINE_MIN_OVERLAP"):
        config.validator.min_keyword_overlap = int(os.getenv("CONTEXT_ENGINE_MIN_OVERLAP"))

    if os.getenv("CONTEXT_ENGINE_RANK_LIMIT"):
        config.ranker.default_limit = int(os.getenv("CONTEXT_ENGINE_RANK_LIMIT"))

    if os.getenv("CONTEXT_ENGINE_STORE_PATH"):
        config.store.path = os.getenv("CONTEXT_ENGINE_STORE_PATH")

    if os.getenv("CONTEXT_ENGINE_SERVER_NAME"):
        config.server.name = os.getenv("CONTEXT_ENGINE_SERVER_NAME")
    if os.getenv("CONTEXT_ENGINE_LOG_LEVEL"):
        config.server.log_level = os.getenv("CONTEXT_ENGINE_LOG_LEVEL")

    return config


def save_config(config: EngineConfig) -> None:
    """Save configuration to file."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    data = {
        "extractor": {
            "patterns_path": config.extractor.patterns_path,
            "frequency_boost": config.extractor.frequency_boost,
            "max_frequency_boost": config.extractor.max_frequency_boost,
        },
        "validator": {
            "min_keyword_overlap": config.validator.min_keyword_overlap,
            "active_decisions_only": config.validator.active_decisions_only,
        },
        "ranker": {
            "default_limit": config.ranker.default_limit,
        },
        "store": {
            "path": config.store.path,
        },
        "server": {
            "name": config.server.name,
            "log_level": config.server.log_level,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)

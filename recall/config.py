"""
Configuration management for recall stores.

The configuration is stored as a TOML file in the store directory.
It names the embedding and chat providers, where the notes live,
and the chunking and search parameters.
"""

import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w

from .errors import ConfigurationError


CONFIG_FILENAME = "recall.toml"
CONFIG_VERSION = 1

UPDATE_MODES = ("none", "onchange", "onsave")


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexingConfig:
    """Chunking and reindexing parameters."""
    chunk_size: int = 1000
    chunk_overlap: int = 200
    dimensions: int = 384
    min_content_length: int = 50
    update_mode: str = "onchange"
    update_delay: float = 30.0
    watch_interval: float = 2.0
    batch_size: int = 10


@dataclass
class SearchConfig:
    """Similarity search and context assembly parameters."""
    similarity_threshold: float = 0.5
    max_notes: int = 20
    max_context_length: int = 4000
    title_match_boost: float = 0.5
    agentic: bool = False
    max_follow_ups: int = 2


@dataclass
class RecallConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    embedding: ProviderConfig = field(default_factory=lambda: ProviderConfig("local"))
    chat: ProviderConfig = field(default_factory=lambda: ProviderConfig("local"))
    documents: ProviderConfig = field(default_factory=lambda: ProviderConfig("filesystem"))
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def snapshot_path(self) -> Path:
        """Path to the persisted embedding snapshot."""
        return self.path / "embeddings.json"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_store_path(override: Path | None = None) -> Path:
    """
    Resolve the store directory.

    Priority: explicit override, RECALL_STORE_PATH, ~/.recall
    """
    if override is not None:
        return Path(override).expanduser()
    env = os.environ.get("RECALL_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".recall"


def _section(cls, data: dict):
    """Build a settings dataclass from a TOML table, ignoring unknown keys."""
    known = {f.name: f for f in fields(cls)}
    values = {}
    for key, value in data.items():
        if key not in known:
            continue
        default = getattr(cls(), key)
        try:
            values[key] = type(default)(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid value for {cls.__name__}.{key}: {value!r}"
            ) from e
    return cls(**values)


def validate_config(config: RecallConfig) -> None:
    """Reject settings that cannot work together."""
    idx = config.indexing
    if idx.chunk_size <= 0:
        raise ConfigurationError("indexing.chunk_size must be positive")
    if not 0 <= idx.chunk_overlap < idx.chunk_size:
        raise ConfigurationError(
            f"indexing.chunk_overlap ({idx.chunk_overlap}) must be between 0 "
            f"and chunk_size ({idx.chunk_size})"
        )
    if idx.update_mode not in UPDATE_MODES:
        raise ConfigurationError(
            f"indexing.update_mode must be one of {', '.join(UPDATE_MODES)}"
        )
    if idx.watch_interval <= 0:
        raise ConfigurationError("indexing.watch_interval must be positive")
    if config.search.max_context_length <= 0:
        raise ConfigurationError("search.max_context_length must be positive")


def create_default_config(store_path: Path) -> RecallConfig:
    """Create a config with defaults; notes are read from the current directory."""
    config = RecallConfig(path=store_path)
    config.documents.params["root"] = str(Path.cwd())
    return config


def load_config(store_path: Path) -> RecallConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ConfigurationError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Malformed config {config_path}: {e}") from e

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ConfigurationError(
            f"Config version {version} is newer than supported ({CONFIG_VERSION})"
        )

    def parse_provider(section: dict, default: str) -> ProviderConfig:
        return ProviderConfig(
            name=section.get("name", default),
            params={k: v for k, v in section.items() if k != "name"},
        )

    config = RecallConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        embedding=parse_provider(data.get("embedding", {}), "local"),
        chat=parse_provider(data.get("chat", {}), "local"),
        documents=parse_provider(data.get("documents", {}), "filesystem"),
        indexing=_section(IndexingConfig, data.get("indexing", {})),
        search=_section(SearchConfig, data.get("search", {})),
    )
    validate_config(config)
    return config


def save_config(config: RecallConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    def provider_to_dict(p: ProviderConfig) -> dict:
        d = {"name": p.name}
        d.update(p.params)
        return d

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "embedding": provider_to_dict(config.embedding),
        "chat": provider_to_dict(config.chat),
        "documents": provider_to_dict(config.documents),
        "indexing": asdict(config.indexing),
        "search": asdict(config.search),
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> RecallConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    if (store_path / CONFIG_FILENAME).exists():
        return load_config(store_path)
    config = create_default_config(store_path)
    save_config(config)
    return config

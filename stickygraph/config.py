"""Configuration for stickygraph.

Dataclass-based configuration with sensible defaults.
Override via environment variables with the STICKYGRAPH_ prefix.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from stickygraph.log_config import get_logger

log = get_logger("config")

_pkg_dir = Path(__file__).parent.parent
_env_loaded = load_dotenv(_pkg_dir / ".env") or load_dotenv(Path.cwd() / ".env")
log.debug(f"Loaded .env file: {_env_loaded}")

NOTIFY_CHANNELS = ("http", "local", "none")


def _get_env(key: str, default: str) -> str:
    """Get environment variable with STICKYGRAPH_ prefix."""
    return os.getenv(f"STICKYGRAPH_{key}", default)


def _get_api_key() -> str | None:
    """Embedding key: STICKYGRAPH_EMBEDDING_API_KEY, then OPENAI_API_KEY."""
    key = os.getenv("STICKYGRAPH_EMBEDDING_API_KEY") or os.getenv("OPENAI_API_KEY")
    return key or None


@dataclass
class Config:
    """stickygraph configuration.

    Attributes:
        data_dir: Directory holding the SQLite file and vector tables
        embedding_model: LiteLLM model for embeddings
        embedding_dim: Embedding dimension (must match the model)
        embedding_api_key: Provider key; None leaves semantic search inert
        notify_channel: Mutation notifier implementation (http, local, none)
        notify_url: Base URL of the relay the http channel posts to
    """

    data_dir: Path = field(
        default_factory=lambda: Path(_get_env("DATA_DIR", str(Path.home() / ".stickygraph" / "data")))
    )
    embedding_model: str = field(
        default_factory=lambda: _get_env("EMBEDDING_MODEL", "text-embedding-3-small")
    )
    embedding_dim: int = field(
        default_factory=lambda: int(_get_env("EMBEDDING_DIM", "1536"))
    )
    embedding_api_key: str | None = field(default_factory=_get_api_key, repr=False)
    embedding_timeout: float = field(
        default_factory=lambda: float(_get_env("EMBEDDING_TIMEOUT", "30"))
    )
    embedding_cache_size: int = field(
        default_factory=lambda: int(_get_env("EMBEDDING_CACHE_SIZE", "1000"))
    )

    notify_channel: str = field(
        default_factory=lambda: _get_env("NOTIFY_CHANNEL", "http").lower()
    )
    notify_url: str = field(
        default_factory=lambda: _get_env("NOTIFY_URL", "http://localhost:8080")
    )
    notify_timeout: float = field(
        default_factory=lambda: float(_get_env("NOTIFY_TIMEOUT", "5"))
    )

    relay_host: str = field(default_factory=lambda: _get_env("RELAY_HOST", "127.0.0.1"))
    relay_port: int = field(default_factory=lambda: int(_get_env("RELAY_PORT", "8080")))

    def __post_init__(self):
        """Ensure paths are Path objects and the data directory exists."""
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        self.data_dir = self.data_dir.expanduser()
        self.data_dir.mkdir(parents=True, exist_ok=True)

        log.debug(f"data_dir={self.data_dir}")
        log.debug(f"embedding_model={self.embedding_model}, embedding_dim={self.embedding_dim}")
        log.debug(f"semantic_search_enabled={self.semantic_search_enabled}")
        log.debug(f"notify_channel={self.notify_channel}, notify_url={self.notify_url}")
        log.info(f"Config initialized: data_dir={self.data_dir}")

    @property
    def sqlite_path(self) -> Path:
        """Path of the structured store database file."""
        return self.data_dir / "stickygraph.db"

    @property
    def vectors_dir(self) -> Path:
        """Directory for LanceDB vector tables."""
        return self.data_dir / "lancedb"

    @property
    def semantic_search_enabled(self) -> bool:
        return bool(self.embedding_api_key)

"""Configuration management for the recall backend using Hydra.

All configuration is loaded from YAML files in conf/recall/.
This module provides typed config objects and validation.
"""

from pathlib import Path

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field

from recall_backend.chunking import ChunkingConfig
from recall_backend.embedding import EmbeddingConfig


class StoreConfig(BaseModel):
    """Vector store configuration.

    Attributes:
        db_path: SQLite file holding embeddings and the offline queue
        busy_timeout_ms: How long a connection waits on a locked database
    """

    db_path: str = "data/recall.sqlite"
    busy_timeout_ms: int = Field(default=5000, ge=0)


class QueueConfig(BaseModel):
    """Offline queue configuration.

    Attributes:
        max_attempts: Failed attempts after which a queued note is dropped
        lock_timeout_seconds: How long a drain waits for the drainer lock
    """

    max_attempts: int = Field(default=3, ge=1, le=20)
    lock_timeout_seconds: float = Field(default=0.0, ge=0.0)


class SearchConfig(BaseModel):
    """Search orchestrator defaults.

    Attributes:
        default_limit: Result count when the caller gives none
        default_threshold: Minimum similarity for semantic matches
        overfetch_factor: Raw rows fetched per requested result before dedup
        max_links_per_note: Wikilinks followed per note during expansion
        related_score: Score assigned to results reached via expansion
        snippet_chars: Maximum snippet length
        full_content_max_chars: Truncation limit for full-content enrichment
        default_project: Project used when a request names none
    """

    default_limit: int = Field(default=10, ge=1, le=100)
    default_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    overfetch_factor: int = Field(default=3, ge=1, le=10)
    max_links_per_note: int = Field(default=5, ge=0)
    related_score: float = Field(default=0.5, ge=0.0, le=1.0)
    snippet_chars: int = Field(default=200, ge=1)
    full_content_max_chars: int = Field(default=5000, ge=1)
    default_project: str | None = None


class DocumentStoreConfig(BaseModel):
    """Document store RPC endpoint.

    Attributes:
        base_url: JSON-RPC endpoint of the note store
        timeout_seconds: Per-request timeout
    """

    base_url: str = "http://localhost:3000/rpc"
    timeout_seconds: float = Field(default=30.0, gt=0.0)


class CatchUpConfig(BaseModel):
    """Background catch-up configuration.

    Attributes:
        batch_size: Notes embedded per batch
        delay_between_batches: Pause between batches in seconds
        state_file: Where the last successful run is recorded
    """

    batch_size: int = Field(default=10, ge=1, le=500)
    delay_between_batches: float = Field(default=0.5, ge=0.0)
    state_file: str = "data/.recall_build.json"


class RecallConfig(BaseModel):
    """Top-level configuration for the recall backend.

    Attributes:
        chunking: Text chunking configuration
        embedding: Embedding service configuration
        store: Vector store configuration
        queue: Offline queue configuration
        search: Search defaults
        documents: Document store endpoint
        catch_up: Background catch-up configuration
    """

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    documents: DocumentStoreConfig = Field(default_factory=DocumentStoreConfig)
    catch_up: CatchUpConfig = Field(default_factory=CatchUpConfig)


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> RecallConfig:
    """Load recall configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/recall/)
        overrides: List of config overrides (e.g., ["embedding.model=mxbai-embed-large"])

    Returns:
        Validated configuration object

    Example:
        >>> config = load_config("default")
        >>> config.embedding.model
        'nomic-embed-text'

        >>> config = load_config("default", overrides=["search.default_limit=20"])
        >>> config.search.default_limit
        20
    """
    if config_path is None:
        repo_root = Path(__file__).parent.parent.parent
        config_path = repo_root / "conf" / "recall"

    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    with initialize_config_dir(config_dir=str(config_path), version_base=None, job_name="recall"):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    config_dict = OmegaConf.to_container(cfg, resolve=True)
    return RecallConfig(**config_dict)  # type: ignore


def create_default_config() -> dict[str, dict[str, object]]:
    """Create a default configuration dictionary for bootstrapping.

    Returns:
        Dictionary suitable for writing to YAML

    Example:
        >>> from omegaconf import OmegaConf
        >>> OmegaConf.save(OmegaConf.create(create_default_config()), "conf/recall/default.yaml")
    """
    return {
        "chunking": {
            "chunk_size_chars": 2000,
            "overlap_percent": 0.15,
        },
        "embedding": {
            "provider": "ollama",
            "base_url": "${oc.env:OLLAMA_URL,'http://localhost:11434'}",
            "model": "nomic-embed-text",
            "version": "v1",
            "dimensions": 768,
            "batch_size": 100,
            "max_retries": 3,
            "base_delay_seconds": 1.0,
            "timeout_seconds": 60.0,
            "max_input_chars": 32000,
            "task_prefix": True,
        },
        "store": {
            "db_path": "${oc.env:RECALL_DB_PATH,data/recall.sqlite}",
            "busy_timeout_ms": 5000,
        },
        "queue": {
            "max_attempts": 3,
            "lock_timeout_seconds": 0.0,
        },
        "search": {
            "default_limit": 10,
            "default_threshold": 0.7,
            "overfetch_factor": 3,
            "max_links_per_note": 5,
            "related_score": 0.5,
            "snippet_chars": 200,
            "full_content_max_chars": 5000,
            "default_project": None,
        },
        "documents": {
            "base_url": "${oc.env:RECALL_DOCUMENTS_URL,'http://localhost:3000/rpc'}",
            "timeout_seconds": 30.0,
        },
        "catch_up": {
            "batch_size": 10,
            "delay_between_batches": 0.5,
            "state_file": "data/.recall_build.json",
        },
    }

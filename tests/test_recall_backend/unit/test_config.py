"""Unit tests for configuration loading.

Tests cover:
- Hydra config loading from YAML
- Environment variable interpolation
- Config validation
- Override mechanism
"""

import pytest
from pydantic import ValidationError

from recall_backend.config import (
    CatchUpConfig,
    QueueConfig,
    RecallConfig,
    SearchConfig,
    create_default_config,
    load_config,
)


class TestConfigCreation:
    """Tests for default config creation."""

    def test_create_default_config(self) -> None:
        """Default config should have sensible values."""
        config_dict = create_default_config()

        assert config_dict["chunking"]["chunk_size_chars"] == 2000
        assert config_dict["chunking"]["overlap_percent"] == 0.15
        assert config_dict["embedding"]["model"] == "nomic-embed-text"
        assert config_dict["search"]["default_threshold"] == 0.7

    def test_default_config_has_all_sections(self) -> None:
        config_dict = create_default_config()

        required = ["chunking", "embedding", "store", "queue", "search", "documents", "catch_up"]
        assert all(section in config_dict for section in required)

    def test_model_defaults_match_dictionary(self) -> None:
        config = RecallConfig()
        config_dict = create_default_config()

        assert config.search.default_limit == config_dict["search"]["default_limit"]
        assert config.queue.max_attempts == config_dict["queue"]["max_attempts"]
        assert config.catch_up.batch_size == config_dict["catch_up"]["batch_size"]


class TestConfigModels:
    """Tests for config model validation."""

    def test_queue_max_attempts_range(self) -> None:
        QueueConfig(max_attempts=5)

        with pytest.raises(ValidationError):
            QueueConfig(max_attempts=0)

    def test_catch_up_batch_size_range(self) -> None:
        CatchUpConfig(batch_size=50)

        with pytest.raises(ValidationError):
            CatchUpConfig(batch_size=0)
        with pytest.raises(ValidationError):
            CatchUpConfig(batch_size=2000)

    def test_search_threshold_range(self) -> None:
        with pytest.raises(ValidationError):
            SearchConfig(default_threshold=1.5)


class TestConfigLoading:
    """Tests for loading config from Hydra YAML."""

    def test_load_default_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("OLLAMA_URL", raising=False)
        monkeypatch.delenv("RECALL_DB_PATH", raising=False)

        config = load_config("default")

        assert isinstance(config, RecallConfig)
        assert config.chunking.chunk_size_chars == 2000
        assert config.embedding.model == "nomic-embed-text"
        assert config.embedding.base_url == "http://localhost:11434"
        assert config.store.db_path == "data/recall.sqlite"
        assert config.search.default_project is None

    def test_load_config_with_overrides(self) -> None:
        config = load_config(
            "default",
            overrides=["chunking.chunk_size_chars=1000", "embedding.version=v2"],
        )

        assert config.chunking.chunk_size_chars == 1000
        assert config.embedding.version == "v2"

    def test_load_config_env_var_interpolation(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OLLAMA_URL", "http://gpu-box:11434")
        monkeypatch.setenv("RECALL_DB_PATH", "/var/lib/recall/recall.sqlite")

        config = load_config("default")

        assert config.embedding.base_url == "http://gpu-box:11434"
        assert config.store.db_path == "/var/lib/recall/recall.sqlite"

    def test_load_config_missing_dir_raises(self) -> None:
        with pytest.raises(FileNotFoundError):
            load_config("nonexistent", config_path="/nonexistent/path")

    def test_load_config_validates_structure(self) -> None:
        with pytest.raises(ValidationError):
            load_config("default", overrides=["search.default_limit=0"])

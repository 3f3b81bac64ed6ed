"""Tests for store configuration."""

import pytest

from recall.config import (
    CONFIG_FILENAME,
    RecallConfig,
    create_default_config,
    get_store_path,
    load_config,
    load_or_create_config,
    save_config,
)
from recall.errors import ConfigurationError


class TestStorePath:

    def test_override_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RECALL_STORE_PATH", "/elsewhere")
        assert get_store_path(tmp_path) == tmp_path

    def test_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RECALL_STORE_PATH", str(tmp_path))
        assert get_store_path() == tmp_path

    def test_default(self, monkeypatch):
        monkeypatch.delenv("RECALL_STORE_PATH", raising=False)
        assert get_store_path().name == ".recall"


class TestLoadSave:

    def test_round_trip(self, tmp_path):
        config = create_default_config(tmp_path)
        config.embedding.name = "ollama"
        config.embedding.params["model"] = "nomic-embed-text"
        config.indexing.chunk_size = 800
        config.search.agentic = True
        save_config(config)

        loaded = load_config(tmp_path)
        assert loaded.embedding.name == "ollama"
        assert loaded.embedding.params == {"model": "nomic-embed-text"}
        assert loaded.indexing.chunk_size == 800
        assert loaded.search.agentic is True
        assert loaded.documents.params["root"] == config.documents.params["root"]

    def test_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_load_or_create_writes_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path)
        assert (tmp_path / CONFIG_FILENAME).exists()
        assert config.indexing.chunk_size == 1000
        assert config.search.max_context_length == 4000

    def test_unknown_keys_ignored(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(
            "[indexing]\nchunk_size = 500\nshiny_new_option = true\n"
        )
        assert load_config(tmp_path).indexing.chunk_size == 500

    def test_malformed_toml(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[indexing\nchunk_size = ")
        with pytest.raises(ConfigurationError, match="Malformed"):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")
        with pytest.raises(ConfigurationError, match="newer"):
            load_config(tmp_path)

    @pytest.mark.parametrize("table", [
        "[indexing]\nchunk_size = 0\n",
        "[indexing]\nchunk_size = 100\nchunk_overlap = 100\n",
        "[indexing]\nupdate_mode = \"sometimes\"\n",
        "[indexing]\nchunk_size = \"big\"\n",
        "[indexing]\nwatch_interval = 0\n",
    ])
    def test_invalid_values(self, tmp_path, table):
        (tmp_path / CONFIG_FILENAME).write_text(table)
        with pytest.raises(ConfigurationError):
            load_config(tmp_path)

    def test_paths(self, tmp_path):
        config = RecallConfig(path=tmp_path)
        assert config.config_path == tmp_path / "recall.toml"
        assert config.snapshot_path == tmp_path / "embeddings.json"
        assert not config.exists()

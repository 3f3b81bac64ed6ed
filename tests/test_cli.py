"""Tests for the recall command line."""

import json

import pytest
from typer.testing import CliRunner

from recall.cli import app
from recall.config import load_config

runner = CliRunner()


@pytest.fixture
def notes(tmp_path):
    path = tmp_path / "notes"
    path.mkdir()
    return path


@pytest.fixture
def store(tmp_path):
    return tmp_path / "store"


class TestInit:

    def test_writes_config(self, notes, store):
        result = runner.invoke(app, ["--store", str(store), "init", "--notes", str(notes),
                                     "--embedding", "ollama", "--chat", "anthropic"])
        assert result.exit_code == 0, result.output
        config = load_config(store)
        assert config.documents.params["root"] == str(notes.resolve())
        assert config.embedding.name == "ollama"
        assert config.chat.name == "anthropic"

    def test_refuses_to_overwrite(self, notes, store):
        args = ["--store", str(store), "init", "--notes", str(notes)]
        assert runner.invoke(app, args).exit_code == 0
        result = runner.invoke(app, args)
        assert result.exit_code == 1
        assert runner.invoke(app, args + ["--force"]).exit_code == 0


class TestCommands:

    @pytest.fixture(autouse=True)
    def initialized(self, notes, store):
        runner.invoke(app, ["--store", str(store), "init", "--notes", str(notes)])

    def test_index_empty_folder(self, store):
        result = runner.invoke(app, ["--store", str(store), "index"])
        assert result.exit_code == 0, result.output
        assert "0 indexed" in result.output

    def test_status_json(self, store, notes):
        result = runner.invoke(app, ["--store", str(store), "--json", "status"])
        assert result.exit_code == 0, result.output
        info = json.loads(result.output)
        assert info["notes"] == str(notes.resolve())
        assert info["indexed_documents"] == 0
        assert info["embedding"] == "local"

    def test_remove_unknown(self, store):
        result = runner.invoke(app, ["--store", str(store), "remove", "never.md"])
        assert result.exit_code == 0, result.output


class TestSummarize:

    @pytest.fixture(autouse=True)
    def scripted(self, engine, chat, monkeypatch):
        monkeypatch.setattr("recall.cli._engine", lambda: engine)
        return chat

    def test_summarize_file(self, tmp_path, chat):
        note = tmp_path / "meeting.md"
        note.write_text("We agreed to move the launch to March.")
        chat.replies = ["Launch moved to March."]

        result = runner.invoke(app, ["summarize", str(note), "--no-stream"])

        assert result.exit_code == 0, result.output
        assert "Launch moved to March." in result.stdout
        assert chat.requests[-1][-1].content.endswith("We agreed to move the launch to March.")

    def test_summarize_stdin_streams(self, chat):
        chat.replies = ["Tomatoes go by the fence."]
        result = runner.invoke(app, ["summarize"], input="Plant tomatoes along the south fence.")
        assert result.exit_code == 0, result.output
        assert "Tomatoes go by the fence." in result.stdout

    def test_prepend_writes_summary_section(self, tmp_path, chat):
        note = tmp_path / "meeting.md"
        note.write_text("Long meeting notes.")
        chat.replies = ["Short."]

        result = runner.invoke(app, ["summarize", str(note), "--prepend", "--no-stream"])

        assert result.exit_code == 0, result.output
        assert note.read_text() == "# Summary\n\nShort.\n\n----\n\nLong meeting notes."

    def test_empty_input(self, chat):
        result = runner.invoke(app, ["summarize"], input="   ")
        assert result.exit_code == 1
        assert chat.requests == []

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["summarize", str(tmp_path / "nope.md")])
        assert result.exit_code == 1

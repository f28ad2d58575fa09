"""Tests for the command line interface."""

import json

import pytest
from typer.testing import CliRunner

from searchsync.cli import app
from searchsync.config import get_settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(monkeypatch: pytest.MonkeyPatch):
    """Point the CLI at a test index and reset cached settings."""
    monkeypatch.setenv("ELASTICSEARCH_INDEX", "cli-idx")
    monkeypatch.setenv("LOG_JSON", "false")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestCli:
    """Tests for CLI commands against the in-memory backend."""

    def test_ping(self, fake_es) -> None:
        """Test that ping reports the cluster."""
        result = runner.invoke(app, ["ping"])

        assert result.exit_code == 0
        assert "Connected" in result.output
        assert "fake" in result.output
        assert fake_es.closed

    def test_ensure_index(self, fake_es, tmp_path) -> None:
        """Test creating the default index with settings and mappings files."""
        settings_file = tmp_path / "settings.json"
        settings_file.write_text(json.dumps({"number_of_shards": 1}))
        mappings_file = tmp_path / "mappings.json"
        mappings_file.write_text(json.dumps({"Cat": {"properties": {"name": {"type": "keyword"}}}}))

        result = runner.invoke(
            app,
            ["ensure-index", "--settings", str(settings_file), "--mappings", str(mappings_file)],
        )

        assert result.exit_code == 0
        assert "Created index" in result.output
        assert fake_es.data["cli-idx"]["settings"] == {"number_of_shards": 1}

        result = runner.invoke(app, ["ensure-index"])
        assert "already exists" in result.output

    def test_delete_index(self, fake_es) -> None:
        """Test deleting indices, with and without --missing-ok."""
        fake_es.data["cats"] = {"settings": {}, "mappings": {}, "docs": {}}

        result = runner.invoke(app, ["delete-index", "cats", "dogs", "--missing-ok"])

        assert result.exit_code == 0
        assert "cats" in result.output
        assert "cats" not in fake_es.data

        result = runner.invoke(app, ["delete-index", "dogs"])
        assert result.exit_code == 1

    def test_get_doc(self, fake_es) -> None:
        """Test printing a stored document."""
        fake_es.data["cli-idx"] = {
            "settings": {},
            "mappings": {},
            "docs": {"Cat:1": {"name": "Bingo", "doc_type": "Cat"}},
        }

        result = runner.invoke(app, ["get-doc", "Cat", "1"])

        assert result.exit_code == 0
        assert "Bingo" in result.output

        result = runner.invoke(app, ["get-doc", "Dog", "1"])
        assert result.exit_code == 1

    def test_search(self, fake_es) -> None:
        """Test running a search request."""
        fake_es.data["cli-idx"] = {
            "settings": {},
            "mappings": {},
            "docs": {"1": {"name": "Bingo"}, "2": {"name": "Bongo"}},
        }

        result = runner.invoke(app, ["search", '{"query": {"term": {"name": "Bingo"}}}'])

        assert result.exit_code == 0
        assert "1 hits" in result.output

    @pytest.mark.parametrize("query", ["{not json", "[1, 2]"])
    def test_search_invalid_query(self, fake_es, query: str) -> None:
        """Test that malformed queries exit with an error."""
        result = runner.invoke(app, ["search", query])
        assert result.exit_code == 1

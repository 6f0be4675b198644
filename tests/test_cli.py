"""Tests for CLI commands."""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from blobsearch.cli import _build_query, _load_config, _parse_value, _setup_logging, app
from blobsearch.query import and_, equals, exists

runner = CliRunner()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


def _invoke(data_dir: Path, *args: str):
    return runner.invoke(app, [*args, "--data-dir", str(data_dir)])


class TestSetupLogging:
    """Tests for _setup_logging helper."""

    def test_setup_logging_verbose(self) -> None:
        with patch("blobsearch.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=True)
            assert mock_config.call_args[1]["level"] == logging.DEBUG

    def test_setup_logging_normal(self) -> None:
        with patch("blobsearch.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=False)
            assert mock_config.call_args[1]["level"] == logging.INFO


class TestHelpers:
    """Tests for argument parsing helpers."""

    @pytest.mark.parametrize(
        "raw, expected",
        [("en", "en"), ("2020", 2020), ("1.5", 1.5), ("true", True), ('"42"', "42"), ("[1]", "[1]")],
    )
    def test_parse_value(self, raw: str, expected) -> None:
        assert _parse_value(raw) == expected
        assert type(_parse_value(raw)) is type(expected)

    def test_build_query_combines_with_and(self) -> None:
        query = _build_query(["lang=en"], ["draft"], None)
        assert query == and_(equals("lang", "en"), exists("draft"))

    def test_build_query_single_clause(self) -> None:
        assert _build_query(None, None, '{"exists": {"field": "x"}}') == exists("x")

    def test_build_query_empty(self) -> None:
        assert _build_query(None, None, None) is None

    def test_load_config_data_dir_override(self, tmp_path: Path) -> None:
        config = _load_config(tmp_path)
        assert config.data_dir == tmp_path
        assert config.db_path == tmp_path / "blobsearch.db"


class TestStoreCommand:
    """Tests for the store command."""

    def test_store_file(self, tmp_path: Path, data_dir: Path) -> None:
        target = tmp_path / "hello.txt"
        target.write_bytes(b"hello")

        result = _invoke(data_dir, "store", str(target))

        assert result.exit_code == 0
        assert hashlib.sha256(b"hello").hexdigest() in result.stdout

    def test_store_no_files(self, tmp_path: Path, data_dir: Path) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()

        result = _invoke(data_dir, "store", str(empty))

        assert result.exit_code == 0
        assert "No files found" in result.stdout


class TestIndexAndFetchCommands:
    """Tests for put / index / get / get-id."""

    def test_put_then_get_id(self, tmp_path: Path, data_dir: Path) -> None:
        target = tmp_path / "hello.txt"
        target.write_bytes(b"hello")

        put = _invoke(
            data_dir, "put", str(target), "docs", "--id", "d1", "--content-type", "text/plain",
            "--field", "lang=en",
        )
        assert put.exit_code == 0, put.stdout
        assert "docs/d1" in put.stdout

        fetched = _invoke(data_dir, "get-id", "docs", "d1")
        assert fetched.exit_code == 0
        assert fetched.stdout_bytes == b"hello"

    def test_get_id_to_file(self, tmp_path: Path, data_dir: Path) -> None:
        target = tmp_path / "in.bin"
        target.write_bytes(b"\x00\x01")
        _invoke(data_dir, "put", str(target), "docs", "--id", "bin")
        output = tmp_path / "out.bin"

        result = _invoke(data_dir, "get-id", "docs", "bin", "--output", str(output))

        assert result.exit_code == 0
        assert output.read_bytes() == b"\x00\x01"

    def test_get_id_missing(self, data_dir: Path) -> None:
        result = _invoke(data_dir, "get-id", "docs", "nope")
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_index_then_get_by_hash(self, tmp_path: Path, data_dir: Path) -> None:
        target = tmp_path / "a.txt"
        target.write_bytes(b"abc")
        content_hash = hashlib.sha256(b"abc").hexdigest()
        _invoke(data_dir, "store", str(target))

        indexed = _invoke(data_dir, "index", "docs", content_hash, "--id", "a", "-f", "n=1")
        fetched = _invoke(data_dir, "get", "docs", content_hash)

        assert indexed.exit_code == 0
        assert fetched.exit_code == 0
        assert fetched.stdout_bytes == b"abc"

    def test_get_unknown_hash(self, data_dir: Path) -> None:
        result = _invoke(data_dir, "get", "docs", "0" * 64)
        assert result.exit_code == 1
        assert "NotFound" in result.stdout

    def test_bad_field(self, data_dir: Path) -> None:
        result = _invoke(data_dir, "index", "docs", "h", "--field", "novalue")
        assert result.exit_code != 0

    def test_create_index(self, data_dir: Path) -> None:
        result = _invoke(data_dir, "create-index", "docs")
        assert result.exit_code == 0
        assert "ready" in result.stdout


class TestSearchCommand:
    """Tests for the search command."""

    @pytest.fixture
    def seeded(self, tmp_path: Path, data_dir: Path) -> Path:
        for name, lang in (("doc-en", "en"), ("doc-fr", "fr")):
            target = tmp_path / f"{name}.txt"
            target.write_text(name)
            _invoke(data_dir, "put", str(target), "docs", "--id", name, "--field", f"lang={lang}")
        return data_dir

    def test_search_eq(self, seeded: Path) -> None:
        result = _invoke(seeded, "search", "docs", "--eq", "lang=fr")
        assert result.exit_code == 0
        assert "doc-fr" in result.stdout
        assert "doc-en" not in result.stdout
        assert "1 total" in result.stdout

    def test_search_json_query(self, seeded: Path) -> None:
        query = json.dumps({"in": {"field": "lang", "values": ["en", "fr"]}})
        result = _invoke(seeded, "search", "docs", "--query", query)
        assert "2 total" in result.stdout

    def test_search_fetch(self, seeded: Path) -> None:
        result = _invoke(seeded, "search", "docs", "--fetch", "--sort", "_id", "--desc")
        assert result.exit_code == 0
        assert "Bytes" in result.stdout
        assert result.stdout.index("doc-fr") < result.stdout.index("doc-en")

    def test_search_no_matches(self, seeded: Path) -> None:
        result = _invoke(seeded, "search", "docs", "--eq", "lang=de")
        assert "No matches found" in result.stdout

    def test_search_reserved_field(self, seeded: Path) -> None:
        result = _invoke(seeded, "search", "docs", "--eq", "_hash=x")
        assert result.exit_code == 1
        assert "QueryError" in result.stdout

    def test_search_invalid_json(self, seeded: Path) -> None:
        result = _invoke(seeded, "search", "docs", "--query", "{not json")
        assert result.exit_code != 0


class TestWebCommand:
    """Tests for the web command."""

    def test_web_passes_config(self, data_dir: Path) -> None:
        fake_uvicorn = MagicMock()
        with patch.dict("sys.modules", {"uvicorn": fake_uvicorn}):
            result = _invoke(data_dir, "web", "--port", "9000")

        assert result.exit_code == 0
        fake_uvicorn.run.assert_called_once()
        web_app = fake_uvicorn.run.call_args[0][0]
        assert web_app.state.config.data_dir == data_dir
        assert fake_uvicorn.run.call_args[1]["port"] == 9000

"""Test CLI commands."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from dagstore.cli import EXIT_CODES, app
from dagstore.graph.errors import ErrorClass

if TYPE_CHECKING:
    from pathlib import Path

    from click.testing import Result

runner = CliRunner()

FORM = {
    "id": "form",
    "nodes": [
        {"ref": "q1", "id": "q1", "data": {"question": "Role?"}},
        {"ref": "q2", "id": "q2"},
    ],
    "edges": [{"id": "e1", "from_node_ref": "q1", "to_node_ref": "q2"}],
}


@pytest.fixture
def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    """A fresh database file; cwd is moved so no stray dagstore.yaml is read."""
    monkeypatch.chdir(tmp_path)
    return str(tmp_path / "cli.db")


def invoke(db: str, *args: str, stdin: str | None = None) -> Result:
    return runner.invoke(app, ["--db", db, *args], input=stdin)


def test_exit_codes_per_error_class() -> None:
    assert EXIT_CODES[ErrorClass.SERVER] == 1
    assert EXIT_CODES[ErrorClass.CLIENT] == 2
    assert EXIT_CODES[ErrorClass.NOT_FOUND] == 4


# --- Schema ---


def test_schema_create_and_drop(db: str) -> None:
    result = invoke(db, "schema", "create")
    assert result.exit_code == 0
    assert "schema created" in result.stdout

    result = invoke(db, "schema", "drop", "--yes")
    assert result.exit_code == 0
    assert "schema dropped" in result.stdout


def test_schema_drop_asks_for_confirmation(db: str) -> None:
    invoke(db, "node", "add", "g1", "--id", "a")

    result = invoke(db, "schema", "drop", stdin="n\n")

    assert result.exit_code == 1
    assert invoke(db, "node", "get", "a").exit_code == 0


# --- Graphs ---


def test_graph_put_from_file(db: str, tmp_path: Path) -> None:
    source = tmp_path / "form.json"
    source.write_text(json.dumps(FORM))

    result = invoke(db, "graph", "put", str(source))

    assert result.exit_code == 0
    assert '"from_node_id": "q1"' in result.stdout
    assert "from_node_ref" not in result.stdout


def test_graph_put_from_stdin_with_id_override(db: str) -> None:
    result = invoke(db, "graph", "put", "-", "--id", "other", stdin=json.dumps(FORM))
    assert result.exit_code == 0

    result = invoke(db, "graph", "get", "other")
    assert result.exit_code == 0
    assert '"id": "other"' in result.stdout
    assert '"question": "Role?"' in result.stdout


def test_graph_put_rejects_cycle(db: str) -> None:
    cyclic = {
        "id": "g1",
        "nodes": [{"ref": "a"}, {"ref": "b"}],
        "edges": [
            {"from_node_ref": "a", "to_node_ref": "b"},
            {"from_node_ref": "b", "to_node_ref": "a"},
        ],
    }
    result = invoke(db, "graph", "put", "-", stdin=json.dumps(cyclic))

    assert result.exit_code == EXIT_CODES[ErrorClass.CLIENT]
    assert "cycle detected" in result.output
    assert invoke(db, "graph", "get", "g1").exit_code == 4


def test_graph_put_rejects_unknown_ref(db: str) -> None:
    bad = {
        "id": "g1",
        "nodes": [{"ref": "a"}],
        "edges": [{"from_node_ref": "a", "to_node_ref": "x"}],
    }
    result = invoke(db, "graph", "put", "-", stdin=json.dumps(bad))
    assert result.exit_code == 2
    assert "unknown to_node_ref 'x'" in result.output


def test_graph_put_rejects_malformed_input(db: str) -> None:
    assert invoke(db, "graph", "put", "-", stdin="{not json").exit_code == 2
    assert invoke(db, "graph", "put", "-", stdin='{"id": ""}').exit_code == 2
    assert invoke(db, "graph", "put", "-", stdin='{"id": "g", "extra": 1}').exit_code == 2


def test_graph_get_missing(db: str) -> None:
    result = invoke(db, "graph", "get", "nope")
    assert result.exit_code == 4
    assert "graph 'nope' not found" in result.output


def test_graph_delete(db: str) -> None:
    invoke(db, "graph", "put", "-", stdin=json.dumps(FORM))

    result = invoke(db, "graph", "delete", "form")

    assert result.exit_code == 0
    assert invoke(db, "graph", "get", "form").exit_code == 4
    assert invoke(db, "graph", "delete", "form").exit_code == 0


# --- Nodes ---


def test_node_lifecycle(db: str) -> None:
    result = invoke(db, "node", "add", "g1", "--id", "a", "--data", '{"k": 1}')
    assert result.exit_code == 0
    assert result.stdout.strip() == "a"

    result = invoke(db, "node", "get", "a")
    assert result.exit_code == 0
    assert '"graph_id": "g1"' in result.stdout
    assert '"k": 1' in result.stdout

    result = invoke(db, "node", "update", "a", "-d", '{"k": 2}')
    assert result.exit_code == 0
    assert '"k": 2' in invoke(db, "node", "get", "a").stdout

    result = invoke(db, "node", "delete", "a")
    assert result.exit_code == 0
    assert "node a deleted" in result.stdout
    assert invoke(db, "node", "get", "a").exit_code == 4


def test_node_add_generates_id(db: str) -> None:
    result = invoke(db, "node", "add", "g1")
    assert result.exit_code == 0
    assert result.stdout.strip()


def test_node_add_duplicate_is_client_error(db: str) -> None:
    invoke(db, "node", "add", "g1", "--id", "a")
    result = invoke(db, "node", "add", "g1", "--id", "a")
    assert result.exit_code == 2
    assert "integrity conflict" in result.output


def test_node_update_missing_is_not_found(db: str) -> None:
    result = invoke(db, "node", "update", "ghost", "--data", "{}")
    assert result.exit_code == 4


def test_node_data_must_be_json(db: str) -> None:
    result = invoke(db, "node", "add", "g1", "--data", "{oops")
    assert result.exit_code == 2


def test_node_list(db: str) -> None:
    for node_id in ("b", "a"):
        invoke(db, "node", "add", "g1", "--id", node_id)

    table = invoke(db, "node", "list", "g1")
    assert table.exit_code == 0
    assert "Nodes of g1" in table.stdout

    as_json = invoke(db, "node", "list", "g1", "--json")
    assert as_json.exit_code == 0
    assert as_json.stdout.index('"id": "b"') < as_json.stdout.index('"id": "a"')


# --- Edges ---


def _nodes(db: str, *node_ids: str) -> None:
    for node_id in node_ids:
        assert invoke(db, "node", "add", "g1", "--id", node_id).exit_code == 0


def test_edge_lifecycle(db: str) -> None:
    _nodes(db, "a", "b", "c")

    result = invoke(db, "edge", "add", "g1", "--from", "a", "--to", "b", "--id", "ab")
    assert result.exit_code == 0
    assert result.stdout.strip() == "ab"

    result = invoke(db, "edge", "update", "ab", "--from", "a", "--to", "c", "-d", '{"w": 1}')
    assert result.exit_code == 0

    result = invoke(db, "edge", "get", "ab")
    assert result.exit_code == 0
    assert '"to_node_id": "c"' in result.stdout

    result = invoke(db, "edge", "list", "g1")
    assert result.exit_code == 0
    assert "Edges of g1" in result.stdout

    result = invoke(db, "edge", "delete", "ab")
    assert result.exit_code == 0
    assert invoke(db, "edge", "get", "ab").exit_code == 4


def test_edge_add_rejects_cycle(db: str) -> None:
    _nodes(db, "a", "b")
    invoke(db, "edge", "add", "g1", "--from", "a", "--to", "b")

    result = invoke(db, "edge", "add", "g1", "--from", "b", "--to", "a")

    assert result.exit_code == 2
    assert "cycle detected" in result.output
    assert invoke(db, "edge", "list", "g1", "--json").stdout.count('"from_node_id"') == 1


def test_edge_update_missing_is_not_found(db: str) -> None:
    result = invoke(db, "edge", "update", "ghost", "--from", "a", "--to", "a")
    assert result.exit_code == 4


def test_edge_add_dangling_endpoint(db: str) -> None:
    _nodes(db, "a")
    result = invoke(db, "edge", "add", "g1", "--from", "a", "--to", "ghost")
    assert result.exit_code == 2


# --- Configuration and logging ---


def test_missing_config_file(db: str, tmp_path: Path) -> None:
    result = runner.invoke(app, ["--config", str(tmp_path / "absent.yaml"), "graph", "get", "g"])
    assert result.exit_code == 2
    assert "File not found" in result.output


def test_memory_backend_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DAGSTORE_BACKEND", "memory")

    result = runner.invoke(app, ["node", "add", "g1", "--id", "a"])

    assert result.exit_code == EXIT_CODES[ErrorClass.CLIENT]
    assert "does not persist between commands" in result.output
    assert not (tmp_path / "dagstore.db").exists()


def test_db_flag_overrides_memory_backend(db: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DAGSTORE_BACKEND", "memory")

    assert invoke(db, "node", "add", "g1", "--id", "a").exit_code == 0
    result = invoke(db, "node", "get", "a")

    assert result.exit_code == 0
    assert json.loads(result.stdout)["graph_id"] == "g1"


def test_log_flag_writes_jsonl(db: str, tmp_path: Path) -> None:
    from dagstore.observability import close_file_logging

    log_dir = tmp_path / "logs"
    result = runner.invoke(app, ["--log", str(log_dir), "--db", db, "schema", "create"])
    close_file_logging()

    assert result.exit_code == 0
    assert (log_dir / "debug.jsonl").exists()

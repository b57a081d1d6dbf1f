"""dagstore CLI - typer application entry point."""

from __future__ import annotations

import atexit
import json
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dagstore.config import ConfigError, DagStoreConfig, load_config
from dagstore.graph import (
    CancelToken,
    DagError,
    DagService,
    Edge,
    ErrorClass,
    Graph,
    Node,
    classify,
)
from dagstore.observability import close_file_logging, configure_logging, get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="dagstore",
    help="dagstore: persisted directed acyclic graphs with cycle-checked mutations.",
    no_args_is_help=True,
)
schema_app = typer.Typer(help="Create or drop the storage tables.", no_args_is_help=True)
graph_app = typer.Typer(help="Whole-graph operations.", no_args_is_help=True)
node_app = typer.Typer(help="Single-node operations.", no_args_is_help=True)
edge_app = typer.Typer(help="Single-edge operations.", no_args_is_help=True)
app.add_typer(schema_app, name="schema")
app.add_typer(graph_app, name="graph")
app.add_typer(node_app, name="node")
app.add_typer(edge_app, name="edge")

console = Console()
err_console = Console(stderr=True, soft_wrap=True)
log = get_logger(__name__)

# Exit code per error class; typer itself uses 2 for usage errors.
EXIT_CODES: dict[ErrorClass, int] = {
    ErrorClass.SERVER: 1,
    ErrorClass.CLIENT: 2,
    ErrorClass.NOT_FOUND: 4,
}

# Global state set by the callback, used by commands
_config_path: Path | None = None
_db_path: str | None = None


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="YAML config file (default: ./dagstore.yaml if present).",
            envvar="DAGSTORE_CONFIG",
        ),
    ] = None,
    db: Annotated[
        str | None,
        typer.Option("--db", help="SQLite database path (overrides config)."),
    ] = None,
    log_dir: Annotated[
        Path | None,
        typer.Option("--log", help="Enable JSONL file logging into this directory."),
    ] = None,
) -> None:
    """dagstore: persisted directed acyclic graphs."""
    global _config_path, _db_path
    _config_path = config
    _db_path = db

    configure_logging(verbosity=verbose, log_to_file=log_dir is not None, log_dir=log_dir)
    if log_dir is not None:
        atexit.register(close_file_logging)


def _load_config() -> DagStoreConfig:
    try:
        cfg = load_config(_config_path)
    except ConfigError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_CODES[ErrorClass.CLIENT]) from e
    if _db_path is not None:
        cfg.backend = "sqlite"
        cfg.db_path = _db_path
    if cfg.backend == "memory":
        # Each command is its own process, so nothing would outlive it.
        err_console.print(
            "[red]Error:[/red] the memory backend does not persist between commands; "
            "use the sqlite backend (or --db) with the CLI"
        )
        raise typer.Exit(EXIT_CODES[ErrorClass.CLIENT])
    return cfg


@contextmanager
def _session() -> Iterator[tuple[DagService, CancelToken | None]]:
    """Open a service for one command and map core errors to exit codes."""
    cfg = _load_config()
    try:
        service = DagService.from_config(cfg)
    except DagError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_CODES[classify(e)]) from e

    token = CancelToken.with_timeout(cfg.operation_timeout) if cfg.operation_timeout else None
    try:
        yield service, token
    except DagError as e:
        log.debug("command_failed", error=str(e), error_class=classify(e).value)
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_CODES[classify(e)]) from e
    finally:
        service.close()


def _parse_json(value: str | None) -> Any:
    if value is None:
        return {}
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"not valid JSON: {e.msg}") from e


def _print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload))


def _not_found(what: str, ident: str) -> typer.Exit:
    err_console.print(f"[yellow]{what} '{escape(ident)}' not found[/yellow]")
    return typer.Exit(EXIT_CODES[ErrorClass.NOT_FOUND])


DataOption = Annotated[
    str | None,
    typer.Option("--data", "-d", help="JSON payload (default: {})."),
]


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


@schema_app.command("create")
def schema_create() -> None:
    """Create the node and edge tables if they do not exist."""
    with _session() as (service, _):
        service.create_schema()
    console.print("[green]✓[/green] schema created")


@schema_app.command("drop")
def schema_drop(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
) -> None:
    """Drop the node and edge tables and everything in them."""
    if not yes and not typer.confirm("Drop all stored graphs?"):
        raise typer.Exit(1)
    with _session() as (service, _):
        service.drop_schema()
    console.print("[green]✓[/green] schema dropped")


# ---------------------------------------------------------------------------
# Graphs
# ---------------------------------------------------------------------------


@graph_app.command("put")
def graph_put(
    source: Annotated[Path, typer.Argument(help="Graph JSON file, or '-' for stdin.")],
    graph_id: Annotated[
        str | None, typer.Option("--id", help="Graph id (overrides the file's id).")
    ] = None,
) -> None:
    """Replace a whole graph from JSON; nodes and edges may use refs."""
    try:
        text = sys.stdin.read() if str(source) == "-" else source.read_text(encoding="utf-8")
        payload = json.loads(text)
        if graph_id is not None:
            payload["id"] = graph_id
        graph = Graph.model_validate(payload)
    except (OSError, json.JSONDecodeError, TypeError, ValidationError) as e:
        err_console.print(f"[red]Error:[/red] invalid graph input: {escape(str(e))}")
        raise typer.Exit(EXIT_CODES[ErrorClass.CLIENT]) from e

    with _session() as (service, token):
        result = service.replace_graph(graph, cancel=token)
    _print_json(result.to_payload())


@graph_app.command("get")
def graph_get(graph_id: Annotated[str, typer.Argument(help="Graph id.")]) -> None:
    """Print a whole graph as JSON."""
    with _session() as (service, token):
        graph = service.get_graph(graph_id, cancel=token)
    if graph is None:
        raise _not_found("graph", graph_id)
    _print_json(graph.to_payload())


@graph_app.command("delete")
def graph_delete(graph_id: Annotated[str, typer.Argument(help="Graph id.")]) -> None:
    """Delete every node and edge of a graph."""
    with _session() as (service, token):
        service.delete_graph(graph_id, cancel=token)
    console.print(f"[green]✓[/green] graph {graph_id} deleted")


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


@node_app.command("add")
def node_add(
    graph_id: Annotated[str, typer.Argument(help="Owning graph id.")],
    data: DataOption = None,
    node_id: Annotated[
        str | None, typer.Option("--id", help="Node id (generated if absent).")
    ] = None,
) -> None:
    """Add a node and print its id."""
    node = Node(id=node_id, data=_parse_json(data))
    with _session() as (service, token):
        new_id = service.add_node(graph_id, node, cancel=token)
    console.print(new_id)


@node_app.command("get")
def node_get(node_id: Annotated[str, typer.Argument(help="Node id.")]) -> None:
    """Print a node as JSON."""
    with _session() as (service, token):
        record = service.get_node(node_id, cancel=token)
    if record is None:
        raise _not_found("node", node_id)
    _print_json(record.model_dump(mode="json"))


@node_app.command("update")
def node_update(
    node_id: Annotated[str, typer.Argument(help="Node id.")],
    data: DataOption = None,
) -> None:
    """Replace a node's payload."""
    with _session() as (service, token):
        service.update_node(node_id, _parse_json(data), cancel=token)
    console.print(f"[green]✓[/green] node {node_id} updated")


@node_app.command("delete")
def node_delete(node_id: Annotated[str, typer.Argument(help="Node id.")]) -> None:
    """Delete a node and every edge touching it."""
    with _session() as (service, token):
        service.delete_node(node_id, cancel=token)
    console.print(f"[green]✓[/green] node {node_id} deleted")


@node_app.command("list")
def node_list(
    graph_id: Annotated[str, typer.Argument(help="Graph id.")],
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON instead of a table.")] = False,
) -> None:
    """List a graph's nodes in insertion order."""
    with _session() as (service, token):
        records = service.list_nodes(graph_id, cancel=token)
    if as_json:
        _print_json([r.model_dump(mode="json") for r in records])
        return

    table = Table(title=f"Nodes of {graph_id}")
    table.add_column("id", style="cyan")
    table.add_column("created_at", style="dim")
    table.add_column("data")
    for r in records:
        table.add_row(r.id, r.created_at.isoformat(), json.dumps(r.data))
    console.print(table)


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------


FromOption = Annotated[str, typer.Option("--from", help="Source node id.")]
ToOption = Annotated[str, typer.Option("--to", help="Target node id.")]


@edge_app.command("add")
def edge_add(
    graph_id: Annotated[str, typer.Argument(help="Owning graph id.")],
    from_node_id: FromOption,
    to_node_id: ToOption,
    data: DataOption = None,
    edge_id: Annotated[
        str | None, typer.Option("--id", help="Edge id (generated if absent).")
    ] = None,
) -> None:
    """Add an edge (rejected if it would create a cycle) and print its id."""
    edge = Edge(
        id=edge_id, from_node_id=from_node_id, to_node_id=to_node_id, data=_parse_json(data)
    )
    with _session() as (service, token):
        new_id = service.add_edge(graph_id, edge, cancel=token)
    console.print(new_id)


@edge_app.command("get")
def edge_get(edge_id: Annotated[str, typer.Argument(help="Edge id.")]) -> None:
    """Print an edge as JSON."""
    with _session() as (service, token):
        record = service.get_edge(edge_id, cancel=token)
    if record is None:
        raise _not_found("edge", edge_id)
    _print_json(record.model_dump(mode="json"))


@edge_app.command("update")
def edge_update(
    edge_id: Annotated[str, typer.Argument(help="Edge id.")],
    from_node_id: FromOption,
    to_node_id: ToOption,
    data: DataOption = None,
) -> None:
    """Rewrite an edge's endpoints and payload (rejected on cycle)."""
    with _session() as (service, token):
        service.update_edge(edge_id, from_node_id, to_node_id, _parse_json(data), cancel=token)
    console.print(f"[green]✓[/green] edge {edge_id} updated")


@edge_app.command("delete")
def edge_delete(edge_id: Annotated[str, typer.Argument(help="Edge id.")]) -> None:
    """Delete an edge."""
    with _session() as (service, token):
        service.delete_edge(edge_id, cancel=token)
    console.print(f"[green]✓[/green] edge {edge_id} deleted")


@edge_app.command("list")
def edge_list(
    graph_id: Annotated[str, typer.Argument(help="Graph id.")],
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON instead of a table.")] = False,
) -> None:
    """List a graph's edges in insertion order."""
    with _session() as (service, token):
        records = service.list_edges(graph_id, cancel=token)
    if as_json:
        _print_json([r.model_dump(mode="json") for r in records])
        return

    table = Table(title=f"Edges of {graph_id}")
    table.add_column("id", style="cyan")
    table.add_column("from")
    table.add_column("to")
    table.add_column("data")
    for r in records:
        table.add_row(r.id, r.from_node_id, r.to_node_id, json.dumps(r.data))
    console.print(table)


if __name__ == "__main__":
    app()

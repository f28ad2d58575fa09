"""
Typer CLI for inspecting and maintaining the search index.

Every command reads its connection details from the environment
(see ``searchsync.config.Settings``) unless overridden on the command line.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from searchsync.clients.elasticsearch import SearchClient
from searchsync.config import get_settings
from searchsync.errors import SearchSyncError
from searchsync.utils import bind_context, clear_context, configure_logging, get_logger

app = typer.Typer(
    name="searchsync",
    help="Inspect and maintain the searchsync Elasticsearch index",
    add_completion=False,
)
console = Console()
logger = get_logger(__name__)

HostsOption = Annotated[
    list[str] | None,
    typer.Option("--host", "-H", help="Elasticsearch host URL (repeatable)"),
]
IndexOption = Annotated[
    str | None,
    typer.Option("--index", "-i", help="Index name (defaults to ELASTICSEARCH_INDEX)"),
]


def _run(hosts: list[str] | None, action: Callable[[SearchClient], Awaitable[Any]]) -> Any:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)

    async def runner() -> Any:
        client = SearchClient(settings)
        try:
            await client.connect(hosts or settings.elasticsearch_hosts)
            return await action(client)
        finally:
            await client.close()

    try:
        return asyncio.run(runner())
    except (SearchSyncError, ConnectionError) as e:
        console.print(f"\n[bold red]✗ {e}[/bold red]")
        raise typer.Exit(1) from e
    finally:
        clear_context()


def _index(index: str | None) -> str:
    name = index or get_settings().elasticsearch_index
    bind_context(index=name)
    return name


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


@app.command()
def ping(hosts: HostsOption = None) -> None:
    """Check that the cluster answers."""

    async def action(client: SearchClient) -> dict[str, Any]:
        response = await client.client.info()
        return dict(getattr(response, "body", response))

    info = _run(hosts, action)
    version = info.get("version", {}).get("number", "unknown")
    console.print(
        Panel.fit(
            f"[bold green]✓ Connected[/bold green] to cluster "
            f"[bold]{info.get('cluster_name', 'unknown')}[/bold] (version {version})",
            border_style="green",
        )
    )


@app.command("ensure-index")
def ensure_index(
    index: IndexOption = None,
    settings_file: Annotated[
        Path | None,
        typer.Option(
            "--settings", "-s", help="JSON file with index settings", exists=True, dir_okay=False
        ),
    ] = None,
    mappings_file: Annotated[
        Path | None,
        typer.Option(
            "--mappings", "-m", help="JSON file with per-type mappings", exists=True, dir_okay=False
        ),
    ] = None,
    hosts: HostsOption = None,
) -> None:
    """Create the index unless it already exists."""
    name = _index(index)
    index_settings = json.loads(settings_file.read_text()) if settings_file else {}
    mappings = json.loads(mappings_file.read_text()) if mappings_file else {}

    async def action(client: SearchClient) -> bool:
        return await client.ensure_index(name, index_settings, mappings)

    if _run(hosts, action):
        console.print(f"[bold green]✓ Created index[/bold green] {name}")
    else:
        console.print(f"[yellow]Index {name} already exists[/yellow]")


@app.command("delete-index")
def delete_index(
    indices: Annotated[list[str], typer.Argument(help="Indices to delete")],
    missing_ok: Annotated[
        bool,
        typer.Option("--missing-ok", help="Skip indices that do not exist"),
    ] = False,
    hosts: HostsOption = None,
) -> None:
    """Delete one or more indices."""

    async def action(client: SearchClient) -> list[str]:
        if missing_ok:
            return await client.ensure_delete_index(indices)
        await client.delete_index(indices)
        return list(indices)

    deleted = _run(hosts, action)

    table = Table(title="Deleted indices")
    table.add_column("Index", style="cyan")
    for name in deleted:
        table.add_row(name)
    console.print(table)


@app.command("get-doc")
def get_doc(
    doc_type: Annotated[str, typer.Argument(help="Logical document type (model name)")],
    doc_id: Annotated[str, typer.Argument(help="Document id")],
    index: IndexOption = None,
    hosts: HostsOption = None,
) -> None:
    """Print a stored document."""
    name = _index(index)

    async def action(client: SearchClient) -> dict[str, Any]:
        return await client.get_doc(doc_id, doc_type, name)

    _print_json(_run(hosts, action))


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search request body as JSON")],
    index: IndexOption = None,
    hosts: HostsOption = None,
) -> None:
    """Run a search request and print the hits."""
    name = _index(index)

    try:
        body = json.loads(query)
    except json.JSONDecodeError as e:
        console.print(f"[bold red]✗ Invalid JSON query:[/bold red] {e}")
        raise typer.Exit(1) from e

    if not isinstance(body, dict):
        console.print("[bold red]✗ Query must be a JSON object[/bold red]")
        raise typer.Exit(1)

    async def action(client: SearchClient) -> dict[str, Any]:
        return await client.search({"index": name, **body})

    response = _run(hosts, action)
    hits = response.get("hits", {}).get("hits", [])
    logger.debug("search finished", hits=len(hits))

    table = Table(title=f"{len(hits)} hits in {name}")
    table.add_column("Id", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Source")
    for hit in hits:
        table.add_row(
            str(hit.get("_id")),
            str(hit.get("_score")),
            json.dumps(hit.get("_source", {}), default=str),
        )
    console.print(table)


if __name__ == "__main__":
    app()

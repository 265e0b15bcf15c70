#!/usr/bin/env python3
"""
provgraph CLI - replay provenance streams and query lineage
"""

import json
from dataclasses import asdict

import click
from rich.console import Console
from rich.table import Table

from provgraph.core.models import Graph
from provgraph.logging_setup import configure_logging

console = Console()


def open_lineage_store(args):
    from provgraph.lineage import SQLLineageStore

    store = SQLLineageStore()
    if not store.initialize(args):
        raise click.ClickException("could not open lineage store (see log)")
    return store


def print_graph(graph, title):
    if not graph.vertices:
        console.print("[yellow]No vertices found[/yellow]")
        return

    table = Table(title=title)
    table.add_column("Key", style="cyan", width=12)
    table.add_column("Type", style="magenta", width=10)
    table.add_column("Annotations", style="white", overflow="fold")
    for key, vertex in graph.vertices.items():
        ann = ", ".join(f"{k}={v}" for k, v in sorted(vertex.annotations.items()))
        table.add_row(key[:12], vertex.type, ann)
    console.print(table)

    if graph.edges:
        keys = {id(v): k for k, v in graph.vertices.items()}
        edges = Table(title="Edges")
        edges.add_column("Type", style="magenta", width=16)
        edges.add_column("Source", style="cyan", width=12)
        edges.add_column("Destination", style="cyan", width=12)
        edges.add_column("Operation", style="green")
        for edge in graph.edges.values():
            edges.add_row(
                edge.type,
                keys.get(id(edge.source), "?")[:12],
                keys.get(id(edge.destination), "?")[:12],
                edge.get("operation", ""),
            )
        console.print(edges)


@click.group()
@click.option("--log-level", default=None, help="Override PROVGRAPH_LOG_LEVEL")
def cli(log_level):
    """provgraph - provenance graph storage"""
    configure_logging(log_level)


@cli.command()
def version():
    """Print the package version"""
    from provgraph import __version__

    click.echo(__version__)


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--backend", type=click.Choice(["sql", "cdm"]), default="sql", show_default=True)
@click.option("--args", "arguments", default="", help="Backend arguments passed to initialize()")
def ingest(path, backend, arguments):
    """Replay a JSON-lines provenance stream into a backend"""
    from provgraph.ingest import ingest_file

    if backend == "sql":
        storage = open_lineage_store(arguments)
    else:
        from provgraph.cdm import CDMStorage

        storage = CDMStorage()
        if not storage.initialize(arguments):
            raise click.ClickException("could not start causality export (see log)")

    try:
        stats = ingest_file(path, storage)
    finally:
        storage.shutdown()

    table = Table(title=f"Ingested {path}")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green", justify="right")
    for name, value in asdict(stats).items():
        table.add_row(name, str(value))
    console.print(table)


@cli.command()
@click.argument("predicate")
@click.option("--args", "arguments", default="", help="Lineage store arguments")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
def vertices(predicate, arguments, as_json):
    """Find stored vertices matching KEY:VALUE"""
    store = open_lineage_store(arguments)
    try:
        graph = store.get_vertices(predicate)
    finally:
        store.shutdown()

    if graph is None:
        raise click.ClickException(f"query failed for {predicate!r}")
    if as_json:
        click.echo(json.dumps(graph.to_dict(), indent=2))
    else:
        print_graph(graph, f"Vertices matching '{predicate}'")


@cli.command()
@click.argument("vertex_id", type=int)
@click.argument("depth", type=int)
@click.argument("direction")
@click.option("--terminate", default=None, help="KEY:VALUE predicate; matching vertices are not expanded")
@click.option("--args", "arguments", default="", help="Lineage store arguments")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
def lineage(vertex_id, depth, direction, terminate, arguments, as_json):
    """Walk ancestors or descendants of a stored vertex"""
    store = open_lineage_store(arguments)
    try:
        graph: Graph | None = store.get_lineage(vertex_id, depth, direction, terminate)
    finally:
        store.shutdown()

    if graph is None:
        raise click.ClickException("lineage query failed (see log)")
    if as_json:
        click.echo(json.dumps(graph.to_dict(), indent=2))
    else:
        print_graph(graph, f"{direction} of vertex {vertex_id} (depth {depth})")


if __name__ == "__main__":
    cli()

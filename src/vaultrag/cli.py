"""CLI interface for vaultrag: thin wrapper over VaultRAGService."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable

import click

from vaultrag.api.service import VaultRAGService
from vaultrag.core.config import Settings
from vaultrag.core.exceptions import VaultRAGError
from vaultrag.core.models import IndexProgress, IndexResult
from vaultrag.utils.logging import setup_logging


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
@click.option(
    "--vault",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Vault directory (default: $VAULTRAG_VAULT_DIR or the current directory).",
)
@click.option(
    "--index-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Where index data is kept (default: ~/.vaultrag).",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, vault: Path | None, index_dir: Path | None) -> None:
    """vaultrag: hybrid search and link graph over a note vault."""
    setup_logging(verbose=verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    overrides: dict[str, object] = {}
    if vault is not None:
        overrides["vault_dir"] = vault
    if index_dir is not None:
        overrides["index_dir"] = index_dir
    ctx.obj["overrides"] = overrides


def _get_service(ctx: click.Context) -> VaultRAGService:
    settings = Settings(**ctx.obj.get("overrides", {}))  # type: ignore[arg-type]
    return VaultRAGService(settings=settings)


def _run(ctx: click.Context, action: Callable[[VaultRAGService], Awaitable[Any]]) -> Any:
    """Run *action* against a fresh service, closing it afterwards."""

    async def runner() -> Any:
        service = _get_service(ctx)
        try:
            await service.open()
            return await action(service)
        finally:
            await service.close()

    try:
        return asyncio.run(runner())
    except VaultRAGError as exc:
        raise click.ClickException(f"{exc} [{exc.code.value}]") from exc


def _echo_progress(progress: IndexProgress) -> None:
    total = f"/{progress.total}" if progress.total is not None else ""
    click.echo(f"  {progress.mode}: {progress.processed}{total} files", err=True)


@main.command()
@click.option("--full", is_flag=True, help="Re-classify everything and sweep deleted files.")
@click.pass_context
def index(ctx: click.Context, full: bool) -> None:
    """Index the vault (incremental unless --full)."""
    click.echo("Indexing...")

    async def action(service: VaultRAGService) -> IndexResult:
        if full:
            return await service.full_index(_echo_progress)
        return await service.incremental_index(_echo_progress)

    result = _run(ctx, action)
    click.echo(
        f"Done ({result.mode}). {result.scanned} scanned: {result.added} added, "
        f"{result.modified} modified, {result.deleted} deleted, {result.unchanged} unchanged, "
        f"{result.touched} touched, {result.failed} failed."
    )
    click.echo(
        f"Embedded {result.embedded_chunks} chunks; {result.pending_embeddings} pending."
    )
    if result.cancelled:
        click.echo("Pass was cancelled before completion.")


@main.command()
@click.argument("query")
@click.option("--top", "-n", default=10, help="Number of results to return.")
@click.option(
    "--mode",
    type=click.Choice(["vault", "inFile", "inFolder"]),
    default="vault",
    help="Search scope.",
)
@click.option("--scope", default=None, help="Folder for --mode inFolder.")
@click.option("--current", "current_path", default=None, help="Current file, for inFile and boosts.")
@click.option("--boost", is_flag=True, help="Boost by open count, recency, and link proximity.")
@click.pass_context
def search(
    ctx: click.Context,
    query: str,
    top: int,
    mode: str,
    scope: str | None,
    current_path: str | None,
    boost: bool,
) -> None:
    """Search the indexed vault."""
    response = _run(
        ctx,
        lambda service: service.search(
            query, top_k=top, mode=mode, scope=scope, current_path=current_path, boost=boost
        ),
    )

    if response.degraded:
        click.echo(f"(degraded: {response.degraded_reason})", err=True)
    if not response.results:
        click.echo("No results found.")
        return

    for i, r in enumerate(response.results, 1):
        click.echo(f"\n{'─' * 60}")
        click.echo(f"  [{i}] {r.path}")
        if r.title:
            click.echo(f"      {r.title}")
        click.echo(f"      Score: {r.score:.4f}  Sources: {', '.join(r.matched_sources)}")
        if r.snippet:
            click.echo(f"      {r.snippet}")


@main.command()
@click.argument("document")
@click.option("--limit", "-n", default=20, help="Number of related documents.")
@click.pass_context
def related(ctx: click.Context, document: str, limit: int) -> None:
    """List documents related to DOCUMENT (path or id)."""
    response = _run(ctx, lambda service: service.related(document, limit=limit))
    if response.degraded:
        click.echo("(semantic neighbours unavailable; links only)", err=True)
    if not response.results:
        click.echo("No related documents.")
        return
    for i, r in enumerate(response.results, 1):
        kind = "linked" if r.physical else "similar"
        click.echo(f"  [{i}] {r.path}  ({kind}, score {r.score:.4f})")


@main.command()
@click.argument("source")
@click.argument("target")
@click.option("--iterations", default=None, type=int, help="Number of alternative paths to look for.")
@click.option("--max-hops", default=None, type=int, help="Longest path allowed.")
@click.pass_context
def path(ctx: click.Context, source: str, target: str, iterations: int | None, max_hops: int | None) -> None:
    """Show connecting paths from SOURCE to TARGET."""
    result = _run(
        ctx,
        lambda service: service.find_paths(source, target, iterations=iterations, max_hops=max_hops),
    )
    if not result.paths:
        click.echo("No path found.")
    for i, p in enumerate(result.paths, 1):
        parts = [p.labels[0]]
        for label, edge in zip(p.labels[1:], p.edge_types):
            parts.append(f"-[{edge}]-> {label}")
        click.echo(f"  [{i}] ({p.hops} hops) " + " ".join(parts))
    if result.partial:
        click.echo("(time limit reached; results may be incomplete)", err=True)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show index statistics."""
    stats = _run(ctx, lambda service: service.status())

    if stats.built_at is None:
        click.echo("No index found. Run `vaultrag index` first.")
        return

    click.echo(f"Documents:  {stats.indexed_docs}")
    click.echo(f"Chunks:     {stats.total_chunks}")
    click.echo(f"Embeddings: {stats.total_embeddings} ({stats.pending_embeddings} pending)")
    click.echo(f"Nodes:      {stats.total_nodes}")
    click.echo(f"Edges:      {stats.total_edges}")
    click.echo(f"Built at:   {stats.built_at.isoformat()}")


@main.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def clear(ctx: click.Context, yes: bool) -> None:
    """Clear the entire index."""
    if not yes and not click.confirm("This will delete the entire index. Continue?"):
        return
    result = _run(ctx, lambda service: service.clear())
    click.echo(
        f"Index cleared: {result.documents_deleted} documents, {result.chunks_deleted} chunks, "
        f"{result.embeddings_deleted} embeddings, {result.nodes_deleted} nodes, "
        f"{result.edges_deleted} edges."
    )


@main.command()
@click.pass_context
def verify(ctx: click.Context) -> None:
    """Check index and database health."""
    report = _run(ctx, lambda service: service.verify_health())
    for check in report.checks:
        mark = "ok" if check.ok else "FAIL"
        click.echo(f"  [{mark:>4}] {check.name}: {check.detail}")
    if not report.ok:
        raise click.exceptions.Exit(1)


@main.command("cleanup-orphans")
@click.pass_context
def cleanup_orphans(ctx: click.Context) -> None:
    """Delete embeddings whose document is gone."""
    result = _run(ctx, lambda service: service.cleanup_orphans())
    click.echo(f"Found {result.found} orphaned embeddings, deleted {result.deleted}.")


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind host.")
@click.option("--port", "-p", default=8000, help="Bind port.")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Start the REST API server."""
    from vaultrag.api.server import main as run_server

    click.echo(f"Starting vaultrag API on {host}:{port}")
    run_server(host=host, port=port, settings=Settings(**ctx.obj.get("overrides", {})))

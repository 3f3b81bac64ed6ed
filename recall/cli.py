"""
CLI for recall.

Usage:
    recall init --notes ~/notes
    recall index
    recall search "roof repair quotes"
    recall ask "what did the roofer say about flashing?"
    recall summarize meeting.md
    recall watch
"""

import asyncio
import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .config import create_default_config, get_store_path, load_or_create_config, save_config
from .engine import RetrievalEngine
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .scheduler import ReindexScheduler
from .watch import NoteWatcher

# Set RECALL_VERBOSE=1 to enable debug mode via environment
if os.environ.get("RECALL_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"recall {version('recall-rag')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


app = typer.Typer(
    name="recall",
    help="Ask questions about your notes.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="RECALL_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Ask questions about your notes."""


def _engine() -> RetrievalEngine:
    store_path = get_store_path(_store_override)
    configure_ops_log(store_path)
    return RetrievalEngine(load_or_create_config(store_path))


def _run(coro):
    """Run a coroutine, turning Ctrl+C into a clean exit."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        typer.echo("Cancelled.", err=True)
        raise typer.Exit(130)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def init(
    notes: Annotated[Path, typer.Option(
        "--notes", "-n",
        help="Directory containing the notes to index",
    )] = Path("."),
    embedding: Annotated[str, typer.Option(
        "--embedding",
        help="Embedding provider: local, openai or ollama",
    )] = "local",
    chat: Annotated[str, typer.Option(
        "--chat",
        help="Chat provider: local, openai, anthropic or ollama",
    )] = "local",
    force: Annotated[bool, typer.Option(
        "--force", help="Overwrite an existing config",
    )] = False,
):
    """Create the store config."""
    store_path = get_store_path(_store_override)
    config = create_default_config(store_path)
    if config.exists() and not force:
        typer.echo(f"Config already exists: {config.config_path} (use --force to overwrite)", err=True)
        raise typer.Exit(1)
    config.documents.params["root"] = str(notes.expanduser().resolve())
    config.embedding.name = embedding
    config.chat.name = chat
    save_config(config)
    typer.echo(f"Wrote {config.config_path}")


@app.command()
def index(
    batch_size: Annotated[Optional[int], typer.Option(
        "--batch-size", "-b", help="Documents embedded concurrently",
    )] = None,
    missing: Annotated[bool, typer.Option(
        "--missing", help="Only index documents not yet in the index",
    )] = False,
):
    """Index all notes."""
    def progress(done: int, total: int):
        if not _json_output:
            typer.echo(f"\rIndexed {done}/{total}", nl=False, err=True)

    async def run():
        async with _engine() as engine:
            return await engine.index_all(batch_size=batch_size, only_missing=missing, progress=progress)

    report = _run(run())
    if _json_output:
        typer.echo(json.dumps(asdict(report), indent=2))
        return
    typer.echo("", err=True)
    typer.echo(
        f"{report.indexed} indexed, {report.skipped} skipped, "
        f"{report.removed} removed, {len(report.failed)} failed"
    )
    for path, error in report.failed.items():
        typer.echo(f"  {path}: {error}", err=True)


@app.command()
def add(
    path: Annotated[str, typer.Argument(help="Document path, relative to the notes directory")],
):
    """Index (or reindex) one note."""
    async def run():
        async with _engine() as engine:
            return await engine.reindex_document(path)

    document = _run(run())
    if document is None:
        typer.echo(f"{path}: not indexed (missing or too short)")
    else:
        typer.echo(f"{path}: {len(document.chunks)} chunks")


@app.command()
def remove(
    path: Annotated[str, typer.Argument(help="Document path to drop from the index")],
):
    """Remove one note from the index."""
    async def run():
        async with _engine() as engine:
            await engine.remove_document(path)
            await engine.save()

    _run(run())
    typer.echo(f"Removed {path}")


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search query text")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum results")] = 10,
    as_json: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
):
    """Show the best-matching chunks."""
    async def run():
        async with _engine() as engine:
            return await engine.search(query, limit=limit)

    results = _run(run())
    if _json_output or as_json:
        typer.echo(json.dumps([asdict(r) for r in results], indent=2))
        return
    if not results:
        typer.echo("No matches.")
        return
    for r in results:
        typer.echo(
            f"{r.score:.3f}  {r.path}#{r.chunk_index}  "
            f"(semantic {r.semantic_score:.3f}, title {r.title_score:.2f}, "
            f"recency {r.recency_score:.3f}, match {r.match_score:.2f})"
        )


@app.command()
def context(
    query: Annotated[str, typer.Argument(help="Question to build context for")],
    agentic: Annotated[bool, typer.Option(
        "--agentic", "-a", help="Refine with relevance checks and follow-up searches",
    )] = False,
    budget: Annotated[Optional[int], typer.Option(
        "--budget", help="Maximum context length in characters",
    )] = None,
):
    """Print the context that would be sent to the model."""
    async def run():
        async with _engine() as engine:
            if agentic:
                return await engine.build_agentic_context(query, budget=budget)
            return await engine.build_context(query, budget=budget)

    typer.echo(_run(run()))


@app.command()
def ask(
    query: Annotated[str, typer.Argument(help="Question about your notes")],
    agentic: Annotated[Optional[bool], typer.Option(
        "--agentic/--no-agentic", help="Override the configured agentic setting",
    )] = None,
    stream: Annotated[bool, typer.Option(
        "--stream/--no-stream", help="Print the answer as it is generated",
    )] = True,
):
    """Answer a question from your notes."""
    def on_token(token: str):
        typer.echo(token, nl=False)

    async def run():
        async with _engine() as engine:
            return await engine.ask(query, on_token=on_token if stream else None, agentic=agentic)

    answer = _run(run())
    if stream:
        typer.echo("")
    else:
        typer.echo(answer)


SUMMARY_HEADING = "# Summary"


@app.command()
def summarize(
    source: Annotated[str, typer.Argument(
        help="File to summarize, or - to read standard input",
    )] = "-",
    stream: Annotated[bool, typer.Option(
        "--stream/--no-stream", help="Print the summary as it is generated",
    )] = True,
    prepend: Annotated[bool, typer.Option(
        "--prepend", help="Write the summary to the top of the file under a Summary heading",
    )] = False,
):
    """Summarize a note or piped text."""
    if source == "-":
        if prepend:
            typer.echo("--prepend needs a file, not standard input", err=True)
            raise typer.Exit(1)
        text = typer.get_text_stream("stdin").read()
    else:
        try:
            text = Path(source).expanduser().read_text(encoding="utf-8")
        except OSError as e:
            typer.echo(f"Cannot read {source}: {e}", err=True)
            raise typer.Exit(1)
    if not text.strip():
        typer.echo("No text to summarize", err=True)
        raise typer.Exit(1)

    def on_token(token: str):
        typer.echo(token, nl=False)

    async def run():
        engine = _engine()
        try:
            return await engine.summarize(text, on_token=on_token if stream else None)
        finally:
            await engine.close()

    summary = _run(run())
    if stream:
        typer.echo("")
    else:
        typer.echo(summary)
    if prepend:
        Path(source).expanduser().write_text(
            f"{SUMMARY_HEADING}\n\n{summary}\n\n----\n\n{text}", encoding="utf-8"
        )
        typer.echo(f"Added summary to {source}", err=True)


@app.command()
def watch(
    interval: Annotated[Optional[float], typer.Option(
        "--interval", help="Seconds between scans of the notes directory",
    )] = None,
    delay: Annotated[Optional[float], typer.Option(
        "--delay", help="Seconds of quiet before changed notes are reindexed",
    )] = None,
):
    """Keep the index up to date while notes change (Ctrl+C to stop)."""
    async def run():
        async with _engine() as engine:
            scheduler = ReindexScheduler(engine, delay=delay)
            watcher = NoteWatcher(engine.document_store, scheduler, interval=interval)
            typer.echo(f"Watching {engine.config.documents.params.get('root', '')}", err=True)
            await watcher.run(asyncio.Event())

    _run(run())


@app.command()
def status():
    """Show store location, providers and index size."""
    async def run():
        async with _engine() as engine:
            return engine, await engine.initialize()

    engine, init = _run(run())
    config = engine.config
    info = {
        "store": str(config.path),
        "notes": config.documents.params.get("root", ""),
        "embedding": config.embedding.name,
        "chat": config.chat.name,
        "dimensions": engine.store.dimensions,
        "indexed_documents": len(engine.get_indexed_paths()),
        "indexed_chunks": sum(len(engine.store.get_chunks(p)) for p in engine.get_indexed_paths()),
        "stale_documents": len(init.stale_documents),
    }
    if _json_output:
        typer.echo(json.dumps(info, indent=2))
        return
    for key, value in info.items():
        typer.echo(f"{key}: {value}")
    if init.stale_documents:
        typer.echo("Run 'recall index --missing' to re-embed stale documents.")


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="recall CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()

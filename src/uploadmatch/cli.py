"""Command line interface for uploadmatch."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from uploadmatch.config import AppConfig
from uploadmatch.embedding.encoder import EmbeddingConfig, SentenceTransformerProvider
from uploadmatch.engine import RelevanceEngine
from uploadmatch.index.storage import SQLiteStore
from uploadmatch.models import QueryContext
from uploadmatch.web.app import app as web_app


console = Console()
app = typer.Typer(help="uploadmatch - suggest local files for web upload fields")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _open_engine(config: AppConfig, db_path: Path) -> tuple[RelevanceEngine, SQLiteStore]:
    embedder = None
    if config.mode == "dense":
        embedder = SentenceTransformerProvider(EmbeddingConfig(model_name=config.model_name))
    store = SQLiteStore(db_path)
    engine = RelevanceEngine(store, store, store, config=config, embedder=embedder)
    return engine, store


def _config(db: Optional[Path], mode: str = "tfidf", model: Optional[str] = None) -> AppConfig:
    defaults = AppConfig()
    try:
        return AppConfig(
            db_path=db if db is not None else defaults.db_path,
            mode=mode,  # type: ignore[arg-type]
            model_name=model or defaults.model_name,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.command()
def index(
    root: Path = typer.Argument(..., help="Folder to index.", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    mode: str = typer.Option("tfidf", help="Ranking mode: tfidf or dense"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    incremental: bool = typer.Option(False, "--incremental", "-i", help="Only re-read changed files"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index every file under a folder."""
    _setup_logging(verbose)
    if not root.exists():
        raise typer.BadParameter(f"Folder not found: {root}")

    config = _config(db, mode, model)
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    engine, store = _open_engine(config, resolved_db)
    console.print(f"Indexing [bold]{root}[/bold] into [bold]{resolved_db}[/bold]...")
    try:
        report = engine.index_folder(root, incremental=incremental)
        total = engine.count()
    finally:
        store.close()

    console.print(
        f"Indexed: {report.indexed}, skipped: {report.skipped}, failed: {report.failed}, "
        f"deleted: {report.deleted}, total: {total}"
    )


@app.command()
def match(
    query: str = typer.Argument(..., help="What the upload field asks for"),
    accept: str = typer.Option(None, "--accept", help="Accept filter, e.g. 'image/*,.pdf'"),
    page_url: str = typer.Option(None, "--page-url", help="URL of the page with the upload field"),
    host: str = typer.Option(None, "--host", help="Website host (overrides --page-url)"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    mode: str = typer.Option("tfidf", help="Ranking mode: tfidf or dense"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    top_k: int = typer.Option(5, help="Number of results to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Rank indexed files for an upload request."""
    _setup_logging(verbose)
    config = _config(db, mode, model)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    engine, store = _open_engine(config, resolved_db)
    try:
        context = QueryContext.from_request(query, accept=accept, page_url=page_url, host=host)
        results = engine.rank(context, top_k)
    finally:
        store.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("File")
    table.add_column("Type")
    table.add_column("Uploads")

    for result in results:
        table.add_row(
            f"{result.final_score:.4f}", result.document_id, result.type, str(result.history_count)
        )

    console.print(table)


@app.command()
def track(
    document_id: str = typer.Argument(..., help="Indexed file id (relative path)"),
    host: str = typer.Option(..., "--host", help="Website host the file was uploaded to"),
    page_url: str = typer.Option("", "--page-url", help="Page URL"),
    context: str = typer.Option("", "--context", help="Upload field context text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Record that a file was uploaded on a website."""
    config = _config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    engine, store = _open_engine(config, resolved_db)
    try:
        engine.record_upload(document_id, host, page_url=page_url, context=context)
    finally:
        store.close()
    console.print(f"Recorded upload of {document_id} on {host}.")


@app.command()
def count(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show how many files are indexed."""
    config = _config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("0")
        return

    engine, store = _open_engine(config, resolved_db)
    try:
        console.print(str(engine.count()))
    finally:
        store.close()


@app.command()
def clear(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    history: bool = typer.Option(False, "--history", help="Also forget upload history"),
) -> None:
    """Remove indexed files and the vocabulary."""
    config = _config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to clear.[/yellow]")
        return

    engine, store = _open_engine(config, resolved_db)
    try:
        if history:
            store.clear_scanned_data()
        engine.clear()
    finally:
        store.close()
    console.print("Cleared indexed data.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - defensive
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    console.print(f"Starting HTTP API on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )

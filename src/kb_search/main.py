from pathlib import Path
from typing import Annotated, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from typer import Argument, Exit, Option, Typer

from .config import Settings
from .errors import KnowledgeSearchError
from .logging_setup import setup_logging
from .models import Document, load_documents
from .search import HybridSearchEngine, MetadataFilterParseError, supported_filter_syntax

app = Typer(help="Hybrid lexical + vector search over a document collection.")
console = Console()


def build_engine(settings: Settings, *, with_vectors: bool = True) -> HybridSearchEngine:
    return HybridSearchEngine.from_settings(settings, with_vectors=with_vectors)


def _settings(
    *,
    vector_backend: str | None,
    db_path: str | None,
    namespace: str | None,
    log_level: str | None,
) -> Settings:
    overrides: dict[str, object] = {}
    if vector_backend:
        overrides["vector_backend"] = vector_backend
    if db_path:
        overrides["vector_db_path"] = db_path
    if namespace:
        overrides["namespace"] = namespace
    if log_level:
        overrides["log_level"] = log_level
    settings = Settings.from_env(**overrides)
    setup_logging(settings.log_level)
    return settings


def _load(path: Optional[Path]) -> list[Document]:
    if path is None:
        return []
    return load_documents(path)


def _fail(message: str) -> Exit:
    console.print(f"[bold red]Error:[/] {message}")
    return Exit(code=1)


DocumentsOption = Annotated[
    Optional[Path],
    Option("--documents", "-d", help="JSON file with the documents to index."),
]
BackendOption = Annotated[
    Optional[str],
    Option("--vector-backend", help="Vector service backend: pinecone or duckdb."),
]
DbPathOption = Annotated[
    Optional[str],
    Option("--db-path", help="DuckDB vector store path (duckdb backend only)."),
]
NamespaceOption = Annotated[
    Optional[str], Option("--namespace", help="Vector index namespace.")
]
LexicalOnlyOption = Annotated[
    bool, Option("--lexical-only", help="Skip the vector index entirely.")
]
LogLevelOption = Annotated[Optional[str], Option("--log-level", help="Logging level.")]


@app.command()
def index(
    documents: Annotated[
        Path, Option("--documents", "-d", help="JSON file with the documents to index.")
    ],
    clear: Annotated[
        bool, Option("--clear", help="Delete existing vectors in the namespace first.")
    ] = False,
    vector_backend: BackendOption = None,
    db_path: DbPathOption = None,
    namespace: NamespaceOption = None,
    lexical_only: LexicalOnlyOption = False,
    log_level: LogLevelOption = None,
) -> None:
    """Build the lexical index and upsert document vectors."""
    try:
        settings = _settings(
            vector_backend=vector_backend,
            db_path=db_path,
            namespace=namespace,
            log_level=log_level,
        )
        docs = load_documents(documents)
        engine = build_engine(settings, with_vectors=not lexical_only)
    except KnowledgeSearchError as exc:
        raise _fail(str(exc)) from exc

    try:
        if clear and engine.vector_client is not None:
            engine.vector_client.clear()
        report = engine.index(docs)
    except KnowledgeSearchError as exc:
        raise _fail(str(exc)) from exc
    finally:
        engine.close()

    lines = [
        f"Documents: {report.documents}",
        f"Lexical terms: {report.lexical.unique_terms}",
    ]
    if report.vector is not None:
        lines.append(
            f"Vectors indexed: {report.vector.indexed} "
            f"(skipped {report.vector.skipped}, {report.vector.mode} embeddings)"
        )
    if report.vector_error:
        lines.append(f"[yellow]Vector indexing failed: {report.vector_error}[/]")
    console.print(
        Panel(
            "\n".join(lines),
            title="Index Complete",
            title_align="left",
            border_style="bold green" if not report.vector_error else "bold yellow",
        )
    )


@app.command()
def search(
    query: Annotated[str, Argument(help="Search text.")],
    limit: Annotated[int, Option("--limit", "-n", help="Maximum results.")] = 10,
    filters: Annotated[
        Optional[str],
        Option("--filters", "-f", help="Metadata filters, e.g. 'category=widgets'."),
    ] = None,
    documents: DocumentsOption = None,
    vector_backend: BackendOption = None,
    db_path: DbPathOption = None,
    namespace: NamespaceOption = None,
    lexical_only: LexicalOnlyOption = False,
    log_level: LogLevelOption = None,
) -> None:
    """Run a hybrid query and print the fused ranking."""
    try:
        settings = _settings(
            vector_backend=vector_backend,
            db_path=db_path,
            namespace=namespace,
            log_level=log_level,
        )
        docs = _load(documents)
        engine = build_engine(settings, with_vectors=not lexical_only)
    except KnowledgeSearchError as exc:
        raise _fail(str(exc)) from exc

    try:
        if docs:
            engine.load(docs)
        results = engine.search(query, limit=limit, filters=filters)
    except MetadataFilterParseError as exc:
        console.print(f"[dim]{supported_filter_syntax()}[/]")
        raise _fail(str(exc)) from exc
    except KnowledgeSearchError as exc:
        raise _fail(str(exc)) from exc
    finally:
        engine.close()

    if not results:
        console.print(f"[yellow]No results for[/] {query!r}")
        return

    table = Table(title=f"Results for {query!r}", title_justify="left")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Score", justify="right")
    table.add_column("Matched via")
    for position, result in enumerate(results, start=1):
        table.add_row(
            str(position),
            result.title,
            result.category or "-",
            f"{result.fused_score:.5f}",
            result.match_type,
        )
    console.print(table)


@app.command()
def stats(
    documents: DocumentsOption = None,
    vector_backend: BackendOption = None,
    db_path: DbPathOption = None,
    namespace: NamespaceOption = None,
    lexical_only: LexicalOnlyOption = False,
    log_level: LogLevelOption = None,
) -> None:
    """Print index, cache and fusion statistics."""
    try:
        settings = _settings(
            vector_backend=vector_backend,
            db_path=db_path,
            namespace=namespace,
            log_level=log_level,
        )
        docs = _load(documents)
        engine = build_engine(settings, with_vectors=not lexical_only)
    except KnowledgeSearchError as exc:
        raise _fail(str(exc)) from exc

    try:
        if docs:
            engine.load(docs)
        engine_stats = engine.stats()
    except KnowledgeSearchError as exc:
        raise _fail(str(exc)) from exc
    finally:
        engine.close()

    table = Table(title="Index statistics", title_justify="left", show_header=False)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Lexical documents", str(engine_stats.lexical.documents))
    table.add_row("Lexical terms", str(engine_stats.lexical.unique_terms))
    table.add_row(
        "Fusion weights",
        f"lexical {engine_stats.weights.lexical:g} / vector {engine_stats.weights.vector:g}",
    )
    table.add_row("RRF k", str(engine_stats.rrf_k))
    vector_stats = engine_stats.vector
    if vector_stats is None:
        table.add_row("Vector index", "unavailable")
    else:
        table.add_row("Vectors", str(vector_stats.vector_count))
        table.add_row("Embedding mode", f"{vector_stats.mode} ({vector_stats.dimension}-d)")
        if vector_stats.cache is not None:
            cache = vector_stats.cache
            table.add_row("Query cache", f"{cache.size}/{cache.capacity}")
            table.add_row("Cache hit rate", f"{cache.hit_rate:.1%}")
    console.print(table)

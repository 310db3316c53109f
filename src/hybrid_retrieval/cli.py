import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Annotated, Optional

from pydantic import TypeAdapter, ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from typer import Argument, BadParameter, Exit, Option, Typer

from .config import EmbeddingSettings, StoreSettings
from .embeddings import EmbeddingClient
from .engine import RetrievalEngine
from .errors import RetrievalError
from .log import configure_logging
from .models import Chunk, SearchResult
from .providers import available_providers, recommended_models
from .search.semantic import SemanticSearchEngine

app = Typer(help="Hybrid vector/keyword retrieval over chunked documents.")
console = Console()

_CHUNK_LIST = TypeAdapter(list[Chunk])


class SearchMode(str, Enum):
    keyword = "keyword"
    semantic = "semantic"
    hybrid = "hybrid"


StoreOption = Annotated[
    Optional[str],
    Option("--store", "-s", help="Snapshot file (default: $HYBRID_RETRIEVAL_STORE_PATH)."),
]
ProviderOption = Annotated[
    Optional[str],
    Option("--provider", "-p", help="Embedding provider: openai, openrouter or gemini."),
]
ModelOption = Annotated[
    Optional[str],
    Option("--model", "-m", help="Embedding model name."),
]


def embedding_settings(provider: str | None, model: str | None) -> EmbeddingSettings:
    if provider is not None and provider not in available_providers():
        raise BadParameter(f"Unknown provider {provider!r}", param_hint="--provider")
    return EmbeddingSettings.from_env(provider=provider, model_name=model)


def build_embedding_client(settings: EmbeddingSettings) -> EmbeddingClient:
    return EmbeddingClient(settings)


async def open_engine(store_path: str | None, dimension: int) -> RetrievalEngine:
    settings = StoreSettings.from_env(dimension=dimension, storage_path=store_path)
    return await RetrievalEngine.open(settings, auto_save=False)


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except RetrievalError as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        raise Exit(code=1) from exc


def _results_table(title: str, results: list[SearchResult]) -> Table:
    table = Table(title=title, title_justify="left")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Chunk")
    table.add_column("Score", justify="right")
    table.add_column("Explanation")
    table.add_column("Content", overflow="fold")
    for rank, result in enumerate(results, start=1):
        preview = result.chunk.content.replace("\n", " ")
        if len(preview) > 120:
            preview = preview[:117] + "..."
        table.add_row(
            str(rank),
            result.chunk.id,
            f"{result.similarity:.3f}",
            result.explanation,
            preview,
        )
    return table


@app.callback()
def main(
    verbose: Annotated[
        bool, Option("--verbose", "-v", help="Log at DEBUG level.")
    ] = False,
) -> None:
    configure_logging(logging.DEBUG if verbose else logging.INFO)


async def run_ingest(
    chunks_file: Path,
    *,
    store_path: str | None,
    provider: str | None,
    model: str | None,
) -> None:
    try:
        chunks = _CHUNK_LIST.validate_json(chunks_file.read_bytes())
    except (OSError, ValidationError) as exc:
        raise BadParameter(f"Cannot read chunks from {chunks_file}: {exc}") from exc

    settings = embedding_settings(provider, model)
    client = build_embedding_client(settings)
    engine = await open_engine(store_path, client.dimension)
    async with engine:
        semantic = SemanticSearchEngine(engine, client)
        with console.status(f"Embedding {len(chunks)} chunks..."):
            indexed = await semantic.index_chunks(chunks)
        path = await engine.force_save()
        usage = await client.usage_stats()
    console.print(
        Panel(
            f"Indexed [bold]{indexed}[/] chunks into `{path}`\n"
            f"Provider requests: {usage.total_requests}, tokens: {usage.total_tokens}, "
            f"cache hits: {usage.cache_hits}",
            title="Ingest",
            title_align="left",
            border_style="bold green",
        )
    )


@app.command()
def ingest(
    chunks_file: Annotated[
        Path, Argument(help="JSON file with a list of chunk objects.", exists=True, dir_okay=False)
    ],
    store: StoreOption = None,
    provider: ProviderOption = None,
    model: ModelOption = None,
) -> None:
    """Embed chunks and add them to the store, replacing re-added documents."""
    _run(run_ingest(chunks_file, store_path=store, provider=provider, model=model))


async def run_search(
    query: str,
    *,
    mode: SearchMode,
    document: str | None,
    k: int,
    keyword_weight: float,
    vector_weight: float,
    store_path: str | None,
    provider: str | None,
    model: str | None,
) -> None:
    settings = embedding_settings(provider, model)
    dimension = settings.request_dimensions or settings.dimension
    engine = await open_engine(store_path, dimension)
    async with engine:
        if mode is SearchMode.keyword:
            if document:
                results = await engine.keyword_search_by_document(document, query, k)
            else:
                results = await engine.keyword_search(query, k)
        else:
            semantic = SemanticSearchEngine(engine, build_embedding_client(settings))
            if mode is SearchMode.semantic and document:
                results = await semantic.search_document(document, query, limit=k)
            elif mode is SearchMode.semantic:
                results = await semantic.search(query, limit=k)
            elif document:
                raise BadParameter("--document is not supported in hybrid mode")
            else:
                results = await semantic.hybrid_search(
                    query,
                    limit=k,
                    keyword_weight=keyword_weight,
                    vector_weight=vector_weight,
                )

    if not results:
        console.print("[yellow]No matching chunks.[/]")
        return
    console.print(_results_table(f"{mode.value} search: {query}", results))


@app.command()
def search(
    query: Annotated[str, Argument(help="Search text.")],
    mode: Annotated[
        SearchMode, Option("--mode", help="Ranking method.")
    ] = SearchMode.hybrid,
    document: Annotated[
        Optional[str], Option("--document", "-d", help="Restrict to one document.")
    ] = None,
    k: Annotated[int, Option("-k", "--limit", min=1, help="Maximum results.")] = 5,
    keyword_weight: Annotated[
        float, Option("--keyword-weight", min=0.0, help="Hybrid keyword weight.")
    ] = 0.5,
    vector_weight: Annotated[
        float, Option("--vector-weight", min=0.0, help="Hybrid vector weight.")
    ] = 0.5,
    store: StoreOption = None,
    provider: ProviderOption = None,
    model: ModelOption = None,
) -> None:
    """Search stored chunks by keyword, embedding similarity, or both."""
    _run(
        run_search(
            query,
            mode=mode,
            document=document,
            k=k,
            keyword_weight=keyword_weight,
            vector_weight=vector_weight,
            store_path=store,
            provider=provider,
            model=model,
        )
    )


async def run_chunks(document_id: str, *, store_path: str | None, dimension: int) -> None:
    async with await open_engine(store_path, dimension) as engine:
        chunks = await engine.get_document_chunks(document_id)
    if not chunks:
        console.print(f"[yellow]No chunks stored for document {document_id!r}.[/]")
        return
    table = Table(title=f"Chunks of {document_id}", title_justify="left")
    table.add_column("Index", justify="right")
    table.add_column("Id")
    table.add_column("Span")
    table.add_column("Content", overflow="fold")
    for chunk in chunks:
        table.add_row(
            str(chunk.chunk_index),
            chunk.id,
            f"{chunk.start_char}-{chunk.end_char}",
            chunk.content,
        )
    console.print(table)


def _store_dimension(provider: str | None, model: str | None) -> int:
    settings = embedding_settings(provider, model)
    return settings.request_dimensions or settings.dimension


@app.command()
def chunks(
    document_id: Annotated[str, Argument(help="Document id.")],
    store: StoreOption = None,
    provider: ProviderOption = None,
    model: ModelOption = None,
) -> None:
    """List a document's chunks in order."""
    _run(run_chunks(document_id, store_path=store, dimension=_store_dimension(provider, model)))


async def run_remove(document_id: str, *, store_path: str | None, dimension: int) -> None:
    async with await open_engine(store_path, dimension) as engine:
        removed = await engine.remove_document(document_id)
    if removed:
        console.print(f"[bold green]Removed[/] document {document_id!r}")
    else:
        console.print(f"[yellow]Document {document_id!r} is not stored.[/]")


@app.command()
def remove(
    document_id: Annotated[str, Argument(help="Document id.")],
    store: StoreOption = None,
    provider: ProviderOption = None,
    model: ModelOption = None,
) -> None:
    """Delete a document and all of its chunks."""
    _run(run_remove(document_id, store_path=store, dimension=_store_dimension(provider, model)))


async def run_info(*, store_path: str | None, dimension: int) -> None:
    async with await open_engine(store_path, dimension) as engine:
        info = await engine.get_storage_info()
        stats = await engine.get_stats()
    last_save = info.last_save.isoformat() if info.last_save else "never"
    content = "\n".join(
        [
            f"Storage path: {info.storage_path}",
            f"Size on disk: {info.storage_size_bytes} bytes",
            f"Last save: {last_save}",
            f"Documents: {stats.total_documents}",
            f"Chunks: {stats.total_chunks}",
            f"Embeddings: {stats.total_embeddings} x {stats.dimension}",
            f"Memory estimate: {stats.memory_usage_estimate} bytes",
        ]
    )
    console.print(Panel(content, title="Vector store", title_align="left", border_style="bold cyan"))


@app.command()
def info(
    store: StoreOption = None,
    provider: ProviderOption = None,
    model: ModelOption = None,
) -> None:
    """Show storage location, save state and index statistics."""
    _run(run_info(store_path=store, dimension=_store_dimension(provider, model)))


@app.command()
def providers() -> None:
    """List embedding providers and their recommended models."""
    table = Table(title="Embedding providers", title_justify="left")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Dimension", justify="right")
    table.add_column("Description")
    for provider in available_providers():
        for model in recommended_models(provider):
            table.add_row(provider, model["name"], model["dimension"], model["description"])
    console.print(table)

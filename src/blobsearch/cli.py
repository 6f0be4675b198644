"""Command line interface for blobsearch."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from blobsearch.config import AppConfig, open_orchestrator
from blobsearch.errors import BlobSearchError
from blobsearch.models import IndexOptions, PageRequest, Sort, SortDirection
from blobsearch.query import Query, and_, equals, exists, query_from_dict
from blobsearch.utils.files import iter_file_paths

console = Console()
app = typer.Typer(help="blobsearch - content-addressed storage with a searchable metadata index")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _load_config(data_dir: Path | None) -> AppConfig:
    config = AppConfig.from_env()
    if data_dir is None:
        return config
    return AppConfig(
        data_dir=data_dir,
        default_page_size=config.default_page_size,
        fetch_concurrency=config.fetch_concurrency,
    )


def _parse_value(raw: str) -> Any:
    """Interpret ``raw`` as JSON when it is a number or boolean, else keep the string."""
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    if isinstance(value, (bool, int, float, str)):
        return value
    return raw


def _parse_pairs(pairs: List[str] | None, option: str) -> dict[str, Any]:
    parsed: dict[str, Any] = {}
    for pair in pairs or []:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Expected NAME=VALUE, got {pair!r}", param_hint=option)
        parsed[name] = _parse_value(raw)
    return parsed


def _build_options(
    document_id: str | None, content_type: str | None, fields: List[str] | None
) -> IndexOptions:
    try:
        return IndexOptions.build(
            document_id=document_id,
            content_type=content_type,
            fields=_parse_pairs(fields, "--field"),
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--field") from exc


def _build_query(eq: List[str] | None, present: List[str] | None, raw: str | None) -> Query | None:
    clauses: List[Query] = [equals(name, value) for name, value in _parse_pairs(eq, "--eq").items()]
    clauses.extend(exists(name) for name in present or [])
    if raw:
        try:
            clauses.append(query_from_dict(json.loads(raw)))
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"Invalid JSON: {exc}", param_hint="--query") from exc
    if not clauses:
        return None
    return clauses[0] if len(clauses) == 1 else and_(*clauses)


def _fail(exc: BlobSearchError) -> NoReturn:
    console.print(f"[red]{type(exc).__name__}: {exc}[/red]")
    raise typer.Exit(code=1)


def _write_payload(payload: bytes, output: Path | None) -> None:
    if output is None:
        typer.echo(payload, nl=False)
    else:
        output.write_bytes(payload)
        console.print(f"Wrote {len(payload)} bytes to [bold]{output}[/bold]")


@app.command()
def store(
    inputs: List[Path] = typer.Argument(..., help="Files or directories to store.", resolve_path=True),
    data_dir: Path = typer.Option(None, "--data-dir", help="Data directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Store files and print their content hashes."""
    _setup_logging(verbose)
    paths = list(iter_file_paths(inputs))
    if not paths:
        console.print("[yellow]No files found.[/yellow]")
        return

    with open_orchestrator(_load_config(data_dir)) as orchestrator:
        for path in paths:
            try:
                content_hash = orchestrator.store(path.read_bytes())
            except BlobSearchError as exc:
                _fail(exc)
            console.print(f"{content_hash}  {path}")


@app.command()
def index(
    index_name: str = typer.Argument(..., help="Index name"),
    content_hash: str = typer.Argument(..., help="Content hash to point at"),
    document_id: Optional[str] = typer.Option(None, "--id", help="Document id (generated if omitted)"),
    content_type: Optional[str] = typer.Option(None, "--content-type", help="Content type"),
    fields: Optional[List[str]] = typer.Option(None, "--field", "-f", help="Index field NAME=VALUE"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Data directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index metadata for an already stored (or yet to be stored) hash."""
    _setup_logging(verbose)
    options = _build_options(document_id, content_type, fields)
    with open_orchestrator(_load_config(data_dir)) as orchestrator:
        try:
            result = orchestrator.index(index_name, content_hash, options)
        except BlobSearchError as exc:
            _fail(exc)
    console.print(f"Indexed [bold]{result.index_name}/{result.document_id}[/bold] -> {result.content_hash}")


@app.command()
def put(
    path: Path = typer.Argument(..., help="File to store and index", exists=True, dir_okay=False),
    index_name: str = typer.Argument(..., help="Index name"),
    document_id: Optional[str] = typer.Option(None, "--id", help="Document id (generated if omitted)"),
    content_type: Optional[str] = typer.Option(None, "--content-type", help="Content type"),
    fields: Optional[List[str]] = typer.Option(None, "--field", "-f", help="Index field NAME=VALUE"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Data directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Store a file and index its metadata in one step."""
    _setup_logging(verbose)
    options = _build_options(document_id, content_type, fields)
    with open_orchestrator(_load_config(data_dir)) as orchestrator:
        try:
            result = orchestrator.store_and_index(path.read_bytes(), index_name, options)
        except BlobSearchError as exc:
            _fail(exc)
    console.print(f"Indexed [bold]{result.index_name}/{result.document_id}[/bold] -> {result.content_hash}")


@app.command()
def get(
    index_name: str = typer.Argument(..., help="Index name"),
    content_hash: str = typer.Argument(..., help="Content hash"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write payload to a file"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Data directory"),
) -> None:
    """Fetch a payload by content hash."""
    with open_orchestrator(_load_config(data_dir)) as orchestrator:
        try:
            payload = orchestrator.get_by_hash(index_name, content_hash)
        except BlobSearchError as exc:
            _fail(exc)
    _write_payload(payload, output)


@app.command("get-id")
def get_id(
    index_name: str = typer.Argument(..., help="Index name"),
    document_id: str = typer.Argument(..., help="Document id"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write payload to a file"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Data directory"),
) -> None:
    """Fetch a document's payload by its id."""
    with open_orchestrator(_load_config(data_dir)) as orchestrator:
        try:
            result = orchestrator.get_by_id(index_name, document_id)
        except BlobSearchError as exc:
            _fail(exc)
    if result.metadata is None:
        console.print(f"[yellow]Document {document_id} not found in {index_name}.[/yellow]")
        raise typer.Exit(code=1)
    _write_payload(result.payload, output)


@app.command()
def search(
    index_name: str = typer.Argument(..., help="Index name"),
    eq: Optional[List[str]] = typer.Option(None, "--eq", help="Equality filter NAME=VALUE"),
    present: Optional[List[str]] = typer.Option(None, "--exists", help="Field must be present"),
    raw_query: Optional[str] = typer.Option(None, "--query", "-q", help="Query as JSON"),
    page: int = typer.Option(0, min=0, help="Zero-based page number"),
    size: Optional[int] = typer.Option(None, min=1, help="Page size"),
    sort: Optional[str] = typer.Option(None, help="Sort field (_id for the document id)"),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
    fetch: bool = typer.Option(False, "--fetch", help="Also fetch payloads"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Data directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Search indexed metadata."""
    _setup_logging(verbose)
    config = _load_config(data_dir)
    try:
        query = _build_query(eq, present, raw_query)
    except BlobSearchError as exc:
        _fail(exc)
    sort_spec = Sort(sort, SortDirection.DESC if desc else SortDirection.ASC) if sort else None
    page_request = PageRequest(page=page, size=size or config.default_page_size, sort=sort_spec)

    with open_orchestrator(config) as orchestrator:
        try:
            if fetch:
                results = orchestrator.search_and_fetch(index_name, query, page_request)
                rows = [(item.metadata, len(item.payload)) for item in results.content]
            else:
                results = orchestrator.search(index_name, query, page_request)
                rows = [(metadata, None) for metadata in results.content]
        except BlobSearchError as exc:
            _fail(exc)

    if not rows:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Id", no_wrap=True)
    table.add_column("Hash", overflow="fold")
    table.add_column("Content type")
    table.add_column("Fields")
    if fetch:
        table.add_column("Bytes")

    for metadata, payload_size in rows:
        cells = [
            metadata.document_id,
            metadata.content_hash,
            metadata.content_type or "",
            json.dumps(metadata.fields_dict(), ensure_ascii=False),
        ]
        if fetch:
            cells.append(str(payload_size))
        table.add_row(*cells)

    console.print(table)
    console.print(
        f"Page {results.page_number + 1}/{max(results.total_pages, 1)}, "
        f"{results.total_elements} total"
    )


@app.command("create-index")
def create_index(
    index_name: str = typer.Argument(..., help="Index name"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Data directory"),
) -> None:
    """Create an index (no-op if it already exists)."""
    with open_orchestrator(_load_config(data_dir)) as orchestrator:
        try:
            orchestrator.create_index(index_name)
        except BlobSearchError as exc:
            _fail(exc)
    console.print(f"Index [bold]{index_name}[/bold] ready.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8040, help="Server port"),
    data_dir: Path = typer.Option(None, "--data-dir", help="Data directory"),
) -> None:
    """Start the REST API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - optional extra
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    from blobsearch.web.app import app as web_app

    config = _load_config(data_dir)
    web_app.state.config = config
    console.print(f"Starting REST API on http://{host}:{port} (data: {config.data_dir})")
    uvicorn.run(web_app, host=host, port=port, reload=False, log_level="info")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

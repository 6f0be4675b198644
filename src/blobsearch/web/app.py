"""FastAPI application exposing the orchestrator over HTTP."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, Iterator, List, Union

from fastapi import Depends, FastAPI, HTTPException, Query as QueryParam, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from blobsearch.config import AppConfig, open_orchestrator
from blobsearch.errors import IndexUnavailable, NotFound, QueryError, StoreUnavailable
from blobsearch.models import (
    DocumentMetadata,
    IdAndHash,
    IndexField,
    IndexOptions,
    Page,
    PageRequest,
    Sort,
    SortDirection,
)
from blobsearch.orchestrator import StoreOrchestrator
from blobsearch.query import Query, query_from_dict

LOGGER = logging.getLogger(__name__)

FieldValue = Union[bool, int, float, str]

app = FastAPI(title="blobsearch", version="0.1.0")


class FieldPayload(BaseModel):
    name: str
    value: FieldValue


class IndexPayload(BaseModel):
    index: str
    hash: str
    id: str | None = None
    content_type: str | None = None
    fields: Dict[str, FieldValue] | List[FieldPayload] | None = None


class SearchPayload(BaseModel):
    query: Dict[str, Any] | None = None
    page: int = Field(default=0, ge=0)
    size: int | None = Field(default=None, ge=1)
    sort: str | None = None
    direction: SortDirection = SortDirection.ASC


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.exception_handler(NotFound)
async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(QueryError)
async def _bad_query(request: Request, exc: QueryError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StoreUnavailable)
@app.exception_handler(IndexUnavailable)
async def _unavailable(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.error("Backend unavailable: %s", exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def get_orchestrator(request: Request) -> Iterator[StoreOrchestrator]:
    config = getattr(request.app.state, "config", None) or AppConfig.from_env()
    with open_orchestrator(config) as orchestrator:
        yield orchestrator


def _index_options(
    document_id: str | None,
    content_type: str | None,
    fields: Dict[str, FieldValue] | List[FieldPayload] | None,
) -> IndexOptions:
    if isinstance(fields, list):
        fields = [IndexField(item.name, item.value) for item in fields]
    try:
        return IndexOptions.build(document_id=document_id, content_type=content_type, fields=fields)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _search_args(
    payload: SearchPayload | None, default_size: int
) -> tuple[Query | None, PageRequest | None]:
    if payload is None:
        return None, None
    query = query_from_dict(payload.query) if payload.query else None
    if payload.size is None and payload.page == 0 and payload.sort is None:
        return query, None
    sort = Sort(payload.sort, payload.direction) if payload.sort else None
    return query, PageRequest(page=payload.page, size=payload.size or default_size, sort=sort)


def _id_and_hash(result: IdAndHash) -> dict[str, str]:
    return {"index": result.index_name, "id": result.document_id, "hash": result.content_hash}


def _page(page: Page, items: List[Any]) -> dict[str, Any]:
    return {
        "content": items,
        "total_elements": page.total_elements,
        "page_number": page.page_number,
        "page_size": page.page_size,
        "total_pages": page.total_pages,
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/store")
async def store_content(
    request: Request, orchestrator: StoreOrchestrator = Depends(get_orchestrator)
) -> dict[str, str]:
    payload = await request.body()
    return {"hash": orchestrator.store(payload)}


@app.post("/index")
def index_content(
    payload: IndexPayload, orchestrator: StoreOrchestrator = Depends(get_orchestrator)
) -> dict[str, str]:
    options = _index_options(payload.id, payload.content_type, payload.fields)
    return _id_and_hash(orchestrator.index(payload.index, payload.hash, options))


@app.post("/store_index/{index}")
async def store_and_index_content(
    index: str,
    request: Request,
    id: str | None = None,
    content_type: str | None = None,
    fields: str | None = QueryParam(default=None, description="JSON object of index fields"),
    orchestrator: StoreOrchestrator = Depends(get_orchestrator),
) -> dict[str, str]:
    parsed_fields = None
    if fields:
        try:
            parsed_fields = json.loads(fields)
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid fields JSON: {exc}") from exc
        if not isinstance(parsed_fields, dict):
            raise HTTPException(status_code=400, detail="fields must be a JSON object")
    options = _index_options(id, content_type, parsed_fields)
    payload = await request.body()
    return _id_and_hash(orchestrator.store_and_index(payload, index, options))


@app.get("/fetch/{index}/{content_hash}")
def fetch_content(
    index: str, content_hash: str, orchestrator: StoreOrchestrator = Depends(get_orchestrator)
) -> Response:
    payload = orchestrator.get_by_hash(index, content_hash)
    return Response(content=payload, media_type="application/octet-stream")


@app.get("/metadata/{index}/{doc_id}")
def get_metadata(
    index: str, doc_id: str, orchestrator: StoreOrchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    metadata = orchestrator.get_metadata_by_id(index, doc_id)
    if metadata is None:
        raise HTTPException(status_code=404, detail=f"Document {doc_id} not found in {index}")
    return metadata.to_dict()


@app.get("/documents/{index}/{doc_id}")
def get_document(
    index: str, doc_id: str, orchestrator: StoreOrchestrator = Depends(get_orchestrator)
) -> Response:
    result = orchestrator.get_by_id(index, doc_id)
    if result.metadata is None:
        raise HTTPException(status_code=404, detail=f"Document {doc_id} not found in {index}")
    media_type = result.metadata.content_type or "application/octet-stream"
    return Response(content=result.payload, media_type=media_type)


@app.post("/search/{index}")
def search_documents(
    index: str,
    payload: SearchPayload | None = None,
    orchestrator: StoreOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    query, page_request = _search_args(payload, orchestrator.default_page_size)
    page = orchestrator.search(index, query, page_request)
    return _page(page, [metadata.to_dict() for metadata in page.content])


@app.post("/search_fetch/{index}")
def search_and_fetch_documents(
    index: str,
    payload: SearchPayload | None = None,
    orchestrator: StoreOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    query, page_request = _search_args(payload, orchestrator.default_page_size)
    page = orchestrator.search_and_fetch(index, query, page_request)
    items = [
        {
            "metadata": _metadata_dict(item.metadata),
            "payload": base64.b64encode(item.payload).decode("ascii"),
        }
        for item in page.content
    ]
    return _page(page, items)


@app.post("/config/index/{index}")
def create_index(
    index: str, orchestrator: StoreOrchestrator = Depends(get_orchestrator)
) -> dict[str, str]:
    orchestrator.create_index(index)
    return {"status": "ok", "index": index}


def _metadata_dict(metadata: DocumentMetadata | None) -> dict[str, Any] | None:
    return metadata.to_dict() if metadata is not None else None

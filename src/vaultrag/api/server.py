"""FastAPI REST API for vaultrag.

Thin HTTP layer over :class:`VaultRAGService`.  Start with::

    vaultrag serve                      # uses Click CLI
    uvicorn vaultrag.api.server:app     # direct uvicorn
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from vaultrag.api.service import VaultRAGService
from vaultrag.core.config import Settings
from vaultrag.core.exceptions import (
    CollaboratorUnavailableError,
    IndexingError,
    SearchError,
    VaultRAGError,
    VectorBackendUnavailableError,
)
from vaultrag.core.models import (
    ClearResult,
    HealthReport,
    IndexResult,
    IndexStatus,
    OrphanCleanupResult,
    PathResult,
    RelatedResponse,
    SearchResponse,
)
from vaultrag.ingestion.queue import FileEvent
from vaultrag.utils.logging import setup_logging

_service: VaultRAGService | None = None


def _get_service() -> VaultRAGService:
    assert _service is not None, "Service not initialised"
    return _service


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    global _service  # noqa: PLW0603
    owned = _service is None
    if owned:
        setup_logging()
        _service = VaultRAGService(Settings())
    await _get_service().open()
    yield
    await _get_service().close()
    if owned:
        _service = None


app = FastAPI(
    title="vaultrag",
    description="Hybrid search and reference graph over a note vault",
    lifespan=_lifespan,
)


# -- Error mapping -------------------------------------------------------------

def _error_body(exc: VaultRAGError) -> dict[str, str]:
    return {"detail": str(exc), "code": exc.code.value}


@app.exception_handler(VectorBackendUnavailableError)
async def _vector_unavailable(request: Request, exc: VectorBackendUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=503, content=_error_body(exc))


@app.exception_handler(CollaboratorUnavailableError)
async def _collaborator_unavailable(request: Request, exc: CollaboratorUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=503, content=_error_body(exc))


@app.exception_handler(SearchError)
async def _bad_search(request: Request, exc: SearchError) -> JSONResponse:
    return JSONResponse(status_code=400, content=_error_body(exc))


@app.exception_handler(IndexingError)
async def _indexing_conflict(request: Request, exc: IndexingError) -> JSONResponse:
    return JSONResponse(status_code=409, content=_error_body(exc))


# -- Request / response models ------------------------------------------------

class IndexRequest(BaseModel):
    full: bool = False


class CancelResponse(BaseModel):
    cancelled: bool


class OpenRequest(BaseModel):
    path: str


class FileEventRequest(BaseModel):
    event: FileEvent
    path: str
    old_path: str | None = None


class BacklinksResponse(BaseModel):
    doc: str
    backlinks: list[str]


class MessageResponse(BaseModel):
    message: str


# -- Endpoints -----------------------------------------------------------------

@app.post("/index", response_model=IndexResult)
async def index(req: IndexRequest | None = None) -> IndexResult:
    """Run a full or incremental indexing pass and return its counts."""
    service = _get_service()
    if req is not None and req.full:
        return await service.full_index()
    return await service.incremental_index()


@app.post("/index/cancel", response_model=CancelResponse)
async def cancel_index() -> CancelResponse:
    """Ask the running indexing pass to stop."""
    return CancelResponse(cancelled=_get_service().cancel_indexing())


@app.get("/search", response_model=SearchResponse)
async def search(
    q: str = Query(..., description="Search query"),
    top_k: int = Query(10, ge=1, le=200),
    mode: str = Query("vault", pattern="^(vault|inFile|inFolder)$"),
    scope: str | None = Query(None, description="Folder for inFolder searches"),
    current_path: str | None = Query(None, description="File the user is looking at"),
    boost: bool = Query(False),
) -> SearchResponse:
    """Hybrid search over the indexed vault."""
    return await _get_service().search(
        q,
        top_k=top_k,
        mode=mode,
        scope=scope,
        current_path=current_path,
        boost=boost,
    )


@app.get("/related", response_model=RelatedResponse)
async def related(
    doc: str = Query(..., description="Document id or vault path"),
    limit: int = Query(20, ge=1, le=500),
) -> RelatedResponse:
    """Documents related to *doc* through links and similarity."""
    return await _get_service().related(doc, limit=limit)


@app.get("/backlinks", response_model=BacklinksResponse)
async def backlinks(doc: str = Query(..., description="Document id or vault path")) -> BacklinksResponse:
    """Documents linking to *doc*."""
    return BacklinksResponse(doc=doc, backlinks=await _get_service().backlinks(doc))


@app.get("/path", response_model=PathResult)
async def path(
    source: str = Query(...),
    target: str = Query(...),
    iterations: int | None = Query(None, ge=1, le=10),
    max_hops: int | None = Query(None, ge=1),
) -> PathResult:
    """Connecting paths between two documents."""
    return await _get_service().find_paths(source, target, iterations=iterations, max_hops=max_hops)


@app.get("/status", response_model=IndexStatus)
async def status() -> IndexStatus:
    return await _get_service().status()


@app.get("/health", response_model=HealthReport)
async def health() -> HealthReport:
    return await _get_service().verify_health()


@app.post("/maintenance/cleanup-orphans", response_model=OrphanCleanupResult)
async def cleanup_orphans() -> OrphanCleanupResult:
    return await _get_service().cleanup_orphans()


@app.post("/clear", response_model=ClearResult)
async def clear() -> ClearResult:
    """Remove all indexed data."""
    return await _get_service().clear()


@app.post("/documents/open", response_model=MessageResponse)
async def document_opened(req: OpenRequest) -> MessageResponse:
    await _get_service().record_open(req.path)
    return MessageResponse(message=f"Recorded open of {req.path}")


@app.post("/documents/events", response_model=MessageResponse, status_code=202)
async def document_event(req: FileEventRequest) -> MessageResponse:
    """Queue a file change for re-indexing."""
    _get_service().notify_file_event(req.event, req.path, req.old_path)
    return MessageResponse(message=f"Queued {req.event.value} for {req.path}")


def main(host: str = "127.0.0.1", port: int = 8000, settings: Settings | None = None) -> None:
    """Run the API server via uvicorn."""
    global _service  # noqa: PLW0603
    import uvicorn

    if settings is not None:
        _service = VaultRAGService(settings)
    uvicorn.run(app, host=host, port=port)

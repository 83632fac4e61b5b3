"""FastAPI application exposing docsearch services."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from docsearch.api.schemas import (
    CacheStatsResponse,
    ContextWindowResponse,
    DocumentCreateRequest,
    DocumentDetail,
    DocumentSummaryModel,
    KeywordSearchRequest,
    SearchRequest,
    SearchResponseModel,
    UploadReportModel,
    UploadsListing,
)
from docsearch.config import Settings, get_settings
from docsearch.errors import (
    DocSearchError,
    DocumentNotFoundError,
    EmbeddingDimensionMismatch,
    EmbeddingError,
    NotFoundError,
    ValidationError,
)
from docsearch.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from docsearch.services.documents import DocumentService, build_service


@dataclass(frozen=True)
class AppDependencies:
    service: DocumentService


def _build_dependencies(settings: Settings) -> AppDependencies:
    return AppDependencies(service=build_service(settings))


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or _build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await deps.service.startup()
        try:
            yield
        finally:
            await deps.service.shutdown()

    app = FastAPI(title="docsearch API", version="0.1.0", lifespan=lifespan)
    app.state.dependencies = deps

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def _error(request: Request, status_code: int, event: str, exc: Exception, detail: str | None = None) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        log = logger.warning if status_code < 500 else logger.error
        log(event, correlation_id=correlation_id, path=request.url.path, detail=str(exc))
        return JSONResponse(
            status_code=status_code,
            content={"detail": detail or str(exc), "correlation_id": correlation_id},
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(request, status.HTTP_404_NOT_FOUND, "request.not_found", exc)

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(request, 422, "request.invalid", exc)

    @app.exception_handler(EmbeddingDimensionMismatch)
    async def handle_dimension_mismatch(request: Request, exc: EmbeddingDimensionMismatch) -> JSONResponse:
        return _error(request, status.HTTP_409_CONFLICT, "embedding.dimension_mismatch", exc)

    @app.exception_handler(EmbeddingError)
    async def handle_embedding_error(request: Request, exc: EmbeddingError) -> JSONResponse:
        return _error(request, status.HTTP_503_SERVICE_UNAVAILABLE, "embedding.error", exc)

    @app.exception_handler(DocSearchError)
    async def handle_docsearch_error(request: Request, exc: DocSearchError) -> JSONResponse:
        return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "docsearch.error", exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "unhandled.error", exc, "Internal Server Error")

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_service(dep: AppDependencies = Depends(get_dependencies)) -> DocumentService:
        return dep.service

    @app.post("/documents", response_model=DocumentSummaryModel, status_code=status.HTTP_201_CREATED)
    async def add_document(
        payload: DocumentCreateRequest,
        service: DocumentService = Depends(get_service),
    ) -> DocumentSummaryModel:
        summary = await service.add_document(
            payload.title,
            payload.content,
            payload.metadata,
            author=payload.author,
            tags=payload.tags,
            description=payload.description,
            content_type=payload.content_type,
        )
        return DocumentSummaryModel.from_summary(summary)

    @app.get("/documents", response_model=List[DocumentSummaryModel])
    async def list_documents(
        tag: Optional[List[str]] = Query(default=None),
        author: Optional[str] = None,
        content_type: Optional[str] = None,
        service: DocumentService = Depends(get_service),
    ) -> List[DocumentSummaryModel]:
        summaries = service.list_documents(tags=tag, author=author, content_type=content_type)
        return [DocumentSummaryModel.from_summary(summary) for summary in summaries]

    @app.get("/documents/{document_id}", response_model=DocumentDetail)
    async def get_document(document_id: str, service: DocumentService = Depends(get_service)) -> DocumentDetail:
        return DocumentDetail.from_document(service.get_document(document_id))

    @app.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_document(document_id: str, service: DocumentService = Depends(get_service)) -> Response:
        if not service.delete_document(document_id):
            raise DocumentNotFoundError(document_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/documents/{document_id}/search", response_model=SearchResponseModel)
    async def search_document(
        document_id: str,
        payload: SearchRequest,
        service: DocumentService = Depends(get_service),
    ) -> SearchResponseModel:
        response = await service.search_documents(document_id, payload.query, payload.limit)
        return SearchResponseModel.from_response(response)

    @app.get("/documents/{document_id}/chunks/{chunk_index}/context", response_model=ContextWindowResponse)
    async def get_context_window(
        document_id: str,
        chunk_index: int,
        before: Optional[int] = Query(default=None, ge=0),
        after: Optional[int] = Query(default=None, ge=0),
        service: DocumentService = Depends(get_service),
    ) -> ContextWindowResponse:
        window = service.get_context_window(document_id, chunk_index, before, after)
        return ContextWindowResponse.from_window(window)

    @app.post("/search/keywords", response_model=List[DocumentSummaryModel])
    async def keyword_search(
        payload: KeywordSearchRequest,
        service: DocumentService = Depends(get_service),
    ) -> List[DocumentSummaryModel]:
        return [DocumentSummaryModel.from_summary(summary) for summary in service.keyword_search(payload.terms)]

    @app.get("/uploads", response_model=UploadsListing)
    async def list_uploads(service: DocumentService = Depends(get_service)) -> UploadsListing:
        return UploadsListing(
            path=str(service.uploads_path()),
            files=[path.name for path in service.list_uploads()],
        )

    @app.post("/uploads/process", response_model=UploadReportModel)
    async def process_uploads(service: DocumentService = Depends(get_service)) -> UploadReportModel:
        report = await service.process_uploads()
        return UploadReportModel(
            processed=report.processed,
            errors=list(report.errors),
            document_ids=list(report.document_ids),
        )

    @app.get("/cache/stats", response_model=CacheStatsResponse)
    async def cache_stats(service: DocumentService = Depends(get_service)) -> CacheStatsResponse:
        return CacheStatsResponse(**service.cache_stats())

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck(service: DocumentService = Depends(get_service)) -> dict[str, object]:
        from docsearch import __version__

        return {
            "status": "ok",
            "version": __version__,
            "environment": settings.environment,
            **service.health(),
        }

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    return app


app = create_app()

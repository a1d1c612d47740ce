"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lokaldrive.config import Settings
from lokaldrive.errors import BlobNotFoundError, LokalDriveError, RecordNotFoundError
from lokaldrive.schemas.common import HealthResponse
from lokaldrive.services.enrichment import (
    EnrichmentGateway,
    LLMMetadataEnricher,
    MetadataEnricher,
    provider_from_settings,
)
from lokaldrive.services.file_repository import FileRepository
from lokaldrive.services.file_storage import LocalFileStorage
from lokaldrive.services.metadata_index import create_metadata_index

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open storage and index, reconcile crash leftovers, wire the repository."""
    settings: Settings = app.state.settings

    storage = LocalFileStorage(settings.FILE_STORAGE_PATH)
    index = create_metadata_index(settings)
    await index.open()

    repository = FileRepository(storage, index, settings.STORAGE_CAPACITY_BYTES)
    await repository.reconcile()

    enricher = app.state.enricher
    if enricher is None:
        provider = provider_from_settings(settings)
        enricher = LLMMetadataEnricher(provider) if provider is not None else None
    enrichment = EnrichmentGateway(index, enricher, settings.ENRICHMENT_TIMEOUT_SECONDS)

    app.state.repository = repository
    app.state.enrichment = enrichment
    logger.info(
        "LokalDrive ready: %d file(s), blobs in %s, %s metadata index",
        await index.count(), storage.base_path, index.backend_name,
    )

    yield

    # Cleanup
    await enrichment.aclose()
    await index.close()


def create_app(settings: Optional[Settings] = None, enricher: Optional[MetadataEnricher] = None) -> FastAPI:
    """Build the app. `enricher` replaces the LLM-backed one built from settings."""
    settings = settings or Settings()

    app = FastAPI(
        title="LokalDrive API",
        version="1.0.0",
        description="Local network file server with AI tagging.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.enricher = enricher

    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RecordNotFoundError)
    async def record_not_found_handler(request: Request, e: RecordNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": "File not found"})

    @app.exception_handler(BlobNotFoundError)
    async def blob_not_found_handler(request: Request, e: BlobNotFoundError) -> JSONResponse:
        logger.error("Blob missing for %s %s: %s", request.method, request.url.path, e)
        return JSONResponse(status_code=404, content={"detail": "File content not found"})

    @app.exception_handler(LokalDriveError)
    async def storage_error_handler(request: Request, e: LokalDriveError) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, e, exc_info=e)
        return JSONResponse(status_code=500, content={"detail": "Storage operation failed"})

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Verify the API and metadata index are up."""
        index = request.app.state.repository.index
        return HealthResponse(metadata_backend=index.backend_name, file_count=await index.count())

    # Register routers
    from lokaldrive.routes.files import router as files_router
    from lokaldrive.routes.server_info import router as server_info_router
    app.include_router(files_router)
    app.include_router(server_info_router)

    return app


def run() -> None:
    """Console entry point: configure logging and serve on all interfaces."""
    import uvicorn

    from lokaldrive.routes.server_info import get_local_ips, server_urls

    settings = Settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for url in [f"http://localhost:{settings.API_PORT}", *server_urls(settings.API_PORT, get_local_ips())]:
        logger.info("Serving at %s", url)
    uvicorn.run(create_app(settings), host=settings.API_HOST, port=settings.API_PORT)


app = create_app()


if __name__ == "__main__":
    run()

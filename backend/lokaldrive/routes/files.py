"""Files API routes."""
import mimetypes
import os
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Response, UploadFile, File as FastAPIFile
from fastapi.responses import StreamingResponse

from lokaldrive.config import Settings
from lokaldrive.dependencies import get_enrichment_gateway, get_repository, get_settings
from lokaldrive.schemas.common import DeleteResponse
from lokaldrive.schemas.file import (
    BatchUploadFailure,
    BatchUploadResponse,
    FileMetadataUpdate,
    FileResponse,
    StorageStats,
)
from lokaldrive.services.enrichment import EnrichmentGateway
from lokaldrive.services.file_repository import FileRepository

router = APIRouter(prefix="/api", tags=["files"])

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


@router.get("/files", response_model=list[FileResponse])
async def list_files(
    q: Optional[str] = Query(None, description="Case-insensitive match on name or tag"),
    repository: FileRepository = Depends(get_repository),
):
    """List files newest-first, optionally filtered."""
    records = await repository.list_files(q)
    return [FileResponse.from_record(r) for r in records]


@router.post("/upload", response_model=FileResponse, status_code=201)
async def upload_file(
    file: Optional[UploadFile] = FastAPIFile(None),
    repository: FileRepository = Depends(get_repository),
    enrichment: EnrichmentGateway = Depends(get_enrichment_gateway),
    settings: Settings = Depends(get_settings),
):
    """Upload one file. Enrichment starts in the background when AUTO_ENRICH is on."""
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    contents = await file.read()
    record = await repository.upload(file.filename, contents)
    if settings.AUTO_ENRICH:
        enrichment.schedule(record)
    return FileResponse.from_record(record)


@router.post("/upload/batch", response_model=BatchUploadResponse, status_code=201)
async def upload_files(
    response: Response,
    files: list[UploadFile] = FastAPIFile(...),
    repository: FileRepository = Depends(get_repository),
    enrichment: EnrichmentGateway = Depends(get_enrichment_gateway),
    settings: Settings = Depends(get_settings),
):
    """Upload several files in order. Stops at the first failure (207 with the stored prefix)."""
    pending = [(f.filename, await f.read()) for f in files]
    result = await repository.upload_many(pending)
    if settings.AUTO_ENRICH:
        for record in result.uploaded:
            enrichment.schedule(record)

    failed = None
    if not result.ok:
        response.status_code = 207
        failed = BatchUploadFailure(name=result.failed_name, error=str(result.error))
    return BatchUploadResponse(
        uploaded=[FileResponse.from_record(r) for r in result.uploaded],
        failed=failed,
        skipped=result.skipped,
    )


@router.get("/files/{file_id}", response_model=FileResponse)
async def get_file_metadata(
    file_id: str,
    repository: FileRepository = Depends(get_repository),
):
    """Get file metadata by ID."""
    return FileResponse.from_record(await repository.get(file_id))


@router.get("/files/{file_id}/download")
async def download_file(
    file_id: str,
    repository: FileRepository = Depends(get_repository),
):
    """Download a file by ID."""
    # The open handle stays readable if the file is deleted meanwhile
    record, blob = await repository.open_blob(file_id)
    size = os.fstat(blob.fileno()).st_size
    media_type, _ = mimetypes.guess_type(record.name)

    async def _chunks():
        try:
            while chunk := await blob.read(DOWNLOAD_CHUNK_SIZE):
                yield chunk
        finally:
            await blob.close()

    return StreamingResponse(
        _chunks(),
        media_type=media_type or "application/octet-stream",
        headers={
            "Content-Length": str(size),
            "Content-Disposition": _content_disposition(record.name),
        },
    )


@router.patch("/files/{file_id}", response_model=FileResponse)
async def update_file_metadata(
    file_id: str,
    body: FileMetadataUpdate,
    repository: FileRepository = Depends(get_repository),
):
    """Set description and/or tags by hand. Omitted fields keep their value."""
    record = await repository.update_metadata(file_id, description=body.description, tags=body.tags)
    return FileResponse.from_record(record)


@router.post("/files/{file_id}/enrich", response_model=FileResponse)
async def enrich_file(
    file_id: str,
    enrichment: EnrichmentGateway = Depends(get_enrichment_gateway),
):
    """Run AI analysis for a file now and return the enriched record."""
    return FileResponse.from_record(await enrichment.enrich(file_id))


@router.delete("/files/{file_id}", response_model=DeleteResponse)
async def delete_file(
    file_id: str,
    repository: FileRepository = Depends(get_repository),
):
    """Delete a file and its record."""
    await repository.delete(file_id)
    return DeleteResponse(deleted=True, id=file_id)


@router.get("/storage-stats", response_model=StorageStats)
async def storage_stats(repository: FileRepository = Depends(get_repository)):
    """Used/total bytes and per-category usage."""
    return await repository.stats()

import logging
import math
import unicodedata

from fastapi import APIRouter, Depends, status, HTTPException, Query, Request, Response
from fastapi.responses import FileResponse as BlobResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from filevault.core.deps import get_current_claims, get_storage, get_upload_pipeline
from filevault.core.deps_file import get_file_or_404
from filevault.core.security import Claims
from filevault.database import get_async_session
from filevault.models.file import File
from filevault.repositories.files import FileConflictError, FileRepository, clamp_page, clamp_page_size
from filevault.schemas.file import FileListResponse, FileResponse
from filevault.services.uploads import InvalidUpload, UploadPipeline, UploadTooLarge
from filevault.storage.local import BlobStorageError, LocalStorage

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/files",
    tags=["Files"]
)

FALLBACK_FILENAME = "download.bin"
MAX_FILENAME_LENGTH = 255


def sanitize_filename(filename: str) -> str:
    """Make a stored display name safe for a quoted Content-Disposition value."""
    cleaned = []
    for ch in filename:
        if unicodedata.category(ch) == "Cc" or ch in ('"', "\\"):
            continue
        cleaned.append(ch if ch.isascii() else "_")
    safe = "".join(cleaned)[:MAX_FILENAME_LENGTH]
    return safe or FALLBACK_FILENAME


# -------------Upload files -----------------

@router.post("/upload", response_model=FileResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
    claims: Claims = Depends(get_current_claims),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
):
    files = FileRepository(session)
    try:
        db_file = await pipeline.store(request, claims.user_id, files)
    except UploadTooLarge:
        raise HTTPException(status_code=400, detail="File too large")
    except InvalidUpload as e:
        log.info("Rejected upload from %s: %s", claims.user_id, e)
        raise HTTPException(status_code=400, detail="Invalid metadata")
    except BlobStorageError:
        log.exception("Storage failure during upload for %s", claims.user_id)
        raise HTTPException(status_code=500, detail="Storage error")
    except (FileConflictError, SQLAlchemyError):
        raise HTTPException(status_code=500, detail="Database error")

    return db_file


#-----------List my files-----------------

@router.get("", response_model=FileListResponse)
async def list_files(
    q: str | None = None,
    sort: str | None = None,
    direction: str | None = None,
    page: int = Query(1),
    page_size: int = Query(20),
    session: AsyncSession = Depends(get_async_session),
    claims: Claims = Depends(get_current_claims),
):
    page = clamp_page(page)
    page_size = clamp_page_size(page_size)
    files = FileRepository(session)

    try:
        total = await files.count(claims.user_id, q)
        items = await files.list(claims.user_id, q, sort, direction, page, page_size)
    except SQLAlchemyError:
        log.exception("Listing files failed for %s", claims.user_id)
        raise HTTPException(status_code=500, detail="Database error")

    return FileListResponse(
        files=[FileResponse.model_validate(f) for f in items],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )


#-----------Download------------------

@router.get("/{file_id}/download")
async def download_file(
    db_file: File = Depends(get_file_or_404),
    storage: LocalStorage = Depends(get_storage),
):
    if not storage.exists(db_file.storage_path):
        log.error("Blob missing for file %s at %s", db_file.id, db_file.storage_path)
        raise HTTPException(status_code=500, detail="Storage error")

    return BlobResponse(
        storage.path(db_file.storage_path),
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f'attachment; filename="{sanitize_filename(db_file.original_name)}"'
        },
    )

#-----------Delete-------------

@router.delete("/{file_id}", status_code=204)
async def delete_file(
    db_file: File = Depends(get_file_or_404),
    session: AsyncSession = Depends(get_async_session),
    storage: LocalStorage = Depends(get_storage),
):
    # the row stays when the blob cannot be removed
    try:
        storage.delete(db_file.storage_path)
    except BlobStorageError:
        log.exception("Failed to delete blob for file %s", db_file.id)
        raise HTTPException(status_code=500, detail="Storage error")

    try:
        removed = await FileRepository(session).delete(db_file.id, db_file.user_id)
    except SQLAlchemyError:
        log.exception("Failed to delete row for file %s", db_file.id)
        raise HTTPException(status_code=500, detail="Database error")
    if not removed:
        raise HTTPException(status_code=404, detail="File not found")

    log.info("Deleted file %s for user %s", db_file.id, db_file.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

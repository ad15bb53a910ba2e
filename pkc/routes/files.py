"""
File management API routes.
Handles upload (ingestion), listing, and deletion.
"""
from fastapi import APIRouter, Depends, File, UploadFile

from ..dependencies import get_ingestion, get_owner_id
from ..logging_config import logger
from ..schemas import IngestResponse
from ..services.ingestion_service import IngestionCoordinator
from ..text_extraction import extract_text

router = APIRouter(prefix="/api", tags=["files"])


# ==================== File Upload ====================

@router.post("/files/upload", status_code=201, response_model=IngestResponse)
def upload_file(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    ingestion: IngestionCoordinator = Depends(get_ingestion),
):
    """
    Upload one file.

    Process:
    1. Read the bytes and extract plain text (PDF, DOCX, anything else as UTF-8)
    2. Skip storage entirely if the same bytes were already uploaded by this user
    3. Store the blob and file row
    4. Split text into chunks, embed in batches, store the chunks

    Returns:
        The file id and how many chunks were created
    """
    data = file.file.read()
    filename = file.filename or ""
    mime = file.content_type or ""
    logger.info("Processing file", filename=filename, content_type=mime, size_bytes=len(data))

    text = extract_text(data, mime, filename) if data else ""
    result = ingestion.ingest(owner_id, filename, mime, data, text)

    return IngestResponse(
        file_id=result.file.id,
        filename=result.file.filename,
        chunks_created=result.chunks_created,
        duplicate=result.duplicate,
        partial=result.partial,
        error=result.error,
        tags=result.file.tags,
    )


# ==================== File Listing ====================

@router.get("/files")
def list_files(
    owner_id: str = Depends(get_owner_id),
    ingestion: IngestionCoordinator = Depends(get_ingestion),
):
    """
    Returns the caller's files with chunk counts.
    """
    files = ingestion.list_files(owner_id)
    logger.info("Listed files", count=len(files))
    return files


# ==================== File Deletion ====================

@router.delete("/files/{file_id}")
def delete_file(
    file_id: str,
    owner_id: str = Depends(get_owner_id),
    ingestion: IngestionCoordinator = Depends(get_ingestion),
):
    """
    Deletes a file and all its chunks.
    """
    ingestion.delete_file(owner_id, file_id)
    return {"ok": True, "deleted": file_id}

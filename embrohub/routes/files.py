import io
from mimetypes import guess_type
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, File, Form, UploadFile
from fastapi.responses import FileResponse

from ..auth.security import get_current_user
from ..config import settings
from ..exceptions import ExternalServiceError, ValidationError
from ..models.models import User
from ..storage.blob_provider import BlobStorageProvider
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider, canonical_key
from .common import ok, read_upload


router = APIRouter(prefix="/files", tags=["files"])
log = structlog.get_logger()


def get_storage() -> StorageProvider:
    """Azure Blob when configured, otherwise the local filesystem."""
    if settings.azure_blob_connection and settings.azure_blob_container:
        return BlobStorageProvider()
    return LocalStorageProvider()


@router.post("/upload")
async def upload_files(
    files: List[UploadFile] = File(...),
    category: Optional[str] = Form("uploads"),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    """Store files ahead of an order or sample submission; returns descriptors to send back as JSON."""
    if not files:
        raise ValidationError("No file uploaded")
    out = []
    for f in files:
        upload = await read_upload(f)
        key = canonical_key(user.id, category, upload["filename"] or "upload")
        try:
            saved = storage.save(key, io.BytesIO(upload["content"]), upload["content_type"])
        except Exception as e:
            log.error("file_store_failed", key=key, error=str(e))
            raise ExternalServiceError("Failed to store uploaded file", error=str(e))
        out.append({
            "url": saved["url"],
            "filename": upload["filename"],
            "size": saved.get("size"),
            "mimetype": upload["content_type"],
        })
    return ok(files=out)


@router.get("/local/{file_path:path}")
def serve_local_file(file_path: str):
    """Serve files from local storage for development."""
    local_storage = LocalStorageProvider()
    path = local_storage.path_for(file_path)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    if not str(path.resolve()).startswith(str(local_storage.base_dir.resolve())):
        raise HTTPException(status_code=403, detail="Access denied")
    content_type = guess_type(str(path))[0] or "application/octet-stream"
    return FileResponse(path=str(path), media_type=content_type, filename=path.name)

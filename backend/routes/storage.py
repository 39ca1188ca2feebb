"""
Blob store access through time-limited signed URLs.
"""
from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response
import logging

from models import SignUrlRequest
from routes.pdf_documents import content_disposition
from services.storage_adapter import StorageError, StorageNotFoundError, storage_adapter

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/storage", tags=["storage"])


@router.post("/sign")
async def sign_storage_url(request: SignUrlRequest):
    """Issue a signed URL for a stored path (e.g. a PDF template)."""
    path = request.path.lstrip("/")
    if not await storage_adapter.exists(path):
        raise HTTPException(status_code=404, detail="File not found")
    return {"url": storage_adapter.sign_url(path, request.ttl_seconds), "expires_in": request.ttl_seconds}


@router.get("/signed")
async def download_signed(token: str = Query(..., min_length=1)):
    path = storage_adapter.resolve_token(token)
    if not path:
        raise HTTPException(status_code=403, detail="Invalid or expired link")
    try:
        content = await storage_adapter.download(path)
        content_type = await storage_adapter.get_content_type(path)
    except StorageNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    except StorageError as e:
        logger.error(f"Signed download of {path} failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve file")
    filename = path.rsplit("/", 1)[-1]
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": content_disposition(filename, "inline")},
    )

"""
Resolves a template reference (storage path or signed URL) to raw bytes.

Downloads are not separately time-bounded unless TEMPLATE_DOWNLOAD_TIMEOUT is
set; the request boundary is the only limit otherwise.
"""
import logging
import os
from typing import Optional
from urllib.parse import urlparse

import httpx

from services.document_errors import TemplateFetchError
from services.storage_adapter import SIGNED_URL_ROUTE, StorageAdapter, StorageError, storage_adapter

logger = logging.getLogger(__name__)

_timeout_env = os.environ.get("TEMPLATE_DOWNLOAD_TIMEOUT", "").strip()
TEMPLATE_DOWNLOAD_TIMEOUT: Optional[float] = float(_timeout_env) if _timeout_env else None


def is_url(reference: str) -> bool:
    return reference.lower().startswith(("http://", "https://"))


async def _download_url(url: str) -> bytes:
    try:
        async with httpx.AsyncClient(timeout=TEMPLATE_DOWNLOAD_TIMEOUT, follow_redirects=True) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        raise TemplateFetchError(f"Template download failed: {e}") from e
    if response.status_code >= 400:
        raise TemplateFetchError(f"Template download returned HTTP {response.status_code}")
    return response.content


async def resolve_template_bytes(reference: str, storage: StorageAdapter = None) -> bytes:
    storage = storage or storage_adapter
    reference = (reference or "").strip()
    if not reference:
        raise TemplateFetchError("Empty template reference")

    path = reference
    if is_url(reference):
        path = storage.resolve_signed_url(reference)
        if path is None and urlparse(reference).path.endswith(SIGNED_URL_ROUTE):
            raise TemplateFetchError("Template signed URL is invalid or expired")
        if path is None:
            logger.info("Downloading template from external URL")
            content = await _download_url(reference)
            if not content:
                raise TemplateFetchError("Template download returned no content")
            return content

    try:
        content = await storage.download(path.lstrip("/"))
    except StorageError as e:
        raise TemplateFetchError(f"Template not available at '{path}': {e}") from e
    if not content:
        raise TemplateFetchError(f"Template at '{path}' is empty")
    return content

"""
Storage Adapter - GridFS-based blob storage addressed by logical path.

Paths look like "templates/<owner_id>/quittance.pdf" or
"receipts/<owner_id>/quittance-2024-01-01-<rent_id>.pdf". Uploading to an
existing path replaces the previous file.

Signed URLs are short-lived HS256 tokens naming a path; they are served by
GET /api/storage/signed and can be passed back as a template reference.
"""
import hashlib
import io
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

import jwt
from motor.motor_asyncio import AsyncIOMotorGridFSBucket

from database import database

logger = logging.getLogger(__name__)

STORAGE_BUCKET = os.environ.get("STORAGE_BUCKET", "documents")
JWT_SECRET = os.environ.get("JWT_SECRET", "default-secret-change-in-production")
SIGNED_URL_TTL_SECONDS = int(os.environ.get("SIGNED_URL_TTL_SECONDS", "600"))
PUBLIC_API_URL = os.environ.get("PUBLIC_API_URL", "http://localhost:8001").rstrip("/")
SIGNED_URL_ROUTE = "/api/storage/signed"
TOKEN_TYPE = "storage_access"


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageNotFoundError(StorageError):
    """No file stored at the requested path."""
    pass


class FileMetadata:
    """File metadata model."""
    def __init__(
        self,
        path: str,
        content_type: str,
        size_bytes: int,
        sha256_hash: str,
        upload_timestamp: datetime,
        file_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.path = path
        self.content_type = content_type
        self.size_bytes = size_bytes
        self.sha256_hash = sha256_hash
        self.upload_timestamp = upload_timestamp
        self.file_id = file_id
        self.metadata = metadata or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "file_id": self.file_id,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "sha256_hash": self.sha256_hash,
            "upload_timestamp": self.upload_timestamp.isoformat() if self.upload_timestamp else None,
            "metadata": self.metadata,
        }


class StorageAdapter(ABC):
    """Abstract base class for blob stores."""

    @abstractmethod
    async def download(self, path: str) -> bytes:
        """Return the bytes stored at path. Raises StorageNotFoundError."""
        pass

    @abstractmethod
    async def upload(
        self,
        path: str,
        content: bytes,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FileMetadata:
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        pass

    def sign_url(self, path: str, ttl_seconds: int = SIGNED_URL_TTL_SECONDS) -> str:
        """Time-limited URL for a stored path."""
        now = datetime.now(timezone.utc)
        payload = {
            "type": TOKEN_TYPE,
            "path": path,
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds),
        }
        token = jwt.encode(payload, JWT_SECRET, algorithm="HS256")
        logger.debug(f"Signed storage URL for {path} (ttl={ttl_seconds}s)")
        return f"{PUBLIC_API_URL}{SIGNED_URL_ROUTE}?token={token}"

    @staticmethod
    def resolve_token(token: str) -> Optional[str]:
        """Path named by a valid token, or None if invalid/expired."""
        try:
            payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            logger.debug("Storage access token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid storage access token: {e}")
            return None
        if payload.get("type") != TOKEN_TYPE or not payload.get("path"):
            logger.warning("Storage token has wrong type or no path")
            return None
        return payload["path"]

    def resolve_signed_url(self, url: str) -> Optional[str]:
        """Path behind a signed URL issued by sign_url, or None for foreign URLs."""
        parsed = urlparse(url)
        if not parsed.path.endswith(SIGNED_URL_ROUTE):
            return None
        tokens = parse_qs(parsed.query).get("token")
        if not tokens:
            return None
        return self.resolve_token(tokens[0])


class GridFSStorageAdapter(StorageAdapter):
    """
    GridFS-based storage implementation.
    The GridFS filename is the logical path.
    """

    def __init__(self, bucket_name: str = STORAGE_BUCKET):
        self.bucket_name = bucket_name
        self._bucket = None

    def _get_bucket(self) -> AsyncIOMotorGridFSBucket:
        """Get or create GridFS bucket."""
        if self._bucket is None:
            db = database.get_db()
            self._bucket = AsyncIOMotorGridFSBucket(db, bucket_name=self.bucket_name)
        return self._bucket

    def _files(self):
        return database.get_db()[f"{self.bucket_name}.files"]

    async def download(self, path: str) -> bytes:
        try:
            file_doc = await self._files().find_one({"filename": path}, sort=[("uploadDate", -1)])
        except Exception as e:
            raise StorageError(f"Failed to look up {path}: {e}") from e
        if not file_doc:
            raise StorageNotFoundError(f"File not found: {path}")

        stream = io.BytesIO()
        try:
            await self._get_bucket().download_to_stream(file_doc["_id"], stream)
        except Exception as e:
            raise StorageError(f"Failed to read {path}: {e}") from e
        return stream.getvalue()

    async def upload(
        self,
        path: str,
        content: bytes,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FileMetadata:
        sha256_hash = hashlib.sha256(content).hexdigest()
        uploaded_at = datetime.now(timezone.utc)

        try:
            bucket = self._get_bucket()
            file_id = await bucket.upload_from_stream(
                path,
                io.BytesIO(content),
                metadata={
                    "content_type": content_type,
                    "sha256_hash": sha256_hash,
                    "upload_timestamp": uploaded_at.isoformat(),
                    "custom_metadata": metadata or {},
                },
            )
            # Earlier versions at the same path go only once the new file is stored
            async for previous in self._files().find({"filename": path, "_id": {"$ne": file_id}}, {"_id": 1}):
                await bucket.delete(previous["_id"])
        except Exception as e:
            raise StorageError(f"Failed to upload {path}: {e}") from e

        logger.info(f"File uploaded to GridFS: {path} ({len(content)} bytes)")
        return FileMetadata(
            path=path,
            file_id=str(file_id),
            content_type=content_type,
            size_bytes=len(content),
            sha256_hash=sha256_hash,
            upload_timestamp=uploaded_at,
            metadata=metadata,
        )

    async def exists(self, path: str) -> bool:
        return await self._files().find_one({"filename": path}, {"_id": 1}) is not None

    async def get_content_type(self, path: str) -> str:
        file_doc = await self._files().find_one({"filename": path}, {"metadata": 1})
        if not file_doc:
            raise StorageNotFoundError(f"File not found: {path}")
        return (file_doc.get("metadata") or {}).get("content_type", "application/octet-stream")


# Singleton instance
storage_adapter = GridFSStorageAdapter()

"""
Supabase Storage Blob Store
Raw uploads live in the raw-videos bucket, rendered output in processed-videos.
"""

import asyncio
import logging

from supabase import Client

from services.errors import StorageError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
}


def content_type_for(path: str) -> str:
    return CONTENT_TYPES.get(path.rsplit(".", 1)[-1].lower(), "application/octet-stream")


class BlobStore:
    def __init__(self, client: Client):
        self.client = client

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str | None = None) -> str:
        try:
            await asyncio.to_thread(
                self.client.storage.from_(bucket).upload,
                path,
                data,
                {"content-type": content_type or content_type_for(path), "upsert": "true"},
            )
        except Exception as e:
            raise StorageError(f"Upload to {bucket}/{path} failed: {e}") from e
        logger.info(f"📤 Uploaded {len(data) / (1024 * 1024):.1f}MB to {bucket}/{path}")
        return path

    async def download(self, bucket: str, path: str) -> bytes:
        try:
            data = await asyncio.to_thread(self.client.storage.from_(bucket).download, path)
        except Exception as e:
            raise StorageError(f"Download of {bucket}/{path} failed: {e}") from e
        if not data:
            raise StorageError(f"Download of {bucket}/{path} returned no data")
        return data

    async def create_signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        try:
            result = await asyncio.to_thread(
                self.client.storage.from_(bucket).create_signed_url, path, expires_in
            )
        except Exception as e:
            raise StorageError(f"Failed to get signed URL for {bucket}/{path}: {e}") from e

        url = None
        if isinstance(result, dict):
            url = result.get("signedURL") or result.get("signedUrl")
        if not url:
            raise StorageError(f"Failed to get signed URL for {bucket}/{path}")
        return url

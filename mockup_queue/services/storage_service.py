"""Storage for generated artifacts.

Provider outputs are fetched from the URLs Replicate reports (or decoded from
inline data URLs), inspected with Pillow, and written under
``generated/<job_id>/<output_index><ext>`` on S3 or the local disk.
"""

import base64
import binascii
import io
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from uuid import UUID
import aiofiles
import aioboto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError
from mockup_queue.core.config import Settings
from mockup_queue.core.logging import get_logger

logger = get_logger(__name__)

_DATA_URL = re.compile(r"data:([^;,]+);base64,(.+)", re.DOTALL)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


class OutputDownloadError(Exception):
    """A provider output could not be fetched."""


@dataclass
class StoredOutput:
    """Where one job output ended up and what it looks like."""

    storage_path: str
    public_url: Optional[str]
    mime_type: str
    size_bytes: int
    width: Optional[int] = None
    height: Optional[int] = None


class LocalBackend:
    bucket_name = None

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        full_path = Path(path)
        if not full_path.is_absolute():
            full_path = self.root / full_path
        full_path = full_path.resolve()
        if not full_path.is_relative_to(self.root):
            raise ValueError(f"Path escapes storage root: {path}")
        return full_path

    async def put(self, key: str, content: bytes, content_type: str) -> Tuple[str, Optional[str]]:
        file_path = self._resolve(key)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(file_path, "wb") as f:
            await f.write(content)
        return str(file_path), None

    async def delete(self, path: str) -> bool:
        full_path = self._resolve(path)
        try:
            full_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Failed to delete local artifact", path=str(full_path), error=str(e))
            return False
        # Drop the per-job directory once its last output is gone
        if full_path.parent != self.root and not any(full_path.parent.iterdir()):
            full_path.parent.rmdir()
        return True


class S3Backend:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.bucket_name = settings.s3_bucket_name

    def _client(self):
        return aioboto3.Session().client(
            "s3",
            endpoint_url=self.settings.s3_endpoint_url,
            aws_access_key_id=self.settings.s3_access_key_id,
            aws_secret_access_key=self.settings.s3_secret_access_key,
            region_name=self.settings.s3_region,
            use_ssl=self.settings.s3_use_ssl
        )

    def public_url(self, key: str) -> str:
        if self.settings.s3_endpoint_url:
            # MinIO or another S3-compatible endpoint
            return f"{self.settings.s3_endpoint_url.rstrip('/')}/{self.bucket_name}/{key}"
        return f"https://{self.bucket_name}.s3.{self.settings.s3_region}.amazonaws.com/{key}"

    async def put(self, key: str, content: bytes, content_type: str) -> Tuple[str, Optional[str]]:
        async with self._client() as s3_client:
            await s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        return key, self.public_url(key)

    async def delete(self, key: str) -> bool:
        async with self._client() as s3_client:
            try:
                await s3_client.delete_object(Bucket=self.bucket_name, Key=key)
            except (ClientError, BotoCoreError) as e:
                logger.error("Failed to delete S3 artifact", bucket=self.bucket_name, key=key, error=str(e))
                return False
        return True


class StorageService:
    """Fetches provider outputs and keeps them in S3 or on local disk."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.storage_type = settings.storage_type
        if self.storage_type == "s3":
            self.backend = S3Backend(settings)
        else:
            self.backend = LocalBackend(settings.storage_local_path)

    @property
    def bucket_name(self) -> Optional[str]:
        return self.backend.bucket_name

    @staticmethod
    def output_key(job_id: UUID, output_index: int, extension: str) -> str:
        return f"generated/{job_id}/{output_index}{extension}"

    async def store_output(
        self,
        job_id: UUID,
        output_index: int,
        content: bytes,
        content_type: str
    ) -> StoredOutput:
        """Inspect one output and write it under the job's prefix.

        Raises:
            ClientError: If S3 rejects the upload
            OSError: If the local write fails
        """
        info = self.inspect_image(content, content_type)
        key = self.output_key(job_id, output_index, info["file_extension"])

        try:
            storage_path, public_url = await self.backend.put(key, content, content_type)
        except (ClientError, BotoCoreError, OSError) as e:
            logger.error("Failed to store output", key=key, storage=self.storage_type, error=str(e))
            raise

        logger.info("Output stored", key=key, storage=self.storage_type, size=len(content))
        return StoredOutput(
            storage_path=storage_path,
            public_url=public_url,
            mime_type=content_type,
            size_bytes=len(content),
            width=info.get("width"),
            height=info.get("height"),
        )

    async def delete_file(self, path: str) -> bool:
        """Remove a stored output; False when it was already gone or removal failed."""
        deleted = await self.backend.delete(path)
        if deleted:
            logger.info("Output deleted", path=path, storage=self.storage_type)
        return deleted

    async def download_output(self, url: str) -> Tuple[bytes, str]:
        """Fetch a provider output from an HTTP(S) or base64 data URL.

        Returns:
            Tuple of (content, content_type)

        Raises:
            OutputDownloadError: If the output cannot be fetched or decoded
        """
        if url.startswith("data:"):
            return self._decode_data_url(url)

        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0)) as client:
                response = await client.get(url, follow_redirects=True)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error("Output download rejected", url=url, status_code=status_code)
            raise OutputDownloadError(f"HTTP {status_code} error downloading output from: {url}") from e
        except httpx.HTTPError as e:
            logger.error("Output download failed", url=url, error_type=type(e).__name__, error=str(e))
            raise OutputDownloadError(f"Failed to download output from: {url}: {e}") from e

        content_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
        return response.content, content_type

    @staticmethod
    def _decode_data_url(url: str) -> Tuple[bytes, str]:
        match = _DATA_URL.match(url)
        if not match:
            raise OutputDownloadError(f"Invalid data URL format: {url[:50]}")
        try:
            content = base64.b64decode(match.group(2), validate=True)
        except (binascii.Error, ValueError) as e:
            raise OutputDownloadError(f"Failed to decode data URL: {e}") from e
        return content, match.group(1)

    @staticmethod
    def inspect_image(content: bytes, content_type: str) -> Dict[str, Any]:
        """Read file extension and pixel dimensions of an output."""
        metadata: Dict[str, Any] = {"file_extension": _EXTENSIONS.get(content_type, ".png")}
        try:
            with Image.open(io.BytesIO(content)) as image:
                metadata["width"], metadata["height"] = image.size
        except (UnidentifiedImageError, OSError) as e:
            logger.warning("Failed to extract image metadata", content_type=content_type, error=str(e))
        return metadata

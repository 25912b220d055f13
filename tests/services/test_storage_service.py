"""Tests for StorageService."""

import os
from pathlib import Path
from unittest.mock import AsyncMock, patch
from uuid import uuid4
import httpx
import pytest
from botocore.exceptions import ClientError

from mockup_queue.services.storage_service import OutputDownloadError, StorageService
from tests.utils import ImageTestUtils


class TestLocalStorage:
    """Test local storage functionality."""

    async def test_store_output(self, storage_service: StorageService, sample_image_data):
        """Test an output is written under the job prefix."""
        job_id = uuid4()

        stored = await storage_service.store_output(job_id, 0, sample_image_data, "image/png")

        assert stored.storage_path.endswith(f"generated/{job_id}/0.png")
        assert stored.public_url is None
        assert (stored.width, stored.height) == (64, 48)
        assert stored.size_bytes == len(sample_image_data)
        assert Path(stored.storage_path).read_bytes() == sample_image_data

    async def test_extension_follows_content_type(self, storage_service: StorageService):
        """Test the file extension follows the content type."""
        content = ImageTestUtils.create_test_image(8, 8, format="JPEG")

        stored = await storage_service.store_output(uuid4(), 2, content, "image/jpeg")

        assert stored.storage_path.endswith("/2.jpg")

    async def test_delete_file_local(self, storage_service: StorageService, sample_image_data):
        """Test deleting a local output."""
        stored = await storage_service.store_output(uuid4(), 0, sample_image_data, "image/png")
        job_dir = Path(stored.storage_path).parent

        assert await storage_service.delete_file(stored.storage_path) is True
        assert not os.path.exists(stored.storage_path)
        assert not job_dir.exists()
        assert await storage_service.delete_file(stored.storage_path) is False

    async def test_delete_keeps_sibling_outputs(self, storage_service: StorageService, sample_image_data):
        """Test deleting one output keeps the others."""
        job_id = uuid4()
        first = await storage_service.store_output(job_id, 0, sample_image_data, "image/png")
        second = await storage_service.store_output(job_id, 1, sample_image_data, "image/png")

        await storage_service.delete_file(first.storage_path)

        assert Path(second.storage_path).exists()

    async def test_paths_outside_root_are_rejected(self, storage_service: StorageService):
        """Test paths outside the storage root are rejected."""
        with pytest.raises(ValueError):
            await storage_service.delete_file("../../etc/passwd")

    def test_local_storage_has_no_bucket(self, storage_service: StorageService):
        """Test local storage reports no bucket."""
        assert storage_service.bucket_name is None


class TestDownloadOutput:
    """Fetching provider outputs."""

    async def test_data_url(self, storage_service: StorageService, png_data_url):
        """Test decoding a base64 data URL."""
        content, content_type = await storage_service.download_output(png_data_url)

        assert content_type == "image/png"
        assert content.startswith(b"\x89PNG")

    @pytest.mark.parametrize("url", ["data:broken", "data:image/png;base64,abc"])
    async def test_invalid_data_url(self, storage_service: StorageService, url):
        """Test a malformed data URL."""
        with pytest.raises(OutputDownloadError):
            await storage_service.download_output(url)

    async def test_http_download(self, storage_service: StorageService, sample_image_data):
        """Test downloading an output over HTTP."""
        url = "https://replicate.delivery/pbxt/out-0.png"
        with patch("mockup_queue.services.storage_service.httpx.AsyncClient") as mock_client_cls:
            client = AsyncMock()
            client.get.return_value = httpx.Response(
                200,
                content=sample_image_data,
                headers={"content-type": "image/png; charset=binary"},
                request=httpx.Request("GET", url),
            )
            mock_client_cls.return_value.__aenter__.return_value = client

            content, content_type = await storage_service.download_output(url)

        assert content == sample_image_data
        assert content_type == "image/png"
        client.get.assert_awaited_once_with(url, follow_redirects=True)

    @pytest.mark.parametrize("error", [
        httpx.ReadTimeout("slow"),
        httpx.ConnectError("refused"),
    ])
    async def test_http_transport_errors(self, storage_service: StorageService, error):
        """Test transport errors during download."""
        with patch("mockup_queue.services.storage_service.httpx.AsyncClient") as mock_client_cls:
            client = AsyncMock()
            client.get.side_effect = error
            mock_client_cls.return_value.__aenter__.return_value = client

            with pytest.raises(OutputDownloadError):
                await storage_service.download_output("https://replicate.delivery/out.png")

    async def test_http_not_found(self, storage_service: StorageService):
        """Test a 404 during download."""
        url = "https://replicate.delivery/pbxt/gone.png"
        with patch("mockup_queue.services.storage_service.httpx.AsyncClient") as mock_client_cls:
            client = AsyncMock()
            client.get.return_value = httpx.Response(404, request=httpx.Request("GET", url))
            mock_client_cls.return_value.__aenter__.return_value = client

            with pytest.raises(OutputDownloadError) as exc_info:
                await storage_service.download_output(url)

        assert "404" in str(exc_info.value)


class TestInspectImage:

    def test_png_dimensions(self, sample_image_data):
        """Test PNG dimensions are read."""
        info = StorageService.inspect_image(sample_image_data, "image/png")
        assert info == {"file_extension": ".png", "width": 64, "height": 48}

    def test_jpeg_extension(self):
        """Test JPEG outputs get a .jpg extension."""
        content = ImageTestUtils.create_test_image(10, 20, format="JPEG")
        info = StorageService.inspect_image(content, "image/jpeg")
        assert info["file_extension"] == ".jpg"
        assert (info["width"], info["height"]) == (10, 20)

    def test_unreadable_image(self):
        """Test unreadable bytes still take their extension from the content type."""
        info = StorageService.inspect_image(b"not an image", "image/webp")
        assert info == {"file_extension": ".webp"}


class TestS3Storage:
    """Test S3 storage functionality."""

    @pytest.fixture
    def s3_service(self, test_settings) -> StorageService:
        test_settings.storage_type = "s3"
        test_settings.s3_bucket_name = "mockups"
        test_settings.s3_endpoint_url = None
        return StorageService(test_settings)

    async def test_store_output_s3(self, s3_service: StorageService, sample_image_data):
        """Test an output is uploaded to S3."""
        job_id = uuid4()
        key = f"generated/{job_id}/0.png"
        with patch("aioboto3.Session") as mock_session:
            mock_s3_client = AsyncMock()
            mock_session.return_value.client.return_value.__aenter__.return_value = mock_s3_client

            stored = await s3_service.store_output(job_id, 0, sample_image_data, "image/png")

        assert stored.storage_path == key
        assert stored.public_url == f"https://mockups.s3.us-east-1.amazonaws.com/{key}"
        mock_s3_client.put_object.assert_awaited_once_with(
            Bucket="mockups",
            Key=key,
            Body=sample_image_data,
            ContentType="image/png",
        )

    async def test_custom_endpoint_url(self, test_settings, sample_image_data):
        """Test public URLs on a custom S3 endpoint."""
        test_settings.storage_type = "s3"
        test_settings.s3_bucket_name = "mockups"
        test_settings.s3_endpoint_url = "http://minio:9000/"
        service = StorageService(test_settings)
        job_id = uuid4()
        with patch("aioboto3.Session") as mock_session:
            mock_session.return_value.client.return_value.__aenter__.return_value = AsyncMock()

            stored = await service.store_output(job_id, 0, sample_image_data, "image/png")

        assert stored.public_url == f"http://minio:9000/mockups/generated/{job_id}/0.png"

    async def test_upload_error_propagates(self, s3_service: StorageService, sample_image_data):
        """Test an S3 upload error propagates."""
        error = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        with patch("aioboto3.Session") as mock_session:
            mock_s3_client = AsyncMock()
            mock_s3_client.put_object.side_effect = error
            mock_session.return_value.client.return_value.__aenter__.return_value = mock_s3_client

            with pytest.raises(ClientError):
                await s3_service.store_output(uuid4(), 0, sample_image_data, "image/png")

    async def test_delete_file_s3(self, s3_service: StorageService):
        """Test deleting an S3 output."""
        with patch("aioboto3.Session") as mock_session:
            mock_s3_client = AsyncMock()
            mock_session.return_value.client.return_value.__aenter__.return_value = mock_s3_client

            assert await s3_service.delete_file("generated/job-1/0.png") is True

        mock_s3_client.delete_object.assert_awaited_once_with(
            Bucket="mockups", Key="generated/job-1/0.png"
        )

    async def test_delete_failure_returns_false(self, s3_service: StorageService):
        """Test a failed S3 delete reports False."""
        error = ClientError({"Error": {"Code": "InternalError", "Message": "boom"}}, "DeleteObject")
        with patch("aioboto3.Session") as mock_session:
            mock_s3_client = AsyncMock()
            mock_s3_client.delete_object.side_effect = error
            mock_session.return_value.client.return_value.__aenter__.return_value = mock_s3_client

            assert await s3_service.delete_file("generated/job-1/0.png") is False

    def test_bucket_name(self, s3_service: StorageService):
        """Test the S3 bucket name is exposed."""
        assert s3_service.bucket_name == "mockups"

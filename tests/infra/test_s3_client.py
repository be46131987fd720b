"""Tests for the S3 storage driver."""

import io
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from filer.common.errors import (
    CompositeError,
    ConflictError,
    InternalStorageError,
    InvalidArgumentError,
    ObjectNotFoundError,
    PermissionDeniedError,
)
from filer.infra.storage.s3_client import S3StorageDriver


def _client_error(code: str, status: int, operation: str = "HeadObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class TestS3StorageDriver:
    """Test S3StorageDriver implementation."""

    @pytest.fixture
    def mock_s3(self):
        """Mock boto3 S3 client."""
        mock_client = MagicMock()
        with patch.object(S3StorageDriver, "_build_client", return_value=mock_client):
            yield mock_client

    @pytest.fixture
    def mock_settings(self):
        """Create mock settings for S3."""
        settings = MagicMock()
        settings.S3_ENDPOINT_URL = "http://localhost:9000"
        settings.S3_REGION = "us-east-1"
        settings.S3_ACCESS_KEY_ID = "test-key"
        settings.S3_SECRET_ACCESS_KEY = "test-secret"
        settings.S3_USE_SSL = False
        settings.S3_ADDRESSING_STYLE = "path"
        settings.STORAGE_PART_SIZE_BYTES = 5 * 1024 * 1024
        return settings

    @pytest.fixture
    def driver(self, mock_s3, mock_settings):
        """Create S3StorageDriver with mocked boto3."""
        return S3StorageDriver(settings=mock_settings, bucket="bucket", key_prefix="tenant")

    def test_describe(self, driver):
        assert driver.describe() == "s3://bucket/tenant/"

    def test_small_object_uses_put_object(self, driver, mock_s3):
        """Bodies smaller than one part are written with a single request."""
        mock_s3.head_object.return_value = {
            "ContentLength": 5,
            "ETag": '"abc"',
            "ContentType": "text/plain",
            "LastModified": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "Metadata": {"owner": "alice"},
        }

        record = driver.create(
            "docs/a.txt",
            io.BytesIO(b"hello"),
            content_type="text/plain",
            meta={"Owner": "alice"},
        )

        mock_s3.put_object.assert_called_once_with(
            Bucket="bucket",
            Key="tenant/docs/a.txt",
            Body=b"hello",
            Metadata={"owner": "alice"},
            ContentType="text/plain",
        )
        mock_s3.create_multipart_upload.assert_not_called()
        assert record.key == "docs/a.txt"
        assert record.etag == "abc"
        assert record.size == 5
        assert record.meta == {"owner": "alice"}

    def test_if_not_exists_conflicts_when_object_present(self, driver, mock_s3):
        mock_s3.head_object.return_value = {"ContentLength": 1}
        with pytest.raises(ConflictError):
            driver.create("a", io.BytesIO(b"x"), if_not_exists=True)
        mock_s3.put_object.assert_not_called()

    def test_if_not_exists_sends_conditional_put(self, driver, mock_s3):
        mock_s3.head_object.side_effect = [
            _client_error("404", 404),
            {"ContentLength": 1},
        ]
        driver.create("a", io.BytesIO(b"x"), if_not_exists=True)
        assert mock_s3.put_object.call_args[1]["IfNoneMatch"] == "*"

    def test_large_object_uses_multipart(self, driver, mock_s3, mock_settings):
        part_size = mock_settings.STORAGE_PART_SIZE_BYTES
        mock_s3.create_multipart_upload.return_value = {"UploadId": "upload-1"}
        mock_s3.upload_part.side_effect = [{"ETag": '"p1"'}, {"ETag": '"p2"'}]
        mock_s3.head_object.return_value = {"ContentLength": part_size + 3}

        driver.create("big.bin", io.BytesIO(b"a" * part_size + b"end"))

        assert mock_s3.upload_part.call_count == 2
        second = mock_s3.upload_part.call_args_list[1][1]
        assert second["PartNumber"] == 2
        assert second["Body"] == b"end"
        call_args = mock_s3.complete_multipart_upload.call_args
        assert call_args[1]["UploadId"] == "upload-1"
        assert call_args[1]["MultipartUpload"]["Parts"] == [
            {"ETag": '"p1"', "PartNumber": 1},
            {"ETag": '"p2"', "PartNumber": 2},
        ]
        mock_s3.abort_multipart_upload.assert_not_called()

    def test_multipart_failure_aborts(self, driver, mock_s3, mock_settings):
        part_size = mock_settings.STORAGE_PART_SIZE_BYTES
        mock_s3.create_multipart_upload.return_value = {"UploadId": "upload-1"}
        mock_s3.upload_part.side_effect = [
            {"ETag": '"p1"'},
            _client_error("InternalError", 500, "UploadPart"),
        ]

        with pytest.raises(InternalStorageError, match="upload part"):
            driver.create("big.bin", io.BytesIO(b"a" * part_size + b"end"))

        mock_s3.abort_multipart_upload.assert_called_once_with(
            Bucket="bucket", Key="tenant/big.bin", UploadId="upload-1"
        )
        mock_s3.complete_multipart_upload.assert_not_called()

    def test_multipart_abort_failure_reports_both(self, driver, mock_s3, mock_settings):
        part_size = mock_settings.STORAGE_PART_SIZE_BYTES
        mock_s3.create_multipart_upload.return_value = {"UploadId": "upload-1"}
        mock_s3.upload_part.side_effect = _client_error("InternalError", 500, "UploadPart")
        mock_s3.abort_multipart_upload.side_effect = _client_error(
            "InternalError", 500, "AbortMultipartUpload"
        )

        with pytest.raises(CompositeError):
            driver.create("big.bin", io.BytesIO(b"a" * part_size))

    def test_create_multipart_missing_upload_id(self, driver, mock_s3, mock_settings):
        mock_s3.create_multipart_upload.return_value = {}
        with pytest.raises(InternalStorageError, match="missing UploadId"):
            driver.create(
                "big.bin", io.BytesIO(b"a" * mock_settings.STORAGE_PART_SIZE_BYTES)
            )

    def test_metadata_maps_not_found(self, driver, mock_s3):
        mock_s3.head_object.side_effect = _client_error("404", 404)
        with pytest.raises(ObjectNotFoundError):
            driver.metadata("missing")

    def test_metadata_maps_forbidden(self, driver, mock_s3):
        mock_s3.head_object.side_effect = _client_error("403", 403)
        with pytest.raises(PermissionDeniedError):
            driver.metadata("secret")

    def test_metadata_prefers_last_modified_meta(self, driver, mock_s3):
        mock_s3.head_object.return_value = {
            "ContentLength": 1,
            "LastModified": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "Metadata": {"last-modified": "2020-06-01T00:00:00Z"},
        }
        record = driver.metadata("a")
        assert record.modified == datetime(2020, 6, 1, tzinfo=timezone.utc)

    def test_list_page_merges_contents_and_prefixes(self, driver, mock_s3):
        mock_s3.list_objects_v2.return_value = {
            "Contents": [
                {"Key": "tenant/docs/b.txt", "Size": 2, "ETag": '"b"'},
                {"Key": "tenant/docs/a.txt", "Size": 1, "ETag": '"a"'},
            ],
            "CommonPrefixes": [{"Prefix": "tenant/docs/sub/"}],
            "IsTruncated": True,
            "NextContinuationToken": "next",
        }

        page = driver.list_page("docs/", delimiter="/", limit=10)

        mock_s3.list_objects_v2.assert_called_once_with(
            Bucket="bucket", Prefix="tenant/docs/", MaxKeys=10, Delimiter="/"
        )
        assert [(entry.key, entry.is_dir) for entry in page.entries] == [
            ("docs/a.txt", False),
            ("docs/b.txt", False),
            ("docs/sub/", True),
        ]
        assert page.next_token == "next"

    def test_list_page_rejects_zero_limit(self, driver, mock_s3):
        with pytest.raises(InvalidArgumentError):
            driver.list_page("docs/", limit=0)
        mock_s3.list_objects_v2.assert_not_called()

    def test_delete_checks_existence_first(self, driver, mock_s3):
        mock_s3.head_object.side_effect = _client_error("404", 404)
        with pytest.raises(ObjectNotFoundError):
            driver.delete("missing")
        mock_s3.delete_object.assert_not_called()

    def test_delete_object(self, driver, mock_s3):
        mock_s3.head_object.return_value = {"ContentLength": 1}
        driver.delete("a")
        mock_s3.delete_object.assert_called_once_with(Bucket="bucket", Key="tenant/a")

    def test_delete_many_ignores_missing_keys(self, driver, mock_s3):
        mock_s3.delete_objects.return_value = {
            "Errors": [{"Key": "tenant/b", "Code": "NoSuchKey"}]
        }
        assert driver.delete_many(["a", "b"]) == ["a"]
        call_args = mock_s3.delete_objects.call_args
        assert call_args[1]["Delete"]["Objects"] == [
            {"Key": "tenant/a"},
            {"Key": "tenant/b"},
        ]

    def test_delete_many_reports_other_errors(self, driver, mock_s3):
        mock_s3.delete_objects.return_value = {
            "Errors": [{"Key": "tenant/a", "Code": "AccessDenied", "Message": "denied"}]
        }
        with pytest.raises(InternalStorageError, match="denied"):
            driver.delete_many(["a"])

    def test_delete_many_batches_by_thousand(self, driver, mock_s3):
        mock_s3.delete_objects.return_value = {}
        keys = [f"k{index}" for index in range(1500)]
        assert len(driver.delete_many(keys)) == 1500
        assert mock_s3.delete_objects.call_count == 2

    def test_close_closes_client(self, driver, mock_s3):
        driver.close()
        mock_s3.close.assert_called_once_with()

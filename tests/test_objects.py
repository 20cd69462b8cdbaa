"""Tests for the S3-compatible object store client."""

import io
from unittest.mock import Mock, patch
from uuid import UUID

import pytest
from botocore.exceptions import ClientError

from eobflow.storage import S3Client, page_key


@pytest.fixture
def boto_client() -> Mock:
    return Mock()


@pytest.fixture
def storage(boto_client) -> S3Client:
    with patch("eobflow.storage.objects.boto3.client", return_value=boto_client) as factory:
        client = S3Client("https://r2.example.com", "key", "secret", default_bucket="eob-pages")
    factory.assert_called_once_with(
        "s3",
        endpoint_url="https://r2.example.com",
        aws_access_key_id="key",
        aws_secret_access_key="secret",
    )
    return client


def test_page_key_format():
    document_id = UUID("6f1c1d3e-8a1e-4a55-9d1e-0e7b5d2c9a10")

    assert page_key(document_id, 7) == "6f1c1d3e-8a1e-4a55-9d1e-0e7b5d2c9a10/page-007.pdf"
    assert page_key(document_id, 123, ext="png").endswith("/page-123.png")


class TestS3Client:

    def test_get_uses_default_bucket(self, storage, boto_client):
        boto_client.get_object.return_value = {"Body": io.BytesIO(b"%PDF")}

        assert storage.get("doc/page-001.pdf") == b"%PDF"
        boto_client.get_object.assert_called_once_with(Bucket="eob-pages", Key="doc/page-001.pdf")

    def test_get_explicit_bucket(self, storage, boto_client):
        boto_client.get_object.return_value = {"Body": io.BytesIO(b"x")}

        storage.get("a.pdf", bucket="eob-uploads")

        assert boto_client.get_object.call_args.kwargs["Bucket"] == "eob-uploads"

    def test_get_missing_key_propagates(self, storage, boto_client):
        boto_client.get_object.side_effect = ClientError(
            {"Error": {"Code": "NoSuchKey", "Message": "Not Found"}}, "GetObject"
        )

        with pytest.raises(ClientError):
            storage.get("missing.pdf")

    def test_put(self, storage, boto_client):
        storage.put("doc/page-001.pdf", b"%PDF")

        boto_client.put_object.assert_called_once_with(
            Bucket="eob-pages",
            Key="doc/page-001.pdf",
            Body=b"%PDF",
            ContentType="application/pdf",
        )

    def test_list_follows_pagination(self, storage, boto_client):
        paginator = Mock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "doc/page-001.pdf"}, {"Key": "doc/page-002.pdf"}]},
            {"Contents": [{"Key": "doc/page-003.pdf"}]},
            {},
        ]
        boto_client.get_paginator.return_value = paginator

        keys = storage.list("doc/")

        assert keys == ["doc/page-001.pdf", "doc/page-002.pdf", "doc/page-003.pdf"]
        paginator.paginate.assert_called_once_with(Bucket="eob-pages", Prefix="doc/")

    def test_no_bucket_at_all(self, boto_client):
        with patch("eobflow.storage.objects.boto3.client", return_value=boto_client):
            client = S3Client("https://storage.googleapis.com", "hmac", "secret")

        with pytest.raises(ValueError):
            client.get("a.pdf")

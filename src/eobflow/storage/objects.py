"""S3-compatible object storage for source documents and page objects using boto3."""

import logging
from typing import Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

PAGE_KEY_FORMAT = "{document_id}/page-{page_number:03d}.{ext}"


def page_key(document_id, page_number: int, ext: str = "pdf") -> str:
    """Generate the object key of one page.

    Format: {document_id}/page-{NNN}.{ext}
    """
    return PAGE_KEY_FORMAT.format(document_id=document_id, page_number=page_number, ext=ext)


class S3Client:
    """S3-compatible storage client (supports Cloudflare R2 and the GCS interop endpoint)."""

    def __init__(
        self,
        endpoint_url: str,
        access_key_id: str,
        secret_access_key: str,
        default_bucket: Optional[str] = None,
    ):
        """Initialize S3 client.

        Args:
            endpoint_url: S3 endpoint URL (for R2: https://<account>.r2.cloudflarestorage.com)
            access_key_id: AWS access key ID (or GCS HMAC key)
            secret_access_key: AWS secret access key (or GCS HMAC secret)
            default_bucket: Bucket used when a call omits one
        """
        self.default_bucket = default_bucket
        self.s3_client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )
        logger.info(f"S3 client initialized for endpoint: {endpoint_url}")

    def _bucket(self, bucket: Optional[str]) -> str:
        bucket = bucket or self.default_bucket
        if not bucket:
            raise ValueError("No bucket given and no default bucket configured")
        return bucket

    def get(self, key: str, bucket: Optional[str] = None) -> bytes:
        """Download an object.

        Args:
            key: Object key
            bucket: Bucket name (defaults to the client's bucket)

        Returns:
            Object data as bytes
        """
        bucket = self._bucket(bucket)
        try:
            response = self.s3_client.get_object(Bucket=bucket, Key=key)
            data = response["Body"].read()
            logger.debug(f"Downloaded {bucket}/{key} ({len(data)} bytes)")
            return data
        except ClientError as e:
            logger.error(f"Error downloading {bucket}/{key}: {e}")
            raise

    def put(
        self,
        key: str,
        data: bytes,
        bucket: Optional[str] = None,
        content_type: str = "application/pdf",
    ):
        """Upload an object.

        Args:
            key: Object key
            data: File data as bytes
            bucket: Bucket name (defaults to the client's bucket)
            content_type: MIME type of the file
        """
        bucket = self._bucket(bucket)
        try:
            self.s3_client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
            logger.debug(f"Uploaded {bucket}/{key} ({len(data)} bytes)")
        except ClientError as e:
            logger.error(f"Error uploading {bucket}/{key}: {e}")
            raise

    def list(self, prefix: str, bucket: Optional[str] = None) -> list[str]:
        """List every key under a prefix.

        Args:
            prefix: Object key prefix (e.g., "<document_id>/")
            bucket: Bucket name (defaults to the client's bucket)

        Returns:
            List of object keys
        """
        bucket = self._bucket(bucket)
        keys = []
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except ClientError as e:
            logger.error(f"Error listing {bucket}/{prefix}: {e}")
            raise
        return keys

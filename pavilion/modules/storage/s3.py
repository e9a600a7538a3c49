"""S3/MinIO compatible object store."""

import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from pavilion.core.exceptions import StorageError

# delete_objects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000


@dataclass
class S3Config:
    """Object store configuration."""
    bucket: str
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False
    url_expires_in: int = 3600


class S3ObjectStore:
    """Key/object store backed by S3 or an S3-compatible service."""

    def __init__(
        self,
        config: S3Config,
        client=None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self._client = client
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings, logger: Optional[logging.Logger] = None) -> "S3ObjectStore":
        return cls(
            S3Config(
                bucket=settings.STORAGE_BUCKET,
                region=settings.STORAGE_REGION,
                access_key=settings.STORAGE_ACCESS_KEY,
                secret_key=settings.STORAGE_SECRET_KEY,
                endpoint_url=settings.STORAGE_ENDPOINT_URL,
                use_ssl=settings.STORAGE_USE_SSL,
                cdn_domain=settings.CDN_DOMAIN,
                cdn_enabled=settings.CDN_ENABLED,
            ),
            logger=logger,
        )

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key,
                "aws_secret_access_key": self.config.secret_key,
            }

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )

            if not self.config.use_ssl and self.config.endpoint_url:
                # Allow non-SSL for local MinIO
                client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    def upload(
        self,
        stream: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Upload a stream under a key.

        Args:
            stream: Readable binary stream, need not be seekable
            key: Object key
            content_type: MIME type stored with the object

        Returns:
            Retrievable URL of the object

        Raises:
            StorageError: If the upload fails
        """
        try:
            self._get_client().upload_fileobj(
                stream,
                self.config.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {key} to object store", cause=e)

        self.logger.info(f"Uploaded {key} to object store")
        return self.get_url(key)

    def delete(self, prefix: str) -> int:
        """Delete every object whose key starts with prefix.

        Returns:
            Number of objects deleted

        Raises:
            StorageError: If listing or deletion fails
        """
        client = self._get_client()
        deleted = 0

        try:
            paginator = client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
                keys = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
                for start in range(0, len(keys), DELETE_BATCH_SIZE):
                    batch = keys[start:start + DELETE_BATCH_SIZE]
                    response = client.delete_objects(
                        Bucket=self.config.bucket,
                        Delete={"Objects": batch, "Quiet": True},
                    )
                    errors = response.get("Errors", [])
                    if errors:
                        raise StorageError(
                            f"Failed to delete {len(errors)} objects under {prefix}"
                        )
                    deleted += len(batch)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete objects under {prefix}", cause=e)

        return deleted

    def get_url(self, key: str, expires_in: Optional[int] = None) -> str:
        """Get URL for an object (CDN, presigned, or direct)."""
        # Use CDN if enabled
        if self.config.cdn_enabled and self.config.cdn_domain:
            return f"https://{self.config.cdn_domain}/{key}"

        try:
            return self._get_client().generate_presigned_url(
                "get_object",
                Params={"Bucket": self.config.bucket, "Key": key},
                ExpiresIn=expires_in or self.config.url_expires_in,
            )
        except (BotoCoreError, ClientError):
            # Fallback to direct URL
            if self.config.endpoint_url:
                return f"{self.config.endpoint_url}/{self.config.bucket}/{key}"
            return f"https://{self.config.bucket}.s3.{self.config.region}.amazonaws.com/{key}"

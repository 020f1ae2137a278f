import io
import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..settings import settings
from ..services.errors import RecipeStorageError
from ..services.storage import StoredFile, image_extension, check_upload_size, new_storage_key

logger = logging.getLogger("recipeshare.storage.s3")

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


class S3UploadStorage:
    """Upload storage on an S3-compatible bucket (MinIO, R2, AWS)."""

    def __init__(
        self,
        endpoint_url: str,
        region_name: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
        public_base_url: str,
        client=None,
    ):
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self.s3 = client or boto3.client(
            service_name="s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region_name,
        )

    def save(self, folder: str, filename: Optional[str], data: bytes) -> StoredFile:
        ext = image_extension(filename)
        check_upload_size(filename, data)

        key = new_storage_key(folder, ext)
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=io.BytesIO(data),
                ContentType=CONTENT_TYPES.get(ext, "application/octet-stream"),
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to upload '{filename}' to s3://{self.bucket}/{key}: {e}")
            raise RecipeStorageError(f"Failed to store upload: {e}") from e
        logger.info(f"Uploaded {len(data)} bytes from '{filename}' to s3://{self.bucket}/{key}")
        return StoredFile(key=key, extension=ext, url=f"{self.public_base_url}/{key}")

    def delete(self, key: str) -> bool:
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to delete s3://{self.bucket}/{key}: {e}")
            return False


def get_store() -> S3UploadStorage:
    # Keep the public URL rooted at the upload path unless a CDN base is configured
    public_base = settings.object_public_base_url or settings.upload_public_path
    return S3UploadStorage(
        endpoint_url=settings.object_store_endpoint,
        region_name=settings.object_store_region,
        access_key_id=settings.object_store_access_key_id,
        secret_access_key=settings.object_store_secret_access_key,
        bucket=settings.object_store_bucket,
        public_base_url=public_base,
    )

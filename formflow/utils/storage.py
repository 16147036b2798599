### formflow/utils/storage.py

# Standard library imports
import io
import os
from dataclasses import dataclass
from typing import Optional

# Third party imports
import boto3
from botocore.exceptions import ClientError

# Local imports
from formflow.core.config import settings
from formflow.core.exceptions import PersistenceException
from formflow.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class StoredFile:
    """Location of a saved artifact"""
    path: str
    url: str


class FileStorage:
    """Interface for persisting generated and signed documents"""

    def save(self, relative_path: str, content: bytes, content_type: Optional[str] = None) -> StoredFile:
        raise NotImplementedError


class LocalFileStorage(FileStorage):
    """Stores files under a base directory and serves them from a base URL"""

    def __init__(self, base_dir: str, base_url: str):
        self.base_dir = base_dir
        self.base_url = base_url.rstrip("/")

    def save(self, relative_path: str, content: bytes, content_type: Optional[str] = None) -> StoredFile:
        """
        Write the content below the base directory

        Args:
            relative_path: Path relative to the base directory, using forward slashes
            content: Raw file bytes
            content_type: Ignored for local files

        Returns:
            StoredFile: Absolute path on disk and public URL
        """
        relative_path = relative_path.lstrip("/")
        full_path = os.path.abspath(os.path.join(self.base_dir, *relative_path.split("/")))
        if not full_path.startswith(os.path.abspath(self.base_dir) + os.sep):
            raise PersistenceException("Refusing to write outside storage directory", {"path": relative_path})

        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "wb") as f:
                f.write(content)
        except OSError as e:
            logger.error("Error writing file to local storage", path=full_path, error=str(e))
            raise PersistenceException(f"Failed to store {relative_path}", {"error": str(e)}) from e

        return StoredFile(path=full_path, url=f"{self.base_url}/{relative_path}")


class S3FileStorage(FileStorage):
    """Stores files in an S3 bucket and hands out presigned URLs"""

    def __init__(self, s3_client=None, bucket_name: Optional[str] = None, url_expiration: int = 3600):
        """Initialize S3 client with AWS credentials"""
        self.s3_client = s3_client or boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        self.bucket_name = bucket_name or settings.s3_bucket_name
        self.url_expiration = url_expiration

    def save(self, relative_path: str, content: bytes, content_type: Optional[str] = None) -> StoredFile:
        """
        Upload the content and return its key with a presigned URL

        Args:
            relative_path: S3 key where the file will be stored
            content: Raw file bytes
            content_type: Optional content type; pdf is inferred from the extension
        """
        key = relative_path.lstrip("/")
        extra_args = {}
        if os.path.splitext(key)[1] == ".pdf":
            extra_args["ContentType"] = "application/pdf"
        if content_type:
            extra_args["ContentType"] = content_type

        try:
            self.s3_client.upload_fileobj(io.BytesIO(content), self.bucket_name, key, ExtraArgs=extra_args)
            url = self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=self.url_expiration,
            )
        except ClientError as e:
            logger.error("Error uploading file to S3", key=key, error=str(e))
            raise PersistenceException(f"Failed to store {key}", {"error": str(e)}) from e

        return StoredFile(path=key, url=url)


def get_file_storage() -> FileStorage:
    """
    Method for obtaining the configured storage backend
    """
    if settings.storage_backend == "s3":
        return S3FileStorage()
    return LocalFileStorage(settings.storage_local_dir, settings.storage_base_url)

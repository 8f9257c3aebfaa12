
import logging
from typing import Optional
from urllib.parse import urlparse, unquote
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from lendlab.configs import S3_CONFIG
from lendlab.core.exceptions import StorageError

logger = logging.getLogger(__name__)

MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class LendLabS3:
    """Object storage for data request artifacts (MinIO in deployment)."""

    def __init__(self, client=None, bucket: Optional[str] = None):
        self.bucket = bucket or S3_CONFIG['bucket']
        scheme = 'https' if S3_CONFIG['secure'] else 'http'
        self.base_url = f"{scheme}://{S3_CONFIG['endpoint']}"
        # Initialize S3 client for MinIO
        self.s3 = client or boto3.session.Session().client(
            service_name='s3',
            aws_access_key_id=S3_CONFIG['access_key'],
            aws_secret_access_key=S3_CONFIG['secret_key'],
            endpoint_url=self.base_url,
            use_ssl=S3_CONFIG['secure']
        )
        self._initialize()

    def _initialize(self):
        try:
            self.s3.head_bucket(Bucket=self.bucket)
            logger.info(f"Bucket '{self.bucket}' already exists.")
        except (ClientError, BotoCoreError):
            try:
                self.s3.create_bucket(Bucket=self.bucket)
                logger.info(f"Bucket '{self.bucket}' created successfully.")
            except (ClientError, BotoCoreError) as create_error:
                logger.error(f"Error creating bucket '{self.bucket}': {create_error}")

    @staticmethod
    def data_request_key(request_id: str, filename: str) -> str:
        return f"data_requests/{request_id}/{filename}"

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{self.bucket}/{key}"

    def key_from_url(self, url: Optional[str]) -> Optional[str]:
        """Recovers the object key from a stored artifact url, if it is ours."""
        if not url:
            return None
        path = unquote(urlparse(url).path).lstrip('/')
        prefix = f"{self.bucket}/"
        if path.startswith(prefix):
            return path[len(prefix):]
        return None

    def upload_artifact(self, fileobj, key: str, content_type: Optional[str] = None) -> str:
        extra = {'ContentType': content_type} if content_type else {}
        try:
            self.s3.upload_fileobj(fileobj, self.bucket, key, ExtraArgs=extra)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload '{key}': {e}")
            raise StorageError(f"Failed to store artifact '{key}'.") from e
        return self.url_for(key)

    def delete_artifact(self, key: str) -> bool:
        """Deletes an artifact.

        Returns False when the object was already absent, True when it was
        removed. Any other storage failure raises StorageError.
        """
        try:
            self.s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in MISSING_CODES:
                logger.warning(f"Artifact '{key}' already absent from '{self.bucket}'.")
                return False
            logger.error(f"Failed to inspect artifact '{key}': {e}")
            raise StorageError(f"Failed to delete artifact '{key}'.") from e
        except BotoCoreError as e:
            logger.error(f"Failed to inspect artifact '{key}': {e}")
            raise StorageError(f"Failed to delete artifact '{key}'.") from e
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete artifact '{key}': {e}")
            raise StorageError(f"Failed to delete artifact '{key}'.") from e
        return True

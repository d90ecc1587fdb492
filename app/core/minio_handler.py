import io
import logging
from typing import Optional

from minio import Minio
from minio.error import S3Error

from .config import settings

logger = logging.getLogger(__name__)

class MinioHandler:
    _client = None

    @classmethod
    def get_client(cls):
        if cls._client is None:
            try:
                cls._client = Minio(
                    settings.MINIO_ENDPOINT,
                    access_key=settings.MINIO_ACCESS_KEY,
                    secret_key=settings.MINIO_SECRET_KEY,
                    secure=settings.MINIO_USE_SSL
                )
                logger.info(f"MinIO client initialized for endpoint: {settings.MINIO_ENDPOINT}")
                cls._ensure_bucket_exists(cls._client, settings.MINIO_BUCKET_NAME)
            except Exception as e:
                logger.error(f"Error initializing MinIO client: {e}")
                cls._client = None # Ensure it's None if initialization fails
                raise
        return cls._client

    @staticmethod
    def _ensure_bucket_exists(client: Minio, bucket_name: str):
        try:
            if not client.bucket_exists(bucket_name):
                client.make_bucket(bucket_name)
                logger.info(f"MinIO bucket '{bucket_name}' created successfully.")
        except S3Error as e:
            logger.error(f"Error checking or creating MinIO bucket '{bucket_name}': {e}")
            raise


class MinioBlobStore:
    """
    Blob store backed by a MinIO/S3 bucket.

    Exposes exists/get/put/delete by object path. Nothing here assumes a local
    filesystem, so the same store works against any S3-compatible backend.
    """

    def __init__(self, client: Optional[Minio] = None, bucket_name: str = None):
        self.client = client or MinioHandler.get_client()
        self.bucket_name = bucket_name or settings.MINIO_BUCKET_NAME

    def exists(self, path: str) -> bool:
        try:
            self.client.stat_object(self.bucket_name, path)
            return True
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject", "NotFound"):
                return False
            raise

    def get(self, path: str) -> bytes:
        response = None
        try:
            response = self.client.get_object(self.bucket_name, path)
            return response.read()
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self.client.put_object(
            self.bucket_name,
            path,
            io.BytesIO(data),
            length=len(data),
            content_type=content_type
        )
        logger.debug(f"Uploaded '{path}' ({len(data)} bytes) to bucket '{self.bucket_name}'.")

    def delete(self, path: str) -> None:
        self.client.remove_object(self.bucket_name, path)

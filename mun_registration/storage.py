"""
Object storage for generated receipts
"""

import logging
from abc import ABC, abstractmethod

from supabase import Client, create_client

from .exceptions import ExternalServiceException

logger = logging.getLogger(__name__)


class ObjectStorage(ABC):
    """Abstract binary upload returning a public URL"""

    @abstractmethod
    def upload(self, data: bytes, path: str, content_type: str = "application/pdf") -> str:
        """
        Upload a file

        Args:
            data: File contents
            path: Suggested path inside the bucket
            content_type: MIME type of the contents

        Returns:
            Public URL of the uploaded file

        Raises:
            ExternalServiceException: If the upload fails
        """


class SupabaseObjectStorage(ObjectStorage):
    """Supabase Storage bucket"""

    def __init__(self, client: Client, bucket: str):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, url: str, key: str, bucket: str) -> 'SupabaseObjectStorage':
        return cls(create_client(url, key), bucket)

    def upload(self, data: bytes, path: str, content_type: str = "application/pdf") -> str:
        try:
            self.client.storage.from_(self.bucket).upload(
                path=path,
                file=data,
                file_options={"content-type": content_type, "upsert": "false"},
            )
            public_url = self.client.storage.from_(self.bucket).get_public_url(path)
        except Exception as e:
            logger.exception("Upload of %s to bucket %s failed", path, self.bucket)
            raise ExternalServiceException("storage", str(e)) from e

        logger.info("Uploaded %s (%d bytes)", path, len(data))
        return public_url


class DisabledObjectStorage(ObjectStorage):
    """Used when Supabase isn't configured; every upload fails"""

    def upload(self, data: bytes, path: str, content_type: str = "application/pdf") -> str:
        logger.warning("Upload of %s refused: object storage not configured", path)
        raise ExternalServiceException("storage", "object storage is not configured")

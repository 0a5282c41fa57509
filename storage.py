"""Object storage for menu images, kept in a GridFS bucket next to the records."""

import time
from typing import Optional, Tuple

import gridfs
from gridfs.errors import NoFile
import structlog

logger = structlog.get_logger()

URL_PREFIX = "/storage/"


def object_path(owner_id: str, filename: str, timestamp_ms: Optional[int] = None) -> str:
    """menuItems/{ownerId}/{timestamp}_{filename}"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    safe_name = filename.replace("/", "_").replace("\\", "_")
    return f"menuItems/{owner_id}/{timestamp_ms}_{safe_name}"


def url_for(path: str) -> str:
    return URL_PREFIX + path


class ObjectStorage:
    def __init__(self, db, bucket_name: str = "objects"):
        self.bucket = gridfs.GridFSBucket(db, bucket_name=bucket_name)

    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store ``data`` under ``path`` and return its retrievable URL."""
        self.bucket.upload_from_stream(path, data, metadata={"content_type": content_type})
        logger.info("object_uploaded", path=path, size=len(data))
        return url_for(path)

    def download(self, path: str) -> Tuple[bytes, Optional[str]]:
        """Latest revision stored under ``path``. Raises FileNotFoundError."""
        try:
            stream = self.bucket.open_download_stream_by_name(path)
        except NoFile:
            raise FileNotFoundError(path) from None
        with stream:
            metadata = stream.metadata or {}
            return stream.read(), metadata.get("content_type")

    def delete(self, path: str) -> None:
        """Remove every revision stored under ``path``. Missing paths are ignored."""
        for grid_out in self.bucket.find({"filename": path}):
            self.bucket.delete(grid_out._id)
        logger.info("object_deleted", path=path)

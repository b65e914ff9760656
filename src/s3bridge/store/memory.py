"""In-memory S3 client for s3bridge.

Implements the subset of the aiobotocore S3 client surface the proxy
uses (``get_object``, ``list_objects_v2``, ``head_bucket``) plus
``put_object``/``create_bucket`` for seeding. Failures are raised as
botocore ``ClientError`` with the codes S3 returns, so the proxy sees
exactly what it would see from the real service.

Objects live in a dictionary keyed by (bucket, key). A directory can be
loaded at startup with ``seed_from_directory``: each top-level
subdirectory becomes a bucket and the files below it become objects.
"""

import hashlib
import logging
import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

# S3 assigns this when an upload carries no Content-Type.
DEFAULT_CONTENT_TYPE = "binary/octet-stream"

_MAX_KEYS = 1000


def _client_error(code: str, message: str, status: int, operation: str) -> ClientError:
    """Build a ClientError shaped like the ones botocore raises."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def _etag_matches(header: str, etag: str) -> bool:
    """Return True if an If-None-Match header value matches ``etag``."""
    if header.strip() == "*":
        return True
    wanted = etag.strip('"')
    for tag in header.split(","):
        tag = tag.strip()
        if tag.startswith("W/"):
            tag = tag[2:]
        if tag.strip('"') == wanted:
            return True
    return False


@dataclass
class StoredObject:
    """One object held by the memory client."""

    data: bytes
    etag: str
    content_type: str = DEFAULT_CONTENT_TYPE
    cache_control: str | None = None
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MemoryStreamingBody:
    """Async body with the read/close/context-manager shape of aiobotocore's."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0
        self.closed = False

    async def read(self, amt: int | None = None) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed body")
        if amt is None:
            amt = len(self._data) - self._offset
        chunk = self._data[self._offset : self._offset + amt]
        self._offset += len(chunk)
        return chunk

    def close(self) -> None:
        self.closed = True

    async def aclose(self) -> None:
        self.close()

    async def __aenter__(self) -> "MemoryStreamingBody":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class MemoryS3Client:
    """An S3 client that keeps every object in process memory."""

    def __init__(self) -> None:
        self._buckets: set[str] = set()
        self._objects: dict[tuple[str, str], StoredObject] = {}

    async def __aenter__(self) -> "MemoryS3Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    def _require_bucket(self, bucket: str, operation: str) -> None:
        if bucket not in self._buckets:
            raise _client_error(
                "NoSuchBucket", "The specified bucket does not exist", 404, operation
            )

    async def create_bucket(self, Bucket: str, **kwargs: Any) -> dict:
        self._buckets.add(Bucket)
        return {"Location": f"/{Bucket}"}

    async def head_bucket(self, Bucket: str) -> dict:
        if Bucket not in self._buckets:
            # HEAD responses carry no body, so botocore only knows the status.
            raise _client_error("404", "Not Found", 404, "HeadBucket")
        return {"ResponseMetadata": {"HTTPStatusCode": 200}}

    async def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: bytes | str = b"",
        ContentType: str | None = None,
        CacheControl: str | None = None,
        **kwargs: Any,
    ) -> dict:
        self._require_bucket(Bucket, "PutObject")
        data = Body.encode() if isinstance(Body, str) else bytes(Body)
        etag = f'"{hashlib.md5(data).hexdigest()}"'
        self._objects[(Bucket, Key)] = StoredObject(
            data=data,
            etag=etag,
            content_type=ContentType or DEFAULT_CONTENT_TYPE,
            cache_control=CacheControl,
        )
        return {"ETag": etag}

    async def get_object(self, Bucket: str, Key: str, IfNoneMatch: str | None = None, **kwargs: Any) -> dict:
        self._require_bucket(Bucket, "GetObject")
        obj = self._objects.get((Bucket, Key))
        if obj is None:
            raise _client_error("NoSuchKey", "The specified key does not exist.", 404, "GetObject")
        if IfNoneMatch is not None and _etag_matches(IfNoneMatch, obj.etag):
            raise _client_error("304", "Not Modified", 304, "GetObject")

        response: dict[str, Any] = {
            "Body": MemoryStreamingBody(obj.data),
            "ContentType": obj.content_type,
            "ContentLength": len(obj.data),
            "ETag": obj.etag,
            "LastModified": obj.last_modified,
            "ResponseMetadata": {"HTTPStatusCode": 200},
        }
        if obj.cache_control is not None:
            response["CacheControl"] = obj.cache_control
        return response

    async def list_objects_v2(
        self,
        Bucket: str,
        Prefix: str = "",
        ContinuationToken: str | None = None,
        MaxKeys: int = _MAX_KEYS,
        **kwargs: Any,
    ) -> dict:
        self._require_bucket(Bucket, "ListObjectsV2")
        keys = sorted(k for (b, k) in self._objects if b == Bucket and k.startswith(Prefix))
        start = int(ContinuationToken) if ContinuationToken else 0
        page = keys[start : start + MaxKeys]
        truncated = start + MaxKeys < len(keys)

        response: dict[str, Any] = {
            "Name": Bucket,
            "Prefix": Prefix,
            "KeyCount": len(page),
            "MaxKeys": MaxKeys,
            "IsTruncated": truncated,
        }
        if page:
            response["Contents"] = [
                {
                    "Key": key,
                    "Size": len(self._objects[(Bucket, key)].data),
                    "ETag": self._objects[(Bucket, key)].etag,
                    "LastModified": self._objects[(Bucket, key)].last_modified,
                }
                for key in page
            ]
        if truncated:
            response["NextContinuationToken"] = str(start + MaxKeys)
        return response

    async def seed_from_directory(self, root: str | Path) -> int:
        """Load every file under ``root/<bucket>/`` as an object.

        Content types are guessed from file extensions, as ``aws s3 sync``
        does on upload.

        Returns:
            The number of objects loaded.
        """
        root = Path(root)
        count = 0
        for bucket_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            await self.create_bucket(Bucket=bucket_dir.name)
            for path in sorted(p for p in bucket_dir.rglob("*") if p.is_file()):
                key = path.relative_to(bucket_dir).as_posix()
                content_type, _ = mimetypes.guess_type(path.name)
                await self.put_object(
                    Bucket=bucket_dir.name,
                    Key=key,
                    Body=path.read_bytes(),
                    ContentType=content_type,
                )
                count += 1
        logger.info("Seeded memory store with %d objects from %s", count, root)
        return count

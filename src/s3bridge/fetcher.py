"""Conditional object fetch against the store.

Store errors are classified here, once, into the proxy error taxonomy.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from s3bridge import metrics
from s3bridge.errors import NotModified, ObjectNotFound, UpstreamError
from s3bridge.keys import ResolvedKey

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB
CHUNK_SIZE = 64 * 1024

_NOT_FOUND_CODES = ("NoSuchKey", "404")
_NOT_MODIFIED_CODES = ("NotModified", "304")
_PRECONDITION_CODES = ("PreconditionFailed", "412")


@dataclass(frozen=True)
class ObjectMetadata:
    """Response metadata of a store GET, as needed for header translation."""

    content_type: str | None = None
    etag: str | None = None
    last_modified: datetime | str | None = None
    cache_control: str | None = None
    content_length: int | None = None

    @classmethod
    def from_response(cls, response: dict[str, Any]) -> "ObjectMetadata":
        return cls(
            content_type=response.get("ContentType"),
            etag=response.get("ETag"),
            last_modified=response.get("LastModified"),
            cache_control=response.get("CacheControl"),
            content_length=response.get("ContentLength"),
        )


class FetchedObject:
    """Metadata and body of a successful fetch.

    The body is released when ``iter_chunks`` finishes, fails or is
    cancelled, or on ``close`` if the stream is never consumed.
    """

    def __init__(self, key: str, metadata: ObjectMetadata, body: Any) -> None:
        self.key = key
        self.metadata = metadata
        self._body = body

    async def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield the body in chunks. Each read waits for the consumer."""
        async with self._body as stream:
            while True:
                chunk = await stream.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    async def close(self) -> None:
        await self._body.aclose()


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class ObjectFetcher:
    """Issues GET requests for resolved keys through an injected S3 client."""

    def __init__(self, client: Any) -> None:
        self.client = client

    async def fetch(self, resolved: ResolvedKey, conditional: bool = True) -> FetchedObject:
        """Fetch an object, optionally conditional on the request's ETag.

        Args:
            resolved: The resolved key. Its ``if_none_match`` is forwarded
                as the store's IfNoneMatch when ``conditional`` is True.
            conditional: False when the response will be re-encoded, since
                the stored ETag does not describe the encoded bytes.

        Returns:
            The fetched object.

        Raises:
            ObjectNotFound: The key is empty or does not exist.
            NotModified: The client's copy is current.
            UpstreamError: Any other store failure.
        """
        # S3 keys are never empty.
        if not resolved.object_key:
            raise ObjectNotFound(bucket=resolved.bucket)

        params: dict[str, Any] = {"Bucket": resolved.bucket, "Key": resolved.object_key}
        sent_condition = conditional and bool(resolved.if_none_match)
        if sent_condition:
            params["IfNoneMatch"] = resolved.if_none_match

        logger.debug("read s3 object %s/%s", resolved.bucket, resolved.object_key)
        try:
            response = await self.client.get_object(**params)
        except ClientError as exc:
            code = _error_code(exc)
            if code in _NOT_FOUND_CODES:
                raise ObjectNotFound(resolved.object_key, resolved.bucket) from exc
            if code in _NOT_MODIFIED_CODES:
                raise NotModified(resolved.object_key) from exc
            if code in _PRECONDITION_CODES and sent_condition:
                raise NotModified(resolved.object_key) from exc
            metrics.count_store_error(code)
            logger.warning(
                "Store error reading %s/%s: %s", resolved.bucket, resolved.object_key, code
            )
            raise UpstreamError(
                message=f"Error reading object from store: {code or exc}",
                bucket=resolved.bucket,
                key=resolved.object_key,
                store_code=code,
            ) from exc
        except BotoCoreError as exc:
            metrics.count_store_error(type(exc).__name__)
            logger.warning(
                "Store unreachable reading %s/%s: %s",
                resolved.bucket,
                resolved.object_key,
                exc,
            )
            raise UpstreamError(
                message=f"Error reading object from store: {exc}",
                bucket=resolved.bucket,
                key=resolved.object_key,
            ) from exc

        return FetchedObject(
            key=resolved.object_key,
            metadata=ObjectMetadata.from_response(response),
            body=response["Body"],
        )

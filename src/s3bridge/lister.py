"""Key listing for directory-style requests."""

import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from s3bridge import metrics
from s3bridge.errors import UpstreamError
from s3bridge.keys import ResolvedKey

logger = logging.getLogger(__name__)


class KeyLister:
    """Lists the keys below a prefix, relative to that prefix."""

    def __init__(self, client: Any) -> None:
        self.client = client

    async def list_keys(self, resolved: ResolvedKey) -> list[str]:
        """Return every key under ``resolved.object_key``, prefix stripped.

        Follows continuation tokens until the listing is exhausted. The
        folder marker object (a key equal to the prefix) is left out.

        Raises:
            UpstreamError: The store could not list the prefix.
        """
        prefix = resolved.object_key
        params: dict[str, Any] = {"Bucket": resolved.bucket, "Prefix": prefix}
        keys: list[str] = []

        logger.debug("list s3 keys %s/%s", resolved.bucket, prefix)
        try:
            while True:
                page = await self.client.list_objects_v2(**params)
                for obj in page.get("Contents", []):
                    relative = obj["Key"][len(prefix) :]
                    if relative:
                        keys.append(relative)
                token = page.get("NextContinuationToken")
                if not page.get("IsTruncated") or not token:
                    break
                params["ContinuationToken"] = token
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            metrics.count_store_error(code)
            logger.warning("Store error listing %s/%s: %s", resolved.bucket, prefix, code)
            raise UpstreamError(
                message=f"Error listing keys in store: {code or exc}",
                bucket=resolved.bucket,
                prefix=prefix,
                store_code=code,
            ) from exc
        except BotoCoreError as exc:
            metrics.count_store_error(type(exc).__name__)
            logger.warning("Store unreachable listing %s/%s: %s", resolved.bucket, prefix, exc)
            raise UpstreamError(
                message=f"Error listing keys in store: {exc}",
                bucket=resolved.bucket,
                prefix=prefix,
            ) from exc

        return keys

"""Translation of store object metadata into HTTP response headers."""

import email.utils
import mimetypes
from datetime import datetime, timezone

from s3bridge.config import ProxyConfig
from s3bridge.fetcher import ObjectMetadata
from s3bridge.transforms import TransformOutcome

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
BASE64_ENCODING = "base64"
BASE64_ETAG_SUFFIX = "-base64"

# What S3 and common uploaders report when they know nothing better.
GENERIC_CONTENT_TYPES = ("application/octet-stream", "binary/octet-stream")

# mimetypes falls back to the host's tables; make the common web
# types deterministic.
mimetypes.add_type("text/csv", ".csv")
mimetypes.add_type("application/json", ".json")
mimetypes.add_type("text/javascript", ".js")
mimetypes.add_type("image/svg+xml", ".svg")


def http_date(value: datetime | str) -> str:
    """Format a store timestamp as an RFC 1123 HTTP date.

    aiobotocore parses Last-Modified into a datetime; strings are assumed
    to be HTTP dates already and pass through.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return email.utils.format_datetime(value.astimezone(timezone.utc), usegmt=True)
    return value


def sniff_content_type(key: str) -> str | None:
    """Guess a content type from the key's file extension."""
    content_type, _ = mimetypes.guess_type(key, strict=False)
    return content_type


def resolve_content_type(
    store_type: str | None, key: str, outcome: TransformOutcome
) -> str | None:
    if outcome.csv_to_json:
        return JSON_CONTENT_TYPE
    if store_type is None or store_type.split(";", 1)[0].strip() in GENERIC_CONTENT_TYPES:
        return sniff_content_type(key) or store_type
    return store_type


def resolve_cache_control(store_value: str | None, config: ProxyConfig) -> str | None:
    """Override beats the store value, the store value beats the default."""
    if config.override_cache_control:
        return config.override_cache_control
    if store_value:
        return store_value
    return config.default_cache_control


def encoded_etag(etag: str) -> str:
    """Mark an ETag as belonging to the base64 variant of an object."""
    bare = etag.strip('"')
    return f'"{bare}{BASE64_ETAG_SUFFIX}"'


def translate_headers(
    metadata: ObjectMetadata,
    config: ProxyConfig,
    key: str,
    outcome: TransformOutcome,
) -> dict[str, str]:
    """Build the complete response header set for an object response.

    Args:
        metadata: The store's response metadata.
        config: The mount's proxy configuration.
        key: The resolved store key, used for content-type sniffing and
            the diagnostic header.
        outcome: The transforms the body will go through.

    Returns:
        An ordered dict of headers, final before the first body byte.
    """
    headers: dict[str, str] = {}

    if metadata.last_modified:
        headers["Last-Modified"] = http_date(metadata.last_modified)

    content_type = resolve_content_type(metadata.content_type, key, outcome)
    if content_type:
        headers["Content-Type"] = content_type

    cache_control = resolve_cache_control(metadata.cache_control, config)
    if cache_control:
        headers["Cache-Control"] = cache_control

    if metadata.etag:
        headers["ETag"] = encoded_etag(metadata.etag) if outcome.base64 else metadata.etag

    if metadata.content_length is not None and not outcome.changes_length:
        headers["Content-Length"] = str(metadata.content_length)

    if outcome.base64:
        headers["Content-Encoding"] = BASE64_ENCODING

    headers[config.key_header] = key
    return headers

"""Request path to object key resolution.

Maps the part of a request URL beyond the mount point to the key that is
looked up in the store:

    /s3-proxy/--v42/css/site.css?x=1   ->   {key_prefix}/css/site.css

Segments starting with ``--`` are cache-bust markers: clients insert them
to get a distinct URL per deploy, and they never reach the store.
"""

import urllib.parse
from dataclasses import dataclass

from s3bridge.config import ProxyConfig

CACHE_BUST_MARKER = "--"
SEPARATOR = "/"


@dataclass(frozen=True)
class ResolvedKey:
    """The store address of one request."""

    bucket: str
    object_key: str
    listing: bool = False
    if_none_match: str | None = None


def strip_cache_bust_segments(key: str) -> str:
    """Drop every path segment that begins with the cache-bust marker."""
    segments = key.split(SEPARATOR)
    return SEPARATOR.join(s for s in segments if not s.startswith(CACHE_BUST_MARKER))


def join_prefix(prefix: str | None, key: str) -> str:
    """Join the configured key prefix in front of ``key``.

    Exactly one separator ends up between the two; a trailing separator on
    ``key`` is preserved so listing prefixes keep their folder shape.
    """
    if not prefix:
        return key
    return prefix.rstrip(SEPARATOR) + SEPARATOR + key.lstrip(SEPARATOR)


def resolve_key(
    raw_url: str,
    config: ProxyConfig,
    if_none_match: str | None = None,
) -> ResolvedKey:
    """Resolve a request URL relative to the mount point.

    Args:
        raw_url: Percent-encoded URL following the mount point (``""``,
            ``"/"`` or ``"/a/b.csv?v=1"``), possibly carrying a query string.
        config: The mount's proxy configuration.
        if_none_match: The request's If-None-Match header, if any.

    Returns:
        The ResolvedKey. ``listing`` is True only when no default key is
        configured and the request path ends with a separator.
    """
    raw_path = raw_url.split("?", 1)[0]
    if raw_url.startswith(SEPARATOR):
        raw_url = raw_url[1:]
    key = urllib.parse.unquote(raw_url)

    # Ends exactly at the mount point, query string or not.
    if key.split("?", 1)[0] == "" and config.default_key:
        key = config.default_key

    key = key.split("?", 1)[0]
    key = strip_cache_bust_segments(key)
    key = join_prefix(config.key_prefix, key)

    listing = not config.default_key and raw_path.endswith(SEPARATOR)

    return ResolvedKey(
        bucket=config.bucket,
        object_key=key,
        listing=listing,
        if_none_match=if_none_match,
    )
